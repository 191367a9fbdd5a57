from __future__ import annotations

from vuload.config.durations import parse_duration
from vuload.config.models import (
    Check,
    HttpMethod,
    RequestSpec,
    RunConfig,
    ScenarioConfig,
    Stage,
    StopMode,
)

__all__ = [
    "Check",
    "HttpMethod",
    "RequestSpec",
    "RunConfig",
    "ScenarioConfig",
    "Stage",
    "StopMode",
    "parse_duration",
]
