from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from vuload.errors import ConfigError


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class StopMode(str, Enum):
    DURATION = "duration"
    ITERATIONS = "iterations"


@dataclass(frozen=True, slots=True)
class RequestSpec:
    url: str
    method: HttpMethod = HttpMethod.GET
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None
    json: Any = None

    def __post_init__(self) -> None:
        if not self.url.startswith(("http://", "https://")):
            msg = f"Target URL must be http(s): {self.url!r}"
            raise ConfigError(msg)
        if self.body is not None and self.json is not None:
            msg = "A request carries either a raw body or a JSON payload, not both"
            raise ConfigError(msg)


@dataclass(frozen=True, slots=True)
class Check:
    name: str = "is status 200"
    expected_statuses: tuple[int, ...] = (200,)

    def __post_init__(self) -> None:
        if not self.expected_statuses:
            msg = "A check needs at least one expected status"
            raise ConfigError(msg)

    def passes(self, status_code: int | None) -> bool:
        return status_code is not None and status_code in self.expected_statuses


@dataclass(frozen=True, slots=True)
class Stage:
    duration_sec: float
    target: int

    def __post_init__(self) -> None:
        if not self.duration_sec > 0:
            msg = f"Stage duration must be positive, got {self.duration_sec}"
            raise ConfigError(msg)
        if self.target < 0:
            msg = f"Stage target must not be negative, got {self.target}"
            raise ConfigError(msg)


@dataclass(frozen=True, slots=True)
class ScenarioConfig:
    """How many virtual users run, and for how long.

    Duration mode is selected by ``duration_sec`` or ``stages``; iteration
    mode by ``iterations`` (per virtual user). Exactly one may be set.
    """

    vus: int = 1
    duration_sec: float | None = None
    iterations: int | None = None
    stages: tuple[Stage, ...] = ()
    pause_sec: float = 0.0
    graceful_stop_sec: float = 30.0
    timeout_sec: float = 60.0

    def __post_init__(self) -> None:
        modes = [self.duration_sec is not None, self.iterations is not None, bool(self.stages)]
        if sum(modes) != 1:
            msg = "Exactly one of duration, iterations or stages must be configured"
            raise ConfigError(msg)
        if self.vus < 1:
            msg = f"vus must be a positive integer, got {self.vus}"
            raise ConfigError(msg)
        if self.duration_sec is not None and not (self.duration_sec > 0 and math.isfinite(self.duration_sec)):
            msg = f"duration must be positive, got {self.duration_sec}"
            raise ConfigError(msg)
        if self.iterations is not None and self.iterations < 1:
            msg = f"iterations must be a positive integer, got {self.iterations}"
            raise ConfigError(msg)
        if self.stages and self.max_concurrency < 1:
            msg = "At least one stage must target a positive number of VUs"
            raise ConfigError(msg)
        if not (self.pause_sec >= 0 and math.isfinite(self.pause_sec)):
            msg = f"pause must be a finite non-negative duration, got {self.pause_sec}"
            raise ConfigError(msg)
        if not (self.graceful_stop_sec >= 0 and math.isfinite(self.graceful_stop_sec)):
            msg = f"graceful stop must be a finite non-negative duration, got {self.graceful_stop_sec}"
            raise ConfigError(msg)
        if not (self.timeout_sec > 0 and math.isfinite(self.timeout_sec)):
            msg = f"request timeout must be positive, got {self.timeout_sec}"
            raise ConfigError(msg)

    @property
    def mode(self) -> StopMode:
        if self.iterations is not None:
            return StopMode.ITERATIONS
        return StopMode.DURATION

    @property
    def max_concurrency(self) -> int:
        if self.stages:
            return max(stage.target for stage in self.stages)
        return self.vus

    @property
    def total_duration_sec(self) -> float | None:
        if self.stages:
            return sum(stage.duration_sec for stage in self.stages)
        return self.duration_sec

    def target_at(self, elapsed_sec: float) -> int:
        if not self.stages:
            return self.vus
        offset = 0.0
        for stage in self.stages:
            offset += stage.duration_sec
            if elapsed_sec < offset:
                return stage.target
        return 0


@dataclass(frozen=True, slots=True)
class RunConfig:
    request: RequestSpec
    scenario: ScenarioConfig
    check: Check = field(default_factory=Check)
    thresholds: tuple[Any, ...] = ()
    run_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    notes: str = ""

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "run_id": self.run_id or "",
            "created_at": self.created_at.isoformat(),
            "notes": self.notes,
            "request": {
                "method": self.request.method.value,
                "url": self.request.url,
                "headers": dict(self.request.headers),
                "params": dict(self.request.params),
                "has_body": self.request.body is not None or self.request.json is not None,
            },
            "scenario": {
                "mode": self.scenario.mode.value,
                "vus": self.scenario.vus,
                "duration_sec": self.scenario.duration_sec,
                "iterations": self.scenario.iterations,
                "stages": [
                    {"duration_sec": s.duration_sec, "target": s.target} for s in self.scenario.stages
                ],
                "pause_sec": self.scenario.pause_sec,
                "graceful_stop_sec": self.scenario.graceful_stop_sec,
                "timeout_sec": self.scenario.timeout_sec,
            },
            "check": {
                "name": self.check.name,
                "expected_statuses": list(self.check.expected_statuses),
            },
            "thresholds": [str(rule) for rule in self.thresholds],
        }
