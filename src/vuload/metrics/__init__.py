from __future__ import annotations

from vuload.metrics.aggregator import ResultAggregator
from vuload.metrics.models import ErrorType, LatencySummary, RequestOutcome, RunReport
from vuload.metrics.thresholds import (
    Comparator,
    Metric,
    ThresholdResult,
    ThresholdRule,
    evaluate,
    parse_threshold,
)

__all__ = [
    "Comparator",
    "ErrorType",
    "LatencySummary",
    "Metric",
    "RequestOutcome",
    "ResultAggregator",
    "RunReport",
    "ThresholdResult",
    "ThresholdRule",
    "evaluate",
    "parse_threshold",
]
