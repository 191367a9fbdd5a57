from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from vuload.metrics.thresholds import ThresholdResult


class ErrorType(str, Enum):
    TIMEOUT = "timeout"
    CONNECT = "connect"
    READ = "read"
    OTHER = "other"
    ABANDONED = "abandoned"


@dataclass(frozen=True, slots=True)
class RequestOutcome:
    vu_id: int
    iteration: int
    started_at: float
    latency_ms: float
    status_code: int | None
    error_type: ErrorType | None = None
    error: str | None = None
    check_passed: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None or not self.check_passed


@dataclass(frozen=True, slots=True)
class LatencySummary:
    min_ms: float = 0.0
    avg_ms: float = 0.0
    p50_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0
    max_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class RunReport:
    total_requests: int
    failed_requests: int
    failure_rate: float
    latency: LatencySummary
    status_codes: Mapping[int, int] = field(default_factory=dict)
    errors: Mapping[str, int] = field(default_factory=dict)
    check_name: str = ""
    check_passes: int = 0
    check_fails: int = 0
    threshold_results: tuple[ThresholdResult, ...] = ()
    peak_vus: int = 0
    elapsed_sec: float = 0.0

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.threshold_results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "failure_rate": self.failure_rate,
            "latency_ms": {
                "min": self.latency.min_ms,
                "avg": self.latency.avg_ms,
                "p50": self.latency.p50_ms,
                "p95": self.latency.p95_ms,
                "p99": self.latency.p99_ms,
                "max": self.latency.max_ms,
            },
            "status_codes": {str(code): count for code, count in sorted(self.status_codes.items())},
            "errors": dict(sorted(self.errors.items())),
            "checks": {
                self.check_name: {"passes": self.check_passes, "fails": self.check_fails},
            },
            "thresholds": {
                str(result.rule): {"observed": result.observed, "passed": result.passed}
                for result in self.threshold_results
            },
            "peak_vus": self.peak_vus,
            "elapsed_sec": self.elapsed_sec,
        }
