from __future__ import annotations

import threading
from collections import Counter
from typing import Iterable

import numpy as np

from vuload.config import Check
from vuload.metrics.models import LatencySummary, RequestOutcome, RunReport
from vuload.metrics.thresholds import Metric, ThresholdRule, evaluate


class ResultAggregator:
    """Collects request outcomes from all virtual users.

    ``record`` may be called concurrently from tasks or threads. ``finalize``
    reads a snapshot and leaves the accumulated state untouched, so it can be
    called more than once.
    """

    def __init__(self, thresholds: Iterable[ThresholdRule] = (), check: Check | None = None) -> None:
        self._thresholds = tuple(thresholds)
        self._check = check or Check()
        self._lock = threading.Lock()
        self._outcomes: list[RequestOutcome] = []

    def record(self, outcome: RequestOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    def outcomes(self) -> list[RequestOutcome]:
        with self._lock:
            return list(self._outcomes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)

    def finalize(self, elapsed_sec: float = 0.0, peak_vus: int = 0) -> RunReport:
        outcomes = self.outcomes()
        total = len(outcomes)
        failed = sum(1 for o in outcomes if o.failed)
        failure_rate = failed / total if total else 0.0
        latency = _summarize_latency([o.latency_ms for o in outcomes if o.latency_ms >= 0])

        status_codes = Counter(o.status_code for o in outcomes if o.status_code is not None)
        errors = Counter(o.error_type.value for o in outcomes if o.error_type is not None)
        check_passes = sum(1 for o in outcomes if o.check_passed)

        metrics = {
            Metric.FAILURE_RATE: failure_rate,
            Metric.P50_LATENCY: latency.p50_ms,
            Metric.P95_LATENCY: latency.p95_ms,
            Metric.P99_LATENCY: latency.p99_ms,
            Metric.AVG_LATENCY: latency.avg_ms,
            Metric.TOTAL_COUNT: float(total),
        }
        results = tuple(evaluate(rule, metrics) for rule in self._thresholds)
        return RunReport(
            total_requests=total,
            failed_requests=failed,
            failure_rate=failure_rate,
            latency=latency,
            status_codes=dict(status_codes),
            errors=dict(errors),
            check_name=self._check.name,
            check_passes=check_passes,
            check_fails=total - check_passes,
            threshold_results=results,
            peak_vus=peak_vus,
            elapsed_sec=elapsed_sec,
        )


def _summarize_latency(latencies: list[float]) -> LatencySummary:
    if not latencies:
        return LatencySummary()
    values = np.asarray(latencies, dtype=float)
    p50, p95, p99 = (float(v) for v in np.percentile(values, [50, 95, 99]))
    return LatencySummary(
        min_ms=float(values.min()),
        avg_ms=float(values.mean()),
        p50_ms=p50,
        p95_ms=p95,
        p99_ms=p99,
        max_ms=float(values.max()),
    )
