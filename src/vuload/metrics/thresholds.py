from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping

from vuload.errors import ConfigError


class Metric(str, Enum):
    FAILURE_RATE = "failure_rate"
    P50_LATENCY = "p50_latency"
    P95_LATENCY = "p95_latency"
    P99_LATENCY = "p99_latency"
    AVG_LATENCY = "avg_latency"
    TOTAL_COUNT = "total_count"


class Comparator(str, Enum):
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    EQ = "=="


_OPERATORS: dict[Comparator, Callable[[float, float], bool]] = {
    Comparator.LT: operator.lt,
    Comparator.LE: operator.le,
    Comparator.GT: operator.gt,
    Comparator.GE: operator.ge,
    Comparator.EQ: operator.eq,
}

_ALIASES = {
    "failureRate": Metric.FAILURE_RATE,
    "p50Latency": Metric.P50_LATENCY,
    "p95Latency": Metric.P95_LATENCY,
    "p99Latency": Metric.P99_LATENCY,
    "avgLatency": Metric.AVG_LATENCY,
    "totalCount": Metric.TOTAL_COUNT,
}

_EXPRESSION = re.compile(r"^\s*([A-Za-z0-9_]+)\s*(<=|>=|==|<|>)\s*([-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$")


@dataclass(frozen=True, slots=True)
class ThresholdRule:
    metric: Metric
    comparator: Comparator
    limit: float

    def __str__(self) -> str:
        return f"{self.metric.value}{self.comparator.value}{self.limit:g}"


@dataclass(frozen=True, slots=True)
class ThresholdResult:
    rule: ThresholdRule
    observed: float
    passed: bool


def parse_threshold(expression: str) -> ThresholdRule:
    """Parse expressions such as ``failure_rate<0.01`` or ``p95Latency<=500``.

    Latency limits are in milliseconds.
    """
    match = _EXPRESSION.match(expression)
    if match is None:
        msg = f"Invalid threshold expression: {expression!r}"
        raise ConfigError(msg)
    name, comparator, limit = match.groups()
    metric = _ALIASES.get(name)
    if metric is None:
        try:
            metric = Metric(name)
        except ValueError:
            msg = f"Unknown threshold metric {name!r} in {expression!r}"
            raise ConfigError(msg) from None
    return ThresholdRule(metric=metric, comparator=Comparator(comparator), limit=float(limit))


def evaluate(rule: ThresholdRule, metrics: Mapping[Metric, float]) -> ThresholdResult:
    observed = metrics[rule.metric]
    passed = _OPERATORS[rule.comparator](observed, rule.limit)
    return ThresholdResult(rule=rule, observed=observed, passed=passed)
