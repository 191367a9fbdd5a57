from __future__ import annotations

import pytest

from vuload.errors import ConfigError
from vuload.metrics import Comparator, Metric, ThresholdRule, evaluate, parse_threshold


@pytest.mark.parametrize(
    ("expression", "rule"),
    [
        ("failure_rate<0.01", ThresholdRule(Metric.FAILURE_RATE, Comparator.LT, 0.01)),
        ("failureRate < 0.01", ThresholdRule(Metric.FAILURE_RATE, Comparator.LT, 0.01)),
        ("p95Latency<=500", ThresholdRule(Metric.P95_LATENCY, Comparator.LE, 500.0)),
        ("total_count>=100", ThresholdRule(Metric.TOTAL_COUNT, Comparator.GE, 100.0)),
        ("p99_latency>1e3", ThresholdRule(Metric.P99_LATENCY, Comparator.GT, 1000.0)),
        ("totalCount==1", ThresholdRule(Metric.TOTAL_COUNT, Comparator.EQ, 1.0)),
    ],
)
def test_parse_threshold(expression: str, rule: ThresholdRule) -> None:
    assert parse_threshold(expression) == rule


@pytest.mark.parametrize("expression", ["", "failure_rate", "failure_rate<", "rps<10", "p95_latency=<5"])
def test_parse_threshold_rejects_bad_expressions(expression: str) -> None:
    with pytest.raises(ConfigError):
        parse_threshold(expression)


def test_rule_renders_back_to_expression() -> None:
    assert str(parse_threshold("failureRate<0.01")) == "failure_rate<0.01"
    assert str(parse_threshold("p95_latency<=500")) == "p95_latency<=500"


def test_evaluate() -> None:
    metrics = {Metric.FAILURE_RATE: 0.02, Metric.TOTAL_COUNT: 10.0}
    failed = evaluate(parse_threshold("failure_rate<0.01"), metrics)
    assert not failed.passed
    assert failed.observed == 0.02
    assert evaluate(parse_threshold("total_count>=10"), metrics).passed
