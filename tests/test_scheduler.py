from __future__ import annotations

import asyncio
from collections import Counter

import httpx
import pytest

from vuload.config import Check, HttpMethod, RequestSpec, ScenarioConfig, Stage
from vuload.errors import EncodingError
from vuload.loadgen.runner import Scheduler, StopCondition
from vuload.metrics import RunReport, parse_threshold

URL = "http://localhost:3000/users?data-source=gatewayB"


class FakeServer:
    """Async handler for httpx.MockTransport that tracks in-flight requests."""

    def __init__(self, status: int = 200, delay: float = 0.0, exc: type[Exception] | None = None) -> None:
        self.status = status
        self.delay = delay
        self.exc = exc
        self.in_flight = 0
        self.max_in_flight = 0
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.exc is not None:
                raise self.exc("simulated failure", request=request)
            return httpx.Response(self.status, json={"ok": True})
        finally:
            self.in_flight -= 1


def _execute(
    server: FakeServer,
    scenario: ScenarioConfig,
    thresholds: tuple[str, ...] = (),
    spec: RequestSpec | None = None,
) -> tuple[RunReport, Scheduler]:
    async def go() -> tuple[RunReport, Scheduler]:
        scheduler = Scheduler(
            scenario,
            check=Check(),
            thresholds=[parse_threshold(t) for t in thresholds],
            transport=httpx.MockTransport(server),
        )
        report = await scheduler.execute(spec or RequestSpec(url=URL))
        return report, scheduler

    return asyncio.run(go())


def test_single_iteration_success() -> None:
    server = FakeServer()
    report, _ = _execute(server, ScenarioConfig(vus=1, iterations=1), ("failure_rate<0.01",))
    assert report.total_requests == 1
    assert report.failed_requests == 0
    assert report.status_codes == {200: 1}
    assert report.passed
    assert server.requests[0].url.params["data-source"] == "gatewayB"


def test_unreachable_target_fails_every_request() -> None:
    server = FakeServer(exc=httpx.ConnectError)
    report, _ = _execute(server, ScenarioConfig(vus=3, iterations=4), ("failure_rate<0.01",))
    assert report.total_requests == 12
    assert report.failed_requests == report.total_requests
    assert report.failure_rate == 1.0
    assert report.errors == {"connect": 12}
    assert not report.passed


def test_timeouts_classified() -> None:
    server = FakeServer(exc=httpx.ReadTimeout)
    report, _ = _execute(server, ScenarioConfig(vus=1, iterations=2))
    assert report.errors == {"timeout": 2}
    assert report.failed_requests == 2


def test_unexpected_status_fails_check() -> None:
    server = FakeServer(status=503)
    report, _ = _execute(server, ScenarioConfig(vus=2, iterations=2))
    assert report.failed_requests == 4
    assert report.check_fails == 4
    assert report.status_codes == {503: 4}


def test_every_outcome_accounted_for() -> None:
    server = FakeServer(delay=0.001)
    report, scheduler = _execute(server, ScenarioConfig(vus=4, iterations=7))
    assert report.total_requests == 28
    assert len(server.requests) == 28
    per_vu = Counter(o.vu_id for o in scheduler.aggregator.outcomes())
    assert sorted(per_vu.values()) == [7, 7, 7, 7]
    iterations = {(o.vu_id, o.iteration) for o in scheduler.aggregator.outcomes()}
    assert len(iterations) == 28


def test_duration_mode_never_exceeds_concurrency() -> None:
    server = FakeServer(delay=0.005)
    report, scheduler = _execute(server, ScenarioConfig(vus=5, duration_sec=0.3))
    assert server.max_in_flight <= 5
    assert scheduler.peak_vus == 5
    assert report.peak_vus == 5
    assert report.total_requests == len(server.requests)
    assert report.total_requests > 5
    assert report.failed_requests == 0


def test_staged_concurrency() -> None:
    server = FakeServer(delay=0.005)
    stages = (Stage(0.15, 2), Stage(0.15, 4), Stage(0.15, 1))
    report, _ = _execute(server, ScenarioConfig(stages=stages))
    assert server.max_in_flight <= 4
    assert report.peak_vus == 4
    assert report.total_requests == len(server.requests)
    assert report.errors == {}


def test_pause_between_iterations() -> None:
    server = FakeServer()
    report, _ = _execute(server, ScenarioConfig(vus=1, duration_sec=0.35, pause_sec=0.1))
    assert 2 <= report.total_requests <= 5


def test_graceful_stop_lets_in_flight_requests_finish() -> None:
    server = FakeServer(delay=0.2)
    report, _ = _execute(server, ScenarioConfig(vus=3, duration_sec=0.05, graceful_stop_sec=2.0))
    assert report.total_requests == 3
    assert report.failed_requests == 0
    assert report.errors == {}


def test_requests_past_grace_period_are_abandoned() -> None:
    server = FakeServer(delay=5.0)
    report, _ = _execute(server, ScenarioConfig(vus=2, duration_sec=0.05, graceful_stop_sec=0.05))
    assert report.total_requests == 2
    assert report.failed_requests == 2
    assert report.errors == {"abandoned": 2}
    assert report.elapsed_sec < 2.0


def test_external_stop_drains_run() -> None:
    server = FakeServer(delay=0.002)

    async def go() -> RunReport:
        scheduler = Scheduler(ScenarioConfig(vus=3, iterations=1_000_000), transport=httpx.MockTransport(server))
        asyncio.get_running_loop().call_later(0.1, scheduler.stop)
        return await scheduler.execute(RequestSpec(url=URL))

    report = asyncio.run(go())
    assert 0 < report.total_requests < 3_000_000
    assert report.total_requests == len(server.requests)
    assert report.errors == {}


def test_encoding_error_aborts_before_any_request() -> None:
    server = FakeServer()
    spec = RequestSpec(url=URL, method=HttpMethod.POST, json={"tags": {"a", "b"}})
    with pytest.raises(EncodingError):
        _execute(server, ScenarioConfig(vus=2, duration_sec=1.0), spec=spec)
    assert server.requests == []


def test_post_sends_json_body() -> None:
    server = FakeServer(status=201)
    spec = RequestSpec(url="http://localhost:3000/users", method=HttpMethod.POST, json={"name": "Ada"})
    scenario = ScenarioConfig(vus=1, iterations=1)

    async def go() -> RunReport:
        scheduler = Scheduler(scenario, check=Check("is status 201", (201,)), transport=httpx.MockTransport(server))
        return await scheduler.execute(spec)

    report = asyncio.run(go())
    assert report.failed_requests == 0
    assert server.requests[0].method == "POST"
    assert server.requests[0].content == b'{"name":"Ada"}'


def test_stop_condition_pause_returns_on_drain() -> None:
    async def go() -> float:
        stop = StopCondition()
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, stop.drain.set)
        started = loop.time()
        await stop.pause(5.0)
        return loop.time() - started

    assert asyncio.run(go()) < 1.0


def test_stop_condition_iterations() -> None:
    stop = StopCondition(iterations=2)
    assert not stop.reached(1)
    assert stop.reached(2)
