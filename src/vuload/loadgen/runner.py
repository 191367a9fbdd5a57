from __future__ import annotations

import asyncio
import itertools
import logging
import signal
import time
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable

import httpx

from vuload.config import Check, RequestSpec, RunConfig, ScenarioConfig, StopMode
from vuload.loadgen.client import send_request
from vuload.loadgen.request import PreparedRequest, prepare_request
from vuload.metrics import ErrorType, RequestOutcome, ResultAggregator, RunReport, ThresholdRule

logger = logging.getLogger(__name__)

_TICK_SEC = 0.1


@dataclass(slots=True)
class StopCondition:
    """Tells one virtual user when to stop looping.

    ``drain`` is set by the scheduler at run end or when the staged target
    drops; the VU finishes its current request and exits.
    """

    iterations: int | None = None
    drain: asyncio.Event = field(default_factory=asyncio.Event)

    def reached(self, completed: int) -> bool:
        if self.drain.is_set():
            return True
        return self.iterations is not None and completed >= self.iterations

    async def pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self.drain.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


class VirtualUser:
    def __init__(
        self,
        vu_id: int,
        client: httpx.AsyncClient,
        check: Check,
        timeout_sec: float,
        pause_sec: float = 0.0,
    ) -> None:
        self.vu_id = vu_id
        self.completed = 0
        self._client = client
        self._check = check
        self._timeout_sec = timeout_sec
        self._pause_sec = pause_sec
        self._in_flight: tuple[float, float] | None = None

    async def run(self, request: PreparedRequest, stop: StopCondition) -> AsyncIterator[RequestOutcome]:
        while not stop.reached(self.completed):
            self._in_flight = (time.time(), time.perf_counter())
            outcome = await send_request(
                self._client,
                request,
                self._check,
                self.vu_id,
                self.completed,
                self._timeout_sec,
            )
            self._in_flight = None
            self.completed += 1
            yield outcome
            if self._pause_sec > 0 and not stop.reached(self.completed):
                await stop.pause(self._pause_sec)
            else:
                # fast targets may answer without suspending; let the scheduler run
                await asyncio.sleep(0)

    def abandon(self) -> RequestOutcome | None:
        """Outcome for a request cut off by cancellation, if one was in flight."""
        if self._in_flight is None:
            return None
        started_wall, started_mono = self._in_flight
        self._in_flight = None
        return RequestOutcome(
            vu_id=self.vu_id,
            iteration=self.completed,
            started_at=started_wall,
            latency_ms=(time.perf_counter() - started_mono) * 1000.0,
            status_code=None,
            error_type=ErrorType.ABANDONED,
            error="request abandoned after graceful stop period",
        )


@dataclass(slots=True)
class _Slot:
    vu: VirtualUser
    stop: StopCondition


class Scheduler:
    def __init__(
        self,
        config: ScenarioConfig,
        check: Check | None = None,
        thresholds: Iterable[ThresholdRule] = (),
        aggregator: ResultAggregator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._check = check or Check()
        self._aggregator = aggregator or ResultAggregator(thresholds, self._check)
        self._transport = transport
        self._ids = itertools.count(1)
        self._live: dict[asyncio.Task[None], _Slot] = {}
        self._stopping = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._peak = 0

    @property
    def aggregator(self) -> ResultAggregator:
        return self._aggregator

    @property
    def peak_vus(self) -> int:
        return self._peak

    def stop(self) -> None:
        if not self._stopping.is_set():
            logger.info("Stop requested, draining %d VUs", len(self._live))
        self._stopping.set()
        self._wakeup.set()

    async def execute(self, spec: RequestSpec) -> RunReport:
        prepared = prepare_request(spec)
        limit = self._config.max_concurrency
        limits = httpx.Limits(max_connections=limit, max_keepalive_connections=limit)
        started = time.perf_counter()
        logger.info(
            "Starting %s run: %d max VUs against %s %s",
            self._config.mode.value,
            limit,
            prepared.method,
            prepared.url,
        )
        async with httpx.AsyncClient(transport=self._transport, limits=limits) as client:
            try:
                if self._config.mode is StopMode.DURATION:
                    await self._run_for_duration(client, prepared, started)
                else:
                    await self._run_iterations(client, prepared)
            finally:
                await self._shutdown()
        elapsed = time.perf_counter() - started
        return self._aggregator.finalize(elapsed_sec=elapsed, peak_vus=self._peak)

    async def _run_for_duration(self, client: httpx.AsyncClient, prepared: PreparedRequest, started: float) -> None:
        total = self._config.total_duration_sec or 0.0
        deadline = started + total
        current_target: int | None = None
        while not self._stopping.is_set():
            self._wakeup.clear()
            now = time.perf_counter()
            if now >= deadline:
                break
            self._reap()
            target = self._config.target_at(now - started)
            if target != current_target:
                logger.info("Target concurrency %d VUs at %.1fs", target, now - started)
                current_target = target
            self._rebalance(client, prepared, target)
            await self._wait(min(_TICK_SEC, deadline - now))

    async def _run_iterations(self, client: httpx.AsyncClient, prepared: PreparedRequest) -> None:
        for _ in range(self._config.vus):
            self._spawn(client, prepared, self._config.iterations)
        while not self._stopping.is_set():
            self._wakeup.clear()
            self._reap()
            if not self._live:
                break
            await self._wait(None)

    def _rebalance(self, client: httpx.AsyncClient, prepared: PreparedRequest, target: int) -> None:
        active = [task for task, slot in self._live.items() if not slot.stop.drain.is_set()]
        excess = len(active) - target
        if excess > 0:
            # newest first; draining VUs stay counted until they finish
            for task in active[-excess:]:
                self._live[task].stop.drain.set()
            return
        while len(self._live) < target:
            self._spawn(client, prepared, None)

    def _spawn(self, client: httpx.AsyncClient, prepared: PreparedRequest, iterations: int | None) -> None:
        vu = VirtualUser(
            next(self._ids),
            client,
            self._check,
            self._config.timeout_sec,
            self._config.pause_sec,
        )
        stop = StopCondition(iterations=iterations)
        task = asyncio.create_task(self._drive(vu, prepared, stop), name=f"vu-{vu.vu_id}")
        task.add_done_callback(lambda _: self._wakeup.set())
        self._live[task] = _Slot(vu, stop)
        self._peak = max(self._peak, len(self._live))

    async def _drive(self, vu: VirtualUser, prepared: PreparedRequest, stop: StopCondition) -> None:
        try:
            async for outcome in vu.run(prepared, stop):
                self._aggregator.record(outcome)
        except asyncio.CancelledError:
            abandoned = vu.abandon()
            if abandoned is not None:
                logger.warning("VU %d abandoned an in-flight request", vu.vu_id)
                self._aggregator.record(abandoned)
            raise

    def _reap(self) -> None:
        for task in [t for t in self._live if t.done()]:
            del self._live[task]
            if not task.cancelled():
                task.result()

    async def _wait(self, timeout: float | None) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    async def _shutdown(self) -> None:
        if not self._live:
            return
        for slot in self._live.values():
            slot.stop.drain.set()
        grace = self._config.graceful_stop_sec
        logger.info("Graceful stop: waiting up to %.1fs for %d VUs", grace, len(self._live))
        _, pending = await asyncio.wait(set(self._live), timeout=grace)
        if pending:
            logger.warning("Cancelling %d VUs still running after graceful stop", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.wait(pending)
        self._reap()


@dataclass(frozen=True, slots=True)
class RunResult:
    run_id: str
    report: RunReport
    outcomes: tuple[RequestOutcome, ...] = ()


def _new_run_id() -> str:
    return uuid.uuid4().hex


async def run_load(
    config: RunConfig,
    transport: httpx.AsyncBaseTransport | None = None,
    handle_signals: bool = False,
) -> RunResult:
    run_id = config.run_id or _new_run_id()
    scheduler = Scheduler(
        config.scenario,
        check=config.check,
        thresholds=config.thresholds,
        transport=transport,
    )
    if handle_signals:
        _install_signal_handlers(scheduler)
    report = await scheduler.execute(config.request)
    return RunResult(run_id=run_id, report=report, outcomes=tuple(scheduler.aggregator.outcomes()))


def _install_signal_handlers(scheduler: Scheduler) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler for %s not supported on this platform", sig)
