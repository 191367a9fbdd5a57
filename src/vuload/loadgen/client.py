from __future__ import annotations

import logging
import time

import httpx

from vuload.config import Check
from vuload.loadgen.request import PreparedRequest
from vuload.metrics import ErrorType, RequestOutcome

logger = logging.getLogger(__name__)


async def send_request(
    client: httpx.AsyncClient,
    request: PreparedRequest,
    check: Check,
    vu_id: int,
    iteration: int,
    timeout_sec: float,
) -> RequestOutcome:
    start_wall = time.time()
    start_mono = time.perf_counter()
    try:
        resp = await client.request(
            request.method,
            request.url,
            headers=request.headers,
            content=request.content,
            timeout=timeout_sec,
        )
        latency_ms = (time.perf_counter() - start_mono) * 1000.0
        return RequestOutcome(
            vu_id=vu_id,
            iteration=iteration,
            started_at=start_wall,
            latency_ms=latency_ms,
            status_code=resp.status_code,
            check_passed=check.passes(resp.status_code),
        )
    except httpx.TimeoutException as exc:
        err, detail = ErrorType.TIMEOUT, exc
    except httpx.ConnectError as exc:
        err, detail = ErrorType.CONNECT, exc
    except httpx.ReadError as exc:
        err, detail = ErrorType.READ, exc
    except httpx.HTTPError as exc:
        err, detail = ErrorType.OTHER, exc
    latency_ms = (time.perf_counter() - start_mono) * 1000.0
    logger.debug("vu %d iteration %d failed: %s: %s", vu_id, iteration, err.value, detail)
    return RequestOutcome(
        vu_id=vu_id,
        iteration=iteration,
        started_at=start_wall,
        latency_ms=latency_ms,
        status_code=None,
        error_type=err,
        error=str(detail) or type(detail).__name__,
    )
