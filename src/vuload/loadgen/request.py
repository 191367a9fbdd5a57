from __future__ import annotations

import json
from dataclasses import dataclass

import httpx

from vuload.config import RequestSpec
from vuload.errors import EncodingError

USER_AGENT = "vuload/0.1"
DEFAULT_HEADERS = {"User-Agent": USER_AGENT}


@dataclass(frozen=True, slots=True)
class PreparedRequest:
    method: str
    url: httpx.URL
    headers: httpx.Headers
    content: bytes | None


def prepare_request(spec: RequestSpec) -> PreparedRequest:
    """Serialize the body and merge headers once, before any VU starts."""
    headers = httpx.Headers(DEFAULT_HEADERS)
    content = spec.body
    if spec.json is not None:
        content = _encode_json(spec.json)
        if "content-type" not in {key.lower() for key in spec.headers}:
            headers["Content-Type"] = "application/json"
    try:
        headers.update(spec.headers)
    except UnicodeEncodeError as exc:
        msg = f"Request headers must be ASCII: {exc}"
        raise EncodingError(msg) from exc
    url = httpx.URL(spec.url)
    if spec.params:
        url = url.copy_merge_params(dict(spec.params))
    return PreparedRequest(
        method=spec.method.value,
        url=url,
        headers=headers,
        content=content,
    )


def _encode_json(payload: object) -> bytes:
    try:
        return json.dumps(payload, separators=(",", ":"), allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        msg = f"Request payload is not JSON serializable: {exc}"
        raise EncodingError(msg) from exc
