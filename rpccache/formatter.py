"""
Client-facing response formatting: browser cache TTL, CORS, id splicing.
"""

import json
import logging
from typing import Dict, Any, Optional, Mapping

from fastapi.responses import Response

from .cache import CachedResponse

logger = logging.getLogger(__name__)

ALLOWED_METHODS = "GET,HEAD,POST,OPTIONS"
PREFLIGHT_MAX_AGE = "86400"  # 1 day

_STRIP = {"content-length", "content-encoding", "cache-control"}


def apply_browser_headers(response: Response, browser_ttl: int) -> Response:
    # Replaces whatever the edge or origin set
    response.headers["Cache-Control"] = f"max-age={browser_ttl}"
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Method"] = "*"
    response.headers["Access-Control-Allow-Headers"] = "*"
    return response


def merge_body(body: bytes, extra: Dict[str, Any]) -> bytes:
    """Shallow-merge ``extra`` over a JSON object body; extra fields win."""
    try:
        original = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.debug("Response body is not JSON, leaving it unchanged")
        return body
    if not isinstance(original, dict):
        logger.debug("Response body is not a JSON object, leaving it unchanged")
        return body
    merged = {**original, **extra}
    return json.dumps(merged, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def format_response(
    response: CachedResponse, browser_ttl: int, extra: Optional[Dict[str, Any]] = None,
) -> Response:
    body = merge_body(response.body, extra) if extra else response.body
    headers = {k: v for k, v in response.headers.items() if k.lower() not in _STRIP}
    formatted = Response(content=body, status_code=response.status, headers=headers)
    return apply_browser_headers(formatted, browser_ttl)


def preflight_response(headers: Mapping[str, str]) -> Response:
    """Answer an OPTIONS request.

    A full CORS preflight (Origin, Access-Control-Request-Method and
    Access-Control-Request-Headers all present) gets the allow headers with the
    requested headers echoed back; anything else is a plain capability probe.
    """
    requested_headers = headers.get("access-control-request-headers")
    if (
        headers.get("origin") is not None
        and headers.get("access-control-request-method") is not None
        and requested_headers is not None
    ):
        return Response(headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": ALLOWED_METHODS,
            "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
            "Access-Control-Allow-Headers": requested_headers,
        })
    return Response(headers={"Allow": "GET, HEAD, POST, OPTIONS"})


def error_response(
    status_code: int, code: int, message: str, browser_ttl: int, request_id: Any = None,
) -> Response:
    body = {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message},
    }
    response = Response(
        content=json.dumps(body, separators=(",", ":")),
        status_code=status_code,
        media_type="application/json",
    )
    return apply_browser_headers(response, browser_ttl)
