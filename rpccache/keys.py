"""
JSON-RPC body parsing and cache key derivation.

POST bodies are turned into a synthetic GET identity so they can share the
edge cache with plain GET traffic. Only ``params`` feed the key; the request
``id`` is echoed back to the caller and never cached.
"""

import json
import hashlib
from typing import Dict, Any, Optional, Mapping
from dataclasses import dataclass, field

import httpx


BYPASS_METHODS = frozenset({
    "eth_blockNumber",
    "eth_estimateGas",
})

PARSE_ERROR = -32700
INVALID_REQUEST = -32600


class InvalidRPCBody(ValueError):
    """A POST body that is not a usable JSON-RPC request."""

    def __init__(self, code: int, message: str, request_id: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.request_id = request_id


@dataclass
class RPCRequest:
    """The parts of a JSON-RPC envelope the proxy cares about."""
    method: str
    params: Any = None
    jsonrpc: Optional[str] = None
    id: Any = None
    has_id: bool = False

    @property
    def bypass_cache(self) -> bool:
        return is_bypassed(self.method)

    def extra_fields(self) -> Dict[str, Any]:
        """Fields spliced back into the response body."""
        return {"id": self.id} if self.has_id else {}


def parse_rpc_body(raw: bytes) -> RPCRequest:
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidRPCBody(PARSE_ERROR, f"Parse error: {e}")

    if not isinstance(body, dict):
        raise InvalidRPCBody(INVALID_REQUEST, "Invalid Request: body must be a JSON object")

    method = body.get("method")
    if not isinstance(method, str) or not method:
        raise InvalidRPCBody(
            INVALID_REQUEST,
            "Invalid Request: missing method",
            request_id=body.get("id"),
        )

    return RPCRequest(
        method=method,
        params=body.get("params"),
        jsonrpc=body.get("jsonrpc"),
        id=body.get("id"),
        has_id="id" in body,
    )


def is_bypassed(method: str) -> bool:
    """Methods whose result changes every block are never cached."""
    return method in BYPASS_METHODS


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_params(params: Any) -> str:
    return hashlib.sha256(canonical_json(params).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheKey:
    """A GET identity used to look up and store edge cache entries."""
    url: str
    headers: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)
    method: str = "GET"

    @classmethod
    def for_request(cls, url, headers: Optional[Mapping[str, str]] = None) -> "CacheKey":
        return cls(url=str(url), headers=dict(headers or {}))

    @property
    def path(self) -> str:
        return httpx.URL(self.url).path

    def __str__(self) -> str:
        return self.url


def derive_cache_key(url, params: Any, headers: Optional[Mapping[str, str]] = None) -> CacheKey:
    """Build the key for a POST body: /posts + original path + sha256(params)."""
    url = httpx.URL(str(url))
    path = "/posts" + url.path + hash_params(params)
    return CacheKey.for_request(url.copy_with(path=path), headers)
