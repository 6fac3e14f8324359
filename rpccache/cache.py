"""
Edge cache for upstream responses.

Supports:
- In-memory LRU store (default)
- Redis store shared between proxy instances (optional)

Entries expire passively from the ``max-age`` they were stored with.
"""

import re
import json
import time
import base64
import logging
from typing import Dict, Any, Optional
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from collections import OrderedDict

from .config import ProxyConfig
from .keys import CacheKey

logger = logging.getLogger(__name__)

_MAX_AGE = re.compile(r"max-age=(\d+)")


@dataclass
class CachedResponse:
    """A fully buffered HTTP response."""
    status: int
    headers: Dict[str, str]
    body: bytes
    created_at: float = field(default_factory=time.time)

    def json(self) -> Any:
        return json.loads(self.body)

    @property
    def max_age(self) -> Optional[int]:
        for name, value in self.headers.items():
            if name.lower() == "cache-control":
                match = _MAX_AGE.search(value)
                return int(match.group(1)) if match else None
        return None

    def is_expired(self, now: Optional[float] = None) -> bool:
        max_age = self.max_age
        if max_age is None:
            return False
        now = time.time() if now is None else now
        return now - self.created_at >= max_age

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "headers": self.headers,
            "body": base64.b64encode(self.body).decode("ascii"),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedResponse":
        return cls(
            status=data["status"],
            headers=data["headers"],
            body=base64.b64decode(data["body"]),
            created_at=data["created_at"],
        )


def edge_response(response: CachedResponse, ttl: int) -> CachedResponse:
    """Copy of ``response`` stamped with the edge cache-control header."""
    headers = {k: v for k, v in response.headers.items() if k.lower() != "cache-control"}
    headers["Cache-Control"] = f"public, max-age={ttl}"
    return CachedResponse(status=response.status, headers=headers, body=response.body)


@dataclass
class CacheStats:
    """Statistics about edge cache usage."""
    lookups: int = 0
    hits: int = 0
    misses: int = 0
    stores: int = 0
    store_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lookups": self.lookups,
            "hits": self.hits,
            "misses": self.misses,
            "stores": self.stores,
            "store_failures": self.store_failures,
            "hit_rate": self.hit_rate,
        }

    @property
    def hit_rate(self) -> float:
        if self.lookups == 0:
            return 0.0
        return self.hits / self.lookups


class EdgeCache(ABC):
    """Best-effort key-value response cache."""

    backend = "abstract"

    def __init__(self):
        self.stats = CacheStats()

    async def lookup(self, key: CacheKey) -> Optional[CachedResponse]:
        self.stats.lookups += 1
        response = await self._get(str(key))
        if response is None:
            self.stats.misses += 1
        else:
            self.stats.hits += 1
        return response

    async def store(self, key: CacheKey, response: CachedResponse):
        # A zero TTL would expire the entry on arrival.
        if not response.max_age:
            return
        await self._set(str(key), response)
        self.stats.stores += 1

    @abstractmethod
    async def _get(self, key: str) -> Optional[CachedResponse]:
        ...

    @abstractmethod
    async def _set(self, key: str, response: CachedResponse):
        ...

    async def clear(self):
        self.stats = CacheStats()

    async def close(self):
        pass

    def get_stats(self) -> Dict[str, Any]:
        return {"backend": self.backend, **self.stats.to_dict()}


class InMemoryEdgeCache(EdgeCache):
    """Process-local LRU cache."""

    backend = "memory"

    def __init__(self, max_size: int = 10000):
        super().__init__()
        self.max_size = max_size
        self._entries: OrderedDict[str, CachedResponse] = OrderedDict()

    async def _get(self, key: str) -> Optional[CachedResponse]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    async def _set(self, key: str, response: CachedResponse):
        # Overwrite, never merge
        self._entries.pop(key, None)
        while self._entries and len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = response

    async def clear(self):
        self._entries.clear()
        await super().clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        return {**super().get_stats(), "size": len(self._entries)}


class RedisEdgeCache(EdgeCache):
    """Cache shared between proxy processes through Redis."""

    backend = "redis"

    def __init__(self, url: str, prefix: str = "rpccache:", client=None):
        super().__init__()
        self.prefix = prefix
        if client is None:
            try:
                import redis.asyncio as aioredis
            except ImportError:
                raise ImportError(
                    "Redis edge cache requires: pip install 'rpccache[redis]'"
                )
            client = aioredis.from_url(url)
        self._client = client

    async def _get(self, key: str) -> Optional[CachedResponse]:
        raw = await self._client.get(self.prefix + key)
        if raw is None:
            return None
        return CachedResponse.from_dict(json.loads(raw))

    async def _set(self, key: str, response: CachedResponse):
        await self._client.set(
            self.prefix + key,
            json.dumps(response.to_dict()),
            ex=response.max_age,
        )

    async def clear(self):
        async for name in self._client.scan_iter(match=self.prefix + "*"):
            await self._client.delete(name)
        await super().clear()

    async def close(self):
        await self._client.aclose()


def build_cache(config: ProxyConfig) -> EdgeCache:
    if config.redis_url:
        return RedisEdgeCache(config.redis_url)
    return InMemoryEdgeCache(max_size=config.cache_max_entries)


async def store_in_background(cache: EdgeCache, key: CacheKey, response: CachedResponse):
    """Deferred write run after the client response has been sent.

    Failures are logged and counted; they never reach the client and are not
    retried.
    """
    try:
        await cache.store(key, response)
    except Exception as e:
        cache.stats.store_failures += 1
        logger.warning("Edge cache store failed for %s: %r", key, e)
        logger.debug("Edge cache store failure detail", exc_info=True)
