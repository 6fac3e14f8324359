"""
Proxy module for forwarding requests to a pool of JSON-RPC providers.
"""

import asyncio
import random
import logging
from typing import Dict, Optional, Iterator, Sequence, Mapping

import httpx

from .cache import CachedResponse
from .config import ProxyConfig, Provider

logger = logging.getLogger(__name__)

# Never forwarded in either direction.
HOP_BY_HOP = frozenset({
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailer", "transfer-encoding", "upgrade",
})
REQUEST_SKIP = HOP_BY_HOP | {"host", "content-length", "accept-encoding"}
RESPONSE_SKIP = HOP_BY_HOP | {"content-length", "content-encoding"}


class UpstreamError(Exception):
    """A single provider attempt failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ProvidersExhausted(UpstreamError):
    """Every allowed attempt against the provider pool failed."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(f"All providers exhausted after {attempts} attempts: {last_error!r}")
        self.attempts = attempts
        self.last_error = last_error


class ProviderSelector:
    """Random selection over the pool, avoiding providers that already failed.

    Within one request every provider is tried once before any is retried,
    and the provider that failed last is never picked twice in a row unless
    it is the only one.
    """

    def __init__(self, providers: Sequence[Provider], rng: Optional[random.Random] = None):
        self.providers = tuple(providers)
        self.rng = rng or random.Random()

    def rotation(self) -> Iterator[Provider]:
        tried = set()
        last = None
        while True:
            candidates = [p for p in self.providers if p not in tried]
            if not candidates:
                tried.clear()
                candidates = [p for p in self.providers if p != last] or list(self.providers)
            last = self.rng.choice(candidates)
            tried.add(last)
            yield last


def rewrite_url(url, provider: Provider) -> httpx.URL:
    """Point ``url`` at ``provider``, keeping only the query string."""
    return httpx.URL(str(url)).copy_with(
        scheme=provider.scheme,
        host=provider.hostname,
        port=provider.port,
        path=provider.pathname,
    )


def filter_headers(headers: Mapping[str, str], skip) -> Dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in skip}


class UpstreamProxy:
    """Fetches from the provider pool with per-attempt timeouts and failover."""

    def __init__(
        self,
        config: ProxyConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.selector = ProviderSelector(config.providers, rng)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.config.provider_timeout_s,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def backoff(self, attempt: int) -> float:
        if self.config.retry_backoff <= 0:
            return 0.0
        return min(self.config.retry_backoff * 2 ** (attempt - 1), self.config.retry_backoff_max)

    async def fetch_once(
        self, url: httpx.URL, method: str, headers: Mapping[str, str], body: bytes,
    ) -> CachedResponse:
        client = await self.get_client()
        try:
            response = await asyncio.wait_for(
                client.request(
                    method,
                    url,
                    headers=filter_headers(headers, REQUEST_SKIP),
                    content=body or None,
                ),
                timeout=self.config.provider_timeout_s,
            )
        except asyncio.TimeoutError:
            raise UpstreamError(f"{url} timed out after {self.config.provider_timeout}ms")
        except httpx.HTTPError as e:
            raise UpstreamError(f"{url} request failed: {e!r}")

        if not response.is_success:
            raise UpstreamError(f"{url} not ok! ({response.status_code})", status=response.status_code)

        return CachedResponse(
            status=response.status_code,
            headers=filter_headers(response.headers, RESPONSE_SKIP),
            body=response.content,
        )

    async def fetch(
        self, url, method: str = "GET", headers: Optional[Mapping[str, str]] = None, body: bytes = b"",
    ) -> CachedResponse:
        """Try providers until one answers successfully.

        Raises ProvidersExhausted after ``max_attempts`` failures; a
        ``max_attempts`` of 0 retries forever.
        """
        headers = headers or {}
        rotation = self.selector.rotation()
        max_attempts = self.config.max_attempts
        attempt = 0

        while True:
            attempt += 1
            provider = next(rotation)
            target = rewrite_url(url, provider)
            logger.debug("Attempting provider: %s (attempt %d)", provider.hostname, attempt)
            try:
                return await self.fetch_once(target, method, headers, body)
            except UpstreamError as e:
                last_error = e
                logger.warning("Provider %s failed (attempt %d): %s", provider.hostname, attempt, e)

            if max_attempts and attempt >= max_attempts:
                logger.error("Giving up on %s %s after %d attempts", method, url, attempt)
                raise ProvidersExhausted(attempt, last_error)

            delay = self.backoff(attempt)
            if delay:
                await asyncio.sleep(delay)
