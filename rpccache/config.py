"""
Runtime configuration for the RPC cache proxy.

Resolved once at startup and handed to the app factory; never mutated.
"""

import os
import json
from typing import Optional, Tuple, List
from dataclasses import dataclass
from urllib.parse import urlsplit


class ConfigError(ValueError):
    """Raised when the environment does not describe a usable proxy."""


@dataclass(frozen=True)
class Provider:
    """An upstream JSON-RPC endpoint."""
    scheme: str
    hostname: str
    pathname: str = "/"
    port: Optional[int] = None

    @classmethod
    def from_url(cls, url: str) -> "Provider":
        parts = urlsplit(url.strip())
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ConfigError(f"Invalid provider URL: {url!r}")
        try:
            port = parts.port
        except ValueError as e:
            raise ConfigError(f"Invalid provider URL: {url!r} ({e})")
        return cls(
            scheme=parts.scheme,
            hostname=parts.hostname,
            pathname=parts.path or "/",
            port=port,
        )

    @property
    def url(self) -> str:
        netloc = self.hostname if self.port is None else f"{self.hostname}:{self.port}"
        return f"{self.scheme}://{netloc}{self.pathname}"


def parse_providers(raw: str) -> Tuple[Provider, ...]:
    """Parse PROVIDERS: a JSON array of URLs, or a comma-separated list."""
    raw = (raw or "").strip()
    if not raw:
        raise ConfigError("PROVIDERS must list at least one provider URL")

    if raw.startswith("["):
        try:
            urls = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError(f"PROVIDERS is not valid JSON: {e}")
        if not isinstance(urls, list) or not all(isinstance(u, str) for u in urls):
            raise ConfigError("PROVIDERS must be a JSON array of strings")
    else:
        urls = [u for u in raw.split(",") if u.strip()]

    providers = tuple(Provider.from_url(u) for u in urls)
    if not providers:
        raise ConfigError("PROVIDERS must list at least one provider URL")
    return providers


def _env_number(name: str, default, cast=int, minimum=0):
    # Empty strings fall back to the default, like an unset variable.
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        number = cast(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if number < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value!r}")
    return number


@dataclass(frozen=True)
class ProxyConfig:
    """Configuration for the caching proxy and its provider pool."""
    providers: Tuple[Provider, ...]
    edge_cache_ttl: int = 60
    browser_cache_ttl: int = 0
    provider_timeout: int = 5000
    max_attempts: int = 10
    retry_backoff: float = 0.05
    retry_backoff_max: float = 2.0
    cache_max_entries: int = 10000
    redis_url: Optional[str] = None

    def __post_init__(self):
        if not self.providers:
            raise ConfigError("At least one provider is required")
        if self.provider_timeout <= 0:
            raise ConfigError("Provider timeout must be a positive number of milliseconds")

    @property
    def provider_timeout_s(self) -> float:
        return self.provider_timeout / 1000.0

    @classmethod
    def from_urls(cls, urls: List[str], **kwargs) -> "ProxyConfig":
        return cls(providers=tuple(Provider.from_url(u) for u in urls), **kwargs)

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        return cls(
            providers=parse_providers(os.getenv("PROVIDERS", "")),
            edge_cache_ttl=_env_number("EDGE_CACHE_TTL", 60),
            browser_cache_ttl=_env_number("BROWSER_CACHE_TTL", 0),
            provider_timeout=_env_number("PROVIDER_TIMEOUT", 5000, minimum=1),
            max_attempts=_env_number("PROVIDER_MAX_ATTEMPTS", 10),
            retry_backoff=_env_number("PROVIDER_RETRY_BACKOFF", 0.05, float),
            retry_backoff_max=_env_number("PROVIDER_RETRY_BACKOFF_MAX", 2.0, float),
            cache_max_entries=_env_number("EDGE_CACHE_MAX_ENTRIES", 10000),
            redis_url=os.getenv("RPCCACHE_REDIS_URL") or None,
        )
