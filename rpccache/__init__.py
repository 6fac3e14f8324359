"""
RPC Cache - Answer the same JSON-RPC call once.
"""

__version__ = "0.1.0"

from .cache import EdgeCache, InMemoryEdgeCache, RedisEdgeCache, CachedResponse, build_cache
from .config import ProxyConfig, Provider, ConfigError
from .keys import parse_rpc_body, derive_cache_key, hash_params, is_bypassed, CacheKey, InvalidRPCBody
from .proxy import UpstreamProxy, ProviderSelector, UpstreamError, ProvidersExhausted
from .main import create_app

__all__ = [
    "EdgeCache", "InMemoryEdgeCache", "RedisEdgeCache", "CachedResponse", "build_cache",
    "ProxyConfig", "Provider", "ConfigError",
    "parse_rpc_body", "derive_cache_key", "hash_params", "is_bypassed", "CacheKey", "InvalidRPCBody",
    "UpstreamProxy", "ProviderSelector", "UpstreamError", "ProvidersExhausted",
    "create_app",
]
