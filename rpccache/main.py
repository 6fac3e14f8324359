"""
RPC Cache - Caching edge proxy for JSON-RPC providers.
"""

import logging
from typing import Dict, Any, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, BackgroundTasks
from fastapi.responses import Response

from .cache import EdgeCache, build_cache, edge_response, store_in_background
from .config import ProxyConfig
from .formatter import format_response, preflight_response, error_response
from .keys import CacheKey, InvalidRPCBody, parse_rpc_body, derive_cache_key
from .proxy import UpstreamProxy, ProvidersExhausted

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def log_request(status: str, path: str, rpc_method: Optional[str], stats: Dict[str, Any]):
    hit_rate = stats.get("hit_rate", 0) * 100
    logger.info("%s | %s | %s | hit_rate=%.1f%%", status, path, rpc_method or "-", hit_rate)


async def fetch_and_store(
    request: Request, background_tasks: BackgroundTasks, body: bytes, key: Optional[CacheKey],
):
    """Fetch from the provider pool; when a key is given, schedule the edge write."""
    state = request.app.state
    response = await state.proxy.fetch(request.url, request.method, request.headers, body)
    if key is None:
        return response
    response = edge_response(response, state.config.edge_cache_ttl)
    background_tasks.add_task(store_in_background, state.cache, key, response)
    return response


async def handle_options(request: Request) -> Response:
    return preflight_response(request.headers)


async def handle_get(request: Request, background_tasks: BackgroundTasks) -> Response:
    state = request.app.state
    body = await request.body()

    # Only GET responses are cacheable under their own URL
    if request.method != "GET":
        response = await fetch_and_store(request, background_tasks, body, None)
        log_request("PASS", request.url.path, None, state.cache.get_stats())
        return format_response(response, state.config.browser_cache_ttl)

    key = CacheKey.for_request(request.url, request.headers)
    response = await state.cache.lookup(key)
    status = "HIT"
    if response is None:
        status = "MISS"
        response = await fetch_and_store(request, background_tasks, body, key)
    log_request(status, request.url.path, None, state.cache.get_stats())
    return format_response(response, state.config.browser_cache_ttl)


async def handle_post(request: Request, background_tasks: BackgroundTasks) -> Response:
    state = request.app.state
    body = await request.body()
    rpc = parse_rpc_body(body)
    extra = rpc.extra_fields()

    if rpc.bypass_cache:
        response = await fetch_and_store(request, background_tasks, body, None)
        log_request("BYPASS", request.url.path, rpc.method, state.cache.get_stats())
        return format_response(response, state.config.browser_cache_ttl, extra)

    key = derive_cache_key(request.url, rpc.params, request.headers)
    response = await state.cache.lookup(key)
    status = "HIT"
    if response is None:
        status = "MISS"
        response = await fetch_and_store(request, background_tasks, body, key)
    log_request(status, request.url.path, rpc.method, state.cache.get_stats())
    return format_response(response, state.config.browser_cache_ttl, extra)


async def dispatch(request: Request, background_tasks: BackgroundTasks) -> Response:
    method = request.method.upper()
    if method == "OPTIONS":
        return await handle_options(request)
    if method == "POST":
        return await handle_post(request, background_tasks)
    return await handle_get(request, background_tasks)


def create_app(
    config: Optional[ProxyConfig] = None,
    cache: Optional[EdgeCache] = None,
    proxy: Optional[UpstreamProxy] = None,
) -> FastAPI:
    if config is None:
        config = ProxyConfig.from_env()
    if cache is None:
        cache = build_cache(config)
    if proxy is None:
        proxy = UpstreamProxy(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        print("\n" + "=" * 50)
        print("⚡ RPC Cache is running!")
        print("=" * 50)
        print(f"\nProviders ({len(config.providers)}):")
        for provider in config.providers:
            print(f"  {provider.url}")
        print(f"\nEdge TTL: {config.edge_cache_ttl}s | Browser TTL: {config.browser_cache_ttl}s")
        print(f"Provider timeout: {config.provider_timeout}ms | Edge cache: {cache.backend}")
        print("\n" + "=" * 50 + "\n")
        yield
        await proxy.close()
        await cache.close()

    # Every path is proxied, so no docs routes
    app = FastAPI(
        title="RPC Cache",
        description="Caching edge proxy for JSON-RPC providers",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.cache = cache
    app.state.proxy = proxy

    @app.exception_handler(InvalidRPCBody)
    async def invalid_body_handler(request: Request, exc: InvalidRPCBody):
        logger.info("Rejected POST %s: %s", request.url.path, exc.message)
        return error_response(400, exc.code, exc.message, config.browser_cache_ttl, exc.request_id)

    @app.exception_handler(ProvidersExhausted)
    async def exhausted_handler(request: Request, exc: ProvidersExhausted):
        return error_response(502, -32603, "All providers exhausted", config.browser_cache_ttl)

    @app.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
    async def entrypoint(request: Request, background_tasks: BackgroundTasks, path: str):
        return await dispatch(request, background_tasks)

    return app
