import inspect
import random

import httpx
import pytest

from rpccache.config import ProxyConfig
from rpccache.proxy import UpstreamProxy


PROVIDER_A = "https://a.example/rpc"
PROVIDER_B = "https://b.example/v3/key"


class FakeProviders:
    """Scripted upstream pool keyed by hostname."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        result = self.routes[request.url.host](request)
        if inspect.isawaitable(result):
            result = await result
        return result

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def hosts(self):
        return [c.url.host for c in self.calls]


def make_config(urls=(PROVIDER_A, PROVIDER_B), **kwargs) -> ProxyConfig:
    kwargs.setdefault("retry_backoff", 0)
    kwargs.setdefault("provider_timeout", 50)
    return ProxyConfig.from_urls(list(urls), **kwargs)


def make_proxy(config: ProxyConfig, fake: FakeProviders, seed: int = 7) -> UpstreamProxy:
    return UpstreamProxy(config, transport=fake.transport, rng=random.Random(seed))


@pytest.fixture
def config():
    return make_config()
