"""
Tests for provider selection and the failover fetch loop.
"""

import asyncio
import random

import httpx
import pytest

from rpccache.config import Provider
from rpccache.proxy import (
    ProviderSelector, ProvidersExhausted, UpstreamError, rewrite_url,
)
from conftest import FakeProviders, make_config, make_proxy


def ok(request):
    return httpx.Response(200, content=b'{"jsonrpc":"2.0","id":1,"result":"0x1"}',
                          headers={"Content-Type": "application/json"})


async def hang(request):
    await asyncio.sleep(5)
    return ok(request)


def server_error(request):
    return httpx.Response(503, content=b"busy")


def refuse(request):
    raise httpx.ConnectError("connection refused", request=request)


class TestProviderSelector:

    def providers(self, n):
        return [Provider.from_url(f"https://p{i}.example/") for i in range(n)]

    def test_every_provider_tried_before_repeat(self):
        pool = self.providers(4)
        rotation = ProviderSelector(pool, random.Random(1)).rotation()
        first_round = [next(rotation) for _ in range(4)]
        assert set(first_round) == set(pool)

    def test_never_repeats_last_failure(self):
        pool = self.providers(3)
        for seed in range(20):
            rotation = ProviderSelector(pool, random.Random(seed)).rotation()
            picks = [next(rotation) for _ in range(30)]
            assert all(a != b for a, b in zip(picks, picks[1:]))

    def test_single_provider_repeats(self):
        pool = self.providers(1)
        rotation = ProviderSelector(pool).rotation()
        assert [next(rotation) for _ in range(3)] == pool * 3


def test_rewrite_url_uses_provider_location():
    provider = Provider.from_url("https://mainnet.infura.io/v3/abc")
    url = rewrite_url("http://localhost:8000/anything?x=1", provider)
    assert str(url) == "https://mainnet.infura.io/v3/abc?x=1"


def test_rewrite_url_keeps_provider_port():
    provider = Provider.from_url("http://127.0.0.1:8545")
    assert str(rewrite_url("https://edge.example/", provider)) == "http://127.0.0.1:8545/"


def test_backoff_is_exponential_and_capped():
    proxy = make_proxy(make_config(retry_backoff=0.1, retry_backoff_max=0.5), FakeProviders({}))
    assert [proxy.backoff(n) for n in range(1, 5)] == [0.1, 0.2, 0.4, 0.5]
    assert make_proxy(make_config(), FakeProviders({})).backoff(3) == 0.0


class TestFetch:

    async def test_success_first_try(self):
        fake = FakeProviders({"a.example": ok, "b.example": ok})
        proxy = make_proxy(make_config(), fake)
        response = await proxy.fetch("http://edge/", "POST", {"content-type": "application/json"}, b"{}")
        assert response.status == 200
        assert response.json()["result"] == "0x1"
        assert len(fake.calls) == 1
        await proxy.close()

    async def test_timeout_fails_over(self):
        fake = FakeProviders({"a.example": hang, "b.example": ok})
        proxy = make_proxy(make_config(max_attempts=2), fake)
        response = await proxy.fetch("http://edge/", "POST", {}, b'{"method":"eth_call"}')
        assert response.status == 200
        assert fake.hosts()[-1] == "b.example"
        # body is resent on every attempt
        assert all(c.content == b'{"method":"eth_call"}' for c in fake.calls)
        await proxy.close()

    @pytest.mark.parametrize("failure", [server_error, refuse])
    async def test_failures_fail_over(self, failure):
        fake = FakeProviders({"a.example": failure, "b.example": ok})
        proxy = make_proxy(make_config(max_attempts=2), fake)
        response = await proxy.fetch("http://edge/", "GET", {})
        assert response.status == 200
        await proxy.close()

    async def test_redirects_are_followed(self):
        def moved(request):
            if request.url.path == "/rpc":
                return httpx.Response(301, headers={"Location": "https://a.example/rpc2"})
            return ok(request)

        fake = FakeProviders({"a.example": moved})
        proxy = make_proxy(make_config(urls=("https://a.example/rpc",), max_attempts=1), fake)
        response = await proxy.fetch("http://edge/", "GET", {})
        assert response.status == 200
        assert [c.url.path for c in fake.calls] == ["/rpc", "/rpc2"]
        await proxy.close()

    async def test_failures_are_logged(self, caplog):
        calls = []

        def first_fails(request):
            calls.append(request)
            return server_error(request) if len(calls) == 1 else ok(request)

        fake = FakeProviders({"a.example": first_fails, "b.example": first_fails})
        proxy = make_proxy(make_config(max_attempts=2), fake)
        await proxy.fetch("http://edge/", "GET", {})
        assert f"Provider {fake.hosts()[0]} failed (attempt 1)" in caplog.text
        await proxy.close()

    async def test_exhausted_after_max_attempts(self):
        fake = FakeProviders({"a.example": server_error, "b.example": hang})
        proxy = make_proxy(make_config(max_attempts=4), fake)
        with pytest.raises(ProvidersExhausted) as exc:
            await proxy.fetch("http://edge/", "GET", {})
        assert exc.value.attempts == 4
        assert isinstance(exc.value.last_error, UpstreamError)
        await proxy.close()

    async def test_unbounded_retries_keep_going(self):
        attempts = []

        def flaky(request):
            attempts.append(request)
            if len(attempts) < 25:
                return server_error(request)
            return ok(request)

        fake = FakeProviders({"a.example": flaky, "b.example": flaky})
        proxy = make_proxy(make_config(max_attempts=0), fake)
        response = await proxy.fetch("http://edge/", "GET", {})
        assert response.status == 200
        assert len(attempts) == 25
        await proxy.close()

    async def test_request_headers_filtered(self):
        fake = FakeProviders({"a.example": ok, "b.example": ok})
        proxy = make_proxy(make_config(), fake)
        await proxy.fetch("http://edge/", "GET", {
            "Host": "edge", "Connection": "keep-alive", "X-Client": "dapp",
        })
        sent = fake.calls[0]
        assert sent.headers["host"] in ("a.example", "b.example")
        assert sent.headers["x-client"] == "dapp"
        await proxy.close()

    async def test_response_headers_filtered(self):
        fake = FakeProviders({"a.example": ok, "b.example": ok})
        proxy = make_proxy(make_config(), fake)
        response = await proxy.fetch("http://edge/", "GET", {})
        names = {name.lower() for name in response.headers}
        assert "content-length" not in names
        assert "content-type" in names
        await proxy.close()
