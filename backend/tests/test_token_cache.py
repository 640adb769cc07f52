import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from common.config import settings
from common.errors import ConfigurationError, UpstreamError, UpstreamTimeoutError
from common.wechat import AccessTokenCache, Credential, WeChatClient


class _Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class _CountingFetcher:
    def __init__(self, tokens=None, expires_in=7200, delay=0.0, error=None):
        self.calls = 0
        self.tokens = list(tokens or ["tok_1", "tok_2", "tok_3"])
        self.expires_in = expires_in
        self.delay = delay
        self.error = error

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.tokens[self.calls - 1], self.expires_in


def test_fresh_token_is_served_without_network():
    async def _run():
        clock = _Clock()
        fetcher = _CountingFetcher()
        cache = AccessTokenCache(fetcher, clock=clock)
        first = await cache.get_token()
        clock.now += 3000
        second = await cache.get_token()
        third = await cache.get_token()
        assert fetcher.calls == 1
        assert first is second is third
        assert first.token == "tok_1"
        assert first.expires_at == 1000.0 + 7200

    asyncio.run(_run())


def test_token_inside_refresh_margin_is_treated_as_expired():
    async def _run():
        clock = _Clock()
        fetcher = _CountingFetcher()
        cache = AccessTokenCache(fetcher, refresh_margin_seconds=60, clock=clock)
        await cache.get_token()
        clock.now += 7200 - 60
        refreshed = await cache.get_token()
        assert fetcher.calls == 2
        assert refreshed.token == "tok_2"

        clock.now += 7200 - 61
        same = await cache.get_token()
        assert fetcher.calls == 2
        assert same is refreshed

    asyncio.run(_run())


def test_concurrent_callers_share_single_refresh():
    async def _run():
        fetcher = _CountingFetcher(delay=0.05)
        cache = AccessTokenCache(fetcher, clock=_Clock())
        results = await asyncio.gather(*(cache.get_token() for _ in range(25)))
        assert fetcher.calls == 1
        assert {c.token for c in results} == {"tok_1"}

    asyncio.run(_run())


def test_stale_cache_with_concurrent_callers_refreshes_once():
    async def _run():
        clock = _Clock()
        fetcher = _CountingFetcher(delay=0.02)
        cache = AccessTokenCache(fetcher, clock=clock)
        await cache.get_token()
        clock.now += 10_000
        results = await asyncio.gather(*(cache.get_token() for _ in range(10)))
        assert fetcher.calls == 2
        assert {c.token for c in results} == {"tok_2"}

    asyncio.run(_run())


def test_failed_refresh_reaches_every_waiter_and_is_retried_next_time():
    async def _run():
        fetcher = _CountingFetcher(delay=0.02, error=UpstreamError(provider_message="invalid appsecret"))
        cache = AccessTokenCache(fetcher, clock=_Clock())
        results = await asyncio.gather(*(cache.get_token() for _ in range(5)), return_exceptions=True)
        assert fetcher.calls == 1
        assert all(isinstance(r, UpstreamError) for r in results)
        assert results[0].message == "invalid appsecret"
        assert cache.credential is None

        fetcher.error = None
        credential = await cache.get_token()
        assert fetcher.calls == 2
        assert credential.token == "tok_2"

    asyncio.run(_run())


def test_timed_out_refresh_keeps_previous_credential():
    async def _run():
        clock = _Clock()
        fetcher = _CountingFetcher()
        cache = AccessTokenCache(fetcher, clock=clock)
        previous = await cache.get_token()
        clock.now += 10_000
        fetcher.error = UpstreamTimeoutError("微信接口请求超时")
        with pytest.raises(UpstreamTimeoutError):
            await cache.get_token()
        assert cache.credential is previous

    asyncio.run(_run())


def test_empty_token_is_rejected():
    async def _run():
        fetcher = _CountingFetcher(tokens=[""])
        cache = AccessTokenCache(fetcher, clock=_Clock())
        with pytest.raises(UpstreamError):
            await cache.get_token()
        assert cache.credential is None

    asyncio.run(_run())


def test_missing_expires_in_uses_default_ttl():
    async def _run():
        fetcher = _CountingFetcher(expires_in=None)
        cache = AccessTokenCache(fetcher, default_ttl_seconds=600, clock=_Clock(0.0))
        credential = await cache.get_token()
        assert credential == Credential(token="tok_1", expires_at=600.0)

    asyncio.run(_run())


def test_request_access_token_maps_provider_error():
    async def _run():
        client = WeChatClient()
        response = httpx.Response(200, json={"errcode": 40125, "errmsg": "invalid appsecret"})
        with patch("common.wechat.httpx.AsyncClient.request", new=AsyncMock(return_value=response)):
            with pytest.raises(UpstreamError) as excinfo:
                await client.get_access_token()
        assert excinfo.value.message == "invalid appsecret"
        assert client.token_cache.credential is None

    asyncio.run(_run())


def test_missing_app_credentials_fail_without_network():
    async def _run():
        original = settings.WECHAT_SECRET
        settings.WECHAT_SECRET = ""
        try:
            client = WeChatClient()
            mock_request = AsyncMock()
            with patch("common.wechat.httpx.AsyncClient.request", new=mock_request):
                with pytest.raises(ConfigurationError):
                    await client.get_access_token()
            mock_request.assert_not_called()
        finally:
            settings.WECHAT_SECRET = original

    asyncio.run(_run())


def test_phone_lookup_reuses_cached_access_token():
    async def _run():
        client = WeChatClient()
        token_response = httpx.Response(200, json={"access_token": "ACCESS", "expires_in": 7200})
        phone_response = httpx.Response(
            200,
            json={"errcode": 0, "phone_info": {"phoneNumber": "+86 13800000000", "purePhoneNumber": "13800000000"}},
        )
        mock_request = AsyncMock(side_effect=[token_response, phone_response, phone_response])
        with patch("common.wechat.httpx.AsyncClient.request", new=mock_request):
            first = await client.get_phone_number("code_1")
            second = await client.get_phone_number("code_2")
        assert first["purePhoneNumber"] == "13800000000"
        assert second["phoneNumber"] == "+86 13800000000"
        assert mock_request.await_count == 3
        token_call, phone_call, _ = mock_request.call_args_list
        assert token_call.args[1].endswith("/cgi-bin/token")
        assert token_call.kwargs["params"]["grant_type"] == "client_credential"
        assert phone_call.kwargs["params"] == {"access_token": "ACCESS"}
        assert phone_call.kwargs["json"] == {"code": "code_1"}

    asyncio.run(_run())


def test_code_to_session_requires_openid():
    async def _run():
        client = WeChatClient()
        response = httpx.Response(200, json={"errcode": 40029, "errmsg": "invalid code"})
        with patch("common.wechat.httpx.AsyncClient.request", new=AsyncMock(return_value=response)):
            with pytest.raises(UpstreamError) as excinfo:
                await client.code_to_session("bad")
        assert excinfo.value.message == "invalid code"

    asyncio.run(_run())


def test_wechat_transport_timeout_is_distinct():
    async def _run():
        client = WeChatClient()
        with patch(
            "common.wechat.httpx.AsyncClient.request",
            new=AsyncMock(side_effect=httpx.ConnectTimeout("timed out")),
        ):
            with pytest.raises(UpstreamTimeoutError):
                await client.code_to_session("code")

    asyncio.run(_run())
