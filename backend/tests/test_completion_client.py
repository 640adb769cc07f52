import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from common.completion import CompletionClient
from common.errors import EmptyResponseError, UpstreamError, UpstreamTimeoutError, ValidationError


def _client():
    return CompletionClient(base_url="https://llm.test/", model="deepseek-chat", temperature=0.7, default_timeout=30)


def test_complete_sends_bearer_key_and_returns_trimmed_content():
    async def _run():
        response = httpx.Response(200, json={"choices": [{"message": {"content": "  今天过得不错  "}}]})
        mock_post = AsyncMock(return_value=response)
        with patch("common.completion.httpx.AsyncClient.post", new=mock_post):
            content = await _client().complete("sk-user", "system", "user text")
        assert content == "今天过得不错"
        mock_post.assert_awaited_once()
        url = mock_post.call_args.args[0]
        assert url == "https://llm.test/chat/completions"
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer sk-user"
        payload = mock_post.call_args.kwargs["json"]
        assert payload["model"] == "deepseek-chat"
        assert payload["temperature"] == 0.7
        assert payload["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user text"},
        ]

    asyncio.run(_run())


def test_blank_api_key_is_rejected_without_network():
    async def _run():
        mock_post = AsyncMock()
        with patch("common.completion.httpx.AsyncClient.post", new=mock_post):
            with pytest.raises(ValidationError):
                await _client().complete("   ", "system", "user")
        mock_post.assert_not_called()

    asyncio.run(_run())


def test_provider_error_message_is_surfaced_verbatim():
    async def _run():
        response = httpx.Response(401, json={"error": {"message": "Authentication Fails (invalid key)"}})
        mock_post = AsyncMock(return_value=response)
        with patch("common.completion.httpx.AsyncClient.post", new=mock_post):
            with pytest.raises(UpstreamError) as excinfo:
                await _client().complete("sk-bad", "system", "user")
        assert excinfo.value.message == "Authentication Fails (invalid key)"
        assert excinfo.value.status_code == 502
        mock_post.assert_awaited_once()

    asyncio.run(_run())


def test_provider_error_without_body_uses_status_message():
    async def _run():
        response = httpx.Response(503, text="upstream overloaded")
        with patch("common.completion.httpx.AsyncClient.post", new=AsyncMock(return_value=response)):
            with pytest.raises(UpstreamError) as excinfo:
                await _client().complete("sk-user", "system", "user")
        assert "HTTP 503" in excinfo.value.message

    asyncio.run(_run())


def test_empty_content_is_an_empty_response_error():
    async def _run():
        for body in (
            {"choices": []},
            {"choices": [{"message": {"content": ""}}]},
            {"choices": [{"message": {"content": "   \n"}}]},
            {"choices": [{"message": {}}]},
        ):
            with patch(
                "common.completion.httpx.AsyncClient.post",
                new=AsyncMock(return_value=httpx.Response(200, json=body)),
            ):
                with pytest.raises(EmptyResponseError) as excinfo:
                    await _client().complete("sk-user", "system", "user")
            assert excinfo.value.message == "AI 返回内容为空"

    asyncio.run(_run())


def test_transport_timeout_is_reported_as_timeout_once():
    async def _run():
        mock_post = AsyncMock(side_effect=httpx.ReadTimeout("read timed out"))
        with patch("common.completion.httpx.AsyncClient.post", new=mock_post):
            with pytest.raises(UpstreamTimeoutError) as excinfo:
                await _client().complete("sk-user", "system", "user", timeout=30)
        assert excinfo.value.message == "AI 请求超时（30 秒）"
        assert mock_post.await_count == 1

    asyncio.run(_run())


def test_overall_deadline_bounds_slow_provider():
    async def _slow_post(*args, **kwargs):
        await asyncio.sleep(5)
        return httpx.Response(200, json={"choices": [{"message": {"content": "late"}}]})

    async def _run():
        with patch("common.completion.httpx.AsyncClient.post", new=_slow_post):
            with pytest.raises(UpstreamTimeoutError):
                await _client().complete("sk-user", "system", "user", timeout=0.05)

    asyncio.run(_run())


def test_connection_failure_is_upstream_error():
    async def _run():
        with patch(
            "common.completion.httpx.AsyncClient.post",
            new=AsyncMock(side_effect=httpx.ConnectError("connection refused")),
        ):
            with pytest.raises(UpstreamError) as excinfo:
                await _client().complete("sk-user", "system", "user")
        assert not isinstance(excinfo.value, UpstreamTimeoutError)
        assert "ConnectError" in excinfo.value.message

    asyncio.run(_run())


def test_non_json_success_body_is_upstream_error():
    async def _run():
        with patch(
            "common.completion.httpx.AsyncClient.post",
            new=AsyncMock(return_value=httpx.Response(200, text="<html>gateway</html>")),
        ):
            with pytest.raises(UpstreamError) as excinfo:
                await _client().complete("sk-user", "system", "user")
        assert excinfo.value.message == "AI 返回格式错误"

    asyncio.run(_run())
