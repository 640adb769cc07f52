import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from common.config import settings
from common.errors import EmptyResponseError, UpstreamError, UpstreamTimeoutError, ValidationError

logger = logging.getLogger(__name__)


class CompletionClient:
    """One chat-completion round trip against the model provider.

    Exactly one network attempt per call. The caller's own API key is sent as
    the bearer credential; nothing is retried or cached here.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        default_timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.LLM_API_BASE_URL).strip().rstrip("/")
        self.model = model or settings.LLM_MODEL
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        self.default_timeout = default_timeout or settings.LLM_TIMEOUT_SECONDS

    def _build_payload(self, system_directive: str, user_content: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_directive},
                {"role": "user", "content": user_content},
            ],
            "temperature": self.temperature,
        }

    @staticmethod
    def _provider_message(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"].strip():
            return error["message"].strip()
        if isinstance(error, str) and error.strip():
            return error.strip()
        message = body.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
        return None

    @staticmethod
    def _extract_content(payload: Any) -> str:
        if not isinstance(payload, dict):
            raise UpstreamError("AI 返回格式错误")
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise EmptyResponseError()
        first = choices[0]
        if not isinstance(first, dict):
            raise UpstreamError("AI 返回格式错误")
        message = first.get("message")
        if message is None:
            raise EmptyResponseError()
        if not isinstance(message, dict):
            raise UpstreamError("AI 返回格式错误")
        content = message.get("content")
        if isinstance(content, list):
            parts = []
            for part in content:
                if isinstance(part, dict):
                    text_value = part.get("text")
                    if isinstance(text_value, str):
                        parts.append(text_value)
            content = "\n".join(parts)
        if content is None:
            raise EmptyResponseError()
        content = str(content).strip()
        if not content:
            raise EmptyResponseError()
        return content

    async def _post(self, api_key: str, payload: Dict[str, Any], timeout: float) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

    async def complete(
        self,
        api_key: str,
        system_directive: str,
        user_content: str,
        timeout: Optional[float] = None,
    ) -> str:
        if not isinstance(api_key, str) or not api_key.strip():
            raise ValidationError("缺少 apiKey，请在前端填写 AI 助手密钥")
        timeout = timeout or self.default_timeout
        payload = self._build_payload(system_directive, user_content)

        try:
            # httpx timeouts are per phase; wait_for bounds the whole exchange.
            response = await asyncio.wait_for(self._post(api_key.strip(), payload, timeout), timeout=timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            logger.error("Completion request timed out after %ss", timeout)
            raise UpstreamTimeoutError(f"AI 请求超时（{int(timeout)} 秒）") from exc
        except httpx.HTTPError as exc:
            logger.error("Completion transport failure: %s", type(exc).__name__)
            raise UpstreamError(f"AI 服务连接失败: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            provider_message = self._provider_message(response)
            logger.error("Completion provider returned HTTP %s: %s", response.status_code, provider_message)
            raise UpstreamError(f"AI 服务返回错误: HTTP {response.status_code}", provider_message=provider_message)

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError("AI 返回格式错误") from exc
        return self._extract_content(body)


completion_client = CompletionClient()
