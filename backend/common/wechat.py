import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from common.config import settings
from common.errors import ConfigurationError, UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

CODE2SESSION_PATH = "/sns/jscode2session"
TOKEN_PATH = "/cgi-bin/token"
GET_PHONE_PATH = "/wxa/business/getuserphonenumber"


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: float  # clock() seconds


TokenFetcher = Callable[[], Awaitable[Tuple[str, Optional[int]]]]


class AccessTokenCache:
    """Holds one server-to-server access token and refreshes it lazily.

    Concurrent callers that find the token stale share a single in-flight
    refresh. A failed refresh leaves the previous credential untouched and is
    re-attempted by the next caller.
    """

    def __init__(
        self,
        fetcher: TokenFetcher,
        *,
        refresh_margin_seconds: float = 60,
        default_ttl_seconds: int = 7200,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetcher = fetcher
        self._margin = refresh_margin_seconds
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Future] = None

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def _fresh(self, credential: Optional[Credential]) -> bool:
        return credential is not None and credential.expires_at - self._clock() > self._margin

    async def get_token(self) -> Credential:
        credential = self._credential
        if self._fresh(credential):
            return credential

        async with self._lock:
            credential = self._credential
            if self._fresh(credential):
                return credential
            if self._inflight is None:
                self._inflight = asyncio.ensure_future(self._refresh())
            inflight = self._inflight

        # A waiter giving up must not cancel the refresh the others are sharing.
        return await asyncio.shield(inflight)

    async def _refresh(self) -> Credential:
        try:
            token, expires_in = await self._fetcher()
            if not token:
                raise UpstreamError("获取 access_token 失败: 返回为空")
            ttl = expires_in if isinstance(expires_in, int) and expires_in > 0 else self._default_ttl
            credential = Credential(token=token, expires_at=self._clock() + ttl)
            self._credential = credential
            logger.info("WeChat access token refreshed (ttl=%ss)", ttl)
            return credential
        finally:
            self._inflight = None

    def invalidate(self) -> None:
        self._credential = None


class WeChatClient:
    def __init__(self, token_cache: Optional[AccessTokenCache] = None):
        self.base_url = settings.WECHAT_API_BASE.rstrip("/")
        self.timeout = settings.WECHAT_TIMEOUT_SECONDS
        self.token_cache = token_cache or AccessTokenCache(
            self._request_access_token,
            refresh_margin_seconds=settings.WECHAT_TOKEN_REFRESH_MARGIN_SECONDS,
            default_ttl_seconds=settings.WECHAT_TOKEN_DEFAULT_TTL_SECONDS,
        )

    @staticmethod
    def _app_credentials() -> Tuple[str, str]:
        if not settings.wechat_configured:
            raise ConfigurationError("未配置微信 AppID/Secret")
        return settings.WECHAT_APPID.strip(), settings.WECHAT_SECRET.strip()

    async def _call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("WeChat request timed out: %s %s", method, path)
            raise UpstreamTimeoutError("微信接口请求超时") from exc
        except httpx.HTTPError as exc:
            logger.error("WeChat request failed: %s %s (%s)", method, path, type(exc).__name__)
            raise UpstreamError(f"微信接口请求失败: {type(exc).__name__}") from exc
        if resp.status_code >= 400:
            logger.error("WeChat returned HTTP %s for %s", resp.status_code, path)
            raise UpstreamError(f"微信接口错误: HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError("微信接口返回格式错误") from exc
        if not isinstance(data, dict):
            raise UpstreamError("微信接口返回格式错误")
        return data

    @staticmethod
    def _raise_for_errcode(data: Dict[str, Any], fallback: str) -> None:
        if data.get("errcode"):
            errmsg = data.get("errmsg")
            raise UpstreamError(f"{fallback}: {data}", provider_message=errmsg if isinstance(errmsg, str) and errmsg else None)

    async def _request_access_token(self) -> Tuple[str, Optional[int]]:
        appid, secret = self._app_credentials()
        data = await self._call(
            "GET",
            TOKEN_PATH,
            params={"grant_type": "client_credential", "appid": appid, "secret": secret},
        )
        self._raise_for_errcode(data, "获取 access_token 失败")
        token = data.get("access_token")
        if not isinstance(token, str) or not token:
            raise UpstreamError(f"获取 access_token 失败: {data}")
        expires_in = data.get("expires_in")
        return token, expires_in if isinstance(expires_in, int) else None

    async def get_access_token(self) -> str:
        credential = await self.token_cache.get_token()
        return credential.token

    async def code_to_session(self, code: str) -> Dict[str, Any]:
        """Exchanges a ``wx.login()`` code for the user's openid."""
        appid, secret = self._app_credentials()
        data = await self._call(
            "GET",
            CODE2SESSION_PATH,
            params={"appid": appid, "secret": secret, "js_code": code, "grant_type": "authorization_code"},
        )
        self._raise_for_errcode(data, "微信接口错误")
        openid = data.get("openid")
        if not isinstance(openid, str) or not openid:
            raise UpstreamError(f"微信接口错误: {data}")
        return {
            "openid": openid,
            "session_key": data.get("session_key"),
            "unionid": data.get("unionid"),
        }

    async def get_phone_number(self, phone_code: str) -> Dict[str, str]:
        """Exchanges a ``getPhoneNumber`` code for the bound phone number.

        Only available to verified (enterprise) mini-programs.
        """
        access_token = await self.get_access_token()
        data = await self._call(
            "POST",
            GET_PHONE_PATH,
            params={"access_token": access_token},
            json={"code": phone_code},
        )
        self._raise_for_errcode(data, "获取手机号失败")
        phone_info = data.get("phone_info")
        if not isinstance(phone_info, dict) or not phone_info.get("purePhoneNumber"):
            raise UpstreamError(f"获取手机号失败: {data}")
        return {
            "phoneNumber": str(phone_info.get("phoneNumber") or phone_info["purePhoneNumber"]),
            "purePhoneNumber": str(phone_info["purePhoneNumber"]),
        }


wechat_client = WeChatClient()
