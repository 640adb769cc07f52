from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from common.config import settings
from common.errors import AuthenticationError, ConfigurationError

JWT_ALGORITHM = "HS256"


def _secret() -> str:
    secret = (settings.JWT_SECRET or "").strip()
    if not secret:
        raise ConfigurationError("服务端未配置 JWT")
    return secret


def issue_session_token(user_id: int, wx_open_id: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id,
        "wxOpenId": wx_open_id,
        "iat": now,
        "exp": now + timedelta(days=settings.JWT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, _secret(), algorithm=JWT_ALGORITHM)


def decode_session_token(token: str) -> Dict[str, Any]:
    secret = _secret()
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("登录已过期，请重新登录")
    except jwt.InvalidTokenError:
        raise AuthenticationError("登录已过期或 token 无效")
    if not isinstance(payload.get("userId"), int):
        raise AuthenticationError("登录已过期或 token 无效")
    return payload
