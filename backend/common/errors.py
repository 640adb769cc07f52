"""Error taxonomy shared by the gateway, the identity-provider client and the API.

Every class maps to exactly one HTTP status; the API layer renders them into
the ``{code, message}`` envelope without further translation.
"""
from typing import Optional


class GatewayError(Exception):
    status_code = 500
    default_message = "服务器内部错误"

    def __init__(self, message: Optional[str] = None, *, task: Optional[str] = None):
        self.message = (message or "").strip() or self.default_message
        self.task = task
        super().__init__(self.message)


class ValidationError(GatewayError):
    status_code = 400
    default_message = "请求参数不合法"


class AuthenticationError(GatewayError):
    status_code = 401
    default_message = "未登录或 token 无效"


class PermissionDeniedError(GatewayError):
    status_code = 403
    default_message = "没有权限"


class ConfigurationError(GatewayError):
    status_code = 500
    default_message = "服务端配置缺失"


class UpstreamError(GatewayError):
    status_code = 502
    default_message = "上游服务调用失败"

    def __init__(self, message: Optional[str] = None, *, task: Optional[str] = None, provider_message: Optional[str] = None):
        super().__init__(provider_message or message, task=task)
        self.provider_message = provider_message


class UpstreamTimeoutError(UpstreamError):
    default_message = "上游服务响应超时"


class EmptyResponseError(UpstreamError):
    default_message = "AI 返回内容为空"
