from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Shared
    APP_ENV: str = "dev"
    APP_PORT: int = 3000
    APP_TIMEZONE: str = "Asia/Shanghai"
    LOG_LEVEL: str = "INFO"
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/cookie_house.db"

    # WeChat mini-program identity provider
    WECHAT_APPID: Optional[str] = None
    WECHAT_SECRET: Optional[str] = None
    WECHAT_API_BASE: str = "https://api.weixin.qq.com"
    WECHAT_TIMEOUT_SECONDS: float = 15.0
    WECHAT_TOKEN_REFRESH_MARGIN_SECONDS: int = 60
    WECHAT_TOKEN_DEFAULT_TTL_SECONDS: int = 7200

    # Session tokens
    JWT_SECRET: Optional[str] = None
    JWT_EXPIRES_DAYS: int = 7

    # Completion provider (the API key is supplied by the caller per request)
    LLM_API_BASE_URL: str = "https://api.deepseek.com"
    LLM_MODEL: str = "deepseek-chat"
    LLM_TEMPERATURE: float = 0.7
    LLM_TIMEOUT_SECONDS: float = 30.0
    LLM_LONG_TERM_TIMEOUT_SECONDS: float = 45.0
    LLM_COUNSELOR_TIMEOUT_SECONDS: float = 60.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def wechat_configured(self) -> bool:
        return bool((self.WECHAT_APPID or "").strip() and (self.WECHAT_SECRET or "").strip())

    @property
    def missing_secrets(self) -> list:
        missing = []
        for key in ("WECHAT_APPID", "WECHAT_SECRET", "JWT_SECRET"):
            if not (getattr(self, key) or "").strip():
                missing.append(key)
        return missing

settings = Settings()
