from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Filamentory API"
    environment: str = "dev"
    api_prefix: str = "/api"
    backend_cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    log_level: str = "INFO"

    # Infra
    database_url: str = "sqlite:///./filamentory.db"

    # Email (Resend)
    resend_api_key: Optional[str] = None
    resend_from_email: Optional[str] = "noreply@filamentory.com"

    # App URLs
    app_url: str = "http://localhost:3000"

    # Auth/JWT
    jwt_secret: str = "devsecret"
    jwt_algorithm: str = "HS256"
    access_token_expires_minutes: int = 15
    refresh_expires_days: int = 30
    magic_token_expires_minutes: int = 15

    # Cookies
    cookie_domain: Optional[str] = None
    access_cookie_name: str = "access_token"
    refresh_cookie_name: str = "refresh_token"
    refresh_cookie_path: str = "/api/auth"

    # Only enable behind a reverse proxy that overwrites X-Forwarded-For
    trust_proxy_headers: bool = False

    # Rate limits (max requests per window)
    login_rate_limit_max: int = 3
    login_rate_limit_window_seconds: int = 3600
    verify_rate_limit_max: int = 5
    verify_rate_limit_window_seconds: int = 900
    refresh_rate_limit_max: int = 10
    refresh_rate_limit_window_seconds: int = 900
    api_rate_limit_max: int = 100
    api_rate_limit_window_seconds: int = 900

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cookie_secure(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
