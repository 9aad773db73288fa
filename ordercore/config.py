from pydantic_settings import BaseSettings, NoDecode
from pydantic import field_validator
from typing import Annotated, Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./ordercore.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "OrderCore Seller Backend"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Email/SMTP Settings
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""  # Sender email (defaults to SMTP_USER)
    SMTP_FROM_NAME: str = "Seller Support"

    # SMS Gateway (MSG91)
    MSG91_AUTH_KEY: str = ""
    MSG91_SENDER_ID: str = "SELLER"  # 6-char sender ID
    MSG91_API_URL: str = "https://control.msg91.com/api/v5/flow/"
    MSG91_TEMPLATE_ID_ORDER_UPDATE: str = ""  # DLT Template ID for order updates

    # WhatsApp Business API
    WHATSAPP_API_URL: str = "https://graph.facebook.com/v19.0"
    WHATSAPP_PHONE_NUMBER_ID: str = ""
    WHATSAPP_ACCESS_TOKEN: str = ""

    # Outbound HTTP
    NOTIFICATION_HTTP_TIMEOUT: float = 10.0

    # Order / NDR engine
    NDR_CRITICAL_THRESHOLD: int = 3  # NDR count at which severity becomes critical
    STATUS_UPDATE_MAX_RETRIES: int = 3  # Attempts on optimistic-lock conflicts
    BULK_UPDATE_CONCURRENCY: int = 5  # Orders updated in parallel by bulk actions

    # NDR auto-resolution job
    NDR_AUTO_RESOLVE_ENABLED: bool = False
    NDR_AUTO_RESOLVE_INTERVAL_MINUTES: int = 30
    SCHEDULER_TIMEZONE: str = "Asia/Kolkata"

    # Exports
    EXPORT_DELIMITER: str = ","
    EXPORT_MULTI_VALUE_SEPARATOR: str = "|"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator('EXPORT_MULTI_VALUE_SEPARATOR')
    @classmethod
    def separator_differs_from_delimiter(cls, v, info):
        if v == info.data.get('EXPORT_DELIMITER'):
            raise ValueError("EXPORT_MULTI_VALUE_SEPARATOR must differ from EXPORT_DELIMITER")
        return v

    @property
    def smtp_sender(self) -> Optional[str]:
        return self.SMTP_FROM_EMAIL or self.SMTP_USER or None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
