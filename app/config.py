from pydantic_settings import BaseSettings
from pydantic import field_validator
from decimal import Decimal
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings (tokens are issued by the auth service, only verified here)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # App Settings
    APP_NAME: str = "Agency Sales Backend"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Frontend URL for payment redirect links
    FRONTEND_URL: str = "http://localhost:5173"

    # PayTR Payment Gateway
    PAYTR_MERCHANT_ID: str = ""
    PAYTR_MERCHANT_KEY: str = ""
    PAYTR_MERCHANT_SALT: str = ""
    PAYTR_BASE_URL: str = "https://www.paytr.com"
    PAYTR_TIMEOUT_SECONDS: float = 20.0  # Outbound token request timeout
    PAYTR_TEST_MODE: int = 0  # 1 = sandbox payments
    PAYTR_DEBUG_ON: int = 0
    PAYTR_TIMEOUT_LIMIT_MINUTES: int = 30  # How long the iframe stays payable
    PAYTR_LANG: str = "tr"
    PAYTR_CURRENCY: str = "TL"

    # Commission & Refund
    DEFAULT_COMMISSION_RATE: Decimal = Decimal("20")  # Used for direct (system) sales
    VAT_RATE: Decimal = Decimal("0.20")  # Stripped from gross price before proration

    # SMS Gateway
    SMS_API_URL: str = "https://api.netgsm.com.tr/sms/send/json"
    SMS_API_KEY: str = ""  # Empty key disables SMS
    SMS_SENDER_ID: str = "YOLASISTAN"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def paytr_configured(self) -> bool:
        return bool(self.PAYTR_MERCHANT_ID and self.PAYTR_MERCHANT_KEY and self.PAYTR_MERCHANT_SALT)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
