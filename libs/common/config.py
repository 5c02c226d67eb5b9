from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"
    PUBLIC_SITE_URL: str = "https://app.sow2grow.com"
    # Public base URL of this service, used for provider callbacks
    SERVICE_URL: str = "http://localhost:8010"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Supabase
    # Default placeholder values keep local/test runs from failing when Supabase
    # credentials are not required. Real deployments should override via env.
    SUPABASE_URL: str = "http://localhost"
    SUPABASE_ANON_KEY: str = "test-anon-key"
    SUPABASE_SERVICE_ROLE_KEY: str = "test-service-role-key"
    SUPABASE_JWT_SECRET: str = "test-jwt-secret"

    # Redis (ARQ worker, cache, rate limit storage)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Cache
    CACHE_BACKEND: Literal["redis", "none"] = "redis"
    CACHE_TTL_SECONDS: int = 300

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    PAYMENT_RATE_LIMIT: str = "10/minute"

    # Binance Pay
    BINANCE_PAY_API_KEY: Optional[str] = None
    BINANCE_PAY_API_SECRET: Optional[str] = None
    BINANCE_PAY_MERCHANT_ID: Optional[str] = None
    BINANCE_PAY_API_BASE_URL: str = "https://bpay.binanceapi.com"
    BINANCE_PAY_TRADE_TYPE: str = "WEB"
    BINANCE_PAY_ORDER_EXPIRY_MINUTES: int = 15
    BINANCE_PAY_WEBHOOK_TOLERANCE_MS: int = 5 * 60 * 1000

    # Cryptomus
    CRYPTOMUS_MERCHANT_ID: Optional[str] = None
    CRYPTOMUS_PAYMENT_API_KEY: Optional[str] = None
    CRYPTOMUS_API_BASE_URL: str = "https://api.cryptomus.com/v1"
    CRYPTOMUS_INVOICE_LIFETIME_MINUTES: int = 30
    CRYPTOMUS_DEFAULT_NETWORK: str = "TRC20"

    # Bestowal policy
    BESTOWAL_TITHING_PERCENT: float = 0.15
    BESTOWAL_GROWER_PERCENT: float = 0.10
    BESTOWAL_DEFAULT_CURRENCY: str = "USDC"
    DEFAULT_PAYMENT_PROVIDER: Literal["binance_pay", "cryptomus"] = "cryptomus"
    WEBHOOK_AMOUNT_TOLERANCE: float = 0.01
    HOLDING_WALLET_NAME: str = "s2gholding"
    TITHING_WALLET_NAME: str = "s2gbestow"
    DEFAULT_PAYEE_WALLET_NAME: str = "s2gdavison"
    PAYOUT_WALLET_TYPES: list[str] = ["binance_pay", "binance", "binance_pay_id"]

    # Idempotency
    IDEMPOTENCY_WAIT_SECONDS: float = 10.0
    IDEMPOTENCY_POLL_INTERVAL_SECONDS: float = 0.25

    # Background reconciliation
    PENDING_RECONCILE_GRACE_MINUTES: int = 10
    DISTRIBUTION_RETRY_AFTER_MINUTES: int = 5
    NOTIFICATION_MAX_ATTEMPTS: int = 5

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
