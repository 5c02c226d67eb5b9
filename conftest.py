import os

# Load .env.test if present, then fill in what the test suite relies on.
# Settings are cached, so this must happen before any libs/services import.
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

TEST_ENV = {
    "ENVIRONMENT": "test",
    "DATABASE_URL": "sqlite+aiosqlite://",
    "CACHE_BACKEND": "none",
    "RATE_LIMIT_ENABLED": "false",
    "SUPABASE_JWT_SECRET": "test-jwt-secret",
    "SERVICE_URL": "https://bestowals.test",
    "PUBLIC_SITE_URL": "https://app.sow2grow.test",
    "BINANCE_PAY_API_KEY": "test-binance-key",
    "BINANCE_PAY_API_SECRET": "test-binance-secret",
    "BINANCE_PAY_MERCHANT_ID": "test-binance-merchant",
    "CRYPTOMUS_MERCHANT_ID": "test-cryptomus-merchant",
    "CRYPTOMUS_PAYMENT_API_KEY": "test-cryptomus-key",
    "IDEMPOTENCY_WAIT_SECONDS": "0",
}
for key, value in TEST_ENV.items():
    os.environ.setdefault(key, value)

from libs.common.config import get_settings  # noqa: E402

# Clear cached settings to reload with the test env vars
get_settings.cache_clear()
