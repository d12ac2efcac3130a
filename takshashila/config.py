import os

from .errors import ConfigError

# ----------------------------
# Config & Constants
# ----------------------------
CASHFREE_ENV = os.environ.get("CASHFREE_ENV", "sandbox").lower()
CASHFREE_BASE = os.environ.get(
    "CASHFREE_BASE",
    "https://api.cashfree.com/pg" if CASHFREE_ENV == "production"
    else "https://sandbox.cashfree.com/pg",
)
CASHFREE_APP_ID = os.environ.get("CASHFREE_APP_ID", "")
CASHFREE_SECRET_KEY = os.environ.get("CASHFREE_SECRET_KEY", "")
# Cashfree signs webhooks with the dashboard webhook secret, or with the API
# secret when no dedicated one was generated.
CASHFREE_WEBHOOK_SECRET = (
    os.environ.get("CASHFREE_WEBHOOK_SECRET") or CASHFREE_SECRET_KEY
)
CASHFREE_API_VERSION = os.environ.get("CASHFREE_API_VERSION", "2023-08-01")
CURRENCY = "INR"

QR_SECRET_KEY = os.environ.get("QR_SECRET_KEY", "")
QR_EXPIRY_DAYS = int(os.environ.get("QR_EXPIRY_DAYS", "30"))

STORE_BACKEND = os.environ.get("STORE_BACKEND", "redis").lower()
REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")
REDIS_MAX_CONN = int(os.environ.get("REDIS_MAX_CONN", "64"))
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./takshashila.db")

RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
EMAIL_FROM = os.environ.get(
    "EMAIL_FROM", "CIT Takshashila <passes@takshashila.cittakshashila.in>"
)

SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
AUTH_SECRET = os.environ.get("AUTH_SECRET", SESSION_SECRET)
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "")

HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "10.0"))

# per client IP on order creation and profile updates
RATE_LIMIT = os.environ.get("RATE_LIMIT", "5/minute")
RATE_LIMIT_STORAGE = os.environ.get("RATE_LIMIT_STORAGE", "memory://")
# peers whose X-Forwarded-For is believed; anyone else is keyed by address
TRUSTED_PROXIES = {
    p.strip() for p in
    os.environ.get("TRUSTED_PROXIES", "127.0.0.1,::1").split(",")
    if p.strip()
}


def require(name: str) -> str:
    value = globals().get(name) or ""
    if not value:
        raise ConfigError(f"{name} is not set")
    return value
