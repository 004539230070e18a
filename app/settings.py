import os
from decimal import Decimal

db_url = os.environ.get("DB_URL", "sqlite+aiosqlite://")
notifications_ms_url = os.environ.get(
    "NOTIFICATIONS_MS_URL", "http://localhost:8004"
)
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
CREATE_SCHEMA = os.environ.get("CREATE_SCHEMA", "true").lower() in ("1", "true", "yes")

BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "Asia/Kolkata")

BOOKING_PENDING_TTL_HOURS = int(os.environ.get("BOOKING_PENDING_TTL_HOURS", "24"))
DEFAULT_MAX_DAILY_BOOKINGS = int(os.environ.get("DEFAULT_MAX_DAILY_BOOKINGS", "5"))

SWEEP_INTERVAL_SECONDS = float(os.environ.get("SWEEP_INTERVAL_SECONDS", "3600"))
SWEEP_BATCH_LIMIT = int(os.environ.get("SWEEP_BATCH_LIMIT", "500"))
SWEEP_LOCK_TTL_SECONDS = int(os.environ.get("SWEEP_LOCK_TTL_SECONDS", "600"))

CHECKOUT_TIMEOUT_SECONDS = float(os.environ.get("CHECKOUT_TIMEOUT_SECONDS", "10"))
CHECKOUT_MAX_ATTEMPTS = int(os.environ.get("CHECKOUT_MAX_ATTEMPTS", "3"))
TOTAL_TOLERANCE = Decimal(os.environ.get("TOTAL_TOLERANCE", "0.01"))
PRODUCT_ORDER_PLATFORM_FEE = Decimal(os.environ.get("PRODUCT_ORDER_PLATFORM_FEE", "0.00"))
