import os
from decimal import Decimal

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
payments_ms_url = os.environ.get("PAYMENTS_MS_URL", "http://localhost:8003")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
GENERATE_SCHEMAS = os.environ.get("GENERATE_SCHEMAS", "false").lower() == "true"

# Empty secret leaves the cron trigger open
CRON_SECRET = os.environ.get("CRON_SECRET", "")

PLATFORM_COMMISSION_RATE = Decimal(os.environ.get("PLATFORM_COMMISSION_RATE", "0.10"))
SETTLEMENT_TIMEOUT_SECONDS = float(os.environ.get("SETTLEMENT_TIMEOUT_SECONDS", "10"))
SWEEP_LOCK_TTL_SECONDS = int(os.environ.get("SWEEP_LOCK_TTL_SECONDS", "300"))
PAYOUT_TOLERANCE = Decimal(os.environ.get("PAYOUT_TOLERANCE", "1"))
