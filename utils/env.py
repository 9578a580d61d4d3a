import os
from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "")

API_BASE_URL = os.getenv("DISPATCH_API_BASE_URL", "http://localhost:8000")
API_TOKEN = os.getenv("DISPATCH_API_TOKEN")

POSITIVE_KEYS = ("AUTO_ASSIGN_INTERVAL_SEC", "TICK_TIMEOUT_SEC", "DB_TIMEOUT_SEC", "AVG_SPEED_KMH")


def check_positive(key: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"❌ {key} must be numeric, got {raw!r}")
    # AVG_SPEED_KMH is a divisor; a zero interval would spin the scheduler
    if not value > 0:
        raise ValueError(f"❌ {key} must be > 0, got {raw!r}")
    return value


# numeric env sanity check
for _key in POSITIVE_KEYS:
    _raw = os.getenv(_key)
    if _raw is not None:
        check_positive(_key, _raw)
