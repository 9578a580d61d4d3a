# src/config.py
from pathlib import Path
import os

from utils.env import API_BASE_URL, API_TOKEN, DATABASE_URL

# ===========================
#  Paths / storage
# ===========================
BASE_DIR = Path(__file__).resolve().parent.parent

DATA_DIR = BASE_DIR / "data"

SQLALCHEMY_DATABASE_URL = DATABASE_URL or f"sqlite:///{BASE_DIR / 'dispatch.db'}"

# SQLite busy timeout; bounds every store call made inside a scheduler tick
DB_TIMEOUT_SEC = float(os.getenv("DB_TIMEOUT_SEC", "5"))

RIDERS_CSV_PATH = DATA_DIR / "seed" / "riders.csv"
ORDERS_CSV_PATH = DATA_DIR / "seed" / "orders.csv"

# ===========================
#  Dispatch API (client side)
# ===========================
DISPATCH_API_BASE_URL = API_BASE_URL.rstrip("/")
DISPATCH_API_PREFIX = "/api/v1/rider/dispatch"
DISPATCH_API_TOKEN = API_TOKEN
API_TIMEOUT = int(os.getenv("DISPATCH_API_TIMEOUT", "10"))

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]

# ===========================
#  Auto-assign scheduler
# ===========================
AUTO_ASSIGN_ENABLED = os.getenv("AUTO_ASSIGN_ENABLED", "true").lower() == "true"
AUTO_ASSIGN_INTERVAL_SEC = float(os.getenv("AUTO_ASSIGN_INTERVAL_SEC", "30"))
TICK_TIMEOUT_SEC = float(os.getenv("TICK_TIMEOUT_SEC", "20"))

SCHEDULER_ACTOR = "auto-scheduler"
DEFAULT_SCOPE = "default"

# ===========================
#  Scoring
# ===========================
# average rider speed used to turn pickup distance into minutes
AVG_SPEED_KMH = float(os.getenv("AVG_SPEED_KMH", "20"))

# rider independent, high > medium > low
PRIORITY_SCORES = {
    "high": 1.0,
    "medium": 0.6,
    "low": 0.3,
}

# tick processing order
PRIORITY_RANK = {
    "high": 0,
    "medium": 1,
    "low": 2,
}

# seeded when no rule has been stored yet
DEFAULT_RULE_NAME = "Default Rule"
DEFAULT_RULE_CRITERIA = {
    "maxRadiusKm": 5.0,
    "maxOrdersPerRider": 3,
    "preferSameZone": True,
    "priorityWeight": 5.0,
    "distanceWeight": 5.0,
    "etaWeight": 5.0,
}
