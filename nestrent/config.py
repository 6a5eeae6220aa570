# Runtime configuration sourced from environment variables.
# Values are read once at import time; tests set the environment before importing the app.
import os
from typing import Optional


def truthy(val: Optional[str]) -> bool:
    # Basic truthy parser for env flags (1, true, yes, on)
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        return default


# DATABASE_URL defaults to a local SQLite file; override for staging/production.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data.db")

JWT_SECRET = os.getenv("NESTRENT_JWT_SECRET", "dev-secret-change-me")
JWT_TTL_SECONDS = env_int("JWT_TTL_SECONDS", 60 * 60 * 24 * 7)  # 7 days

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Typing indicator: expiry per chat and capacity of the in-process store
TYPING_TTL_SECONDS = env_int("TYPING_TTL_SECONDS", 3)
TYPING_MAX_ENTRIES = env_int("TYPING_MAX_ENTRIES", 10000)

# Coarse cross-process guard around booking check-and-insert
BOOKING_LOCK_TTL_MS = env_int("BOOKING_LOCK_TTL_MS", 5000)
# How long a request waits for that guard before giving up with 429
BOOKING_LOCK_WAIT_MS = env_int("BOOKING_LOCK_WAIT_MS", 2000)

# Longest stay accepted by availability queries and booking requests
MAX_STAY_NIGHTS = env_int("MAX_STAY_NIGHTS", 365)

SWEEP_INTERVAL_SECONDS = env_int("SWEEP_INTERVAL_SECONDS", 300)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def is_sqlite(url: str = DATABASE_URL) -> bool:
    return url.startswith("sqlite")
