"""
settings.py
-----------
Runtime configuration for the finance tracker.  Values come from the
process environment, optionally seeded from a local ``.env`` file, and are
read once at import time.
"""

import logging
import os
from datetime import datetime, timezone

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Database
# Default to local SQLite, but allow override for a hosted Postgres
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///finance_tracker.db")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production")
JWT_ALGORITHM = "HS256"
TOKEN_TTL_HOURS = int(os.getenv("TOKEN_TTL_HOURS", "24"))
MIN_PASSWORD_LENGTH = 6


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def _default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", "USD")
    try:
        return normalize_currency(raw)
    except ValueError:
        return "USD"


DEFAULT_CURRENCY = _default_currency()

# Budgets
# Python weekday index (Monday=0).  Weekly windows start on Sunday by default.
WEEK_START = int(os.getenv("WEEK_START", "6")) % 7
DEFAULT_ALERT_THRESHOLD = 0.8

# Currency conversion
EXCHANGE_API_URL = os.getenv("EXCHANGE_API_URL", "https://open.er-api.com/v6/latest")
EXCHANGE_CACHE_SECONDS = int(os.getenv("EXCHANGE_CACHE_SECONDS", "3600"))

# HTTP
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

def utc_now() -> datetime:
    """Current time as naive UTC, the form every stored timestamp takes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install the root handler used by the API server and the scheduler CLI."""
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT)
