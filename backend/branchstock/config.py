# backend/branchstock/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/branchstock.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///branchstock.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a SQLite writer waits on a locked database before OperationalError
    SQLITE_BUSY_TIMEOUT = _env_float("SQLITE_BUSY_TIMEOUT", 30.0)

    # Sale ids look like VTA-20261019-0001
    SALE_ID_PREFIX = os.environ.get("SALE_ID_PREFIX", "VTA")

    # Bounded retry for lost races on stock rows and sequence counters
    STOCK_RETRY_ATTEMPTS = _env_int("STOCK_RETRY_ATTEMPTS", 5)
    STOCK_RETRY_BACKOFF = _env_float("STOCK_RETRY_BACKOFF", 0.05)

    ANALYTICS_DEFAULT_LOOKBACK_DAYS = _env_int("ANALYTICS_DEFAULT_LOOKBACK_DAYS", 90)
    ANALYTICS_DEFAULT_HORIZON_DAYS = _env_int("ANALYTICS_DEFAULT_HORIZON_DAYS", 30)
