# backend/creditpos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/creditpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///creditpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Product cost prices are entered in BASE_CURRENCY; bonuses and penalties
    # are settled in SETTLEMENT_CURRENCY.
    BASE_CURRENCY = os.environ.get("BASE_CURRENCY", "USD")
    SETTLEMENT_CURRENCY = os.environ.get("SETTLEMENT_CURRENCY", "UZS")

    # Budget for one atomic write (sale, adjustment, transfer)
    ATOMIC_WRITE_TIMEOUT_SECONDS = float(os.environ.get("ATOMIC_WRITE_TIMEOUT_SECONDS", "15"))

    # When False a failed post-commit schedule recompute is logged and queued
    # for retry; when True it is raised to the caller.
    SCHEDULE_RECOMPUTE_STRICT = _env_bool("SCHEDULE_RECOMPUTE_STRICT", False)

    SIDE_EFFECT_ATTEMPTS = int(os.environ.get("SIDE_EFFECT_ATTEMPTS", "3"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
