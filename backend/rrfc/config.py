# backend/rrfc/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/rrfc_inventory.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location (e.g. postgresql://...)
        "sqlite:///rrfc_inventory.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Backorder policy: when False, outbound entries may not drive on-hand below zero
    ALLOW_NEGATIVE_ON_HAND = _env_flag("ALLOW_NEGATIVE_ON_HAND", False)

    # Landed cost: fold shipping into the inbound unit cost used for MAC
    MAC_INCLUDE_SHIPPING = _env_flag("MAC_INCLUDE_SHIPPING", False)

    # Per-item valuation lock and DB contention retry
    ITEM_LOCK_TIMEOUT_SECONDS = float(os.environ.get("ITEM_LOCK_TIMEOUT_SECONDS", "5"))
    LOCK_RETRY_ATTEMPTS = int(os.environ.get("LOCK_RETRY_ATTEMPTS", "5"))
    LOCK_BACKOFF_BASE = float(os.environ.get("LOCK_BACKOFF_BASE", "0.05"))
