# backend/tillpoint/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tillpoint.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tillpoint.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Sales tax applied to (subtotal - discount), in basis points (1900 = 19%)
    POS_TAX_RATE_BPS = int(os.environ.get("POS_TAX_RATE_BPS", "1900"))

    # Order numbers look like POS-260214-0001
    POS_ORDER_PREFIX = os.environ.get("POS_ORDER_PREFIX", "POS")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
