# backend/pharmapos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pharmapos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pharmapos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Scanner history caps (newest first, oldest evicted)
    SCAN_HISTORY_LIMIT = 500
    SYNC_LOG_LIMIT = 200
    DEFAULT_SCAN_UNIT = "STRIP"

    # Products without a reorder threshold are low at or below this level
    LOW_STOCK_DEFAULT_THRESHOLD = 10
    EXPIRY_WARNING_DAYS = 90
