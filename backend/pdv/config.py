# backend/pdv/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pdv.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location (hosted backend)
        "sqlite:///pdv.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Credit sales fall due this many days after checkout
    CREDIT_TERM_DAYS = int(os.environ.get("CREDIT_TERM_DAYS", "30"))

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Optional dotted path to a callable renderer(kind, payload) -> document.
    # When unset, document endpoints return the structured payload as-is.
    DOCUMENT_RENDERER = os.environ.get("DOCUMENT_RENDERER") or None
