# backend/retailpos/config.py
from __future__ import annotations
import os
from pathlib import Path


APPDATA_DIR = Path(os.environ.get("RETAILPOS_APPDATA", Path.home() / ".appdata"))


def _default_database_url() -> str:
    return f"sqlite:///{APPDATA_DIR / 'database.sqlite'}"


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in ~/.appdata unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_database_url())
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seed admin user, main stock and default money boxes on startup
    BOOTSTRAP_ON_START = os.environ.get("BOOTSTRAP_ON_START", "1") == "1"
    ADMIN_DEFAULT_PASSWORD = os.environ.get("ADMIN_DEFAULT_PASSWORD", "admin123")

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    LOG_DIR = os.environ.get("LOG_DIR", str(APPDATA_DIR / "logs"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    LICENSE_DIR = os.environ.get("LICENSE_DIR", str(APPDATA_DIR / "license"))
    LICENSE_API_URL = os.environ.get("LICENSE_API_URL", "https://urcash.up.railway.app/api")
    LICENSE_HTTP_TIMEOUT = float(os.environ.get("LICENSE_HTTP_TIMEOUT", "15"))
