# backend/kasse/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/kasse.sqlite3; PostgreSQL in production
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///kasse.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Bearer sessions: a full service shift, logged out after 2h without requests
    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 12)
    SESSION_IDLE_MINUTES = _env_int("SESSION_IDLE_MINUTES", 120)

    # Carts
    CART_TTL_HOURS = _env_int("CART_TTL_HOURS", 24)
    MAX_CART_ITEM_QUANTITY = _env_int("MAX_CART_ITEM_QUANTITY", 999)

    # Fiscal signing device: "simulated" or "network"
    FISCAL_DEVICE = os.environ.get("FISCAL_DEVICE", "simulated")
    TSE_GATEWAY_URL = os.environ.get("TSE_GATEWAY_URL", "http://127.0.0.1:8090")
    TSE_TIMEOUT_SECONDS = _env_float("TSE_TIMEOUT_SECONDS", 5.0)
    TSE_RETRY_ATTEMPTS = _env_int("TSE_RETRY_ATTEMPTS", 3)
    TSE_SIMULATED_LATENCY_MS = _env_int("TSE_SIMULATED_LATENCY_MS", 0)

    # FinanzOnline: "simulated" or "http"
    FINANZONLINE_MODE = os.environ.get("FINANZONLINE_MODE", "simulated")
    FINANZONLINE_API_URL = os.environ.get(
        "FINANZONLINE_API_URL",
        "https://finanzonline.bmf.gv.at/fonws/ws",
    )
    FINANZONLINE_TIMEOUT_SECONDS = _env_float("FINANZONLINE_TIMEOUT_SECONDS", 10.0)

    # Company profile defaults (seeded into company_settings by `flask system init`)
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "Demo Gasthaus GmbH")
    COMPANY_TAX_NUMBER = os.environ.get("COMPANY_TAX_NUMBER", "ATU12345678")
    COMPANY_ADDRESS = os.environ.get("COMPANY_ADDRESS", "Hauptstrasse 1, 1010 Wien")
    COMPANY_PHONE = os.environ.get("COMPANY_PHONE", "")
    COMPANY_EMAIL = os.environ.get("COMPANY_EMAIL", "")
