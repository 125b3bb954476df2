# backend/posledger/config.py
from __future__ import annotations
import os


GATEWAY_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/posledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///posledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # bcrypt cost factor for password hashes (tests lower it)
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Session lifetime for bearer tokens
    SESSION_ABSOLUTE_TIMEOUT_HOURS = int(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", "24"))
    SESSION_IDLE_TIMEOUT_HOURS = int(os.environ.get("SESSION_IDLE_TIMEOUT_HOURS", "2"))

    # Mobile payment push gateway
    GATEWAY_ENVIRONMENT = os.environ.get("GATEWAY_ENVIRONMENT", "sandbox")
    GATEWAY_BASE_URL = os.environ.get(
        "GATEWAY_BASE_URL",
        GATEWAY_BASE_URLS.get(GATEWAY_ENVIRONMENT, GATEWAY_BASE_URLS["sandbox"]),
    )
    GATEWAY_CONSUMER_KEY = os.environ.get("GATEWAY_CONSUMER_KEY", "")
    GATEWAY_CONSUMER_SECRET = os.environ.get("GATEWAY_CONSUMER_SECRET", "")
    GATEWAY_SHORTCODE = os.environ.get("GATEWAY_SHORTCODE", "")
    GATEWAY_PASSKEY = os.environ.get("GATEWAY_PASSKEY", "")
    GATEWAY_CALLBACK_URL = os.environ.get("GATEWAY_CALLBACK_URL", "")
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "30"))
    GATEWAY_COUNTRY_CODE = os.environ.get("GATEWAY_COUNTRY_CODE", "254")
    GATEWAY_TIMEZONE = os.environ.get("GATEWAY_TIMEZONE", "Africa/Nairobi")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]
