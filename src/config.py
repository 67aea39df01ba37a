"""Configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(dotenv_path=BASE_DIR / ".env")


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Document store
DOCUMENT_STORE = os.getenv("DOCUMENT_STORE", "mongo")

MONGO_CONFIG = {
    "uri": os.getenv("MONGO_URI", "mongodb://localhost:27017/?replicaSet=rs0"),
    "database": os.getenv("MONGO_DATABASE", "garden_exchange"),
}

# Stay below the store's hard limit of 500 operations per batch
BATCH_LIMIT = int(os.getenv("BATCH_LIMIT", "450"))

# Redis
REDIS_CONFIG = {
    "host": os.getenv("REDIS_HOST", "localhost"),
    "port": int(os.getenv("REDIS_PORT", "6379")),
    "db": int(os.getenv("REDIS_DB", "0")),
    "password": os.getenv("REDIS_PASSWORD") or None,
}

RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "5"))
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "3600"))  # seconds

# Email relay
EMAIL_CONFIG = {
    "user": os.getenv("EMAIL_USER", ""),
    "password": os.getenv("EMAIL_PASS", ""),
    "host": os.getenv("SMTP_HOST", "smtp.gmail.com"),
    "port": int(os.getenv("SMTP_PORT", "465")),
    "sender_name": os.getenv("EMAIL_SENDER_NAME", "Garden Exchange"),
}

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL") or EMAIL_CONFIG["user"]

BASE_URL = os.getenv("BASE_URL", "https://ecoanuncios.com")

# Blob storage
STORAGE_CONFIG = {
    "bucket": os.getenv("STORAGE_BUCKET", "garden-exchange-uploads"),
    "region": os.getenv("STORAGE_REGION", "eu-south-2"),
    "endpoint_url": os.getenv("STORAGE_ENDPOINT_URL") or None,
    "url_marker": os.getenv("STORAGE_URL_MARKER", "firebasestorage"),
}

# Identity provider
IDENTITY_CONFIG = {
    "jwt_secret": os.getenv("IDENTITY_JWT_SECRET", ""),
    "jwt_algorithm": os.getenv("IDENTITY_JWT_ALGORITHM", "HS256"),
    "audience": os.getenv("IDENTITY_AUDIENCE") or None,
    "admin_url": os.getenv("IDENTITY_ADMIN_URL", "http://localhost:9099/admin"),
    "admin_token": os.getenv("IDENTITY_ADMIN_TOKEN", ""),
    "timeout": int(os.getenv("IDENTITY_TIMEOUT", "10")),
}

APP_CHECK_SECRET = os.getenv("APP_CHECK_SECRET", "")
ENFORCE_APP_CHECK = _get_bool("ENFORCE_APP_CHECK", True)
REQUIRE_VERIFIED_EMAIL = _get_bool("REQUIRE_VERIFIED_EMAIL", True)

# Concurrent per-reviewer reputation updates
REPUTATION_WORKERS = int(os.getenv("REPUTATION_WORKERS", "4"))
