import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'smartmark.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    FEED_RETENTION_HOURS = int(os.environ.get("FEED_RETENTION_HOURS", "168"))
    FEED_PRUNE_INTERVAL_MINUTES = int(
        os.environ.get("FEED_PRUNE_INTERVAL_MINUTES", "60")
    )
    FEED_MAX_WAIT_SECONDS = float(os.environ.get("FEED_MAX_WAIT_SECONDS", "25"))

    # Client side (run.py watch)
    SMARTMARK_API_URL = os.environ.get(
        "SMARTMARK_API_URL", "http://127.0.0.1:8072/api/v1"
    )
    SMARTMARK_API_TOKEN = os.environ.get("SMARTMARK_API_TOKEN", "")
    REQUEST_TIMEOUT = float(os.environ.get("REQUEST_TIMEOUT", "10"))
    FEED_WAIT_SECONDS = float(os.environ.get("FEED_WAIT_SECONDS", "20"))
    FEED_POLL_INTERVAL = float(os.environ.get("FEED_POLL_INTERVAL", "1"))
    SYNC_WORKERS = int(os.environ.get("SYNC_WORKERS", "4"))
    RESUBSCRIBE_ATTEMPTS = int(os.environ.get("RESUBSCRIBE_ATTEMPTS", "3"))
    RESUBSCRIBE_BACKOFF = float(os.environ.get("RESUBSCRIBE_BACKOFF", "1"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    FEED_MAX_WAIT_SECONDS = 2.0
