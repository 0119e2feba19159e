import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'linkshelf.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    IMPORT_MAX_ROWS = int(os.environ.get("IMPORT_MAX_ROWS", "5000"))
    IMPORT_INSERT_BATCH_SIZE = int(os.environ.get("IMPORT_INSERT_BATCH_SIZE", "500"))
    IMPORT_STALE_PENDING_MINUTES = int(
        os.environ.get("IMPORT_STALE_PENDING_MINUTES", "30")
    )
    IMPORT_STALE_SWEEP_MINUTES = int(os.environ.get("IMPORT_STALE_SWEEP_MINUTES", "10"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    LOG_LEVEL = "DEBUG"
