import os


def _env_bool(name, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class BaseConfig:
    # Security
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///mutabaah.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds before a blocked store call surfaces as a timeout
    STORE_TIMEOUT_SECONDS = int(os.getenv("STORE_TIMEOUT_SECONDS", 15))

    # Monthly report submission
    SUBMISSION_OPEN_DAY = int(os.getenv("SUBMISSION_OPEN_DAY", 28))

    # Counter-based report writes
    REPORT_WRITE_DEBOUNCE_MS = int(os.getenv("REPORT_WRITE_DEBOUNCE_MS", 500))
    REPORT_WRITE_RETRIES = int(os.getenv("REPORT_WRITE_RETRIES", 3))

    # Authoritative clock (server side)
    APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Jakarta")

    # Optional JSON file overriding the built-in activity sheet
    ACTIVITY_CATALOG_PATH = os.getenv("ACTIVITY_CATALOG_PATH") or None

    # Logging
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_TO_FILE = _env_bool("LOG_TO_FILE", True)


class DevConfig(BaseConfig):
    DEBUG = True


class ProdConfig(BaseConfig):
    DEBUG = False


class TestConfig(BaseConfig):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOG_TO_FILE = False
    ACTIVITY_CATALOG_PATH = None
