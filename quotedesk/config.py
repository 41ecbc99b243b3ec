import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "quotedesk.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-quotedesk")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Identity is issued by the external auth collaborator; headers are a local/dev shortcut.
    IDENTITY_HEADERS_ENABLED = _bool_env("IDENTITY_HEADERS_ENABLED", True)

    QUOTE_NUMBER_PREFIX = os.environ.get("QUOTE_NUMBER_PREFIX", "QT")
    QUOTE_LIST_LIMIT = _int_env("QUOTE_LIST_LIMIT", 200)
    QUOTE_HISTORY_LIMIT = _int_env("QUOTE_HISTORY_LIMIT", 120)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required in production.")
        if env == "production" and self.SECRET_KEY == "dev-secret-quotedesk":
            raise RuntimeError("SECRET_KEY is not safe for production.")
        if env == "production" and self.IDENTITY_HEADERS_ENABLED:
            raise RuntimeError("IDENTITY_HEADERS_ENABLED must be off in production.")
