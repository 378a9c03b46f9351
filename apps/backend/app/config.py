import os
from typing import Optional

from app.db_config import db_config


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


DEFAULT_BROWSERLESS_URL = "https://chrome.browserless.io"

# Crawl tuning. A batch of 30 pages at ~1.5s each stays under a 45s invocation ceiling.
PAGES_PER_BATCH = _env_int("REVIEWHARVEST_PAGES_PER_BATCH", 30)
PAGE_DELAY_SECONDS = _env_float("REVIEWHARVEST_PAGE_DELAY_SECONDS", 1.0)
FETCH_TIMEOUT_SECONDS = _env_float("REVIEWHARVEST_FETCH_TIMEOUT_SECONDS", 45.0)

# Scheduler tuning: 120 polls x 5s = 10 minutes max wait per agent
POLL_INTERVAL_SECONDS = _env_float("REVIEWHARVEST_POLL_INTERVAL_SECONDS", 5.0)
MAX_POLL_ATTEMPTS = _env_int("REVIEWHARVEST_MAX_POLL_ATTEMPTS", 120)
SCHEDULE_TZ = os.getenv("REVIEWHARVEST_SCHEDULE_TZ", "America/New_York")
WEBHOOK_TIMEOUT_SECONDS = _env_float("REVIEWHARVEST_WEBHOOK_TIMEOUT_SECONDS", 30.0)


def get_browserless_key() -> Optional[str]:
    return os.getenv("BROWSERLESS_API_KEY") or None


def get_browserless_url() -> str:
    return (os.getenv("BROWSERLESS_URL") or DEFAULT_BROWSERLESS_URL).rstrip("/")


def is_dev() -> bool:
    return os.getenv("REVIEWHARVEST_ENV", "production").lower() == "dev"


class Capabilities:
    @staticmethod
    def is_db_enabled() -> bool:
        """Check if a PostgreSQL DSN is configured"""
        return db_config.is_db_enabled

    @staticmethod
    def check_db_connection() -> bool:
        """Verify database connection with a trivial query"""
        if not Capabilities.is_db_enabled():
            return False

        conn_params = db_config.get_connection_params()
        if not conn_params:
            return False

        try:
            import psycopg2
            # Health checks must not hang
            conn = psycopg2.connect(**conn_params, connect_timeout=1)
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.fetchone()
            cursor.close()
            conn.close()
            return True
        except Exception:
            return False

    @staticmethod
    def is_renderer_enabled() -> bool:
        return bool(get_browserless_key())

    @staticmethod
    def is_scheduler_enabled() -> bool:
        return os.getenv("REVIEWHARVEST_DISABLE_SCHEDULER", "").lower() != "true"

    @classmethod
    def get_status(cls) -> dict:
        db = cls.check_db_connection()
        renderer = cls.is_renderer_enabled()

        return {
            "status": "green" if db and renderer else "amber",
            "components": {
                "db": db,
                "renderer": renderer,
            },
        }

    @classmethod
    def get_capabilities(cls) -> dict:
        return {
            "db": cls.is_db_enabled(),
            "renderer": cls.is_renderer_enabled(),
            "scheduler": cls.is_scheduler_enabled(),
        }


def get_env_presence() -> dict:
    required_vars = [
        "REVIEWHARVEST_ENV",
        "SUPABASE_DB_URL",
        "DATABASE_URL",
        "BROWSERLESS_API_KEY",
        "BROWSERLESS_URL",
        "REVIEWHARVEST_PAGES_PER_BATCH",
        "REVIEWHARVEST_PAGE_DELAY_SECONDS",
        "REVIEWHARVEST_POLL_INTERVAL_SECONDS",
        "REVIEWHARVEST_MAX_POLL_ATTEMPTS",
        "REVIEWHARVEST_SCHEDULE_TZ",
        "REVIEWHARVEST_DISABLE_SCHEDULER",
    ]

    return {var: bool(os.getenv(var)) for var in required_vars}
