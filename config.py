import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        cache_url: str,
        cache_timeout_secs: float,
        transactions_ttl_secs: int,
        analytics_ttl_secs: int,
        analytics_window_days: int,
        db_connect_attempts: int,
        db_connect_delay_secs: float,
        port: int,
    ) -> None:
        self.database_url = database_url
        self.cache_url = cache_url
        self.cache_timeout_secs = cache_timeout_secs
        self.transactions_ttl_secs = transactions_ttl_secs
        self.analytics_ttl_secs = analytics_ttl_secs
        self.analytics_window_days = analytics_window_days
        self.db_connect_attempts = db_connect_attempts
        self.db_connect_delay_secs = db_connect_delay_secs
        self.port = port


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def normalize_database_url(url: str) -> str:
    # SQLAlchemy only accepts the postgresql:// scheme.
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://") :]
    return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    return Settings(
        database_url=normalize_database_url(database_url),
        cache_url=os.getenv("FINANCE_CACHE_URL", "").strip(),
        cache_timeout_secs=float(os.getenv("FINANCE_CACHE_TIMEOUT_SECS", "2")),
        transactions_ttl_secs=int(os.getenv("FINANCE_TRANSACTIONS_TTL_SECS", "60")),
        analytics_ttl_secs=int(os.getenv("FINANCE_ANALYTICS_TTL_SECS", "300")),
        analytics_window_days=int(os.getenv("FINANCE_ANALYTICS_WINDOW_DAYS", "30")),
        db_connect_attempts=int(os.getenv("FINANCE_DB_CONNECT_ATTEMPTS", "60")),
        db_connect_delay_secs=float(os.getenv("FINANCE_DB_CONNECT_DELAY_SECS", "2")),
        port=int(os.getenv("PORT", "8080")),
    )
