import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        default_page_size: int,
        max_page_size: int,
        summary_window_days: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.summary_window_days = summary_window_days


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FAMILY_FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "family_finance.db"
    database_url = os.getenv("FAMILY_FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FAMILY_FINANCE_TIMEZONE", "UTC")
    log_level = os.getenv("FAMILY_FINANCE_LOG_LEVEL", "INFO").upper()
    default_page_size = int(os.getenv("FAMILY_FINANCE_DEFAULT_PAGE_SIZE", "20"))
    max_page_size = int(os.getenv("FAMILY_FINANCE_MAX_PAGE_SIZE", "100"))
    summary_window_days = int(os.getenv("FAMILY_FINANCE_SUMMARY_WINDOW_DAYS", "30"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        default_page_size=default_page_size,
        max_page_size=max_page_size,
        summary_window_days=summary_window_days,
    )
