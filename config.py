import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        alert_window_days: int,
        history_months: int,
        seed_defaults: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.alert_window_days = alert_window_days
        self.history_months = history_months
        self.seed_defaults = seed_defaults


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/Sao_Paulo")
    alert_window_days = int(os.getenv("FINANCE_ALERT_WINDOW_DAYS", "3"))
    history_months = int(os.getenv("FINANCE_HISTORY_MONTHS", "6"))
    seed_defaults = _env_flag("FINANCE_SEED_DEFAULTS", "true")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        alert_window_days=alert_window_days,
        history_months=history_months,
        seed_defaults=seed_defaults,
    )
