import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        ai_chat_max_requests: int,
        ai_chat_window_secs: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.ai_chat_max_requests = ai_chat_max_requests
        self.ai_chat_window_secs = ai_chat_window_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    ai_chat_max_requests = int(os.getenv("FINANCE_AI_CHAT_MAX_REQUESTS", "10"))
    ai_chat_window_secs = int(os.getenv("FINANCE_AI_CHAT_WINDOW_SECS", "60"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        ai_chat_max_requests=ai_chat_max_requests,
        ai_chat_window_secs=ai_chat_window_secs,
    )
