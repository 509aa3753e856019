import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from config import get_settings
from errors import RateLimitExceeded


logger = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    reset_at: datetime


class FixedWindowRateLimiter:
    """In-memory fixed-window counter keyed by an arbitrary identifier.

    Counters live only in this process and start over after a restart.
    """

    def __init__(self, window_secs: int, max_requests: int) -> None:
        self.window = timedelta(seconds=window_secs)
        self.max_requests = max_requests
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check(self, identifier: str, now: Optional[datetime] = None) -> None:
        now = now or datetime.utcnow()
        with self._lock:
            window = self._windows.get(identifier)
            if window is None or window.reset_at < now:
                self._windows[identifier] = _Window(count=1, reset_at=now + self.window)
                return
            if window.count >= self.max_requests:
                logger.warning(
                    f"rate_limited: identifier={identifier} "
                    f"reset_at={window.reset_at.isoformat()}"
                )
                raise RateLimitExceeded(window.reset_at)
            window.count += 1

    def cleanup(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        with self._lock:
            expired = [key for key, window in self._windows.items() if window.reset_at < now]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


def _build_ai_chat_limiter() -> FixedWindowRateLimiter:
    settings = get_settings()
    return FixedWindowRateLimiter(
        window_secs=settings.ai_chat_window_secs,
        max_requests=settings.ai_chat_max_requests,
    )


ai_chat_rate_limiter = _build_ai_chat_limiter()
