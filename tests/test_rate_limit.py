from datetime import datetime, timedelta

import pytest

from errors import RateLimitExceeded
from rate_limit import FixedWindowRateLimiter


def test_allows_up_to_limit_then_rejects():
    limiter = FixedWindowRateLimiter(window_secs=60, max_requests=3)
    now = datetime(2024, 1, 1, 12, 0, 0)
    for _ in range(3):
        limiter.check("ai-chat:1", now)

    with pytest.raises(RateLimitExceeded) as excinfo:
        limiter.check("ai-chat:1", now + timedelta(seconds=30))
    assert excinfo.value.reset_at == now + timedelta(seconds=60)


def test_identifiers_are_counted_separately():
    limiter = FixedWindowRateLimiter(window_secs=60, max_requests=1)
    now = datetime(2024, 1, 1, 12, 0, 0)
    limiter.check("ai-chat:1", now)
    limiter.check("ai-chat:2", now)
    with pytest.raises(RateLimitExceeded):
        limiter.check("ai-chat:1", now)


def test_new_window_after_reset():
    limiter = FixedWindowRateLimiter(window_secs=60, max_requests=1)
    now = datetime(2024, 1, 1, 12, 0, 0)
    limiter.check("ai-chat:1", now)
    # The window is still open exactly at reset_at.
    with pytest.raises(RateLimitExceeded):
        limiter.check("ai-chat:1", now + timedelta(seconds=60))
    limiter.check("ai-chat:1", now + timedelta(seconds=61))


def test_cleanup_drops_expired_windows():
    limiter = FixedWindowRateLimiter(window_secs=60, max_requests=5)
    now = datetime(2024, 1, 1, 12, 0, 0)
    limiter.check("old", now)
    limiter.check("fresh", now + timedelta(seconds=50))

    removed = limiter.cleanup(now + timedelta(seconds=90))

    assert removed == 1
    assert len(limiter) == 1
