from datetime import datetime


class NotFoundError(ValueError):
    pass


class InvoiceTransactionLocked(ValueError):
    pass


class RateLimitExceeded(Exception):
    def __init__(self, reset_at: datetime) -> None:
        super().__init__(f"Rate limit exceeded until {reset_at.isoformat()}")
        self.reset_at = reset_at
