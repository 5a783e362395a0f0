"""
Stock resolution outcomes that are not a snapshot.

Each error carries a stable ``kind`` so callers can pick a response code
without parsing message text.
"""


class StockError(Exception):
    """Base class for stock pipeline failures."""

    kind = "stock_error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.kind)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.detail}


class NotFound(StockError):
    """No product has the requested SKU. Zero stock is not this."""

    kind = "not_found"


class SourceUnavailable(StockError):
    """The aggregation source timed out or could not be reached."""

    kind = "source_unavailable"


class InvalidInput(StockError):
    """Malformed request input, rejected before any store access."""

    kind = "invalid_input"


class RateLimited(StockError):
    """Client exceeded its request budget for the current window."""

    kind = "rate_limited"

    def __init__(self, retry_after: float, detail: str = ""):
        super().__init__(detail or f"Rate limit exceeded, retry after {retry_after:.1f}s")
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        return {**super().to_dict(), "retry_after": self.retry_after}
