"""Error taxonomy for the market maker."""

from __future__ import annotations


class MarketMakerError(Exception):
    """Base class for every error raised by a reconciliation cycle."""


class InvalidInput(MarketMakerError):
    """A decimal string failed to parse, was empty, or divided by zero."""


class PrecisionLoss(MarketMakerError):
    """A high-precision intermediate is not representable as a float64."""


class TickConversionError(MarketMakerError):
    """A price is non-positive or outside the venue's price bounds."""


class RoundingError(MarketMakerError):
    """A tick could not be rounded to the configured spacing."""


class TickOrderingError(MarketMakerError):
    """Adjusted ranges violate low < buy < sell < high."""


class UnexpectedPositionCount(MarketMakerError):
    def __init__(self, count: int) -> None:
        super().__init__(f"expected 0 or 2 open positions, found {count}")
        self.count = count


class QueryError(MarketMakerError):
    def __init__(self, operation: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{operation} failed (status={status}): {message}")
        self.operation = operation
        self.status = status


class SubmissionError(MarketMakerError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(f"submit failed (status={status}): {message}")
        self.status = status


class ConfigError(ValueError):
    """Configuration is missing or malformed; fatal at startup."""


class SubscriptionError(RuntimeError):
    """The event subscription could not be kept alive; fatal."""
