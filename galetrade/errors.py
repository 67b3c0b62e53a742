"""Engine error taxonomy.

Every failure the engine reports belongs to one ``ErrorKind`` so callers
can branch on the kind instead of on message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of engine failure categories."""

    VALIDATION = "validation"
    TRANSIENT_FEED = "transient_feed"
    ORDER_PLACEMENT = "order_placement"
    PRICE_UNAVAILABLE = "price_unavailable"
    RISK_BREACH = "risk_breach"


class EngineError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(EngineError):
    """Preflight failed; the session never transitions to running."""

    kind = ErrorKind.VALIDATION

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class TransientFeedError(EngineError):
    """The price stream disconnected or errored; recovered by reconnecting."""

    kind = ErrorKind.TRANSIENT_FEED


class OrderPlacementError(EngineError):
    """The order gateway rejected or failed to open a contract."""

    kind = ErrorKind.ORDER_PLACEMENT

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class PriceUnavailableError(EngineError):
    """No price was available when one was required."""

    kind = ErrorKind.PRICE_UNAVAILABLE


class RiskBreachError(EngineError):
    """Daily loss reached the configured limit; fatal for the session."""

    kind = ErrorKind.RISK_BREACH

    def __init__(self, daily_loss: float, limit: float) -> None:
        self.daily_loss = daily_loss
        self.limit = limit
        super().__init__(
            f"Daily loss {daily_loss:.2f} reached limit {limit:.2f}"
        )
