"""Strategy data models — typed representations for strategy outputs."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

STRONG_SIGNAL_THRESHOLD = 75.0


class Direction(str, Enum):
    """Contract direction.  ``side`` is the exchange order side."""

    LONG = "long"
    SHORT = "short"

    @property
    def side(self) -> str:
        return "BUY" if self is Direction.LONG else "SELL"


@dataclass(frozen=True)
class Indicators:
    """Indicator values computed over one price-history snapshot."""

    rsi: float
    ma_short: float
    ma_long: float
    volatility: float  # % range over the recent window
    price_change: float  # % over the look-back


@dataclass(frozen=True)
class Signal:
    """A directional signal with a 0–100 strength."""

    direction: Direction
    strength: float
    timestamp: datetime
    indicators: Indicators

    @property
    def is_strong(self) -> bool:
        return self.strength >= STRONG_SIGNAL_THRESHOLD

    def to_dict(self) -> dict:
        return {
            "direction": self.direction.value,
            "strength": self.strength,
            "timestamp": self.timestamp.isoformat(),
            "indicators": {
                "rsi": self.indicators.rsi,
                "ma_short": self.indicators.ma_short,
                "ma_long": self.indicators.ma_long,
                "volatility": self.indicators.volatility,
                "price_change": self.indicators.price_change,
            },
        }
