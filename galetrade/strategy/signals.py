"""Signal generation — turns a price-history snapshot into a ``Signal``.

The only state kept between calls is the time of the last strong signal,
used to damp repeated strong signals inside a short window.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from galetrade.strategy.indicators import (
    calculate_moving_averages,
    calculate_price_change,
    calculate_rsi,
    calculate_volatility,
)
from galetrade.strategy.models import Direction, Indicators, Signal

logger = logging.getLogger("galetrade.signals")

RSI_OVERSOLD = 30.0
RSI_OVERBOUGHT = 70.0
EXTREME_RSI_STRENGTH = 85.0
CROSSOVER_BASE_STRENGTH = 75.0
DEFAULT_STRENGTH = 50.0
SUPPRESSED_STRENGTH = 30.0
LOW_VOLATILITY_PCT = 0.5
LOW_VOLATILITY_PENALTY = 20.0
MAX_STRENGTH = 90.0


def compute_indicators(prices: list[float]) -> Indicators:
    """Compute every indicator the decision table needs."""
    ma_short, ma_long = calculate_moving_averages(prices)
    return Indicators(
        rsi=calculate_rsi(prices),
        ma_short=ma_short,
        ma_long=ma_long,
        volatility=calculate_volatility(prices),
        price_change=calculate_price_change(prices),
    )


def classify(ind: Indicators) -> tuple[Direction, float]:
    """Apply the decision table plus volatility penalty and strength cap.

    First match wins:
      1. RSI < 30                          → long, 85
      2. RSI > 70                          → short, 85
      3. MA5 > MA10, 40 < RSI < 70, Δ>0.1% → long, 75 + min(10, vol×2)
      4. MA5 < MA10, 30 < RSI < 60, Δ<-0.1% → short, 75 + min(10, vol×2)
      5. otherwise                         → long, 50
    """
    if ind.rsi < RSI_OVERSOLD:
        direction, strength = Direction.LONG, EXTREME_RSI_STRENGTH
    elif ind.rsi > RSI_OVERBOUGHT:
        direction, strength = Direction.SHORT, EXTREME_RSI_STRENGTH
    elif (
        ind.ma_short > ind.ma_long
        and 40.0 < ind.rsi < 70.0
        and ind.price_change > 0.1
    ):
        direction = Direction.LONG
        strength = CROSSOVER_BASE_STRENGTH + min(10.0, ind.volatility * 2)
    elif (
        ind.ma_short < ind.ma_long
        and 30.0 < ind.rsi < 60.0
        and ind.price_change < -0.1
    ):
        direction = Direction.SHORT
        strength = CROSSOVER_BASE_STRENGTH + min(10.0, ind.volatility * 2)
    else:
        direction, strength = Direction.LONG, DEFAULT_STRENGTH

    if ind.volatility < LOW_VOLATILITY_PCT:
        strength = max(strength - LOW_VOLATILITY_PENALTY, SUPPRESSED_STRENGTH)

    return direction, min(strength, MAX_STRENGTH)


class SignalGenerator:
    """Rate-limited signal source.

    Args:
        rate_limit_seconds: Window after a strong signal during which
            further calls return a suppressed (strength 30) signal.
    """

    def __init__(self, rate_limit_seconds: float = 10.0) -> None:
        self._rate_limit = timedelta(seconds=rate_limit_seconds)
        self._last_strong_at: Optional[datetime] = None

    @property
    def last_strong_at(self) -> Optional[datetime]:
        return self._last_strong_at

    def generate(self, prices: list[float], now: Optional[datetime] = None) -> Signal:
        """Evaluate *prices* (oldest first) and return a signal."""
        if now is None:
            now = datetime.now(timezone.utc)

        indicators = compute_indicators(prices)

        if (
            self._last_strong_at is not None
            and now - self._last_strong_at < self._rate_limit
        ):
            return Signal(
                direction=Direction.LONG,
                strength=SUPPRESSED_STRENGTH,
                timestamp=now,
                indicators=indicators,
            )

        direction, strength = classify(indicators)
        signal = Signal(
            direction=direction,
            strength=strength,
            timestamp=now,
            indicators=indicators,
        )
        if signal.is_strong:
            self._last_strong_at = now
            logger.debug(
                "Strong %s signal (%.1f) rsi=%.1f vol=%.2f%%",
                direction.value, strength, indicators.rsi, indicators.volatility,
            )
        return signal
