"""Technical indicators — RSI, moving averages, volatility, price change.

Pure functions over a list of prices (oldest first), no I/O.  Unlike
candle-based indicators these never raise on short input; each returns a
neutral value until enough history has accumulated.
"""


def calculate_rsi(prices: list[float], period: int = 14) -> float:
    """Calculate the Relative Strength Index over the last *period* deltas.

    Uses simple (not Wilder-smoothed) averages:
        1. delta = price[i] - price[i-1]
        2. avg_gain = mean of positive deltas (0 for others)
        3. avg_loss = mean of |negative deltas| (0 for others)
        4. RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    Returns 50.0 with fewer than ``period + 1`` prices, 100.0 when there
    were gains but no losses, and 50.0 when the window is completely flat.
    """
    if len(prices) < period + 1:
        return 50.0

    recent = prices[-(period + 1):]
    deltas = [recent[i] - recent[i - 1] for i in range(1, len(recent))]

    avg_gain = sum(max(d, 0.0) for d in deltas) / period
    avg_loss = sum(abs(min(d, 0.0)) for d in deltas) / period

    if avg_loss == 0:
        if avg_gain == 0:
            return 50.0
        return 100.0

    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def calculate_moving_averages(
    prices: list[float],
    short_period: int = 5,
    long_period: int = 10,
) -> tuple[float, float]:
    """Return ``(ma_short, ma_long)`` simple means of the latest prices.

    Both are 0.0 until *long_period* prices exist.
    """
    if len(prices) < long_period:
        return 0.0, 0.0

    ma_short = sum(prices[-short_period:]) / short_period
    ma_long = sum(prices[-long_period:]) / long_period
    return ma_short, ma_long


def calculate_volatility(prices: list[float], window: int = 10) -> float:
    """Percentage range ``(max - min) / min * 100`` over the last *window*."""
    if len(prices) < window:
        return 0.0

    recent = prices[-window:]
    low = min(recent)
    if low <= 0:
        return 0.0
    return (max(recent) - low) / low * 100.0


def calculate_price_change(prices: list[float], periods: int = 5) -> float:
    """Percentage change between the latest price and *periods* samples ago."""
    if len(prices) < periods + 1:
        return 0.0

    current = prices[-1]
    previous = prices[-1 - periods]
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100.0
