"""Stake escalation and order sizing — pure math, no I/O.

Calculates the martingale stake for the next attempt of a cycle and the
order quantity that stake buys at a given price.
"""


def calculate_next_stake(
    initial_stake: float,
    gale_factor: float,
    attempt: int,
    cycle_stake: float,
    capital_total: float,
    max_risk_pct: float,
) -> float:
    """Calculate the stake for the next contract in a cycle.

    Formula::

        stake     = initial_stake × gale_factor ^ attempt
        max_cycle = capital_total × (max_risk_pct / 100)
        stake     = min(stake, max_cycle - cycle_stake)

    Args:
        initial_stake: Stake of the first attempt (e.g. 5.0).
        gale_factor: Multiplier applied after each loss (e.g. 1.5).
        attempt: Attempts already made in this cycle (0-indexed next attempt).
        cycle_stake: Sum of stakes already committed in this cycle.
        capital_total: Total trading capital.
        max_risk_pct: Percentage of capital one cycle may stake.

    Returns:
        The clamped stake.  A result ``<= 0`` means the cycle's risk
        budget is exhausted and no contract should be opened.

    Raises:
        ValueError: If *attempt* is negative.
    """
    if attempt < 0:
        raise ValueError(f"attempt must be non-negative, got {attempt}")

    stake = initial_stake * (gale_factor ** attempt)
    max_cycle_risk = capital_total * (max_risk_pct / 100.0)
    remaining = max_cycle_risk - cycle_stake
    if stake > remaining:
        return max(0.0, remaining)
    return stake


def calculate_quantity(
    stake: float,
    price: float,
    decimals: int = 8,
    min_notional: float = 1.0,
) -> float:
    """Convert a quote-currency stake into a base-asset quantity.

    Formula::

        quantity = round(stake / price, decimals)

    and, when that is worth less than *min_notional*, the smallest
    quantity at that precision whose value reaches it.

    Args:
        stake: Amount of quote currency to commit (e.g. 5.0 USDT).
        price: Current price of one base unit.
        decimals: Quantity precision; 0 means whole units only.
        min_notional: Minimum order value accepted by the exchange.

    Raises:
        ValueError: If *stake* or *price* is non-positive.
    """
    if stake <= 0:
        raise ValueError(f"stake must be positive, got {stake}")
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")

    quantity = round(stake / price, decimals)
    if quantity * price < min_notional:
        step = 10 ** -decimals
        steps = -(-min_notional // (price * step))  # ceil
        quantity = round(steps * step, decimals)
    if decimals == 0:
        return float(int(quantity))
    return quantity
