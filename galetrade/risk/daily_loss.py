"""Daily-loss circuit breaker.

Compares the session-start balance with a fresh balance query on every
check.  The balance is never cached between checks.
"""

import logging
from dataclasses import dataclass

from galetrade.broker.base import BalanceSource

logger = logging.getLogger("galetrade.risk")


@dataclass(frozen=True)
class RiskAssessment:
    """Result of one daily-loss check."""

    current_balance: float
    daily_loss: float
    limit: float

    @property
    def breached(self) -> bool:
        """``True`` when the daily loss has reached or exceeded the limit."""
        return self.daily_loss >= self.limit


class RiskGovernor:
    """Evaluates the daily-loss limit against the live account balance.

    Args:
        balances: Balance query capability.
        asset: Asset whose balance is tracked (e.g. ``"USDT"``).
        max_daily_loss: Loss that trips the circuit breaker.
    """

    def __init__(
        self,
        balances: BalanceSource,
        asset: str,
        max_daily_loss: float,
    ) -> None:
        if max_daily_loss <= 0:
            raise ValueError(
                f"max_daily_loss must be positive, got {max_daily_loss}"
            )
        self._balances = balances
        self._asset = asset
        self._max_daily_loss = max_daily_loss

    @property
    def max_daily_loss(self) -> float:
        return self._max_daily_loss

    async def check(self, start_balance: float) -> RiskAssessment:
        """Query the balance and compute the loss since *start_balance*.

        Errors from the balance query propagate to the caller.
        """
        balance = await self._balances.available_balance(self._asset)
        assessment = RiskAssessment(
            current_balance=balance,
            daily_loss=start_balance - balance,
            limit=self._max_daily_loss,
        )
        if assessment.breached:
            logger.error(
                "Daily loss %.2f %s reached limit %.2f",
                assessment.daily_loss, self._asset, self._max_daily_loss,
            )
        return assessment
