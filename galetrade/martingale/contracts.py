"""Contract lifecycle — open through the order gateway, settle at expiry.

Stateless apart from its collaborators; the state machine owns the
contracts this manager produces.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from galetrade.broker.base import OrderGateway, PriceSnapshot
from galetrade.errors import OrderPlacementError, PriceUnavailableError
from galetrade.martingale.models import Contract, ContractStatus
from galetrade.strategy.models import Direction, Signal

logger = logging.getLogger("galetrade.contracts")

WIN_PAYOUT_RATIO = 0.85


def is_winning(direction: Direction, entry_price: float, final_price: float) -> bool:
    """Long wins above entry, short wins below.  Unchanged price loses."""
    if direction is Direction.LONG:
        return final_price > entry_price
    return final_price < entry_price


class ContractLifecycleManager:
    """Opens and settles time-boxed contracts for one instrument.

    Args:
        symbol: Instrument traded.
        gateway: Order gateway used to open positions.
        prices: Price snapshot used for entry and settlement prices.
        duration_seconds: Contract lifetime.
    """

    def __init__(
        self,
        symbol: str,
        gateway: OrderGateway,
        prices: PriceSnapshot,
        duration_seconds: float,
    ) -> None:
        self._symbol = symbol
        self._gateway = gateway
        self._prices = prices
        self._duration = timedelta(seconds=duration_seconds)

    async def open_contract(
        self,
        signal: Signal,
        stake: float,
        attempt: int,
        utc_now: Optional[datetime] = None,
    ) -> Contract:
        """Place the order and return a PENDING contract.

        Raises:
            PriceUnavailableError: No entry price is available.
            OrderPlacementError: The gateway rejected or failed the order.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)

        entry_price = await self._prices.latest_price(self._symbol)
        if entry_price is None:
            raise PriceUnavailableError(f"No entry price for {self._symbol}")

        try:
            fill = await self._gateway.open_position(
                self._symbol, signal.direction, stake, entry_price,
            )
        except Exception as exc:
            raise OrderPlacementError(
                f"Failed to open {signal.direction.value} {self._symbol} "
                f"for {stake:.2f}: {exc}",
                cause=exc,
            ) from exc

        contract = Contract(
            id=uuid.uuid4().hex,
            symbol=self._symbol,
            direction=signal.direction,
            entry_price=entry_price,
            stake=stake,
            quantity=fill.quantity,
            order_id=fill.order_id,
            created_at=utc_now,
            expires_at=utc_now + self._duration,
            attempt=attempt,
        )
        logger.info(
            "Opened %s %s attempt %d: stake=%.2f entry=%s strength=%.0f",
            contract.direction.value, self._symbol, attempt, stake,
            entry_price, signal.strength,
        )
        return contract

    async def settle(
        self,
        contract: Contract,
        utc_now: Optional[datetime] = None,
    ) -> Optional[Contract]:
        """Resolve *contract* if it has expired.

        Returns ``None`` while ``utc_now < expires_at``; otherwise the same
        contract with ``final_price``, ``status`` and ``profit`` set.

        Raises:
            PriceUnavailableError: Expired but no price to settle against.
                The contract is left untouched and PENDING.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)

        if not contract.is_pending or utc_now < contract.expires_at:
            return None

        final_price = await self._prices.latest_price(self._symbol)
        if final_price is None:
            raise PriceUnavailableError(
                f"No settlement price for contract {contract.id}"
            )

        if is_winning(contract.direction, contract.entry_price, final_price):
            contract.status = ContractStatus.WIN
            contract.profit = contract.stake * WIN_PAYOUT_RATIO
        else:
            contract.status = ContractStatus.LOSS
            contract.profit = -contract.stake
        contract.final_price = final_price
        return contract
