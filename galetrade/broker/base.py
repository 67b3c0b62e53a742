"""Collaborator protocols the engine depends on.

The engine only talks to these capabilities; the Binance adapters, the
websocket stream, and the test doubles all satisfy them by duck typing.
"""

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

from galetrade.broker.models import OrderFill, PreflightResult, PriceTick
from galetrade.strategy.models import Direction


@runtime_checkable
class PriceStream(Protocol):
    """Live price subscription for one instrument."""

    def subscribe(self, symbol: str) -> AsyncIterator[PriceTick]:
        """Yield ticks until the connection drops.

        Disconnects and transport errors surface as ``TransientFeedError``.
        """
        ...


@runtime_checkable
class PriceSnapshot(Protocol):
    async def latest_price(self, symbol: str) -> Optional[float]:
        """Return the latest price, or ``None`` when unavailable."""
        ...


@runtime_checkable
class BalanceSource(Protocol):
    async def available_balance(self, asset: str) -> float:
        """Return the free amount of *asset*."""
        ...


@runtime_checkable
class OrderGateway(Protocol):
    async def open_position(
        self,
        symbol: str,
        direction: Direction,
        stake: float,
        price: float,
    ) -> OrderFill:
        """Open a position worth *stake* quote units at roughly *price*."""
        ...


@runtime_checkable
class PreflightValidator(Protocol):
    async def validate_all(self) -> PreflightResult:
        """Check connectivity, credentials, and minimum balance."""
        ...


@runtime_checkable
class ActivitySink(Protocol):
    def append(
        self,
        event_type: str,
        level: str,
        payload: dict,
        timestamp: datetime,
    ) -> None:
        """Record one activity event."""
        ...
