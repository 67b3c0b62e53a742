"""Broker data models — typed representations of exchange API objects."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class PriceTick:
    """A single inbound price update from the stream."""

    price: float
    volume: float
    timestamp: datetime


@dataclass(frozen=True)
class AccountBalance:
    """Free and locked amounts of one asset."""

    asset: str
    free: float
    locked: float


@dataclass(frozen=True)
class OrderFill:
    """Result of opening a position."""

    order_id: str
    quantity: float
    price: float


@dataclass(frozen=True)
class PreflightResult:
    """Outcome of the pre-start checks."""

    ok: bool
    errors: list[str] = field(default_factory=list)
    balance: Optional[float] = None
    details: dict = field(default_factory=dict)
