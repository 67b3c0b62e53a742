"""Martingale data models — contracts, cycles, session stats, engine state."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from galetrade.strategy.models import Direction


class ContractStatus(str, Enum):
    PENDING = "PENDING"
    WIN = "WIN"
    LOSS = "LOSS"


class CycleStatus(str, Enum):
    ACTIVE = "ACTIVE"
    WIN = "WIN"
    LOSS = "LOSS"


class EngineState(str, Enum):
    IDLE = "IDLE"
    CYCLE_ACTIVE = "CYCLE_ACTIVE"
    COOLDOWN = "COOLDOWN"
    EMERGENCY_STOPPED = "EMERGENCY_STOPPED"


@dataclass
class Contract:
    """A single time-boxed directional position within a cycle."""

    id: str
    symbol: str
    direction: Direction
    entry_price: float
    stake: float
    quantity: float
    order_id: str
    created_at: datetime
    expires_at: datetime
    attempt: int  # 1-based within its cycle
    status: ContractStatus = ContractStatus.PENDING
    final_price: Optional[float] = None
    profit: Optional[float] = None

    @property
    def is_pending(self) -> bool:
        return self.status is ContractStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "entry_price": self.entry_price,
            "stake": self.stake,
            "quantity": self.quantity,
            "order_id": self.order_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "attempt": self.attempt,
            "status": self.status.value,
            "final_price": self.final_price,
            "profit": self.profit,
        }


@dataclass
class Cycle:
    """One martingale sequence, from first contract to resolution."""

    id: str
    symbol: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    total_stake: float = 0.0
    final_profit: float = 0.0
    status: CycleStatus = CycleStatus.ACTIVE
    contracts: list[Contract] = field(default_factory=list)

    @property
    def attempts(self) -> int:
        return len(self.contracts)

    def add_contract(self, contract: Contract) -> None:
        self.contracts.append(contract)
        self.total_stake += contract.stake

    def close(self, status: CycleStatus, ended_at: datetime) -> None:
        self.status = status
        self.ended_at = ended_at
        self.final_profit = sum(c.profit or 0.0 for c in self.contracts)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "total_stake": self.total_stake,
            "final_profit": self.final_profit,
            "attempts": self.attempts,
            "status": self.status.value,
            "contracts": [c.to_dict() for c in self.contracts],
        }


@dataclass
class Stats:
    """Session statistics.  Mutated only by the state machine."""

    total_cycles: int = 0
    win_cycles: int = 0
    loss_cycles: int = 0
    winning_contracts: int = 0
    losing_contracts: int = 0
    total_profit: float = 0.0
    daily_profit: float = 0.0
    current_streak: int = 0  # +n wins in a row, -n losses in a row
    max_win_streak: int = 0
    max_loss_streak: int = 0
    current_attempt: int = 0
    current_cycle_stake: float = 0.0
    in_cooldown: bool = False
    cooldown_until: Optional[datetime] = None
    running: bool = False
    emergency_stopped: bool = False
    start_balance: float = 0.0
    daily_loss_limit: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.cooldown_until is not None:
            data["cooldown_until"] = self.cooldown_until.isoformat()
        return data
