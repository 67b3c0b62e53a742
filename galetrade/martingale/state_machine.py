"""Martingale state machine — stake escalation, cooldowns, cycle bookkeeping.

Owns the session ``Stats``, the pending ``Contract`` and the active
``Cycle``.  ``evaluate()`` and ``settle()`` are the only mutators and both
run under one ``asyncio.Lock``, so evaluation and settlement ticks never
interleave their writes.

States::

    IDLE ──open──▶ CYCLE_ACTIVE ──win──▶ COOLDOWN(victory) ──▶ IDLE
                        │  ▲
                   loss │  │ next evaluation escalates the stake
                        ▼  │
                   (attempt < max)
                        │
                   loss at max attempts ──▶ COOLDOWN(defeat) ──▶ IDLE

    any ──daily loss limit──▶ EMERGENCY_STOPPED (terminal for the session)
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from galetrade.activity import ActivityLog
from galetrade.broker.base import BalanceSource
from galetrade.config import MartingaleConfig
from galetrade.errors import OrderPlacementError, PriceUnavailableError, RiskBreachError
from galetrade.feed.price_feed import PriceHistory
from galetrade.martingale.contracts import ContractLifecycleManager
from galetrade.martingale.models import (
    Contract,
    ContractStatus,
    Cycle,
    CycleStatus,
    EngineState,
    Stats,
)
from galetrade.risk.daily_loss import RiskGovernor
from galetrade.risk.position_sizer import calculate_next_stake
from galetrade.strategy.models import Signal
from galetrade.strategy.signals import SignalGenerator

logger = logging.getLogger("galetrade.martingale")

_MAX_COMPLETED_CYCLES = 50


class MartingaleStateMachine:
    """Decision core for one trading session.

    Args:
        config: Session parameters (snapshotted; never mutated here).
        contracts: Opens and settles contracts.
        signals: Signal generator read on every evaluation.
        risk: Daily-loss circuit breaker.
        balances: Balance query used before opening a contract.
        history: Price history the signal generator reads.
        activity: Event log.
        quote_asset: Asset stakes are paid in.
        start_balance: Balance snapshot taken when the session started.
    """

    def __init__(
        self,
        config: MartingaleConfig,
        contracts: ContractLifecycleManager,
        signals: SignalGenerator,
        risk: RiskGovernor,
        balances: BalanceSource,
        history: PriceHistory,
        activity: ActivityLog,
        quote_asset: str = "USDT",
        start_balance: float = 0.0,
    ) -> None:
        self._config = config
        self._contracts = contracts
        self._signals = signals
        self._risk = risk
        self._balances = balances
        self._history = history
        self._activity = activity
        self._quote_asset = quote_asset
        self._lock = asyncio.Lock()

        self._stats = Stats(
            running=True,
            start_balance=start_balance,
            daily_loss_limit=config.max_daily_loss,
        )
        self._contract: Optional[Contract] = None
        self._cycle: Optional[Cycle] = None
        self._last_signal: Optional[Signal] = None
        self._completed_cycles: list[Cycle] = []

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def config(self) -> MartingaleConfig:
        return self._config

    @property
    def stats(self) -> Stats:
        return self._stats

    @property
    def current_contract(self) -> Optional[Contract]:
        return self._contract

    @property
    def current_cycle(self) -> Optional[Cycle]:
        return self._cycle

    @property
    def last_signal(self) -> Optional[Signal]:
        return self._last_signal

    @property
    def completed_cycles(self) -> list[Cycle]:
        return list(self._completed_cycles)

    @property
    def state(self) -> EngineState:
        if self._stats.emergency_stopped:
            return EngineState.EMERGENCY_STOPPED
        if self._cycle is not None:
            return EngineState.CYCLE_ACTIVE
        if self._stats.in_cooldown:
            return EngineState.COOLDOWN
        return EngineState.IDLE

    def remaining_cooldown(self, utc_now: Optional[datetime] = None) -> float:
        """Seconds of cooldown left (0.0 when not cooling down)."""
        if not self._stats.in_cooldown or self._stats.cooldown_until is None:
            return 0.0
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)
        return max(0.0, (self._stats.cooldown_until - utc_now).total_seconds())

    def next_stake(self) -> float:
        """Stake for the next attempt of the current (or a new) cycle."""
        return calculate_next_stake(
            initial_stake=self._config.initial_stake,
            gale_factor=self._config.gale_factor,
            attempt=self._stats.current_attempt,
            cycle_stake=self._stats.current_cycle_stake,
            capital_total=self._config.capital_total,
            max_risk_pct=self._config.max_risk_per_cycle,
        )

    def mark_stopped(self) -> None:
        """Flag the session as no longer running."""
        self._stats.running = False

    # ── Evaluation tick ──────────────────────────────────────────────────

    async def evaluate(self, utc_now: Optional[datetime] = None) -> dict:
        """Run one evaluation and possibly open a contract.

        Returns a dict describing the action taken:

        - ``{"action": "skipped", "reason": "..."}``
        - ``{"action": "error", "reason": "order_placement", ...}``
        - ``{"action": "contract_opened", ...}``

        Raises:
            RiskBreachError: The daily-loss limit was reached.  The session
                is marked emergency-stopped before raising.
        """
        async with self._lock:
            if utc_now is None:
                utc_now = datetime.now(timezone.utc)

            if self._stats.emergency_stopped:
                return {"action": "skipped", "reason": "emergency_stopped"}
            if not self._stats.running:
                return {"action": "skipped", "reason": "not_running"}

            # 1 ── Circuit breaker
            assessment = await self._risk.check(self._stats.start_balance)
            if assessment.breached:
                self._stats.emergency_stopped = True
                self._stats.running = False
                self._activity.emit("DAILY_STOP_LOSS", {
                    "daily_loss": assessment.daily_loss,
                    "limit": assessment.limit,
                    "start_balance": self._stats.start_balance,
                    "current_balance": assessment.current_balance,
                }, level="error", timestamp=utc_now)
                raise RiskBreachError(assessment.daily_loss, assessment.limit)

            # 2 ── Cooldown
            if self._check_cooldown(utc_now):
                return {"action": "skipped", "reason": "cooldown"}

            # 3 ── Active-contract guard (settlement owns it)
            if self._contract is not None:
                return {"action": "skipped", "reason": "active_contract"}

            # 4 ── Signal
            signal = self._signals.generate(self._history.prices(), now=utc_now)
            self._last_signal = signal
            if signal.strength < self._config.min_probability:
                return {
                    "action": "skipped",
                    "reason": "weak_signal",
                    "strength": signal.strength,
                }

            # 5 ── Stake
            stake = self.next_stake()
            if stake <= 0:
                logger.warning(
                    "Cycle risk budget exhausted (cycle stake %.2f)",
                    self._stats.current_cycle_stake,
                )
                return {"action": "skipped", "reason": "risk_cap"}

            # 6 ── Balance
            balance = await self._balances.available_balance(self._quote_asset)
            if balance < stake:
                logger.warning(
                    "Insufficient balance for next contract: %.2f < %.2f %s",
                    balance, stake, self._quote_asset,
                )
                return {
                    "action": "skipped",
                    "reason": "insufficient_balance",
                    "balance": balance,
                    "stake": stake,
                }

            # 7 ── Open
            attempt = self._stats.current_attempt + 1
            try:
                contract = await self._contracts.open_contract(
                    signal, stake, attempt, utc_now=utc_now,
                )
            except PriceUnavailableError as exc:
                logger.error("%s", exc)
                return {"action": "skipped", "reason": "price_unavailable"}
            except OrderPlacementError as exc:
                self._activity.emit("CONTRACT_ERROR", {
                    "error": exc.message,
                    "signal": signal.to_dict(),
                    "stake": stake,
                    "attempt": attempt,
                }, level="error", timestamp=utc_now)
                return {
                    "action": "error",
                    "reason": "order_placement",
                    "error": exc.message,
                }

            self._register_contract(contract, utc_now)
            self._activity.emit(
                "CONTRACT_CREATED", {"contract": contract.to_dict()},
                timestamp=utc_now,
            )
            return {
                "action": "contract_opened",
                "contract_id": contract.id,
                "direction": contract.direction.value,
                "stake": stake,
                "attempt": attempt,
                "entry": contract.entry_price,
                "strength": signal.strength,
            }

    def _register_contract(self, contract: Contract, utc_now: datetime) -> None:
        if self._cycle is None:
            self._cycle = Cycle(
                id=uuid.uuid4().hex,
                symbol=self._config.symbol,
                started_at=utc_now,
            )
        self._cycle.add_contract(contract)
        self._contract = contract
        self._stats.current_attempt += 1
        self._stats.current_cycle_stake += contract.stake

    # ── Settlement tick ──────────────────────────────────────────────────

    async def settle(self, utc_now: Optional[datetime] = None) -> dict:
        """Settle the pending contract if it has expired.

        Returns a dict describing the action taken:

        - ``{"action": "skipped", "reason": "no_contract" | "not_expired" |
          "price_unavailable"}``
        - ``{"action": "contract_settled", "status": "WIN" | "LOSS", ...}``
        """
        async with self._lock:
            if utc_now is None:
                utc_now = datetime.now(timezone.utc)

            contract = self._contract
            if contract is None:
                return {"action": "skipped", "reason": "no_contract"}

            try:
                settled = await self._contracts.settle(contract, utc_now=utc_now)
            except PriceUnavailableError as exc:
                logger.warning("%s; retrying next tick", exc)
                return {"action": "skipped", "reason": "price_unavailable"}

            if settled is None:
                return {"action": "skipped", "reason": "not_expired"}

            self._contract = None
            if settled.status is ContractStatus.WIN:
                self._apply_win(settled, utc_now)
            else:
                self._apply_loss(settled, utc_now)

            self._activity.emit(
                "CONTRACT_COMPLETED", {"contract": settled.to_dict()},
                level="success" if settled.status is ContractStatus.WIN else "info",
                timestamp=utc_now,
            )
            return {
                "action": "contract_settled",
                "contract_id": settled.id,
                "status": settled.status.value,
                "profit": settled.profit,
                "final_price": settled.final_price,
                "attempt": settled.attempt,
            }

    def _apply_win(self, contract: Contract, utc_now: datetime) -> None:
        stats = self._stats
        profit = contract.profit or 0.0

        stats.winning_contracts += 1
        stats.total_profit += profit
        stats.daily_profit += profit
        stats.current_streak = max(0, stats.current_streak) + 1
        stats.max_win_streak = max(stats.max_win_streak, stats.current_streak)

        cycle = self._close_cycle(CycleStatus.WIN, utc_now)
        stats.win_cycles += 1
        logger.info(
            "WIN %s attempt %d: profit %.4f | total %.4f",
            contract.symbol, contract.attempt, profit, stats.total_profit,
        )
        self._start_cooldown(self._config.victory_cooldown_seconds, utc_now)
        self._activity.emit("CYCLE_WIN", {
            "profit": profit,
            "cycle": cycle.to_dict() if cycle else None,
        }, level="success", timestamp=utc_now)

    def _apply_loss(self, contract: Contract, utc_now: datetime) -> None:
        stats = self._stats
        loss = contract.stake

        stats.losing_contracts += 1
        stats.total_profit -= loss
        stats.daily_profit -= loss
        stats.current_streak = min(0, stats.current_streak) - 1
        stats.max_loss_streak = max(stats.max_loss_streak, -stats.current_streak)

        if stats.current_attempt < self._config.max_attempts:
            # No cooldown inside a cycle: the next evaluation escalates.
            logger.info(
                "LOSS %s attempt %d/%d: -%.4f, next stake %.4f",
                contract.symbol, contract.attempt, self._config.max_attempts,
                loss, self.next_stake(),
            )
            return

        cycle_stake = stats.current_cycle_stake
        cycle = self._close_cycle(CycleStatus.LOSS, utc_now)
        stats.loss_cycles += 1
        logger.info(
            "Cycle lost after %d attempts: total loss %.4f",
            contract.attempt, cycle_stake,
        )
        self._start_cooldown(self._config.defeat_cooldown_seconds, utc_now)
        self._activity.emit("CYCLE_LOSS", {
            "total_loss": cycle_stake,
            "cycle": cycle.to_dict() if cycle else None,
        }, level="warn", timestamp=utc_now)

    def _close_cycle(self, status: CycleStatus, utc_now: datetime) -> Optional[Cycle]:
        cycle = self._cycle
        if cycle is not None:
            cycle.close(status, utc_now)
            self._completed_cycles.append(cycle)
            if len(self._completed_cycles) > _MAX_COMPLETED_CYCLES:
                del self._completed_cycles[0]
        self._stats.total_cycles += 1
        self._stats.current_attempt = 0
        self._stats.current_cycle_stake = 0.0
        self._cycle = None
        return cycle

    # ── Cooldown ─────────────────────────────────────────────────────────

    def _start_cooldown(self, seconds: float, utc_now: datetime) -> None:
        self._stats.in_cooldown = True
        self._stats.cooldown_until = utc_now + timedelta(seconds=seconds)
        logger.info("Cooldown started: %ds", round(seconds))

    def _check_cooldown(self, utc_now: datetime) -> bool:
        """``True`` while cooling down; clears the flag once expired."""
        stats = self._stats
        if not stats.in_cooldown or stats.cooldown_until is None:
            return False
        if utc_now >= stats.cooldown_until:
            stats.in_cooldown = False
            stats.cooldown_until = None
            self._activity.emit("COOLDOWN_FINISHED", {}, timestamp=utc_now)
            return False
        return True
