"""GaleTrade — engine supervisor.

Owns the three scheduled activities of a session and their lifecycle:

- the stream consumer (``PriceFeed``), which only writes price history;
- the evaluation ticker (default 5 s), which runs the state machine;
- the settlement ticker (default 1 s), which settles expired contracts.

Both tickers go through the state machine's lock, so shared session state
has a single writer at any moment.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Protocol

from galetrade.activity import ActivityLog
from galetrade.broker.base import BalanceSource, OrderGateway, PreflightValidator, PriceStream
from galetrade.config import MartingaleConfig
from galetrade.errors import RiskBreachError, ValidationError
from galetrade.feed.price_feed import DEFAULT_CAPACITY, RECONNECT_DELAY_SECONDS, PriceFeed, PriceHistory
from galetrade.martingale.contracts import ContractLifecycleManager
from galetrade.martingale.models import EngineState, Stats
from galetrade.martingale.state_machine import MartingaleStateMachine
from galetrade.risk.daily_loss import RiskGovernor
from galetrade.scheduling import Ticker
from galetrade.strategy.signals import SignalGenerator

logger = logging.getLogger("galetrade")


class PriceHistorySource(Protocol):
    async def fetch_recent_prices(self, symbol: str, limit: int = 50) -> list[float]:
        ...


class MartingaleEngine:
    """Runs one martingale trading session at a time.

    Args:
        config: Initial trading parameters.
        stream: Live price stream.
        gateway: Order gateway for opening contracts.
        balances: Balance query.
        validator: Preflight checks run by ``start()``.
        activity: Event log (a log-only ``ActivityLog`` when omitted).
        quote_asset: Asset stakes and balances are measured in.
        seed_source: Optional source of recent prices used to pre-fill
                     history at start.
        evaluation_interval: Seconds between evaluation ticks.
        settlement_interval: Seconds between settlement ticks.
    """

    def __init__(
        self,
        config: MartingaleConfig,
        stream: PriceStream,
        gateway: OrderGateway,
        balances: BalanceSource,
        validator: PreflightValidator,
        activity: Optional[ActivityLog] = None,
        quote_asset: str = "USDT",
        seed_source: Optional[PriceHistorySource] = None,
        evaluation_interval: float = 5.0,
        settlement_interval: float = 1.0,
        signal_rate_limit: float = 10.0,
        history_capacity: int = DEFAULT_CAPACITY,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._config = config
        self._stream = stream
        self._gateway = gateway
        self._balances = balances
        self._validator = validator
        self._activity = activity if activity is not None else ActivityLog()
        self._quote_asset = quote_asset
        self._seed_source = seed_source
        self._evaluation_interval = evaluation_interval
        self._settlement_interval = settlement_interval
        self._signal_rate_limit = signal_rate_limit
        self._history_capacity = history_capacity
        self._reconnect_delay = reconnect_delay

        self._running = False
        self._starting = False
        self._lifecycle = asyncio.Lock()
        self._feed: Optional[PriceFeed] = None
        self._machine: Optional[MartingaleStateMachine] = None
        self._evaluation: Optional[Ticker] = None
        self._settlement: Optional[Ticker] = None
        self._started_at: Optional[datetime] = None
        self._last_evaluation: Optional[dict] = None

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def machine(self) -> Optional[MartingaleStateMachine]:
        return self._machine

    @property
    def feed(self) -> Optional[PriceFeed]:
        return self._feed

    def get_stats(self) -> Stats:
        """Copy of the current (or last) session's stats."""
        if self._machine is None:
            return Stats(daily_loss_limit=self._config.max_daily_loss)
        return replace(self._machine.stats)

    def get_config(self) -> MartingaleConfig:
        return self._config

    def update_config(self, **changes) -> MartingaleConfig:
        """Merge *changes* into the config.  Applies from the next ``start()``."""
        self._config = self._config.merged(**changes)
        self._activity.emit("CONFIG_UPDATED", {"changes": changes})
        return self._config

    def get_state(self) -> dict:
        """Snapshot of everything a status page needs."""
        machine = self._machine
        state = EngineState.IDLE
        contract = cycle = signal = None
        remaining = 0.0
        completed: list[dict] = []
        if machine is not None:
            state = machine.state
            contract = machine.current_contract.to_dict() if machine.current_contract else None
            cycle = machine.current_cycle.to_dict() if machine.current_cycle else None
            signal = machine.last_signal.to_dict() if machine.last_signal else None
            remaining = machine.remaining_cooldown()
            completed = [c.to_dict() for c in machine.completed_cycles]
        return {
            "running": self._running,
            "state": state.value,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "config": self._config.to_dict(),
            "stats": self.get_stats().to_dict(),
            "current_contract": contract,
            "current_cycle": cycle,
            "last_signal": signal,
            "last_evaluation": self._last_evaluation,
            "remaining_cooldown_seconds": remaining,
            "current_price": self._feed.history.latest() if self._feed else None,
            "completed_cycles": completed,
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Validate preconditions and launch a fresh session.

        Raises:
            ValidationError: Already running, or a preflight check failed.
                Stats of the previous session are left untouched.
        """
        if self._running or self._starting:
            raise ValidationError(["engine is already running"])

        self._starting = True
        try:
            async with self._lifecycle:
                await self._launch()
        finally:
            self._starting = False

    async def _launch(self) -> None:
        logger.info("Starting martingale engine for %s", self._config.symbol)
        result = await self._validator.validate_all()
        if not result.ok:
            self._activity.emit("VALIDATION_ERROR", {
                "errors": result.errors,
                "details": result.details,
            }, level="error")
            raise ValidationError(result.errors)

        config = self._config
        start_balance = result.balance
        if start_balance is None:
            start_balance = await self._balances.available_balance(self._quote_asset)

        feed = PriceFeed(
            config.symbol,
            self._stream,
            PriceHistory(self._history_capacity),
            reconnect_delay=self._reconnect_delay,
        )
        await self._seed_history(feed)

        contracts = ContractLifecycleManager(
            config.symbol, self._gateway, feed, config.contract_duration_seconds,
        )
        self._machine = MartingaleStateMachine(
            config=config,
            contracts=contracts,
            signals=SignalGenerator(self._signal_rate_limit),
            risk=RiskGovernor(self._balances, self._quote_asset, config.max_daily_loss),
            balances=self._balances,
            history=feed.history,
            activity=self._activity,
            quote_asset=self._quote_asset,
            start_balance=start_balance,
        )
        self._feed = feed
        self._evaluation = Ticker("evaluation", self._evaluation_interval, self._on_evaluation_tick)
        self._settlement = Ticker("settlement", self._settlement_interval, self._on_settlement_tick)
        self._started_at = datetime.now(timezone.utc)
        self._last_evaluation = None
        self._running = True

        feed.connect()
        self._evaluation.start()
        self._settlement.start()

        self._activity.emit("BOT_STARTED", {
            "symbol": config.symbol,
            "start_balance": start_balance,
            "config": config.to_dict(),
            "validation": result.details,
        }, level="success")

    async def stop(self) -> None:
        """Halt all schedules and the stream.  Idempotent.

        When this returns no tick handler will run again.
        """
        async with self._lifecycle:
            if not self._running:
                return
            logger.info("Stopping martingale engine")
            await self._halt()
            machine = self._machine
            self._activity.emit("BOT_STOPPED", {
                "final_stats": self.get_stats().to_dict(),
                "pending_contract": (
                    machine.current_contract.to_dict()
                    if machine and machine.current_contract else None
                ),
            })

    async def _halt(self) -> None:
        self._running = False
        if self._machine is not None:
            self._machine.mark_stopped()
        for ticker in (self._settlement, self._evaluation):
            if ticker is not None:
                await ticker.stop()
        if self._feed is not None:
            await self._feed.stop()

    async def _seed_history(self, feed: PriceFeed) -> None:
        if self._seed_source is None:
            return
        try:
            prices = await self._seed_source.fetch_recent_prices(
                feed.symbol, limit=self._history_capacity,
            )
            count = feed.seed(prices)
            self._activity.emit("PRICE_HISTORY_INITIALIZED", {
                "data_points": count,
                "current_price": feed.history.latest(),
            })
        except Exception as exc:
            # Not fatal: signals stay weak until the stream fills the history
            self._activity.emit("PRICE_HISTORY_ERROR", {
                "error": str(exc),
                "fatal": False,
                "data_points": len(feed.history),
            }, level="warn")

    # ── Tick handlers ────────────────────────────────────────────────────

    async def _on_evaluation_tick(self) -> dict:
        machine = self._machine
        if machine is None or not self._running:
            return {"action": "skipped", "reason": "not_running"}
        try:
            result = await machine.evaluate()
        except RiskBreachError as exc:
            logger.error("Emergency stop: %s", exc)
            await self._halt()
            self._activity.emit("EMERGENCY_STOP", {
                "reason": exc.kind.value,
                "daily_loss": exc.daily_loss,
                "limit": exc.limit,
                "final_stats": self.get_stats().to_dict(),
            }, level="error")
            result = {"action": "halted", "reason": "risk_breach"}
        except Exception as exc:
            logger.error("Evaluation error: %s", exc)
            self._activity.emit("ERROR", {"error": str(exc)}, level="error")
            result = {"action": "error", "reason": str(exc)}
        self._last_evaluation = result
        if result.get("action") != "skipped":
            logger.info("Evaluation: %s", result)
        return result

    async def _on_settlement_tick(self) -> Optional[dict]:
        machine = self._machine
        if machine is None or machine.current_contract is None:
            return None
        return await machine.settle()
