"""Tests for galetrade.martingale.state_machine — the martingale decision core.

Time is driven explicitly through ``utc_now`` so cooldowns, expiries and
the signal rate limit are deterministic.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from galetrade.activity import ActivityLog, MemoryActivitySink
from galetrade.broker.models import OrderFill
from galetrade.config import MartingaleConfig
from galetrade.errors import RiskBreachError
from galetrade.feed.price_feed import PriceHistory
from galetrade.martingale.contracts import ContractLifecycleManager
from galetrade.martingale.models import CycleStatus, EngineState
from galetrade.martingale.state_machine import MartingaleStateMachine
from galetrade.risk.daily_loss import RiskGovernor
from galetrade.strategy.signals import SignalGenerator

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
DURATION = 1800


# ── Fakes ────────────────────────────────────────────────────────────────


class FakePrices:
    def __init__(self, price=2.0) -> None:
        self.price = price

    async def latest_price(self, symbol=None):
        return self.price


class FakeGateway:
    def __init__(self) -> None:
        self.fail: Exception | None = None
        self.orders: list[float] = []

    async def open_position(self, symbol, direction, stake, price):
        await asyncio.sleep(0)
        if self.fail is not None:
            raise self.fail
        self.orders.append(stake)
        return OrderFill(order_id=str(len(self.orders)), quantity=stake / price, price=price)


class FakeBalances:
    def __init__(self, balance: float = 100.0) -> None:
        self.balance = balance

    async def available_balance(self, asset):
        return self.balance


class Harness:
    """A state machine wired to controllable fakes."""

    def __init__(self, start_balance: float = 100.0, history=None, **config_overrides) -> None:
        self.config = MartingaleConfig(contract_duration_seconds=DURATION).merged(**config_overrides)
        self.prices = FakePrices()
        self.gateway = FakeGateway()
        self.balances = FakeBalances(start_balance)
        self.sink = MemoryActivitySink()
        self.history = PriceHistory()
        for price in history if history is not None else [100.0 - i for i in range(15)]:
            self.history.append(price)
        self.machine = MartingaleStateMachine(
            config=self.config,
            contracts=ContractLifecycleManager(
                self.config.symbol, self.gateway, self.prices, DURATION,
            ),
            signals=SignalGenerator(rate_limit_seconds=10.0),
            risk=RiskGovernor(self.balances, "USDT", self.config.max_daily_loss),
            balances=self.balances,
            history=self.history,
            activity=ActivityLog(self.sink),
            start_balance=start_balance,
        )

    async def open_at(self, when: datetime, entry: float = 2.0) -> dict:
        self.prices.price = entry
        return await self.machine.evaluate(utc_now=when)

    async def settle_at(self, when: datetime, final: float) -> dict:
        self.prices.price = final
        return await self.machine.settle(utc_now=when)

    async def lose_attempt(self, when: datetime) -> datetime:
        """Open a long at 2.0 and settle it at 1.9; returns the settle time."""
        opened = await self.open_at(when)
        assert opened["action"] == "contract_opened", opened
        settled_at = when + timedelta(seconds=DURATION)
        result = await self.settle_at(settled_at, 1.9)
        assert result["status"] == "LOSS"
        return settled_at

    async def win_attempt(self, when: datetime) -> datetime:
        opened = await self.open_at(when)
        assert opened["action"] == "contract_opened", opened
        settled_at = when + timedelta(seconds=DURATION)
        result = await self.settle_at(settled_at, 2.1)
        assert result["status"] == "WIN"
        return settled_at


# ── Escalation ───────────────────────────────────────────────────────────


class TestEscalation:
    @pytest.mark.asyncio
    async def test_stakes_escalate_until_cycle_closes(self):
        h = Harness()
        when = T0
        for _ in range(3):
            when = await h.lose_attempt(when) + timedelta(seconds=1)
        assert h.gateway.orders == pytest.approx([5.0, 7.5, 11.25])

        stats = h.machine.stats
        assert stats.loss_cycles == 1
        assert stats.total_cycles == 1
        assert stats.losing_contracts == 3
        assert stats.current_attempt == 0
        assert stats.current_cycle_stake == 0.0
        assert stats.total_profit == pytest.approx(-23.75)
        assert stats.daily_profit == pytest.approx(-23.75)

    @pytest.mark.asyncio
    async def test_defeat_cooldown_after_max_attempts(self):
        h = Harness()
        when = T0
        for _ in range(3):
            when = await h.lose_attempt(when)
        assert h.machine.stats.in_cooldown
        assert h.machine.stats.cooldown_until == when + timedelta(seconds=600)
        assert h.machine.state is EngineState.COOLDOWN

        result = await h.open_at(when + timedelta(seconds=599))
        assert result == {"action": "skipped", "reason": "cooldown"}
        assert len(h.gateway.orders) == 3

        cycle = h.machine.completed_cycles[-1]
        assert cycle.status is CycleStatus.LOSS
        assert cycle.attempts == 3
        assert cycle.final_profit == pytest.approx(-23.75)
        assert len(h.sink.of_type("CYCLE_LOSS")) == 1

    @pytest.mark.asyncio
    async def test_no_cooldown_between_losing_attempts(self):
        h = Harness()
        when = await h.lose_attempt(T0)
        assert not h.machine.stats.in_cooldown
        assert h.machine.state is EngineState.CYCLE_ACTIVE
        result = await h.open_at(when + timedelta(seconds=1))
        assert result["action"] == "contract_opened"
        assert result["attempt"] == 2
        assert result["stake"] == pytest.approx(7.5)

    @pytest.mark.asyncio
    async def test_loss_streak(self):
        h = Harness()
        when = T0
        for _ in range(3):
            when = await h.lose_attempt(when)
        assert h.machine.stats.current_streak == -3
        assert h.machine.stats.max_loss_streak == 3

    @pytest.mark.asyncio
    async def test_risk_cap_blocks_escalation(self):
        # Budget 10 × 50% = 5.0 is used up by the first stake
        h = Harness(capital_total=10.0, max_risk_per_cycle=50.0)
        when = await h.lose_attempt(T0)
        result = await h.open_at(when + timedelta(seconds=1))
        assert result == {"action": "skipped", "reason": "risk_cap"}
        assert h.gateway.orders == [5.0]


# ── Wins ─────────────────────────────────────────────────────────────────


class TestWin:
    @pytest.mark.asyncio
    async def test_win_on_second_attempt(self):
        h = Harness()
        when = await h.lose_attempt(T0) + timedelta(seconds=1)
        settled_at = await h.win_attempt(when)

        stats = h.machine.stats
        assert h.gateway.orders == pytest.approx([5.0, 7.5])
        assert stats.current_attempt == 0
        assert stats.win_cycles == 1
        assert stats.total_cycles == 1
        assert stats.daily_profit == pytest.approx(-5.0 + 6.375)
        assert stats.cooldown_until == settled_at + timedelta(seconds=120)
        assert stats.current_streak == 1

        cycle = h.machine.completed_cycles[-1]
        assert cycle.status is CycleStatus.WIN
        assert cycle.total_stake == pytest.approx(12.5)
        assert cycle.contracts[-1].profit == pytest.approx(6.375)
        assert h.machine.current_cycle is None

    @pytest.mark.asyncio
    async def test_victory_cooldown_expires(self):
        h = Harness()
        settled_at = await h.win_attempt(T0)
        assert (await h.open_at(settled_at + timedelta(seconds=119)))["reason"] == "cooldown"

        result = await h.open_at(settled_at + timedelta(seconds=120))
        assert result["action"] == "contract_opened"
        assert result["attempt"] == 1
        assert result["stake"] == pytest.approx(5.0)
        assert not h.machine.stats.in_cooldown
        assert len(h.sink.of_type("COOLDOWN_FINISHED")) == 1

    @pytest.mark.asyncio
    async def test_win_streak_resets_loss_streak(self):
        h = Harness()
        when = await h.lose_attempt(T0)
        await h.win_attempt(when + timedelta(seconds=1))
        assert h.machine.stats.current_streak == 1
        assert h.machine.stats.max_loss_streak == 1
        assert h.machine.stats.max_win_streak == 1


# ── Daily-loss breaker ───────────────────────────────────────────────────


class TestEmergencyStop:
    @pytest.mark.asyncio
    async def test_exact_limit_stops_trading(self):
        h = Harness()
        h.balances.balance = 80.0  # loss == max_daily_loss
        with pytest.raises(RiskBreachError) as exc_info:
            await h.open_at(T0)
        assert exc_info.value.daily_loss == pytest.approx(20.0)

        stats = h.machine.stats
        assert stats.emergency_stopped
        assert not stats.running
        assert h.machine.state is EngineState.EMERGENCY_STOPPED
        assert len(h.sink.of_type("DAILY_STOP_LOSS")) == 1

        # Strong signal and a recovered balance change nothing
        h.balances.balance = 100.0
        result = await h.open_at(T0 + timedelta(minutes=5))
        assert result == {"action": "skipped", "reason": "emergency_stopped"}
        assert h.gateway.orders == []

    @pytest.mark.asyncio
    async def test_below_limit_keeps_trading(self):
        h = Harness()
        h.balances.balance = 80.01
        result = await h.open_at(T0)
        assert result["action"] == "contract_opened"


# ── Guards ───────────────────────────────────────────────────────────────


class TestGuards:
    @pytest.mark.asyncio
    async def test_single_pending_contract_under_concurrency(self):
        h = Harness()
        results = await asyncio.gather(*(h.machine.evaluate(utc_now=T0) for _ in range(5)))
        opened = [r for r in results if r["action"] == "contract_opened"]
        assert len(opened) == 1
        assert len(h.gateway.orders) == 1
        assert h.machine.stats.current_attempt == 1
        assert all(r["reason"] == "active_contract" for r in results if r not in opened)

    @pytest.mark.asyncio
    async def test_weak_signal_skips(self):
        h = Harness(history=[10.0] * 15)
        result = await h.open_at(T0)
        assert result == {"action": "skipped", "reason": "weak_signal", "strength": 30.0}
        assert h.machine.last_signal.strength == 30.0
        assert h.gateway.orders == []

    @pytest.mark.asyncio
    async def test_insufficient_balance_skips(self):
        h = Harness(start_balance=4.0)
        result = await h.open_at(T0)
        assert result["reason"] == "insufficient_balance"
        assert h.gateway.orders == []
        assert h.machine.current_cycle is None

    @pytest.mark.asyncio
    async def test_not_running(self):
        h = Harness()
        h.machine.mark_stopped()
        assert await h.open_at(T0) == {"action": "skipped", "reason": "not_running"}

    @pytest.mark.asyncio
    async def test_order_error_leaves_state_untouched(self):
        h = Harness()
        h.gateway.fail = RuntimeError("MIN_NOTIONAL")
        result = await h.open_at(T0)
        assert result["action"] == "error"
        assert result["reason"] == "order_placement"
        assert "MIN_NOTIONAL" in result["error"]

        stats = h.machine.stats
        assert stats.current_attempt == 0
        assert stats.current_cycle_stake == 0.0
        assert h.machine.current_contract is None
        assert h.machine.current_cycle is None
        assert len(h.sink.of_type("CONTRACT_ERROR")) == 1

    @pytest.mark.asyncio
    async def test_missing_entry_price_skips(self):
        h = Harness()
        h.prices.price = None
        result = await h.machine.evaluate(utc_now=T0)
        assert result == {"action": "skipped", "reason": "price_unavailable"}
        assert h.machine.current_cycle is None


# ── Settlement ───────────────────────────────────────────────────────────


class TestSettlement:
    @pytest.mark.asyncio
    async def test_no_contract(self):
        h = Harness()
        assert await h.machine.settle(utc_now=T0) == {"action": "skipped", "reason": "no_contract"}

    @pytest.mark.asyncio
    async def test_not_settled_before_expiry(self):
        h = Harness()
        await h.open_at(T0)
        result = await h.settle_at(T0 + timedelta(seconds=DURATION - 1), 3.0)
        assert result == {"action": "skipped", "reason": "not_expired"}
        assert h.machine.current_contract.is_pending

    @pytest.mark.asyncio
    async def test_missing_price_retries_next_tick(self):
        h = Harness()
        await h.open_at(T0)
        expired = T0 + timedelta(seconds=DURATION)
        result = await h.settle_at(expired, None)
        assert result == {"action": "skipped", "reason": "price_unavailable"}
        assert h.machine.current_contract is not None
        assert h.machine.stats.losing_contracts == 0

        result = await h.settle_at(expired + timedelta(seconds=1), 2.2)
        assert result["action"] == "contract_settled"
        assert result["status"] == "WIN"
        assert h.machine.current_contract is None

    @pytest.mark.asyncio
    async def test_settlement_emits_completed_event(self):
        h = Harness()
        await h.win_attempt(T0)
        events = h.sink.of_type("CONTRACT_COMPLETED")
        assert len(events) == 1
        assert events[0]["payload"]["contract"]["status"] == "WIN"
        assert events[0]["level"] == "success"
