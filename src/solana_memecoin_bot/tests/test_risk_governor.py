from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from solana_memecoin_bot.config.settings import RiskLimitsConfig
from solana_memecoin_bot.datalake.schemas import (
    IncidentCategory,
    Order,
    OrderSide,
    OrderSource,
    OrderStatus,
    Position,
    PositionStatus,
)
from solana_memecoin_bot.datalake.storage import SQLiteStorage
from solana_memecoin_bot.monitoring.event_bus import BroadcastKind, EventBus
from solana_memecoin_bot.strategy.risk import AUTO_RESUME_AFTER, RiskGovernor, evaluate_risk_checks

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _governor(tmp_path: Path, clock: _Clock, *, bus: EventBus = None, equity: float = 10.0):
    storage = SQLiteStorage(tmp_path / "state.sqlite3")
    governor = RiskGovernor(storage, RiskLimitsConfig(), equity, bus=bus or EventBus(), clock=clock)
    return governor, storage


def _position(
    position_id: str,
    *,
    status: PositionStatus = PositionStatus.OPEN,
    pnl: float = 0.0,
    entry_amount: float = 0.02,
    updated: datetime = NOW,
) -> Position:
    return Position(
        id=position_id,
        mint=f"mint-{position_id}",
        symbol="MEME",
        entry_price=0.000001,
        current_price=0.000001,
        entry_amount_sol=entry_amount,
        tokens_bought=entry_amount / 0.000001,
        stop_loss_price=0.00000075,
        trailing_stop_pct=15.0,
        trailing_stop_price=0.00000085,
        high_water_mark=0.000001,
        time_stop_minutes=60.0,
        entry_time=updated - timedelta(minutes=5),
        last_update=updated,
        status=status,
        realized_pnl_sol=pnl,
    )


def test_pre_trade_check_allows_trade_within_limits(tmp_path: Path) -> None:
    governor, _ = _governor(tmp_path, _Clock(NOW))

    result = governor.pre_trade_check(0.02)

    assert result.allowed
    assert result.reason == "All risk checks passed"
    assert [check.name for check in result.checks] == [
        "kill_switch",
        "daily_drawdown",
        "max_exposure",
        "risk_per_trade",
        "hourly_trades",
        "daily_trades",
        "consecutive_losses",
    ]


def test_pre_trade_check_lists_every_failed_limit(tmp_path: Path) -> None:
    governor, _ = _governor(tmp_path, _Clock(NOW))

    result = governor.pre_trade_check(0.5)

    assert not result.allowed
    assert result.reason.startswith("Blocked: ")
    assert {check.name for check in result.failed_checks} == {"max_exposure", "risk_per_trade"}
    assert "max_exposure (Exposure after trade 5.00%" in result.reason


def test_drawdown_and_hourly_cap_block_without_a_halt(tmp_path: Path) -> None:
    governor, _ = _governor(tmp_path, _Clock(NOW))
    state = governor.state
    state.today_drawdown_pct = -2.5

    result = evaluate_risk_checks(state, 0.02)

    assert not state.is_halted
    assert not result.allowed
    assert [check.name for check in result.failed_checks] == ["daily_drawdown"]

    state.today_drawdown_pct = 0.0
    state.hour_trade_count = 3
    result = evaluate_risk_checks(state, 0.02)
    assert [check.name for check in result.failed_checks] == ["hourly_trades"]


def test_exposure_is_rebuilt_from_open_positions(tmp_path: Path) -> None:
    governor, storage = _governor(tmp_path, _Clock(NOW))
    storage.upsert_position(_position("a", entry_amount=0.09))
    storage.upsert_position(_position("b", status=PositionStatus.CLOSED, entry_amount=5.0))

    result = governor.pre_trade_check(0.02)
    state = governor.state

    assert state.current_exposure_sol == pytest.approx(0.09)
    assert state.open_position_count == 1
    assert [check.name for check in result.failed_checks] == ["max_exposure"]


def test_trade_caps_count_confirmed_buys(tmp_path: Path) -> None:
    governor, storage = _governor(tmp_path, _Clock(NOW))
    for index in range(3):
        storage.insert_order(
            Order(
                id=f"order-{index}",
                idempotency_key=f"paper-buy-mint{index}-decision{index}",
                mint=f"mint{index}",
                side=OrderSide.BUY,
                source=OrderSource.ENTRY,
                requested_amount_sol=0.02,
                status=OrderStatus.CONFIRMED,
                created_at=NOW - timedelta(minutes=10),
            )
        )
    storage.insert_order(
        Order(
            id="failed",
            idempotency_key="paper-buy-other-decision",
            mint="other",
            side=OrderSide.BUY,
            source=OrderSource.ENTRY,
            requested_amount_sol=0.02,
            status=OrderStatus.FAILED,
            created_at=NOW - timedelta(minutes=5),
        )
    )

    result = governor.pre_trade_check(0.02)

    assert governor.state.hour_trade_count == 3
    assert governor.state.today_trade_count == 3
    assert [check.name for check in result.failed_checks] == ["hourly_trades"]


def test_kill_switch_blocks_and_is_idempotent(tmp_path: Path) -> None:
    bus = EventBus()
    governor, storage = _governor(tmp_path, _Clock(NOW), bus=bus)

    incident = governor.activate_kill_switch("operator request")

    assert incident is not None
    assert incident.category == IncidentCategory.KILL_SWITCH
    assert governor.activate_kill_switch("again") is None
    result = governor.pre_trade_check(0.02)
    assert not result.allowed
    assert "kill_switch (Trading halted: operator request)" in result.reason

    assert governor.deactivate_kill_switch() is True
    assert governor.deactivate_kill_switch() is False
    assert governor.pre_trade_check(0.02).allowed
    assert len(storage.list_incidents()) == 2
    assert bus.flush()
    assert len(bus.history(kind=BroadcastKind.INCIDENT)) == 2


def test_buy_fill_only_books_fee_as_loss(tmp_path: Path) -> None:
    governor, _ = _governor(tmp_path, _Clock(NOW))

    state = governor.apply_fill(-(0.02 + 0.00006), 0.02)

    assert state.equity_sol == pytest.approx(9.97994)
    assert state.current_exposure_sol == pytest.approx(0.02)
    assert state.today_pnl_sol == pytest.approx(-0.00006)
    assert state.current_exposure_pct == pytest.approx(0.02 / 9.97994 * 100)


def test_drawdown_breach_halts_and_auto_resumes_next_day(tmp_path: Path) -> None:
    clock = _Clock(NOW)
    governor, storage = _governor(tmp_path, clock)
    governor.apply_fill(-0.25)

    incidents = governor.run_auto_halt_checks()

    assert [incident.category for incident in incidents] == [
        IncidentCategory.KILL_SWITCH,
        IncidentCategory.DAILY_DRAWDOWN,
    ]
    state = governor.state
    assert state.is_halted
    assert state.today_drawdown_pct == pytest.approx(-2.5)
    assert state.resume_at == NOW + AUTO_RESUME_AFTER
    assert governor.run_auto_halt_checks() == []
    assert not governor.pre_trade_check(0.02).allowed

    later = NOW + timedelta(hours=25)
    clock.now = later
    assert governor.needs_daily_reset()
    assert governor.reset_daily_counters() is True
    state = governor.state
    assert not state.is_halted
    assert state.start_of_day_equity_sol == pytest.approx(9.75)
    assert state.today_pnl_sol == 0.0
    assert not governor.needs_daily_reset()
    assert len(storage.list_incidents()) == 3


def test_reset_before_resume_time_keeps_halt(tmp_path: Path) -> None:
    clock = _Clock(NOW)
    governor, _ = _governor(tmp_path, clock)
    governor.apply_fill(-0.3)
    governor.run_auto_halt_checks()

    clock.now = NOW + timedelta(hours=13)
    assert governor.reset_daily_counters() is False
    assert governor.is_halted


def test_consecutive_losses_halt_until_manual_review(tmp_path: Path) -> None:
    clock = _Clock(NOW)
    governor, storage = _governor(tmp_path, clock)
    storage.upsert_position(_position("win", status=PositionStatus.CLOSED, pnl=0.01, updated=NOW - timedelta(hours=2)))
    for index in range(3):
        storage.upsert_position(
            _position(
                f"loss{index}",
                status=PositionStatus.CLOSED,
                pnl=-0.005,
                updated=NOW - timedelta(minutes=30 - index),
            )
        )

    incidents = governor.run_auto_halt_checks()

    assert governor.state.consecutive_losses == 3
    assert [incident.category for incident in incidents] == [
        IncidentCategory.KILL_SWITCH,
        IncidentCategory.CONSECUTIVE_LOSSES,
    ]
    assert incidents[1].resume_at is None
    clock.now = NOW + timedelta(days=2)
    assert governor.reset_daily_counters() is False
    assert governor.is_halted
