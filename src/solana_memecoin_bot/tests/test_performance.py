from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from solana_memecoin_bot.analytics.performance import (
    compute_paper_stats,
    filter_pass_rates,
    max_drawdown_pct,
    regime_on_time_pct,
    stats_from_storage,
)
from solana_memecoin_bot.datalake.schemas import (
    DecisionRecord,
    EquitySnapshot,
    Order,
    OrderSide,
    OrderSource,
    OrderStatus,
    Position,
    PositionStatus,
    Verdict,
)
from solana_memecoin_bot.datalake.storage import SQLiteStorage

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _closed(position_id: str, pnl: float, minutes: float = 30.0, status=PositionStatus.CLOSED) -> Position:
    return Position(
        id=position_id,
        mint=f"mint-{position_id}",
        symbol="MEME",
        entry_price=1.0,
        current_price=1.0,
        entry_amount_sol=0.02,
        tokens_bought=0.02,
        stop_loss_price=0.75,
        trailing_stop_pct=15.0,
        trailing_stop_price=0.85,
        high_water_mark=1.0,
        time_stop_minutes=60.0,
        entry_time=NOW,
        last_update=NOW + timedelta(minutes=minutes),
        status=status,
        realized_pnl_sol=pnl,
    )


def _snapshot(minutes: int, equity: float, exposure_pct: float = 0.0) -> EquitySnapshot:
    return EquitySnapshot(
        timestamp=NOW + timedelta(minutes=minutes),
        equity_sol=equity,
        pnl_sol=0.0,
        pnl_pct=0.0,
        drawdown_pct=0.0,
        exposure_pct=exposure_pct,
        open_positions=0,
    )


def _order(order_id: str, slippage: float, status: OrderStatus) -> Order:
    return Order(
        id=order_id,
        idempotency_key=order_id,
        mint="mint",
        side=OrderSide.BUY,
        source=OrderSource.ENTRY,
        requested_amount_sol=0.02,
        status=status,
        slippage_bps=slippage,
        created_at=NOW,
    )


def test_stats_for_empty_history() -> None:
    stats = compute_paper_stats([], [])

    assert stats.total_trades == 0
    assert stats.win_rate == 0.0
    assert stats.expectancy_sol == 0.0
    assert stats.filter_pass_rates == {}


def test_win_rate_expectancy_and_hold_time() -> None:
    positions = [
        _closed("a", 0.02, minutes=10),
        _closed("b", -0.01, minutes=20),
        _closed("c", 0.0, minutes=30),
        _closed("d", 0.04, minutes=40),
        _closed("open", 5.0, status=PositionStatus.PARTIALLY_CLOSED),
    ]
    orders = [
        _order("o1", 10.0, OrderStatus.CONFIRMED),
        _order("o2", 30.0, OrderStatus.CONFIRMED),
        _order("o3", 500.0, OrderStatus.FAILED),
    ]

    stats = compute_paper_stats(positions, orders)

    assert stats.total_trades == 4
    assert (stats.winning_trades, stats.losing_trades) == (2, 2)
    assert stats.win_rate == 0.5
    assert stats.total_pnl_sol == pytest.approx(0.05)
    assert stats.avg_win_sol == pytest.approx(0.03)
    assert stats.avg_loss_sol == pytest.approx(0.005)
    assert stats.expectancy_sol == pytest.approx(0.5 * 0.03 - 0.5 * 0.005)
    assert stats.avg_slippage_bps == 20.0
    assert stats.avg_hold_minutes == 25.0
    assert stats.sharpe_proxy > 0


def test_max_drawdown_uses_net_asset_value() -> None:
    history = [
        _snapshot(0, 10.0),
        # Cash moved into a position: NAV unchanged, so no drawdown.
        _snapshot(1, 9.9, exposure_pct=0.1 / 9.9 * 100),
        _snapshot(2, 9.5),
        _snapshot(3, 10.2),
    ]

    assert max_drawdown_pct(history) == pytest.approx(5.0)
    assert max_drawdown_pct([]) == 0.0


def test_filter_pass_rates_and_regime_share() -> None:
    decisions = [
        DecisionRecord(
            id=str(index),
            mint="m",
            symbol="M",
            timestamp=NOW,
            verdict=Verdict.SKIP,
            summary=[],
            payload={
                "checks": [
                    {"name": "Market Regime", "result": "pass" if index % 2 else "fail"},
                    {"name": "Spread", "result": "pass"},
                ]
            },
        )
        for index in range(4)
    ]

    rates = filter_pass_rates(decisions)

    assert rates == {"Market Regime": 0.5, "Spread": 1.0}
    assert regime_on_time_pct([{"regime": "cold"}, {"regime": "normal"}, {"regime": "mania"}, {"regime": "cold"}]) == 50.0
    assert regime_on_time_pct([]) == 0.0


def test_stats_from_storage(tmp_path: Path) -> None:
    storage = SQLiteStorage(tmp_path / "state.sqlite3")
    storage.upsert_position(_closed("a", 0.01))
    storage.upsert_position(_closed("b", -0.02))
    storage.insert_order(_order("o1", 12.0, OrderStatus.CONFIRMED))
    storage.record_equity_snapshot(_snapshot(0, 10.0))
    storage.record_equity_snapshot(_snapshot(1, 9.0))

    stats = stats_from_storage(storage)

    assert stats.total_trades == 2
    assert stats.win_rate == 0.5
    assert stats.avg_slippage_bps == 12.0
    assert stats.max_drawdown_pct == pytest.approx(10.0)
