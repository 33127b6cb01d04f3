from __future__ import annotations

import asyncio
import random
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import List

import pytest

from solana_memecoin_bot.analysis.features import FeatureAggregator
from solana_memecoin_bot.config.settings import AppConfig, RiskLimitsConfig
from solana_memecoin_bot.datalake.schemas import (
    ExecutionPlan,
    OrderSide,
    OrderSource,
    OrderStatus,
    PositionStatus,
    Route,
)
from solana_memecoin_bot.datalake.storage import SQLiteStorage
from solana_memecoin_bot.execution.paper import PaperExecutionEngine, build_idempotency_key
from solana_memecoin_bot.monitoring.event_bus import EventBus
from solana_memecoin_bot.strategy.risk import RiskGovernor
from solana_memecoin_bot.utils.constants import SOL_MINT

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _config(**paper) -> AppConfig:
    return AppConfig(paper={"failure_rate": 0.0, **paper})


def _plan(mint: str = "mint", slippage_bps: int = 10) -> ExecutionPlan:
    return ExecutionPlan(
        mint=mint,
        symbol="MEME",
        route=Route.JUPITER,
        input_mint=SOL_MINT,
        output_mint=mint,
        amount_sol=0.02,
        max_slippage_bps=300,
        priority_fee_lamports=10_000,
        compute_budget=200_000,
        estimated_slippage_bps=slippage_bps,
        estimated_output_tokens=20_000.0,
        reference_price_sol=0.000001,
    )


def _engine(tmp_path: Path, config: AppConfig, *, seed: int = 7, aggregator=None, sleeps=None):
    storage = SQLiteStorage(tmp_path / "state.sqlite3")
    bus = EventBus()
    governor = RiskGovernor(storage, RiskLimitsConfig(), 10.0, bus=bus, clock=lambda: NOW)

    async def _sleep(seconds: float) -> None:
        if sleeps is not None:
            sleeps.append(seconds)

    engine = PaperExecutionEngine(
        config,
        governor,
        storage,
        aggregator=aggregator,
        rng=random.Random(seed),
        sleep=_sleep,
        bus=bus,
        clock=lambda: NOW,
    )
    return engine, governor, storage


def test_idempotency_key_format() -> None:
    assert build_idempotency_key("paper", OrderSide.BUY, "mint", "card") == "paper-buy-mint-card"


def test_buy_opens_position_and_moves_cash_into_exposure(tmp_path: Path) -> None:
    engine, governor, storage = _engine(tmp_path, _config())

    result = asyncio.run(engine.simulate_buy(_plan(), "card-1"))

    assert result.filled
    order, position = result.order, result.position
    assert position is not None
    assert order.status == OrderStatus.CONFIRMED
    assert order.slippage_bps >= 10
    assert order.fee_sol == pytest.approx(order.executed_amount_sol * 0.003)
    assert position.entry_price == pytest.approx(0.000001 * (1 + order.slippage_bps / 10_000))
    assert position.stop_loss_price == pytest.approx(position.entry_price * 0.75)
    assert [level.gain_pct for level in position.take_profit_levels] == [50.0, 100.0]
    assert 0.01 <= position.entry_amount_sol <= 0.02

    state = governor.state
    assert state.current_exposure_sol == pytest.approx(position.entry_amount_sol)
    assert state.equity_sol == pytest.approx(10.0 - position.entry_amount_sol - order.fee_sol)
    stored = storage.get_order_by_key("paper-buy-mint-card-1")
    assert stored is not None and stored.status == OrderStatus.CONFIRMED
    assert storage.has_open_position("mint")


def test_duplicate_buy_is_ignored(tmp_path: Path) -> None:
    engine, governor, storage = _engine(tmp_path, _config())
    first = asyncio.run(engine.simulate_buy(_plan(), "card-1"))
    equity = governor.equity_sol

    second = asyncio.run(engine.simulate_buy(_plan(), "card-1"))

    assert second.duplicate
    assert not second.filled
    assert second.order.id == first.order.id
    assert governor.equity_sol == equity
    assert len(storage.list_orders()) == 1
    assert len(storage.list_open_positions()) == 1


def test_failed_orders_are_retried_up_to_the_limit(tmp_path: Path) -> None:
    engine, governor, storage = _engine(tmp_path, _config(failure_rate=1.0))

    attempts = [asyncio.run(engine.simulate_buy(_plan(), "card-1")) for _ in range(4)]

    assert [result.order.status for result in attempts[:3]] == [OrderStatus.FAILED] * 3
    assert [result.order.retry_count for result in attempts[:3]] == [0, 1, 2]
    assert attempts[1].order.idempotency_key == "paper-buy-mint-card-1#retry1"
    assert attempts[3].duplicate
    assert len(storage.list_orders()) == 3
    assert storage.list_open_positions() == []
    assert governor.equity_sol == 10.0
    assert attempts[0].order.error == "Simulated transaction failure"


def test_failure_rate_converges(tmp_path: Path) -> None:
    engine, _, _ = _engine(tmp_path, _config(failure_rate=0.3), seed=42)

    async def _run() -> int:
        failures = 0
        for index in range(300):
            result = await engine.simulate_buy(_plan(mint=f"mint{index}"), f"card{index}")
            if result.order.status == OrderStatus.FAILED:
                failures += 1
        return failures

    failures = asyncio.run(_run())

    assert abs(failures / 300 - 0.3) <= 0.08


def test_latency_is_simulated_and_recorded(tmp_path: Path) -> None:
    sleeps: List[float] = []
    aggregator = FeatureAggregator(clock=lambda: NOW)
    engine, _, _ = _engine(tmp_path, _config(latency_ms=500.0), aggregator=aggregator, sleeps=sleeps)

    result = asyncio.run(engine.simulate_buy(_plan(), "card-1"))

    assert len(sleeps) == 1
    assert 0.25 <= sleeps[0] <= 0.75
    assert result.order.latency_ms == pytest.approx(sleeps[0] * 1000)
    assert aggregator.average_latency_ms == pytest.approx(result.order.latency_ms)
    assert aggregator.failure_rate == 0.0


def test_slippage_never_improves_on_estimate(tmp_path: Path) -> None:
    engine, _, _ = _engine(tmp_path, _config(slippage_multiplier=1.2), seed=3)

    async def _run() -> List[float]:
        slippages = []
        for index in range(50):
            result = await engine.simulate_buy(_plan(mint=f"m{index}", slippage_bps=100), f"c{index}")
            slippages.append(result.order.slippage_bps)
        return slippages

    slippages = asyncio.run(_run())

    assert min(slippages) >= 100
    assert max(slippages) <= round(100 * 1.2 * 1.2)


def test_partial_then_full_sell_releases_exposure(tmp_path: Path) -> None:
    engine, governor, storage = _engine(tmp_path, _config())
    bought = asyncio.run(engine.simulate_buy(_plan(), "card-1"))
    position = bought.position
    assert position is not None
    entry = position.entry_price
    cost = position.entry_amount_sol

    partial = asyncio.run(engine.simulate_sell(position, 30.0, OrderSource.TAKE_PROFIT, entry * 2))

    assert partial.filled
    assert position.status == PositionStatus.PARTIALLY_CLOSED
    assert position.tokens_sold == pytest.approx(position.tokens_bought * 0.3)
    assert position.realized_pnl_sol > 0
    assert partial.order.slippage_bps >= 50
    assert governor.state.current_exposure_sol == pytest.approx(cost * 0.7)

    final = asyncio.run(engine.simulate_sell(position, 100.0, OrderSource.STOP_LOSS, entry * 0.7))

    assert final.filled
    assert position.status == PositionStatus.CLOSED
    assert position.remaining_tokens == 0.0
    assert position.exit_reason == "stop_loss"
    assert governor.state.current_exposure_sol == pytest.approx(0.0, abs=1e-12)
    expected_equity = (
        10.0
        - cost
        - bought.order.fee_sol
        + partial.order.executed_amount_sol
        - partial.order.fee_sol
        + final.order.executed_amount_sol
        - final.order.fee_sol
    )
    assert governor.equity_sol == pytest.approx(expected_equity)
    assert storage.list_open_positions() == []
    stored = storage.get_position(position.id)
    assert stored is not None and stored.status == PositionStatus.CLOSED


def test_partial_sell_of_a_high_priced_token_keeps_the_remainder(tmp_path: Path) -> None:
    engine, governor, _ = _engine(tmp_path, _config())
    plan = replace(_plan(), reference_price_sol=5.0)
    bought = asyncio.run(engine.simulate_buy(plan, "card-1"))
    position = bought.position
    assert position is not None
    assert position.tokens_bought < 0.01

    partial = asyncio.run(
        engine.simulate_sell(position, 30.0, OrderSource.TAKE_PROFIT, position.entry_price * 1.6)
    )

    assert partial.filled
    assert position.status == PositionStatus.PARTIALLY_CLOSED
    assert position.remaining_tokens == pytest.approx(position.tokens_bought * 0.7)
    assert partial.order.token_amount == pytest.approx(position.tokens_bought * 0.3)
    assert governor.state.current_exposure_sol == pytest.approx(position.entry_amount_sol * 0.7)
