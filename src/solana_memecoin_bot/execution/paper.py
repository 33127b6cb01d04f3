"""Paper execution engine that models latency, failures, slippage, and partial fills."""

from __future__ import annotations

import asyncio
import itertools
import random
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from ..analysis.features import FeatureAggregator
from ..config.settings import AppConfig
from ..datalake.schemas import (
    ExecutionPlan,
    Order,
    OrderSide,
    OrderSource,
    OrderStatus,
    Position,
    PositionStatus,
    TakeProfitLevel,
)
from ..datalake.storage import SQLiteStorage
from ..monitoring.event_bus import EVENT_BUS, BroadcastKind, EventBus, EventSeverity
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..strategy.risk import RiskGovernor
from ..utils.constants import (
    PAPER_FEE_RATE,
    POSITION_DUST_FRACTION,
    SELL_BASE_SLIPPAGE_BPS,
    utc_now,
)

SleepFn = Callable[[float], Awaitable[None]]

FULL_FILL_PROBABILITY = 0.9
SELL_FAILURE_FACTOR = 0.5


def build_idempotency_key(mode: str, side: OrderSide, mint: str, origin: str) -> str:
    """Key identifying one logical order: the same (side, mint, origin) never executes twice."""

    return f"{mode}-{side.value}-{mint}-{origin}"


@dataclass(slots=True)
class FillResult:
    """Outcome of a simulated order."""

    order: Order
    position: Optional[Position] = None
    duplicate: bool = False

    @property
    def filled(self) -> bool:
        return self.order.status == OrderStatus.CONFIRMED and not self.duplicate


class PaperExecutionEngine:
    """Simulates entries and exits against the risk governor's equity."""

    def __init__(
        self,
        config: AppConfig,
        governor: RiskGovernor,
        storage: SQLiteStorage,
        *,
        aggregator: Optional[FeatureAggregator] = None,
        rng: Optional[random.Random] = None,
        sleep: SleepFn = asyncio.sleep,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._paper = config.paper
        self._governor = governor
        self._storage = storage
        self._aggregator = aggregator
        self._rng = rng or random.Random(config.mode.seed)
        self._sleep = sleep
        self._bus = bus or EVENT_BUS
        self._clock = clock
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------- buys
    async def simulate_buy(
        self,
        plan: ExecutionPlan,
        decision_id: str,
        *,
        idempotency_key: Optional[str] = None,
    ) -> FillResult:
        key = idempotency_key or build_idempotency_key("paper", OrderSide.BUY, plan.mint, decision_id)
        order = self._new_order(
            key,
            mint=plan.mint,
            side=OrderSide.BUY,
            source=OrderSource.ENTRY,
            requested_amount_sol=plan.amount_sol,
            requested_price=plan.reference_price_sol,
            decision_id=decision_id,
        )
        reserved = self._reserve(order, self._config.execution.max_retries)
        if reserved is None:
            return self._duplicate(key, order)
        order = reserved

        failed = await self._submit(order, self._paper.failure_rate)
        if failed:
            return FillResult(order=order)

        base_slippage = plan.estimated_slippage_bps
        slippage = self._degrade_slippage(base_slippage)
        fill_ratio = 1.0
        if self._rng.random() >= FULL_FILL_PROBABILITY:
            fill_ratio = self._rng.uniform(0.5, 1.0)
        filled_sol = plan.amount_sol * fill_ratio
        price = plan.reference_price_sol * (1 + slippage / 10_000)
        tokens = filled_sol / price
        fee = filled_sol * PAPER_FEE_RATE
        now = self._clock()

        exits = self._config.exits
        position = Position(
            id=uuid.uuid4().hex,
            mint=plan.mint,
            symbol=plan.symbol,
            entry_price=price,
            current_price=price,
            entry_amount_sol=filled_sol,
            tokens_bought=tokens,
            stop_loss_price=price * (1 - exits.stop_loss_pct / 100.0),
            trailing_stop_pct=exits.trailing_stop_pct,
            trailing_stop_price=price * (1 - exits.trailing_stop_pct / 100.0),
            high_water_mark=price,
            time_stop_minutes=exits.time_stop_minutes,
            entry_time=now,
            last_update=now,
            take_profit_levels=[
                TakeProfitLevel(gain_pct=level.gain_pct, sell_pct=level.sell_pct)
                for level in exits.take_profit_levels
            ],
            decision_id=decision_id,
        )
        order.status = OrderStatus.CONFIRMED
        order.executed_amount_sol = filled_sol
        order.executed_price = price
        order.token_amount = tokens
        order.slippage_bps = slippage
        order.fee_sol = fee
        order.position_id = position.id
        order.updated_at = now

        state = self._governor.apply_fill(-(filled_sol + fee), filled_sol)
        self._storage.upsert_position(position)
        self._storage.update_order(order)
        METRICS.increment("paper_buys_filled")
        METRICS.observe("paper_slippage_bps", slippage)
        self._logger.info(
            "Paper BUY %s: %.4f SOL (%.0f%% fill) at %.10g, slippage %.0fbps, fee %.5f SOL",
            plan.symbol,
            filled_sol,
            fill_ratio * 100,
            price,
            slippage,
            fee,
        )
        self._bus.publish(BroadcastKind.ORDER_UPDATE, order)
        self._bus.publish(BroadcastKind.POSITION_UPDATE, position)
        self._bus.publish(BroadcastKind.RISK_UPDATE, state)
        return FillResult(order=order, position=position)

    # ------------------------------------------------------------------ sells
    async def simulate_sell(
        self,
        position: Position,
        sell_pct: float,
        source: OrderSource,
        current_price: float,
        *,
        origin: Optional[str] = None,
    ) -> FillResult:
        """Sell ``sell_pct`` percent of the remaining tokens at ``current_price``."""

        sell_pct = min(max(sell_pct, 0.0), 100.0)
        tokens = position.remaining_tokens * sell_pct / 100.0
        origin = origin or f"{position.id}-{source.value}-{position.tokens_sold:.6g}"
        key = build_idempotency_key("paper", OrderSide.SELL, position.mint, origin)
        order = self._new_order(
            key,
            mint=position.mint,
            side=OrderSide.SELL,
            source=source,
            requested_amount_sol=tokens * current_price,
            requested_price=current_price,
            decision_id=position.decision_id,
        )
        order.position_id = position.id
        # Exit keys retry without limit.
        reserved = self._reserve(order, None)
        if reserved is None:
            return self._duplicate(key, order)
        order = reserved

        failed = await self._submit(order, self._paper.failure_rate * SELL_FAILURE_FACTOR)
        if failed:
            return FillResult(order=order, position=position)

        slippage = self._degrade_slippage(SELL_BASE_SLIPPAGE_BPS)
        executed_price = current_price * (1 - slippage / 10_000)
        proceeds = tokens * executed_price
        fee = proceeds * PAPER_FEE_RATE
        net = proceeds - fee
        now = self._clock()

        bought = position.tokens_bought
        position.tokens_sold += tokens
        position.realized_pnl_sol += net - tokens * position.entry_price
        position.current_price = current_price
        position.last_update = now
        released_tokens = tokens
        if position.remaining_tokens <= bought * POSITION_DUST_FRACTION:
            released_tokens += position.remaining_tokens
            position.tokens_sold = bought
            position.status = PositionStatus.CLOSED
            position.exit_reason = source.value
            position.unrealized_pnl_sol = 0.0
        else:
            position.status = PositionStatus.PARTIALLY_CLOSED
            position.unrealized_pnl_sol = position.remaining_tokens * (
                current_price - position.entry_price
            )
        released_cost = position.entry_amount_sol * released_tokens / bought if bought > 0 else 0.0

        order.status = OrderStatus.CONFIRMED
        order.executed_amount_sol = proceeds
        order.executed_price = executed_price
        order.token_amount = tokens
        order.slippage_bps = slippage
        order.fee_sol = fee
        order.updated_at = now

        state = self._governor.apply_fill(net, -released_cost)
        self._storage.upsert_position(position)
        self._storage.update_order(order)
        METRICS.increment("paper_sells_filled")
        self._logger.info(
            "Paper SELL %s (%s): %.4g tokens for %.4f SOL net, position %s",
            position.symbol,
            source.value,
            tokens,
            net,
            position.status.value,
        )
        self._bus.publish(BroadcastKind.ORDER_UPDATE, order)
        self._bus.publish(BroadcastKind.POSITION_UPDATE, position)
        self._bus.publish(BroadcastKind.RISK_UPDATE, state)
        return FillResult(order=order, position=position)

    # ---------------------------------------------------------------- helpers
    def _new_order(self, key: str, **fields) -> Order:
        now = self._clock()
        return Order(
            id=uuid.uuid4().hex,
            idempotency_key=key,
            is_paper=True,
            created_at=now,
            updated_at=now,
            **fields,
        )

    def _reserve(self, order: Order, max_retries: Optional[int]) -> Optional[Order]:
        """Insert ``order``; a key whose earlier attempts failed is retried with a ``#retryN`` suffix.

        ``max_retries`` of ``None`` retries without limit.
        """

        base_key = order.idempotency_key
        attempts = itertools.count() if max_retries is None else range(max_retries + 1)
        for attempt in attempts:
            key = base_key if attempt == 0 else f"{base_key}#retry{attempt}"
            order.idempotency_key = key
            order.retry_count = attempt
            if self._storage.insert_order(order):
                self._bus.publish(BroadcastKind.ORDER_UPDATE, order)
                return order
            existing = self._storage.get_order_by_key(key)
            if existing is None or existing.status != OrderStatus.FAILED:
                break
        order.idempotency_key = base_key
        return None

    def _duplicate(self, key: str, order: Order) -> FillResult:
        existing = self._storage.get_order_by_key(key)
        self._logger.info("Duplicate order %s ignored", key)
        METRICS.increment("paper_duplicate_orders")
        return FillResult(order=existing or order, duplicate=True)

    async def _submit(self, order: Order, failure_rate: float) -> bool:
        """Move the order to SUBMITTED, wait out simulated latency, and draw a failure."""

        order.status = OrderStatus.SUBMITTED
        self._storage.update_order(order)
        latency_ms = self._paper.latency_ms * self._rng.uniform(0.5, 1.5)
        await self._sleep(latency_ms / 1000.0)
        order.latency_ms = latency_ms
        if self._aggregator is not None:
            self._aggregator.record_latency(latency_ms)
        failed = self._rng.random() < failure_rate
        if self._aggregator is not None:
            self._aggregator.record_attempt(not failed)
        if not failed:
            return False
        order.status = OrderStatus.FAILED
        order.error = "Simulated transaction failure"
        order.updated_at = self._clock()
        self._storage.update_order(order)
        METRICS.increment(f"paper_{order.side.value}_failures")
        self._logger.warning(
            "Paper %s %s failed after %.0fms", order.side.value.upper(), order.mint, latency_ms
        )
        self._bus.publish(BroadcastKind.ORDER_UPDATE, order, severity=EventSeverity.WARNING)
        return True

    def _degrade_slippage(self, base_bps: float) -> float:
        multiplier = self._paper.slippage_multiplier
        realized = float(round(base_bps * multiplier * self._rng.uniform(0.8, 1.2)))
        if multiplier > 1.0:
            realized = max(realized, float(base_bps))
        return realized


__all__ = ["FillResult", "PaperExecutionEngine", "build_idempotency_key"]
