"""Trading bot orchestration: ingestion, evaluation queue, exits, and periodic risk tasks."""

from __future__ import annotations

import asyncio
import random
from collections import deque
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from .analysis.features import FeatureAggregator
from .config.settings import AppConfig, TradingMode
from .datalake.schemas import (
    DecisionCard,
    EquitySnapshot,
    EventKind,
    Incident,
    TokenInfo,
    TokenPhase,
    Verdict,
)
from .datalake.storage import SQLiteStorage
from .execution.paper import FillResult, PaperExecutionEngine
from .ingestion.event_source import EventSource, SourceEvent, SyntheticEventSource
from .ingestion.pricing import PriceFeed, RandomWalkPriceFeed
from .monitoring.event_bus import EVENT_BUS, BroadcastKind, EventBus
from .monitoring.logger import get_logger
from .monitoring.metrics import METRICS
from .scheduler import PeriodicScheduler
from .strategy.decision import DecisionEngine
from .strategy.exits import check_exit, mark_take_profit_triggered, update_high_water_mark
from .strategy.risk import RiskGovernor
from .utils.constants import utc_now

SleepFn = Callable[[float], Awaitable[None]]


class BotStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class TradingBot:
    """Wires the feature aggregator, decision engine, risk governor, and paper executor together.

    All position and risk mutations happen on the event loop: the evaluation
    queue drain and the periodic tasks are the only writers, and the governor
    serialises its own state behind a lock.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        storage: Optional[SQLiteStorage] = None,
        source: Optional[EventSource] = None,
        price_feed: Optional[PriceFeed] = None,
        rng: Optional[random.Random] = None,
        sleep: SleepFn = asyncio.sleep,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
        starting_equity_sol: Optional[float] = None,
    ) -> None:
        if config.mode.active != TradingMode.PAPER:
            raise ValueError("Only paper trading is supported; set mode.active = 'paper'")
        self._config = config
        self._rng = rng or random.Random(config.mode.seed)
        self._clock = clock
        self._bus = bus or EVENT_BUS
        self._logger = get_logger(__name__)
        self.storage = storage or SQLiteStorage(config.storage.database_path)
        self.aggregator = FeatureAggregator(clock=clock)

        equity = starting_equity_sol
        if equity is None:
            equity = self._restore_equity()
        self.governor = RiskGovernor(self.storage, config.risk, equity, bus=self._bus, clock=clock)
        self.decisions = DecisionEngine(self.aggregator, self.storage, bus=self._bus, clock=clock)
        self.executor = PaperExecutionEngine(
            config,
            self.governor,
            self.storage,
            aggregator=self.aggregator,
            rng=random.Random(self._rng.getrandbits(64)),
            sleep=sleep,
            bus=self._bus,
            clock=clock,
        )
        self._source: EventSource = source or SyntheticEventSource(
            random.Random(self._rng.getrandbits(64)),
            clock,
            tick_seconds=config.scheduler.synthetic_tick_seconds,
            sleep=sleep,
        )
        self._prices: PriceFeed = price_feed or RandomWalkPriceFeed(
            random.Random(self._rng.getrandbits(64))
        )

        self._status = BotStatus.STOPPED
        self._queue: Deque[TokenInfo] = deque()
        self._draining = False
        self._drain_task: Optional["asyncio.Task[int]"] = None
        self._ingest_task: Optional["asyncio.Task[None]"] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._watchlist: Dict[str, TokenInfo] = {}
        self._selling: Set[str] = set()
        self.scheduler = PeriodicScheduler(sleep=sleep, bus=self._bus)
        self._register_tasks()

    # ---------------------------------------------------------------- control
    @property
    def status(self) -> BotStatus:
        return self._status

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def status_snapshot(self) -> Dict[str, Any]:
        state = self.governor.state
        return {
            "status": self._status.value,
            "halted": state.is_halted,
            "halt_reason": state.halt_reason,
            "queue_depth": len(self._queue),
            "watchlist": len(self._watchlist),
            "open_positions": state.open_position_count,
            "equity_sol": state.equity_sol,
        }

    async def start(self) -> None:
        if self._status != BotStatus.STOPPED:
            return
        self.governor.refresh_counters()
        self.governor.reset_daily_counters()
        self._stop_event = asyncio.Event()
        self._status = BotStatus.RUNNING
        self.scheduler.start()
        self._ingest_task = asyncio.create_task(self._ingest(), name="ingestion")
        self._logger.info(
            "Bot started in %s mode with %.4f SOL equity",
            self._config.mode.active.value,
            self.governor.equity_sol,
        )
        self._publish_status()

    async def stop(self) -> None:
        if self._status == BotStatus.STOPPED:
            return
        self._status = BotStatus.STOPPED
        self._source.close()
        tasks = [task for task in (self._ingest_task, self._drain_task) if task is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._ingest_task = self._drain_task = None
        await self.scheduler.stop()
        self.snapshot_equity()
        if self._stop_event is not None:
            self._stop_event.set()
        self._logger.info("Bot stopped")
        self._publish_status()

    async def run(self, max_runtime: Optional[float] = None) -> None:
        """Start, wait for ``stop()`` or ``max_runtime`` seconds, then shut down cleanly."""

        await self.start()
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=max_runtime)
        except asyncio.TimeoutError:
            self._logger.info("Max runtime of %.0fs reached", max_runtime)
        finally:
            await self.stop()

    def pause(self) -> bool:
        if self._status != BotStatus.RUNNING:
            return False
        self._status = BotStatus.PAUSED
        self._logger.warning("Bot paused; new entries suspended")
        self._publish_status()
        return True

    def resume(self) -> bool:
        if self._status != BotStatus.PAUSED:
            return False
        self._status = BotStatus.RUNNING
        self._logger.info("Bot resumed")
        self._publish_status()
        return True

    # ------------------------------------------------------------------ queue
    def enqueue(self, token: TokenInfo) -> None:
        self._queue.append(token)
        METRICS.gauge("evaluation_queue_depth", len(self._queue))

    async def drain_queue(self) -> int:
        """Evaluate queued tokens in FIFO order. Returns the number evaluated.

        Only one drain runs at a time: a call made while another drain is in
        flight returns 0 immediately and the running drain picks up the new work.
        """

        if self._draining:
            return 0
        self._draining = True
        processed = 0
        try:
            while self._queue:
                token = self._queue.popleft()
                METRICS.gauge("evaluation_queue_depth", len(self._queue))
                try:
                    await self.process_token(token)
                except Exception as exc:  # noqa: BLE001
                    METRICS.increment("evaluation_failures")
                    self._logger.exception("Evaluation of %s failed: %s", token.mint, exc)
                processed += 1
        finally:
            self._draining = False
        return processed

    def schedule_drain(self) -> None:
        if self._draining or (self._drain_task is not None and not self._drain_task.done()):
            return
        self._drain_task = asyncio.create_task(self.drain_queue(), name="evaluation-drain")

    async def process_token(self, token: TokenInfo) -> Optional[DecisionCard]:
        """Evaluate one token and, on a TRADE verdict that clears the governor, buy it."""

        if self._status != BotStatus.RUNNING:
            self._logger.info("Skipping evaluation of %s while %s", token.symbol, self._status.value)
            return None
        card = self.decisions.evaluate(
            token,
            self._config,
            self.governor.refresh_counters(),
            self.storage.list_open_positions(),
        )
        if card.verdict != Verdict.TRADE or card.execution_plan is None:
            return card
        plan = card.execution_plan
        check = self.governor.pre_trade_check(plan.amount_sol)
        if not check.allowed:
            self._logger.info("Trade on %s blocked by governor: %s", token.symbol, check.reason)
            return card
        result = await self.executor.simulate_buy(plan, card.id)
        self._log_fill(result)
        return card

    # -------------------------------------------------------------- ingestion
    async def _ingest(self) -> None:
        async for item in self._source.stream():
            try:
                self.handle_source_event(item)
            except Exception as exc:  # noqa: BLE001
                METRICS.increment("ingestion_failures")
                self._logger.exception("Failed to handle %s event: %s", item.event.kind.value, exc)
        self._logger.info("Event source exhausted")

    def handle_source_event(self, item: SourceEvent) -> None:
        event = item.event
        self.aggregator.record_event(event)
        token = item.token
        if token is None:
            return
        self.storage.upsert_token(token)
        self._bus.publish(
            BroadcastKind.TOKEN_EVENT,
            {"event": event.kind.value, "token": token},
        )
        scope = self._config.scope
        if event.kind == EventKind.LAUNCH and scope.trade_pre_graduation:
            self.enqueue(token)
            self.schedule_drain()
        elif event.kind == EventKind.GRADUATION and scope.trade_post_graduation:
            # Evaluated once the graduation window opens; see sweep_candidates.
            self._watchlist[token.mint] = token

    def sweep_candidates(self, now: Optional[datetime] = None) -> List[TokenInfo]:
        """Queue watched graduates whose entry window has opened; drop expired ones.

        Ready graduates stay watched while the bot is not running.
        """

        current = now or self._clock()
        filters = self._config.filters
        running = self._status == BotStatus.RUNNING
        ready: List[TokenInfo] = []
        for mint, token in list(self._watchlist.items()):
            if token.phase != TokenPhase.GRADUATED or token.graduated_at is None:
                self._watchlist.pop(mint)
                continue
            elapsed = current - token.graduated_at
            if elapsed > timedelta(seconds=filters.max_seconds_after_graduation):
                self._watchlist.pop(mint)
                self._logger.debug("Graduation window closed for %s", token.symbol)
            elif running and elapsed >= timedelta(seconds=filters.min_seconds_after_graduation):
                self._watchlist.pop(mint)
                ready.append(token)
        for token in ready:
            self.enqueue(token)
        if ready:
            self.schedule_drain()
        return ready

    # --------------------------------------------------------- periodic tasks
    def _register_tasks(self) -> None:
        periods = self._config.scheduler
        add = self.scheduler.add
        add("position_monitor", periods.position_monitor_seconds, self.monitor_positions)
        add("auto_halt", periods.auto_halt_seconds, self.run_auto_halt)
        add("regime_broadcast", periods.regime_broadcast_seconds, self.broadcast_regime)
        add("equity_snapshot", periods.equity_snapshot_seconds, self.snapshot_equity)
        add("daily_reset", periods.daily_reset_check_seconds, self.check_daily_reset)
        add("risk_refresh", periods.risk_refresh_seconds, self.refresh_risk)
        add("candidate_sweep", periods.candidate_sweep_seconds, self.sweep_candidates)

    async def monitor_positions(self) -> int:
        """Mark open positions, evaluate exits, and drive sells. Returns the number of exits attempted.

        Exits keep running while paused or halted; only new entries stop.
        """

        if self._status == BotStatus.STOPPED:
            return 0
        attempted = 0
        for position in self.storage.list_open_positions():
            if position.id in self._selling:
                continue
            price = self._prices.get_price(position.mint, position.current_price)
            if price is None:
                continue
            now = self._clock()
            position.current_price = price
            position.last_update = now
            update_high_water_mark(position, price)
            position.unrealized_pnl_sol = position.remaining_tokens * (price - position.entry_price)
            signal = check_exit(position, price, self._config.exits, now=now)
            if signal is None:
                self.storage.upsert_position(position)
                continue
            attempted += 1
            self._logger.info("%s: %s", position.symbol, signal.reason)
            origin = f"{position.id}-{signal.source.value}-"
            origin += "all" if signal.level_index is None else str(signal.level_index)
            self._selling.add(position.id)
            try:
                result = await self.executor.simulate_sell(
                    position, signal.sell_pct, signal.source, price, origin=origin
                )
            finally:
                self._selling.discard(position.id)
            if result.filled:
                mark_take_profit_triggered(position, signal)
            self.storage.upsert_position(position)
            self._log_fill(result)
        return attempted

    def run_auto_halt(self) -> List[Incident]:
        incidents = self.governor.run_auto_halt_checks()
        if incidents:
            self._publish_status()
        return incidents

    def broadcast_regime(self) -> None:
        now = self._clock()
        features = self.aggregator.regime_features(self._config.filters, now)
        self.storage.record_regime_snapshot(features, now)
        METRICS.gauge("regime_score", features.regime_score)
        self._bus.publish(BroadcastKind.REGIME_UPDATE, features)

    def snapshot_equity(self) -> EquitySnapshot:
        state = self.governor.state
        snapshot = EquitySnapshot(
            timestamp=self._clock(),
            equity_sol=state.equity_sol,
            pnl_sol=state.today_pnl_sol,
            pnl_pct=state.today_pnl_pct,
            drawdown_pct=state.today_drawdown_pct,
            exposure_pct=state.current_exposure_pct,
            open_positions=state.open_position_count,
        )
        self.storage.record_equity_snapshot(snapshot)
        self._bus.publish(BroadcastKind.EQUITY_TICK, snapshot)
        return snapshot

    def check_daily_reset(self) -> bool:
        if not self.governor.needs_daily_reset():
            return False
        resumed = self.governor.reset_daily_counters()
        if resumed:
            self._publish_status()
        return True

    def refresh_risk(self) -> None:
        state = self.governor.refresh_counters()
        self._bus.publish(BroadcastKind.RISK_UPDATE, state)

    # ---------------------------------------------------------------- helpers
    def _restore_equity(self) -> float:
        history = self.storage.list_equity_history(limit=1)
        if history:
            self._logger.info("Restored equity %.4f SOL from last snapshot", history[-1].equity_sol)
            return history[-1].equity_sol
        return self._config.paper.starting_equity_sol

    def _log_fill(self, result: FillResult) -> None:
        order = result.order
        if result.duplicate:
            return
        if not result.filled:
            self._logger.warning(
                "%s order %s for %s did not fill: %s",
                order.side.value.upper(),
                order.id,
                order.mint,
                order.error,
            )

    def _publish_status(self) -> None:
        self._bus.publish(BroadcastKind.SYSTEM_STATUS, self.status_snapshot())


__all__ = ["BotStatus", "TradingBot"]
