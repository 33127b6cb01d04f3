"""Paper-trading performance statistics."""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from ..datalake.schemas import (
    DecisionRecord,
    EquitySnapshot,
    MarketRegime,
    Order,
    OrderStatus,
    Position,
    PositionStatus,
)
from ..datalake.storage import SQLiteStorage


@dataclass(slots=True)
class PaperStats:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl_sol: float = 0.0
    avg_pnl_per_trade: float = 0.0
    avg_win_sol: float = 0.0
    avg_loss_sol: float = 0.0
    expectancy_sol: float = 0.0
    max_drawdown_pct: float = 0.0
    avg_slippage_bps: float = 0.0
    avg_hold_minutes: float = 0.0
    sharpe_proxy: float = 0.0
    filter_pass_rates: Dict[str, float] = field(default_factory=dict)
    regime_on_time_pct: float = 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def max_drawdown_pct(history: Iterable[EquitySnapshot]) -> float:
    """Largest peak-to-trough decline of net asset value, as a positive percentage."""

    peak = 0.0
    worst = 0.0
    for snapshot in history:
        nav = snapshot.equity_sol * (1 + snapshot.exposure_pct / 100.0)
        peak = max(peak, nav)
        if peak > 0:
            worst = max(worst, (peak - nav) / peak * 100.0)
    return worst


def filter_pass_rates(decisions: Iterable[DecisionRecord]) -> Dict[str, float]:
    """Share of decisions in which each named filter passed."""

    passed: Dict[str, int] = defaultdict(int)
    seen: Dict[str, int] = defaultdict(int)
    for record in decisions:
        for check in record.payload.get("checks", []):
            name = check.get("name")
            if not name:
                continue
            seen[name] += 1
            if check.get("result") == "pass":
                passed[name] += 1
    return {name: passed[name] / count for name, count in seen.items()}


def regime_on_time_pct(regime_history: Iterable[Mapping[str, Any]]) -> float:
    """Percentage of regime snapshots in which the market was not cold."""

    samples = [row.get("regime") for row in regime_history]
    if not samples:
        return 0.0
    warm = sum(1 for regime in samples if regime != MarketRegime.COLD.value)
    return warm / len(samples) * 100.0


def compute_paper_stats(
    positions: Iterable[Position],
    orders: Iterable[Order],
    *,
    equity_history: Optional[Iterable[EquitySnapshot]] = None,
    decisions: Optional[Iterable[DecisionRecord]] = None,
    regime_history: Optional[Iterable[Mapping[str, Any]]] = None,
) -> PaperStats:
    """Summarise closed paper positions. A trade with zero realized P&L counts as a loss."""

    closed = [position for position in positions if position.status == PositionStatus.CLOSED]
    pnls = [position.realized_pnl_sol for position in closed]
    wins = [pnl for pnl in pnls if pnl > 0]
    losses = [pnl for pnl in pnls if pnl <= 0]
    win_rate = len(wins) / len(closed) if closed else 0.0
    avg_win = _mean(wins)
    avg_loss = abs(_mean(losses))

    slippages = [
        order.slippage_bps
        for order in orders
        if order.status == OrderStatus.CONFIRMED and order.slippage_bps is not None
    ]
    holds = [
        (position.last_update - position.entry_time).total_seconds() / 60.0 for position in closed
    ]

    sharpe = 0.0
    if len(pnls) > 1:
        mean = _mean(pnls)
        variance = sum((pnl - mean) ** 2 for pnl in pnls) / (len(pnls) - 1)
        if variance > 0:
            sharpe = mean / math.sqrt(variance)

    return PaperStats(
        total_trades=len(closed),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=win_rate,
        total_pnl_sol=sum(pnls),
        avg_pnl_per_trade=_mean(pnls),
        avg_win_sol=avg_win,
        avg_loss_sol=avg_loss,
        expectancy_sol=win_rate * avg_win - (1 - win_rate) * avg_loss,
        max_drawdown_pct=max_drawdown_pct(equity_history or []),
        avg_slippage_bps=_mean(slippages),
        avg_hold_minutes=_mean(holds),
        sharpe_proxy=sharpe,
        filter_pass_rates=filter_pass_rates(decisions or []),
        regime_on_time_pct=regime_on_time_pct(regime_history or []),
    )


def stats_from_storage(storage: SQLiteStorage, limit: int = 1_000) -> PaperStats:
    return compute_paper_stats(
        storage.list_positions(limit=limit),
        storage.list_orders(limit=limit),
        equity_history=storage.list_equity_history(limit=limit),
        decisions=storage.list_decisions(limit=limit),
        regime_history=storage.list_regime_history(limit=limit),
    )


__all__ = [
    "PaperStats",
    "compute_paper_stats",
    "filter_pass_rates",
    "max_drawdown_pct",
    "regime_on_time_pct",
    "stats_from_storage",
]
