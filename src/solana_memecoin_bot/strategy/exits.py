"""Exit rules for open positions: stop-loss, take-profit ladder, trailing stop, time stop."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..config.settings import ExitConfig
from ..datalake.schemas import OrderSource, Position
from ..utils.constants import utc_now

# A time stop only fires while the position has gained less than this.
TIME_STOP_MAX_GAIN_PCT = 10.0


@dataclass(frozen=True, slots=True)
class ExitSignal:
    """Instruction to sell part or all of a position."""

    source: OrderSource
    sell_pct: float
    reason: str
    price: float
    level_index: Optional[int] = None


def update_high_water_mark(position: Position, price: float) -> bool:
    """Raise the high-water mark and trailing stop price when ``price`` sets a new high."""

    if price <= position.high_water_mark:
        return False
    position.high_water_mark = price
    position.trailing_stop_price = price * (1 - position.trailing_stop_pct / 100.0)
    return True


def check_exit(
    position: Position,
    current_price: float,
    config: ExitConfig,
    *,
    now: Optional[datetime] = None,
) -> Optional[ExitSignal]:
    """Return the highest-priority exit that fires at ``current_price``, if any.

    Rules are checked in a fixed order and the first match wins:

    1. stop-loss at ``-stop_loss_pct``
    2. the first untriggered take-profit rung whose gain is reached
    3. trailing stop below the high-water mark, only while in profit
    4. time stop once held long enough without a 10% gain

    The position is not mutated; callers mark the take-profit rung identified by
    ``level_index`` once the sell is confirmed.
    """

    pnl_pct = position.pnl_pct(current_price)

    if pnl_pct <= -config.stop_loss_pct:
        return ExitSignal(
            source=OrderSource.STOP_LOSS,
            sell_pct=100.0,
            reason=f"Stop loss hit: {pnl_pct:.1f}% <= -{config.stop_loss_pct:g}%",
            price=current_price,
        )

    for index, level in enumerate(position.take_profit_levels):
        if level.triggered:
            continue
        if pnl_pct >= level.gain_pct:
            return ExitSignal(
                source=OrderSource.TAKE_PROFIT,
                sell_pct=level.sell_pct,
                reason=(
                    f"Take profit level {index + 1}: {pnl_pct:.1f}% >= {level.gain_pct:g}%, "
                    f"selling {level.sell_pct:g}%"
                ),
                price=current_price,
                level_index=index,
            )

    trailing_price = position.high_water_mark * (1 - config.trailing_stop_pct / 100.0)
    if current_price <= trailing_price and pnl_pct > 0:
        return ExitSignal(
            source=OrderSource.TRAILING_STOP,
            sell_pct=100.0,
            reason=(
                f"Trailing stop: price {current_price:.10g} <= {trailing_price:.10g} "
                f"({config.trailing_stop_pct:g}% below high {position.high_water_mark:.10g})"
            ),
            price=current_price,
        )

    held_minutes = ((now or utc_now()) - position.entry_time).total_seconds() / 60.0
    if held_minutes >= config.time_stop_minutes and pnl_pct < TIME_STOP_MAX_GAIN_PCT:
        return ExitSignal(
            source=OrderSource.TIME_STOP,
            sell_pct=100.0,
            reason=(
                f"Time stop: held {held_minutes:.0f}m >= {config.time_stop_minutes:g}m "
                f"with {pnl_pct:.1f}% gain"
            ),
            price=current_price,
        )
    return None


def mark_take_profit_triggered(position: Position, signal: ExitSignal) -> None:
    if signal.source == OrderSource.TAKE_PROFIT and signal.level_index is not None:
        position.take_profit_levels[signal.level_index].triggered = True


__all__ = [
    "ExitSignal",
    "TIME_STOP_MAX_GAIN_PCT",
    "check_exit",
    "mark_take_profit_triggered",
    "update_high_water_mark",
]
