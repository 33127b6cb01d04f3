"""Portfolio risk governor: pre-trade gate, kill switch, and auto-halt checks."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from ..config.settings import RiskLimitsConfig
from ..datalake.schemas import (
    Incident,
    IncidentCategory,
    IncidentSeverity,
    RiskLimits,
    RiskState,
)
from ..datalake.storage import StorageAdapter
from ..monitoring.event_bus import EVENT_BUS, BroadcastKind, EventBus, EventSeverity
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import utc_now

AUTO_RESUME_AFTER = timedelta(hours=24)
KILL_SWITCH_ACTION = "All new orders blocked"
_PCT_TOLERANCE = 1e-9


@dataclass(slots=True)
class RiskCheck:
    """A single governor condition evaluated for a prospective trade."""

    name: str
    passed: bool
    value: str
    limit: str
    detail: str = ""


@dataclass(slots=True)
class RiskCheckResult:
    """Outcome of a pre-trade risk assessment."""

    allowed: bool
    reason: str
    checks: List[RiskCheck] = field(default_factory=list)

    @property
    def failed_checks(self) -> List[RiskCheck]:
        return [check for check in self.checks if not check.passed]


def limits_from_config(config: RiskLimitsConfig) -> RiskLimits:
    return RiskLimits(
        risk_per_trade_pct=config.risk_per_trade_pct,
        max_exposure_pct=config.max_exposure_pct,
        daily_max_drawdown_pct=config.daily_max_drawdown_pct,
        max_trades_per_hour=config.max_trades_per_hour,
        max_trades_per_day=config.max_trades_per_day,
        max_consecutive_losses=config.max_consecutive_losses,
    )


def evaluate_risk_checks(state: RiskState, trade_size_sol: float) -> RiskCheckResult:
    """Evaluate the seven governor conditions against ``state`` without side effects."""

    limits = state.limits
    equity = state.equity_sol
    if equity > 0:
        exposure_after = (state.current_exposure_sol + trade_size_sol) / equity * 100.0
        trade_risk = trade_size_sol / equity * 100.0
    else:
        exposure_after = trade_risk = float("inf")

    checks = [
        RiskCheck(
            name="kill_switch",
            passed=not state.is_halted,
            value="halted" if state.is_halted else "active",
            limit="active",
            detail=f"Trading halted: {state.halt_reason or 'kill switch engaged'}",
        ),
        RiskCheck(
            name="daily_drawdown",
            passed=abs(state.today_drawdown_pct) < limits.daily_max_drawdown_pct,
            value=f"{state.today_drawdown_pct:.2f}%",
            limit=f"{limits.daily_max_drawdown_pct:.2f}%",
            detail=(
                f"Daily drawdown {state.today_drawdown_pct:.2f}% at or beyond "
                f"{limits.daily_max_drawdown_pct:.2f}% limit"
            ),
        ),
        RiskCheck(
            name="max_exposure",
            passed=exposure_after <= limits.max_exposure_pct + _PCT_TOLERANCE,
            value=f"{exposure_after:.2f}%",
            limit=f"{limits.max_exposure_pct:.2f}%",
            detail=(
                f"Exposure after trade {exposure_after:.2f}% exceeds "
                f"{limits.max_exposure_pct:.2f}% limit"
            ),
        ),
        RiskCheck(
            name="risk_per_trade",
            passed=trade_risk <= limits.risk_per_trade_pct + _PCT_TOLERANCE,
            value=f"{trade_risk:.2f}%",
            limit=f"{limits.risk_per_trade_pct:.2f}%",
            detail=(
                f"Trade size {trade_risk:.2f}% of equity exceeds "
                f"{limits.risk_per_trade_pct:.2f}% per-trade limit"
            ),
        ),
        RiskCheck(
            name="hourly_trades",
            passed=state.hour_trade_count < limits.max_trades_per_hour,
            value=str(state.hour_trade_count),
            limit=str(limits.max_trades_per_hour),
            detail=f"Hourly trade cap reached ({state.hour_trade_count}/{limits.max_trades_per_hour})",
        ),
        RiskCheck(
            name="daily_trades",
            passed=state.today_trade_count < limits.max_trades_per_day,
            value=str(state.today_trade_count),
            limit=str(limits.max_trades_per_day),
            detail=f"Daily trade cap reached ({state.today_trade_count}/{limits.max_trades_per_day})",
        ),
        RiskCheck(
            name="consecutive_losses",
            passed=state.consecutive_losses < limits.max_consecutive_losses,
            value=str(state.consecutive_losses),
            limit=str(limits.max_consecutive_losses),
            detail=(
                f"{state.consecutive_losses} consecutive losses "
                f"(limit {limits.max_consecutive_losses})"
            ),
        ),
    ]
    failed = [check for check in checks if not check.passed]
    if failed:
        reason = "Blocked: " + "; ".join(f"{check.name} ({check.detail})" for check in failed)
    else:
        reason = "All risk checks passed"
    return RiskCheckResult(allowed=not failed, reason=reason, checks=checks)


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class RiskGovernor:
    """Owns the portfolio risk state and is its only mutation point."""

    def __init__(
        self,
        storage: StorageAdapter,
        limits: RiskLimitsConfig,
        starting_equity_sol: float,
        *,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._storage = storage
        self._bus = bus or EVENT_BUS
        self._clock = clock
        self._lock = threading.RLock()
        self._state = RiskState(
            equity_sol=starting_equity_sol,
            start_of_day_equity_sol=starting_equity_sol,
            limits=limits_from_config(limits),
        )
        self._day: date = clock().date()
        self._logger = get_logger(__name__)

    @property
    def state(self) -> RiskState:
        """Return a copy of the current risk state."""

        with self._lock:
            return replace(self._state, limits=replace(self._state.limits))

    @property
    def is_halted(self) -> bool:
        with self._lock:
            return self._state.is_halted

    @property
    def equity_sol(self) -> float:
        with self._lock:
            return self._state.equity_sol

    # ----------------------------------------------------------------- equity
    def update_equity(self, equity_sol: float) -> RiskState:
        """Set free equity (cash) and recompute P&L, drawdown, and exposure share."""

        with self._lock:
            self._state.equity_sol = equity_sol
            self._recompute()
            snapshot = self.state
        METRICS.gauge("equity_sol", snapshot.equity_sol)
        return snapshot

    def apply_fill(self, equity_delta_sol: float, exposure_delta_sol: float = 0.0) -> RiskState:
        """Atomically apply the cash and cost-basis effect of one fill.

        A buy moves cash into exposure (only the fee shows up as P&L); a sell
        releases cost basis and credits proceeds, realising the difference.
        """

        with self._lock:
            self._state.current_exposure_sol = max(
                self._state.current_exposure_sol + exposure_delta_sol, 0.0
            )
            return self.update_equity(self._state.equity_sol + equity_delta_sol)

    # --------------------------------------------------------------- counters
    def refresh_counters(self, now: Optional[datetime] = None) -> RiskState:
        current = now or self._clock()
        positions = self._storage.list_open_positions()
        exposure = 0.0
        for position in positions:
            if position.tokens_bought > 0:
                exposure += position.entry_amount_sol * position.remaining_tokens / position.tokens_bought
        today = self._storage.count_confirmed_buys(_start_of_day(current))
        hour = self._storage.count_confirmed_buys(current - timedelta(hours=1))
        losses = self._storage.count_consecutive_losses()
        with self._lock:
            state = self._state
            state.current_exposure_sol = exposure
            state.open_position_count = len(positions)
            state.today_trade_count = today
            state.hour_trade_count = hour
            state.consecutive_losses = losses
            self._recompute()
            return self.state

    def pre_trade_check(self, trade_size_sol: float) -> RiskCheckResult:
        """Refresh counters from the store, then evaluate every governor condition."""

        state = self.refresh_counters()
        result = evaluate_risk_checks(state, trade_size_sol)
        if result.allowed:
            METRICS.increment("risk_approved")
        else:
            METRICS.increment("risk_rejections")
            for check in result.failed_checks:
                METRICS.increment(f"risk_reject_reason.{check.name}")
            self._logger.info("Pre-trade check rejected %.4f SOL: %s", trade_size_sol, result.reason)
        return result

    # ------------------------------------------------------------ kill switch
    def activate_kill_switch(
        self, reason: str, *, resume_at: Optional[datetime] = None
    ) -> Optional[Incident]:
        now = self._clock()
        with self._lock:
            if self._state.is_halted:
                self._logger.info("Kill switch already active (%s)", self._state.halt_reason)
                return None
            self._state.is_halted = True
            self._state.halt_reason = reason
            self._state.halted_at = now
            self._state.resume_at = resume_at
        self._logger.critical("Kill switch activated: %s", reason)
        METRICS.increment("kill_switch_activations")
        incident = Incident(
            id=uuid.uuid4().hex,
            timestamp=now,
            severity=IncidentSeverity.CRITICAL,
            category=IncidentCategory.KILL_SWITCH,
            message=f"Kill switch activated: {reason}",
            auto_action=KILL_SWITCH_ACTION,
            resume_at=resume_at,
        )
        self._emit_incident(incident)
        self._broadcast_state()
        return incident

    def deactivate_kill_switch(self, reason: str = "manual") -> bool:
        with self._lock:
            if not self._state.is_halted:
                return False
            previous = self._state.halt_reason
            self._state.is_halted = False
            self._state.halt_reason = None
            self._state.halted_at = None
            self._state.resume_at = None
        self._logger.warning("Kill switch deactivated (%s); previous reason: %s", reason, previous)
        self._emit_incident(
            Incident(
                id=uuid.uuid4().hex,
                timestamp=self._clock(),
                severity=IncidentSeverity.INFO,
                category=IncidentCategory.KILL_SWITCH,
                message=f"Kill switch deactivated ({reason})",
                resolved=True,
            )
        )
        self._broadcast_state()
        return True

    def run_auto_halt_checks(self) -> List[Incident]:
        """Halt trading on a drawdown or losing-streak breach. Open positions are left alone."""

        state = self.refresh_counters()
        if state.is_halted:
            return []
        limits = state.limits
        now = self._clock()
        incidents: List[Incident] = []
        if abs(state.today_drawdown_pct) >= limits.daily_max_drawdown_pct:
            message = (
                f"Daily drawdown {state.today_drawdown_pct:.2f}% breached "
                f"{limits.daily_max_drawdown_pct:.2f}% limit"
            )
            resume_at = now + AUTO_RESUME_AFTER
            activation = self.activate_kill_switch(message, resume_at=resume_at)
            if activation is not None:
                incidents.append(activation)
                breach = Incident(
                    id=uuid.uuid4().hex,
                    timestamp=now,
                    severity=IncidentSeverity.CRITICAL,
                    category=IncidentCategory.DAILY_DRAWDOWN,
                    message=message,
                    auto_action=f"Trading halted until {resume_at.isoformat()}",
                    resume_at=resume_at,
                )
                self._emit_incident(breach)
                incidents.append(breach)
        elif state.consecutive_losses >= limits.max_consecutive_losses:
            message = (
                f"{state.consecutive_losses} consecutive losses reached limit "
                f"{limits.max_consecutive_losses}"
            )
            activation = self.activate_kill_switch(message)
            if activation is not None:
                incidents.append(activation)
                streak = Incident(
                    id=uuid.uuid4().hex,
                    timestamp=now,
                    severity=IncidentSeverity.WARNING,
                    category=IncidentCategory.CONSECUTIVE_LOSSES,
                    message=message,
                    auto_action="Trading halted until manual review",
                )
                self._emit_incident(streak)
                incidents.append(streak)
        return incidents

    # ------------------------------------------------------------ daily reset
    def needs_daily_reset(self, now: Optional[datetime] = None) -> bool:
        current = now or self._clock()
        with self._lock:
            return current.date() != self._day

    def reset_daily_counters(self, now: Optional[datetime] = None) -> bool:
        """Rebase start-of-day equity and auto-resume an expired halt. Returns ``True`` if resumed."""

        current = now or self._clock()
        with self._lock:
            state = self._state
            state.start_of_day_equity_sol = state.equity_sol + state.current_exposure_sol
            state.today_pnl_sol = 0.0
            state.today_pnl_pct = 0.0
            state.today_drawdown_pct = 0.0
            state.today_trade_count = 0
            self._day = current.date()
            resume = state.is_halted and state.resume_at is not None and current >= state.resume_at
        self._logger.info("Daily risk counters reset; start-of-day equity rebased")
        resumed = False
        if resume:
            resumed = self.deactivate_kill_switch("auto-resume after cooling-off period")
        else:
            self._broadcast_state()
        return resumed

    # ---------------------------------------------------------------- helpers
    def _recompute(self) -> None:
        # P&L is measured on net asset value: cash plus open cost basis.
        state = self._state
        nav = state.equity_sol + state.current_exposure_sol
        state.today_pnl_sol = nav - state.start_of_day_equity_sol
        if state.start_of_day_equity_sol > 0:
            state.today_pnl_pct = state.today_pnl_sol / state.start_of_day_equity_sol * 100.0
        else:
            state.today_pnl_pct = 0.0
        state.today_drawdown_pct = min(state.today_drawdown_pct, state.today_pnl_pct)
        if state.equity_sol > 0:
            state.current_exposure_pct = state.current_exposure_sol / state.equity_sol * 100.0
        else:
            state.current_exposure_pct = 0.0

    def _emit_incident(self, incident: Incident) -> None:
        # Broadcast first; persistence errors propagate to the caller.
        severity = EventSeverity(incident.severity.value)
        self._bus.publish(BroadcastKind.INCIDENT, incident, severity=severity)
        self._storage.record_incident(incident)

    def _broadcast_state(self) -> None:
        self._bus.publish(BroadcastKind.RISK_UPDATE, self.state)


__all__ = [
    "AUTO_RESUME_AFTER",
    "RiskCheck",
    "RiskCheckResult",
    "RiskGovernor",
    "evaluate_risk_checks",
    "limits_from_config",
]
