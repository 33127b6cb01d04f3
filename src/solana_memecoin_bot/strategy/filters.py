"""Entry filters evaluated for every decision card.

Each filter is an independent predicate over the feature snapshot, the active
configuration, the token descriptor, and the governor's risk state. Filters
never raise: an internal fault is reported as a failing check so one broken
heuristic cannot abort the whole evaluation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Sequence, Tuple

from ..config.settings import AppConfig
from ..datalake.schemas import (
    FeatureSnapshot,
    FilterCheck,
    FilterResult,
    Position,
    RiskLevel,
    RiskState,
    TokenInfo,
    TokenPhase,
)
from ..monitoring.logger import get_logger
from .risk import evaluate_risk_checks

logger = get_logger(__name__)


@dataclass(slots=True)
class FilterContext:
    """Inputs shared by every filter."""

    features: FeatureSnapshot
    config: AppConfig
    token: TokenInfo
    risk_state: RiskState
    order_size_sol: float
    now: datetime
    open_positions: Sequence[Position] = field(default_factory=list)


def _check(name: str, passed: bool, value: object, threshold: object, reason: str) -> FilterCheck:
    return FilterCheck(
        name=name,
        result=FilterResult.PASS if passed else FilterResult.FAIL,
        value=str(value),
        threshold=str(threshold),
        reason=reason,
    )


def regime_gate(ctx: FilterContext) -> FilterCheck:
    regime = ctx.features.regime
    threshold = ctx.config.filters.regime_score_threshold
    passed = regime.regime_score >= threshold
    if passed:
        reason = f"Market regime {regime.regime.value} (score {regime.regime_score})"
    else:
        reason = f"Regime score {regime.regime_score} below {threshold}: {regime.reason}"
    return _check("Market Regime", passed, regime.regime_score, f">= {threshold}", reason)


def liquidity_depth(ctx: FilterContext) -> FilterCheck:
    depth = ctx.features.execution.liquidity_depth_sol
    minimum = ctx.config.filters.min_liquidity_depth_sol
    passed = depth >= minimum
    reason = (
        f"Liquidity depth {depth:.2f} SOL"
        if passed
        else f"Liquidity depth {depth:.2f} SOL below {minimum:g} SOL minimum"
    )
    return _check("Liquidity Depth", passed, f"{depth:.2f}", f">= {minimum:g}", reason)


def holder_concentration(ctx: FilterContext) -> FilterCheck:
    top10 = ctx.features.concentration.top10_holder_pct
    maximum = ctx.config.filters.max_top10_holder_pct
    passed = top10 <= maximum
    reason = (
        f"Top-10 wallets hold {top10:.1f}% of observed volume"
        if passed
        else f"Top-10 concentration {top10:.1f}% exceeds {maximum:g}%"
    )
    return _check("Holder Concentration", passed, f"{top10:.1f}%", f"<= {maximum:g}%", reason)


def creator_behavior(ctx: FilterContext) -> FilterCheck:
    concentration = ctx.features.concentration
    passed = not concentration.suspicious_creator
    if passed:
        reason = f"Creator sold {concentration.creator_sold_pct:.0f}% of observed buys"
    else:
        reason = (
            f"Creator dumping: sold {concentration.creator_sold_pct:.0f}% of observed buys"
        )
    return _check(
        "Creator Behavior",
        passed,
        f"{concentration.creator_sold_pct:.0f}% sold",
        "<= 50% sold",
        reason,
    )


def token_permissions(ctx: FilterContext) -> FilterCheck:
    concentration = ctx.features.concentration
    problems = []
    if not concentration.mint_authority_revoked:
        problems.append("mint authority active")
    if not concentration.freeze_authority_revoked:
        problems.append("freeze authority active")
    passed = not problems
    reason = "Mint and freeze authority revoked" if passed else "Unsafe token: " + ", ".join(problems)
    value = "revoked" if passed else ", ".join(problems)
    return _check("Token Safety", passed, value, "mint+freeze revoked", reason)


def buyer_breadth(ctx: FilterContext) -> FilterCheck:
    rate = ctx.features.traction.unique_buyers_per_min
    minimum = ctx.config.filters.min_unique_buyers_per_min
    passed = rate >= minimum
    reason = (
        f"{rate:.1f} unique buyers/min"
        if passed
        else f"Only {rate:.1f} unique buyers/min, need {minimum:g}"
    )
    return _check("Buyer Breadth", passed, f"{rate:.1f}/min", f">= {minimum:g}/min", reason)


def buy_distribution(ctx: FilterContext) -> FilterCheck:
    traction = ctx.features.traction
    minimum = ctx.config.filters.min_breadth_score
    passed = traction.breadth_score >= minimum
    mix = f"{traction.small_buys}S/{traction.medium_buys}M/{traction.large_buys}L"
    reason = (
        f"Organic buy mix {mix} (breadth {traction.breadth_score:.2f})"
        if passed
        else f"Whale-driven buys {mix}: breadth {traction.breadth_score:.2f} below {minimum:g}"
    )
    return _check("Buy Distribution", passed, f"{traction.breadth_score:.2f}", f">= {minimum:g}", reason)


def execution_slippage(ctx: FilterContext) -> FilterCheck:
    execution = ctx.features.execution
    maximum = ctx.config.filters.max_estimated_slippage_bps
    passed = execution.estimated_slippage_bps <= maximum and execution.risk != RiskLevel.HIGH
    if passed:
        reason = f"Estimated slippage {execution.estimated_slippage_bps}bps ({execution.risk.value} risk)"
    elif execution.estimated_slippage_bps > maximum:
        reason = f"Estimated slippage {execution.estimated_slippage_bps}bps exceeds {maximum}bps"
    else:
        reason = "Execution risk high (latency or failure rate degraded)"
    return _check(
        "Execution Risk",
        passed,
        f"{execution.estimated_slippage_bps}bps",
        f"<= {maximum}bps",
        reason,
    )


def spread(ctx: FilterContext) -> FilterCheck:
    spread_bps = ctx.features.execution.spread_bps
    maximum = ctx.config.filters.max_spread_bps
    passed = spread_bps <= maximum
    reason = (
        f"Spread estimate {spread_bps:.0f}bps"
        if passed
        else f"Spread estimate {spread_bps:.0f}bps exceeds {maximum}bps"
    )
    return _check("Spread", passed, f"{spread_bps:.0f}bps", f"<= {maximum}bps", reason)


def graduation_timing(ctx: FilterContext) -> FilterCheck:
    filters = ctx.config.filters
    window = f"{filters.min_seconds_after_graduation}-{filters.max_seconds_after_graduation}s"
    token = ctx.token
    if token.phase != TokenPhase.GRADUATED or token.graduated_at is None:
        passed = ctx.config.scope.trade_pre_graduation
        reason = (
            "Pre-graduation trading enabled"
            if passed
            else "Token has not graduated and pre-graduation trading is disabled"
        )
        return _check("Graduation Timing", passed, "bonding curve", window, reason)
    elapsed = (ctx.now - token.graduated_at).total_seconds()
    if elapsed < filters.min_seconds_after_graduation:
        return _check(
            "Graduation Timing",
            False,
            f"{elapsed:.0f}s",
            window,
            f"Graduated {elapsed:.0f}s ago, waiting for {filters.min_seconds_after_graduation}s",
        )
    if elapsed > filters.max_seconds_after_graduation:
        return _check(
            "Graduation Timing",
            False,
            f"{elapsed:.0f}s",
            window,
            f"Graduated {elapsed:.0f}s ago, past the {filters.max_seconds_after_graduation}s window",
        )
    return _check("Graduation Timing", True, f"{elapsed:.0f}s", window, f"Graduated {elapsed:.0f}s ago")


def net_buy_pressure(ctx: FilterContext) -> FilterCheck:
    pressure = ctx.features.traction.net_buy_pressure
    minimum = ctx.config.filters.min_net_buy_pressure
    passed = pressure > minimum
    reason = (
        f"Net buy pressure {pressure:+.2f}"
        if passed
        else f"Net buy pressure {pressure:+.2f} not above {minimum:+.2f}"
    )
    return _check("Buy Pressure", passed, f"{pressure:+.2f}", f"> {minimum:+.2f}", reason)


def risk_limits(ctx: FilterContext) -> FilterCheck:
    result = evaluate_risk_checks(ctx.risk_state, ctx.order_size_sol)
    if result.allowed:
        return _check("Risk Limits", True, "ok", "all limits", "Within all risk limits")
    first = result.failed_checks[0]
    return _check("Risk Limits", False, first.value, first.limit, first.detail)


def infrastructure_health(ctx: FilterContext) -> FilterCheck:
    execution = ctx.features.execution
    filters = ctx.config.filters
    passed = (
        execution.avg_latency_ms < filters.max_rpc_latency_ms
        and execution.failure_rate < filters.max_rpc_failure_rate
    )
    value = f"{execution.avg_latency_ms:.0f}ms, {execution.failure_rate * 100:.0f}% fail"
    threshold = f"< {filters.max_rpc_latency_ms:.0f}ms, < {filters.max_rpc_failure_rate * 100:.0f}% fail"
    reason = f"RPC healthy: {value}" if passed else f"RPC degraded: {value}"
    return _check("RPC Health", passed, value, threshold, reason)


def duplicate_position(ctx: FilterContext) -> FilterCheck:
    held = any(
        position.mint == ctx.token.mint and position.is_open for position in ctx.open_positions
    )
    reason = "Already holding an open position" if held else "No open position in this token"
    return _check("Duplicate Position", not held, "open" if held else "none", "none", reason)


FilterFn = Callable[[FilterContext], FilterCheck]

FILTERS: Tuple[Tuple[str, FilterFn], ...] = (
    ("Market Regime", regime_gate),
    ("Liquidity Depth", liquidity_depth),
    ("Holder Concentration", holder_concentration),
    ("Creator Behavior", creator_behavior),
    ("Token Safety", token_permissions),
    ("Buyer Breadth", buyer_breadth),
    ("Buy Distribution", buy_distribution),
    ("Execution Risk", execution_slippage),
    ("Spread", spread),
    ("Graduation Timing", graduation_timing),
    ("Buy Pressure", net_buy_pressure),
    ("Risk Limits", risk_limits),
    ("RPC Health", infrastructure_health),
    ("Duplicate Position", duplicate_position),
)


def run_filters(
    ctx: FilterContext, filters: Sequence[Tuple[str, FilterFn]] = FILTERS
) -> List[FilterCheck]:
    """Run every filter in order, converting internal faults into failing checks."""

    checks: List[FilterCheck] = []
    for name, fn in filters:
        try:
            checks.append(fn(ctx))
        except Exception as exc:
            logger.warning("Filter %s raised for %s: %s", name, ctx.token.mint, exc)
            checks.append(_check(name, False, "error", "n/a", f"Filter error: {exc}"))
    return checks


__all__ = ["FILTERS", "FilterContext", "FilterFn", "run_filters"]
