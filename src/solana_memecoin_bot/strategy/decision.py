"""Decision card builder: features, filters, verdict, plan, and audit trail."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from ..analysis.features import FeatureAggregator
from ..config.settings import AppConfig
from ..datalake.schemas import (
    DecisionCard,
    ExecutionPlan,
    FeatureSnapshot,
    FilterCheck,
    Position,
    RiskImpact,
    RiskState,
    Route,
    TokenInfo,
    Verdict,
)
from ..datalake.storage import StorageAdapter
from ..monitoring.event_bus import EVENT_BUS, BroadcastKind, EventBus
from ..monitoring.logger import correlation_scope, get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import (
    LARGE_ORDER_THRESHOLD_SOL,
    PLACEHOLDER_PRICE_SOL,
    SOL_MINT,
    utc_now,
)
from .filters import FilterContext, run_filters

MAX_SUMMARY_SENTENCES = 3


def order_size_for(config: AppConfig, equity_sol: float) -> float:
    return max(equity_sol, 0.0) * config.risk.risk_per_trade_pct / 100.0


def build_execution_plan(
    token: TokenInfo,
    amount_sol: float,
    features: FeatureSnapshot,
    config: AppConfig,
) -> ExecutionPlan:
    route = Route.JUPITER if token.pool_address else Route.PUMP_BONDING_CURVE
    reference_price = token.price_sol or PLACEHOLDER_PRICE_SOL
    slippage_bps = features.execution.estimated_slippage_bps
    effective_price = reference_price * (1 + slippage_bps / 10_000)
    return ExecutionPlan(
        mint=token.mint,
        symbol=token.symbol,
        route=route,
        input_mint=SOL_MINT,
        output_mint=token.mint,
        amount_sol=amount_sol,
        max_slippage_bps=config.execution.max_slippage_bps,
        priority_fee_lamports=config.execution.priority_fee_lamports,
        compute_budget=config.execution.compute_budget,
        estimated_slippage_bps=slippage_bps,
        estimated_output_tokens=amount_sol / effective_price if effective_price > 0 else 0.0,
        reference_price_sol=reference_price,
        split_count=2 if amount_sol > LARGE_ORDER_THRESHOLD_SOL else 1,
    )


def build_risk_impact(amount_sol: float, config: AppConfig, state: RiskState) -> RiskImpact:
    equity = state.equity_sol
    risk_pct = amount_sol / equity * 100.0 if equity > 0 else float("inf")
    new_exposure_pct = (
        (state.current_exposure_sol + amount_sol) / equity * 100.0 if equity > 0 else float("inf")
    )
    details: List[str] = [
        f"Risk per trade {risk_pct:.2f}% (limit {config.risk.risk_per_trade_pct:g}%)",
        f"Exposure after entry {new_exposure_pct:.2f}% (limit {config.risk.max_exposure_pct:g}%)",
        f"Trades today {state.today_trade_count}/{config.risk.max_trades_per_day}",
    ]
    within = (
        risk_pct <= config.risk.risk_per_trade_pct + 1e-9
        and new_exposure_pct <= config.risk.max_exposure_pct + 1e-9
    )
    return RiskImpact(
        risk_pct=risk_pct,
        max_loss_sol=amount_sol * config.exits.stop_loss_pct / 100.0,
        new_exposure_pct=new_exposure_pct,
        within_limits=within,
        limit_details=tuple(details),
    )


def build_summary(
    symbol: str,
    verdict: Verdict,
    checks: Sequence[FilterCheck],
    features: FeatureSnapshot,
) -> List[str]:
    if verdict == Verdict.SKIP:
        failed = [check for check in checks if not check.passed]
        sentences = [f"SKIPPING {symbol}: {len(failed)} filter(s) failed."]
        sentences.extend(check.reason.rstrip(".") + "." for check in failed[: MAX_SUMMARY_SENTENCES - 1])
        return sentences
    execution = features.execution
    return [
        f"TRADING {symbol}: all {len(checks)} filters passed.",
        (
            f"Market is {features.regime.regime.value} with "
            f"{features.traction.unique_buyers_per_min:.1f} buyers/min."
        ),
        (
            f"Execution looks clean: {execution.estimated_slippage_bps}bps est. slippage, "
            f"{execution.liquidity_depth_sol:.1f} SOL depth."
        ),
    ]


class DecisionEngine:
    """Evaluates tokens into persisted, immutable decision cards."""

    def __init__(
        self,
        aggregator: FeatureAggregator,
        storage: StorageAdapter,
        *,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._aggregator = aggregator
        self._storage = storage
        self._bus = bus or EVENT_BUS
        self._clock = clock
        self._logger = get_logger(__name__)

    def evaluate(
        self,
        token: TokenInfo,
        config: AppConfig,
        risk_state: RiskState,
        open_positions: Sequence[Position],
    ) -> DecisionCard:
        """Build, persist, and broadcast a decision card for ``token``.

        Persistence errors propagate; the caller must not treat the card as saved.
        """

        card_id = uuid.uuid4().hex
        with correlation_scope(card_id):
            now = self._clock()
            order_size = order_size_for(config, risk_state.equity_sol)
            features = self._aggregator.snapshot(token, order_size, config.filters, now)
            checks = run_filters(
                FilterContext(
                    features=features,
                    config=config,
                    token=token,
                    risk_state=risk_state,
                    order_size_sol=order_size,
                    now=now,
                    open_positions=list(open_positions),
                )
            )
            verdict = Verdict.TRADE if all(check.passed for check in checks) else Verdict.SKIP
            plan = impact = None
            if verdict == Verdict.TRADE:
                plan = build_execution_plan(token, order_size, features, config)
                impact = build_risk_impact(order_size, config, risk_state)
            card = DecisionCard(
                id=card_id,
                mint=token.mint,
                symbol=token.symbol,
                timestamp=now,
                verdict=verdict,
                summary=tuple(build_summary(token.symbol, verdict, checks, features)),
                checks=tuple(checks),
                features=features,
                execution_plan=plan,
                risk_impact=impact,
            )
            self._storage.record_decision(card)
            METRICS.increment(f"decisions.{verdict.value}")
            self._logger.info("%s", " ".join(card.summary))
            self._bus.publish(BroadcastKind.DECISION_CARD, card, correlation_id=card_id)
        return card


__all__ = [
    "DecisionEngine",
    "build_execution_plan",
    "build_risk_impact",
    "build_summary",
    "order_size_for",
]
