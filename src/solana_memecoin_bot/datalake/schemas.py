"""Data models shared by the feature, decision, risk, and execution layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class EventKind(str, Enum):
    LAUNCH = "launch"
    BUY = "buy"
    SELL = "sell"
    GRADUATION = "graduation"


class TokenPhase(str, Enum):
    BONDING_CURVE = "bonding_curve"
    GRADUATED = "graduated"


class MarketRegime(str, Enum):
    MANIA = "mania"
    NORMAL = "normal"
    COLD = "cold"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"


class FilterResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class Verdict(str, Enum):
    TRADE = "trade"
    SKIP = "skip"


class Route(str, Enum):
    JUPITER = "jupiter"
    RAYDIUM_DIRECT = "raydium_direct"
    PUMP_BONDING_CURVE = "pump_bonding_curve"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderSource(str, Enum):
    """Why an order was created."""

    ENTRY = "entry"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    TRAILING_STOP = "trailing_stop"
    TIME_STOP = "time_stop"
    MANUAL = "manual"


class OrderStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_ORDER_STATUSES = frozenset(
    {OrderStatus.CONFIRMED, OrderStatus.FAILED, OrderStatus.EXPIRED, OrderStatus.CANCELLED}
)


class PositionStatus(str, Enum):
    OPEN = "open"
    PARTIALLY_CLOSED = "partially_closed"
    CLOSED = "closed"


class IncidentSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class IncidentCategory(str, Enum):
    KILL_SWITCH = "kill_switch"
    DAILY_DRAWDOWN = "daily_drawdown"
    CONSECUTIVE_LOSSES = "consecutive_losses"
    DAILY_RESET = "daily_reset"
    SYSTEM = "system"


@dataclass(slots=True)
class TokenInfo:
    """Describes a newly observed memecoin and its launch lifecycle."""

    mint: str
    symbol: str
    name: str
    created_at: datetime
    creator: Optional[str] = None
    phase: TokenPhase = TokenPhase.BONDING_CURVE
    bonding_curve_address: Optional[str] = None
    pool_address: Optional[str] = None
    graduated_at: Optional[datetime] = None
    mint_authority_revoked: bool = True
    freeze_authority_revoked: bool = True
    price_sol: Optional[float] = None


@dataclass(frozen=True, slots=True)
class MarketEvent:
    """A single launch, trade, or graduation observed by an event source."""

    kind: EventKind
    mint: str
    wallet: str
    amount_sol: float
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class RegimeFeatures:
    launch_count: int
    launch_rate_per_min: float
    volume_sol: float
    graduation_count: int
    volatility_proxy: float
    regime_score: int
    regime: MarketRegime
    market_risk_on: bool
    reason: str


@dataclass(frozen=True, slots=True)
class TractionFeatures:
    unique_buyers_per_min: float
    net_buy_pressure: float
    buy_count: int
    sell_count: int
    small_buys: int
    medium_buys: int
    large_buys: int
    breadth_score: float
    velocity: float
    acceleration: float
    seconds_since_launch: Optional[float] = None
    seconds_since_graduation: Optional[float] = None


@dataclass(frozen=True, slots=True)
class ConcentrationFeatures:
    """Holder concentration estimated from observed buy flow, not ledger balances."""

    top10_holder_pct: float
    top20_holder_pct: float
    creator_holding_pct: float
    creator_sold_pct: float
    suspicious_creator: bool
    mint_authority_revoked: bool
    freeze_authority_revoked: bool
    risk: RiskLevel


@dataclass(frozen=True, slots=True)
class ExecutionRiskFeatures:
    liquidity_depth_sol: float
    spread_bps: float
    estimated_slippage_bps: int
    avg_latency_ms: float
    failure_rate: float
    risk: RiskLevel


@dataclass(frozen=True, slots=True)
class FeatureSnapshot:
    regime: RegimeFeatures
    traction: TractionFeatures
    concentration: ConcentrationFeatures
    execution: ExecutionRiskFeatures


@dataclass(frozen=True, slots=True)
class FilterCheck:
    """Outcome of a single entry filter."""

    name: str
    result: FilterResult
    value: str
    threshold: str
    reason: str

    @property
    def passed(self) -> bool:
        return self.result == FilterResult.PASS


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """How an approved entry should be routed and sized."""

    mint: str
    symbol: str
    route: Route
    input_mint: str
    output_mint: str
    amount_sol: float
    max_slippage_bps: int
    priority_fee_lamports: int
    compute_budget: int
    estimated_slippage_bps: int
    estimated_output_tokens: float
    reference_price_sol: float
    split_count: int = 1


@dataclass(frozen=True, slots=True)
class RiskImpact:
    risk_pct: float
    max_loss_sol: float
    new_exposure_pct: float
    within_limits: bool
    limit_details: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class DecisionCard:
    """Immutable audit record of one entry evaluation."""

    id: str
    mint: str
    symbol: str
    timestamp: datetime
    verdict: Verdict
    summary: Tuple[str, ...]
    checks: Tuple[FilterCheck, ...]
    features: FeatureSnapshot
    execution_plan: Optional[ExecutionPlan] = None
    risk_impact: Optional[RiskImpact] = None

    @property
    def failed_checks(self) -> List[FilterCheck]:
        return [check for check in self.checks if not check.passed]


@dataclass(slots=True)
class TakeProfitLevel:
    gain_pct: float
    sell_pct: float
    triggered: bool = False


@dataclass(slots=True)
class Order:
    """Lifecycle record of one buy or sell, paper or live."""

    id: str
    idempotency_key: str
    mint: str
    side: OrderSide
    source: OrderSource
    requested_amount_sol: float
    status: OrderStatus = OrderStatus.PENDING
    executed_amount_sol: float = 0.0
    requested_price: Optional[float] = None
    executed_price: Optional[float] = None
    token_amount: float = 0.0
    slippage_bps: float = 0.0
    fee_sol: float = 0.0
    is_paper: bool = True
    decision_id: Optional[str] = None
    position_id: Optional[str] = None
    retry_count: int = 0
    latency_ms: float = 0.0
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class Position:
    """An entry and its exit state machine."""

    id: str
    mint: str
    symbol: str
    entry_price: float
    current_price: float
    entry_amount_sol: float
    tokens_bought: float
    stop_loss_price: float
    trailing_stop_pct: float
    trailing_stop_price: float
    high_water_mark: float
    time_stop_minutes: float
    entry_time: datetime
    last_update: datetime
    status: PositionStatus = PositionStatus.OPEN
    tokens_sold: float = 0.0
    realized_pnl_sol: float = 0.0
    unrealized_pnl_sol: float = 0.0
    take_profit_levels: List[TakeProfitLevel] = field(default_factory=list)
    decision_id: Optional[str] = None
    exit_reason: Optional[str] = None
    is_paper: bool = True

    @property
    def remaining_tokens(self) -> float:
        return max(self.tokens_bought - self.tokens_sold, 0.0)

    @property
    def is_open(self) -> bool:
        return self.status != PositionStatus.CLOSED

    def pnl_pct(self, price: Optional[float] = None) -> float:
        mark = self.current_price if price is None else price
        if self.entry_price <= 0:
            return 0.0
        return (mark - self.entry_price) / self.entry_price * 100.0


@dataclass(slots=True)
class Incident:
    """Audit entry for an automatic or manual governor action."""

    id: str
    timestamp: datetime
    severity: IncidentSeverity
    category: IncidentCategory
    message: str
    auto_action: Optional[str] = None
    resume_at: Optional[datetime] = None
    resolved: bool = False


@dataclass(slots=True)
class RiskLimits:
    risk_per_trade_pct: float
    max_exposure_pct: float
    daily_max_drawdown_pct: float
    max_trades_per_hour: int
    max_trades_per_day: int
    max_consecutive_losses: int


@dataclass(slots=True)
class RiskState:
    """Portfolio risk state owned by the risk governor."""

    equity_sol: float
    start_of_day_equity_sol: float
    limits: RiskLimits
    today_pnl_sol: float = 0.0
    today_pnl_pct: float = 0.0
    today_drawdown_pct: float = 0.0
    current_exposure_sol: float = 0.0
    current_exposure_pct: float = 0.0
    open_position_count: int = 0
    today_trade_count: int = 0
    hour_trade_count: int = 0
    consecutive_losses: int = 0
    is_halted: bool = False
    halt_reason: Optional[str] = None
    halted_at: Optional[datetime] = None
    resume_at: Optional[datetime] = None


@dataclass(slots=True)
class DecisionRecord:
    """Stored view of a decision card."""

    id: str
    mint: str
    symbol: str
    timestamp: datetime
    verdict: Verdict
    summary: List[str]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class EquitySnapshot:
    timestamp: datetime
    equity_sol: float
    pnl_sol: float
    pnl_pct: float
    drawdown_pct: float
    exposure_pct: float
    open_positions: int


__all__ = [
    "ConcentrationFeatures",
    "DecisionCard",
    "DecisionRecord",
    "EquitySnapshot",
    "EventKind",
    "ExecutionPlan",
    "ExecutionRiskFeatures",
    "FeatureSnapshot",
    "FilterCheck",
    "FilterResult",
    "Incident",
    "IncidentCategory",
    "IncidentSeverity",
    "MarketEvent",
    "MarketRegime",
    "Order",
    "OrderSide",
    "OrderSource",
    "OrderStatus",
    "Position",
    "PositionStatus",
    "RegimeFeatures",
    "RiskImpact",
    "RiskLevel",
    "RiskLimits",
    "RiskState",
    "Route",
    "TERMINAL_ORDER_STATUSES",
    "TakeProfitLevel",
    "TokenInfo",
    "TokenPhase",
    "TractionFeatures",
    "Verdict",
]
