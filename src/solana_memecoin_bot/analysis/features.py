"""Sliding-window feature aggregation over launch, trade, and graduation events."""

from __future__ import annotations

from collections import OrderedDict, deque
from datetime import datetime, timedelta
from statistics import mean
from typing import Callable, Deque, Dict, Iterator, List, Optional

from ..config.settings import FilterConfig
from ..datalake.schemas import (
    ConcentrationFeatures,
    EventKind,
    ExecutionRiskFeatures,
    FeatureSnapshot,
    MarketEvent,
    MarketRegime,
    RegimeFeatures,
    RiskLevel,
    TokenInfo,
    TractionFeatures,
)
from ..utils.constants import (
    FEATURE_WINDOW_SECONDS,
    LIQUIDITY_DEPTH_MULTIPLIER,
    LIQUIDITY_WINDOW_SECONDS,
    utc_now,
)

# Regime sub-score scaling: (normaliser, weight).
LAUNCH_SCALE = (20.0, 30.0)
VOLUME_SCALE = (500.0, 40.0)
GRADUATION_SCALE = (5.0, 30.0)
MANIA_SCORE = 70

SMALL_BUY_SOL = 0.1
LARGE_BUY_SOL = 1.0

DEFAULT_LATENCY_MS = 200.0
MAX_ATTEMPT_WINDOW = 200


class EventRingBuffer:
    """Fixed-capacity event buffer that evicts entries older than a retention cutoff."""

    def __init__(self, capacity: int, retention: timedelta) -> None:
        self._events: Deque[MarketEvent] = deque(maxlen=capacity)
        self._retention = retention

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[MarketEvent]:
        return iter(self._events)

    def append(self, event: MarketEvent, now: datetime) -> None:
        self._events.append(event)
        cutoff = now - self._retention
        while self._events and self._events[0].timestamp < cutoff:
            self._events.popleft()

    def since(self, start: datetime) -> List[MarketEvent]:
        return [event for event in self._events if event.timestamp >= start]


def regime_score(launches: int, volume_sol: float, graduations: int) -> int:
    """Weighted activity score in ``[0, 100]``."""

    total = 0.0
    for value, (scale, weight) in (
        (launches, LAUNCH_SCALE),
        (volume_sol, VOLUME_SCALE),
        (graduations, GRADUATION_SCALE),
    ):
        total += min(max(value, 0.0) / scale, 1.0) * weight
    return int(min(max(round(total), 0), 100))


def classify_regime(score: int, threshold: int) -> MarketRegime:
    if score >= MANIA_SCORE:
        return MarketRegime.MANIA
    if score >= threshold:
        return MarketRegime.NORMAL
    return MarketRegime.COLD


def classify_buy_size(amount_sol: float) -> str:
    if amount_sol < SMALL_BUY_SOL:
        return "small"
    if amount_sol < LARGE_BUY_SOL:
        return "medium"
    return "large"


def breadth_score(small: int, medium: int, large: int) -> float:
    """Share of buys that came from small and medium wallets."""

    total = small + medium + large
    if total <= 0:
        return 0.0
    return (small + medium) / total


def classify_concentration(top10_pct: float, suspicious_creator: bool = False) -> RiskLevel:
    if top10_pct > 80 or suspicious_creator:
        return RiskLevel.EXTREME
    if top10_pct > 60:
        return RiskLevel.HIGH
    if top10_pct > 40:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def estimate_slippage_bps(order_size_sol: float, liquidity_sol: float) -> int:
    """Linear price-impact estimate; zero for an empty order."""

    if order_size_sol <= 0:
        return 0
    liquidity = max(liquidity_sol, 1.0)
    return int(round(1000.0 * order_size_sol / liquidity))


def estimate_spread_bps(liquidity_sol: float) -> float:
    return min(max(5000.0 / max(liquidity_sol, 1.0), 50.0), 1000.0)


def classify_execution_risk(slippage_bps: float, latency_ms: float, failure_rate: float) -> RiskLevel:
    if slippage_bps > 500 or latency_ms > 2000 or failure_rate > 0.2:
        return RiskLevel.HIGH
    if slippage_bps > 200 or latency_ms > 1000 or failure_rate > 0.1:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class FeatureAggregator:
    """Keeps bounded global and per-asset event windows and derives feature snapshots."""

    def __init__(
        self,
        *,
        window_seconds: int = FEATURE_WINDOW_SECONDS,
        global_capacity: int = 50_000,
        asset_capacity: int = 5_000,
        max_tracked_assets: int = 2_000,
        latency_history: int = 100,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._window = timedelta(seconds=window_seconds)
        retention = self._window * 2
        self._asset_capacity = asset_capacity
        self._max_tracked_assets = max_tracked_assets
        self._retention = retention
        self._global = EventRingBuffer(global_capacity, retention)
        self._assets: "OrderedDict[str, EventRingBuffer]" = OrderedDict()
        self._latencies: Deque[float] = deque(maxlen=latency_history)
        self._attempts = 0
        self._failures = 0
        self._clock = clock

    @property
    def window_minutes(self) -> float:
        return self._window.total_seconds() / 60.0

    @property
    def tracked_assets(self) -> int:
        return len(self._assets)

    # ----------------------------------------------------------------- inputs
    def record_event(self, event: MarketEvent) -> None:
        now = self._clock()
        self._global.append(event, now)
        buffer = self._assets.get(event.mint)
        if buffer is None:
            buffer = EventRingBuffer(self._asset_capacity, self._retention)
            self._assets[event.mint] = buffer
            while len(self._assets) > self._max_tracked_assets:
                self._assets.popitem(last=False)
        else:
            self._assets.move_to_end(event.mint)
        buffer.append(event, now)

    def record_latency(self, latency_ms: float) -> None:
        self._latencies.append(float(latency_ms))

    def record_attempt(self, success: bool) -> None:
        self._attempts += 1
        if not success:
            self._failures += 1
        if self._attempts > MAX_ATTEMPT_WINDOW:
            self._attempts //= 2
            self._failures //= 2

    @property
    def average_latency_ms(self) -> float:
        return mean(self._latencies) if self._latencies else DEFAULT_LATENCY_MS

    @property
    def failure_rate(self) -> float:
        return self._failures / self._attempts if self._attempts else 0.0

    # --------------------------------------------------------------- features
    def regime_features(self, config: FilterConfig, now: Optional[datetime] = None) -> RegimeFeatures:
        current = now or self._clock()
        events = self._global.since(current - self._window)
        launches = sum(1 for event in events if event.kind == EventKind.LAUNCH)
        graduations = sum(1 for event in events if event.kind == EventKind.GRADUATION)
        volume = sum(event.amount_sol for event in events if event.kind == EventKind.BUY)
        score = regime_score(launches, volume, graduations)
        regime = classify_regime(score, config.regime_score_threshold)
        activity = (
            f"{launches} launches, {volume:.1f} SOL volume, {graduations} graduations "
            f"in {self.window_minutes:.0f}m"
        )
        if regime == MarketRegime.MANIA:
            reason = f"High activity: {activity}"
        elif regime == MarketRegime.NORMAL:
            reason = f"Moderate activity: {activity}"
        else:
            reason = f"Low activity: {activity}. Below threshold {config.regime_score_threshold}"
        return RegimeFeatures(
            launch_count=launches,
            launch_rate_per_min=launches / self.window_minutes,
            volume_sol=volume,
            graduation_count=graduations,
            volatility_proxy=min(volume / 100.0, 1.0),
            regime_score=score,
            regime=regime,
            market_risk_on=score >= config.regime_score_threshold,
            reason=reason,
        )

    def traction_features(
        self, mint: str, token: Optional[TokenInfo] = None, now: Optional[datetime] = None
    ) -> TractionFeatures:
        current = now or self._clock()
        start = current - self._window
        events = self._asset_events(mint, start)
        buys = [event for event in events if event.kind == EventKind.BUY]
        sells = [event for event in events if event.kind == EventKind.SELL]

        buckets = {"small": 0, "medium": 0, "large": 0}
        for event in buys:
            buckets[classify_buy_size(event.amount_sol)] += 1

        trades = len(buys) + len(sells)
        net_pressure = (len(buys) - len(sells)) / trades if trades else 0.0

        midpoint = start + self._window / 2
        first_half = sum(event.amount_sol for event in buys if event.timestamp < midpoint)
        second_half = sum(event.amount_sol for event in buys if event.timestamp >= midpoint)
        velocity = (second_half - first_half) / first_half if first_half > 0 else 0.0
        if second_half > first_half:
            acceleration = 1.0
        elif second_half < first_half:
            acceleration = -1.0
        else:
            acceleration = 0.0

        since_launch = since_graduation = None
        if token is not None:
            since_launch = (current - token.created_at).total_seconds()
            if token.graduated_at is not None:
                since_graduation = (current - token.graduated_at).total_seconds()

        return TractionFeatures(
            unique_buyers_per_min=len({event.wallet for event in buys}) / self.window_minutes,
            net_buy_pressure=net_pressure,
            buy_count=len(buys),
            sell_count=len(sells),
            small_buys=buckets["small"],
            medium_buys=buckets["medium"],
            large_buys=buckets["large"],
            breadth_score=breadth_score(buckets["small"], buckets["medium"], buckets["large"]),
            velocity=velocity,
            acceleration=acceleration,
            seconds_since_launch=since_launch,
            seconds_since_graduation=since_graduation,
        )

    def concentration_features(
        self, mint: str, token: Optional[TokenInfo] = None, now: Optional[datetime] = None
    ) -> ConcentrationFeatures:
        current = now or self._clock()
        events = self._asset_events(mint, current - self._window)
        volume_by_wallet: Dict[str, float] = {}
        for event in events:
            if event.kind == EventKind.BUY:
                volume_by_wallet[event.wallet] = volume_by_wallet.get(event.wallet, 0.0) + event.amount_sol
        total = sum(volume_by_wallet.values())
        ranked = sorted(volume_by_wallet.values(), reverse=True)
        top10 = sum(ranked[:10]) / total * 100.0 if total > 0 else 0.0
        top20 = sum(ranked[:20]) / total * 100.0 if total > 0 else 0.0

        creator = token.creator if token else None
        creator_bought = creator_sold = 0.0
        if creator:
            creator_bought = volume_by_wallet.get(creator, 0.0)
            creator_sold = sum(
                event.amount_sol
                for event in events
                if event.kind == EventKind.SELL and event.wallet == creator
            )
        suspicious = creator_sold > creator_bought * 0.5
        creator_holding = creator_bought / total * 100.0 if total > 0 else 0.0
        if creator_bought > 0:
            creator_sold_pct = min(creator_sold / creator_bought * 100.0, 100.0)
        else:
            creator_sold_pct = 100.0 if creator_sold > 0 else 0.0

        return ConcentrationFeatures(
            top10_holder_pct=top10,
            top20_holder_pct=top20,
            creator_holding_pct=creator_holding,
            creator_sold_pct=creator_sold_pct,
            suspicious_creator=suspicious,
            mint_authority_revoked=token.mint_authority_revoked if token else True,
            freeze_authority_revoked=token.freeze_authority_revoked if token else True,
            risk=classify_concentration(top10, suspicious),
        )

    def execution_risk_features(
        self, mint: str, order_size_sol: float, now: Optional[datetime] = None
    ) -> ExecutionRiskFeatures:
        current = now or self._clock()
        recent = self._asset_events(mint, current - timedelta(seconds=LIQUIDITY_WINDOW_SECONDS))
        recent_volume = sum(event.amount_sol for event in recent if event.kind == EventKind.BUY)
        liquidity = max(recent_volume * LIQUIDITY_DEPTH_MULTIPLIER, 1.0)
        slippage = estimate_slippage_bps(order_size_sol, liquidity)
        latency = self.average_latency_ms
        failure_rate = self.failure_rate
        return ExecutionRiskFeatures(
            liquidity_depth_sol=liquidity,
            spread_bps=estimate_spread_bps(liquidity),
            estimated_slippage_bps=slippage,
            avg_latency_ms=latency,
            failure_rate=failure_rate,
            risk=classify_execution_risk(slippage, latency, failure_rate),
        )

    def snapshot(
        self,
        token: TokenInfo,
        order_size_sol: float,
        config: FilterConfig,
        now: Optional[datetime] = None,
    ) -> FeatureSnapshot:
        """Compute all four feature groups against a single reference time."""

        current = now or self._clock()
        return FeatureSnapshot(
            regime=self.regime_features(config, current),
            traction=self.traction_features(token.mint, token, current),
            concentration=self.concentration_features(token.mint, token, current),
            execution=self.execution_risk_features(token.mint, order_size_sol, current),
        )

    def _asset_events(self, mint: str, start: datetime) -> List[MarketEvent]:
        buffer = self._assets.get(mint)
        if buffer is None:
            return []
        return buffer.since(start)


__all__ = [
    "EventRingBuffer",
    "FeatureAggregator",
    "breadth_score",
    "classify_buy_size",
    "classify_concentration",
    "classify_execution_risk",
    "classify_regime",
    "estimate_slippage_bps",
    "estimate_spread_bps",
    "regime_score",
]
