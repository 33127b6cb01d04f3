from __future__ import annotations

from datetime import datetime, timedelta, timezone

from solana_memecoin_bot.analysis.features import (
    EventRingBuffer,
    FeatureAggregator,
    breadth_score,
    classify_buy_size,
    classify_concentration,
    classify_execution_risk,
    classify_regime,
    estimate_slippage_bps,
    estimate_spread_bps,
    regime_score,
)
from solana_memecoin_bot.config.settings import FilterConfig
from solana_memecoin_bot.datalake.schemas import (
    EventKind,
    MarketEvent,
    MarketRegime,
    RiskLevel,
    TokenInfo,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _event(kind: EventKind, mint: str, wallet: str, amount: float, seconds_ago: float = 5.0) -> MarketEvent:
    return MarketEvent(
        kind=kind,
        mint=mint,
        wallet=wallet,
        amount_sol=amount,
        timestamp=NOW - timedelta(seconds=seconds_ago),
    )


def test_regime_score_bounds_and_classification() -> None:
    assert regime_score(0, 0.0, 0) == 0
    assert classify_regime(regime_score(0, 0.0, 0), 40) == MarketRegime.COLD

    mania = regime_score(25, 600.0, 8)
    assert mania == 100
    assert classify_regime(mania, 40) == MarketRegime.MANIA

    normal = regime_score(10, 200.0, 3)
    assert 40 <= normal < 70
    assert classify_regime(normal, 40) == MarketRegime.NORMAL


def test_regime_features_ignore_events_outside_window() -> None:
    aggregator = FeatureAggregator(clock=lambda: NOW)
    for index in range(20):
        aggregator.record_event(_event(EventKind.LAUNCH, f"m{index}", "creator", 0.0))
    # Older than the five minute window but inside retention.
    for index in range(10):
        aggregator.record_event(_event(EventKind.GRADUATION, f"old{index}", "c", 0.0, seconds_ago=400))

    features = aggregator.regime_features(FilterConfig(), NOW)

    assert features.launch_count == 20
    assert features.graduation_count == 0
    assert features.regime_score == 30
    assert features.regime == MarketRegime.COLD
    assert features.launch_rate_per_min == 4.0
    assert "Below threshold 40" in features.reason


def test_traction_features_histogram_and_pressure() -> None:
    aggregator = FeatureAggregator(clock=lambda: NOW)
    aggregator.record_event(_event(EventKind.BUY, "mint", "w1", 0.05))
    aggregator.record_event(_event(EventKind.BUY, "mint", "w1", 0.5))
    aggregator.record_event(_event(EventKind.BUY, "mint", "w2", 0.09))
    aggregator.record_event(_event(EventKind.BUY, "mint", "w3", 2.0))
    aggregator.record_event(_event(EventKind.SELL, "mint", "w4", 1.0))
    aggregator.record_event(_event(EventKind.BUY, "other", "w9", 1.0))

    traction = aggregator.traction_features("mint", now=NOW)

    assert traction.buy_count == 4
    assert traction.sell_count == 1
    assert traction.net_buy_pressure == (4 - 1) / 5
    assert traction.unique_buyers_per_min == 3 / 5
    assert (traction.small_buys, traction.medium_buys, traction.large_buys) == (2, 1, 1)
    assert traction.breadth_score == 0.75


def test_traction_features_for_unknown_asset_are_empty() -> None:
    aggregator = FeatureAggregator(clock=lambda: NOW)

    traction = aggregator.traction_features("missing", now=NOW)

    assert traction.buy_count == 0
    assert traction.net_buy_pressure == 0.0
    assert traction.breadth_score == 0.0


def test_creator_selling_without_buying_is_suspicious() -> None:
    aggregator = FeatureAggregator(clock=lambda: NOW)
    token = TokenInfo(mint="mint", symbol="MEME", name="Meme", created_at=NOW, creator="dev")
    for index in range(12):
        aggregator.record_event(_event(EventKind.BUY, "mint", f"w{index}", 0.05))
    aggregator.record_event(_event(EventKind.SELL, "mint", "dev", 0.2))

    concentration = aggregator.concentration_features("mint", token, NOW)

    assert concentration.suspicious_creator is True
    assert concentration.creator_sold_pct == 100.0
    assert concentration.risk == RiskLevel.EXTREME
    assert round(concentration.top10_holder_pct, 6) == round(10 / 12 * 100, 6)


def test_execution_risk_uses_recent_buy_volume_for_depth() -> None:
    aggregator = FeatureAggregator(clock=lambda: NOW)
    aggregator.record_event(_event(EventKind.BUY, "mint", "w1", 2.0, seconds_ago=10))
    aggregator.record_event(_event(EventKind.BUY, "mint", "w2", 100.0, seconds_ago=120))

    execution = aggregator.execution_risk_features("mint", 0.1, NOW)

    assert execution.liquidity_depth_sol == 10.0
    assert execution.estimated_slippage_bps == 10
    assert execution.spread_bps == 500.0
    assert execution.avg_latency_ms == 200.0
    assert execution.risk == RiskLevel.LOW


def test_estimators_and_classifiers() -> None:
    assert estimate_slippage_bps(0.0, 10.0) == 0
    assert estimate_slippage_bps(0.02, 0.0) == 20
    assert estimate_spread_bps(1.0) == 1000.0
    assert estimate_spread_bps(1_000.0) == 50.0
    assert classify_buy_size(0.099) == "small"
    assert classify_buy_size(0.1) == "medium"
    assert classify_buy_size(1.0) == "large"
    assert breadth_score(0, 0, 0) == 0.0
    assert breadth_score(7, 0, 0) == 1.0
    assert breadth_score(20, 10, 2) > breadth_score(2, 3, 15)
    assert estimate_slippage_bps(5.0, 50.0) > estimate_slippage_bps(0.1, 50.0)
    assert classify_concentration(85.0) == RiskLevel.EXTREME
    assert classify_concentration(65.0) == RiskLevel.HIGH
    assert classify_concentration(45.0) == RiskLevel.MEDIUM
    assert classify_concentration(10.0) == RiskLevel.LOW
    assert classify_execution_risk(100, 200, 0.25) == RiskLevel.HIGH
    assert classify_execution_risk(250, 200, 0.0) == RiskLevel.MEDIUM


def test_latency_and_failure_tracking() -> None:
    aggregator = FeatureAggregator(latency_history=3, clock=lambda: NOW)
    for latency in (100.0, 200.0, 300.0, 400.0):
        aggregator.record_latency(latency)
    assert aggregator.average_latency_ms == 300.0

    for index in range(300):
        aggregator.record_attempt(success=index % 4 != 0)
    assert 0.2 <= aggregator.failure_rate <= 0.3


def test_tracked_assets_are_bounded() -> None:
    aggregator = FeatureAggregator(max_tracked_assets=2, clock=lambda: NOW)
    for mint in ("a", "b", "c"):
        aggregator.record_event(_event(EventKind.BUY, mint, "w", 0.05))

    assert aggregator.tracked_assets == 2
    assert aggregator.traction_features("a", now=NOW).buy_count == 0
    assert aggregator.traction_features("c", now=NOW).buy_count == 1


def test_ring_buffer_evicts_by_capacity_and_age() -> None:
    buffer = EventRingBuffer(capacity=3, retention=timedelta(seconds=60))
    buffer.append(_event(EventKind.BUY, "m", "w", 1.0, seconds_ago=120), NOW - timedelta(seconds=120))
    for index in range(3):
        buffer.append(_event(EventKind.BUY, "m", f"w{index}", 1.0), NOW)

    assert len(buffer) == 3
    assert all(event.timestamp >= NOW - timedelta(seconds=60) for event in buffer)
    assert len(buffer.since(NOW)) == 0
