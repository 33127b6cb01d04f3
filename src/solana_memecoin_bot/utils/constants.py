"""Shared constants for memecoin trading on Solana."""

from datetime import datetime, timezone

# Utility function to get timezone-aware UTC datetime
def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)

LAMPORTS_PER_SOL = 1_000_000_000

# Wrapped SOL is the input mint for every entry and the output mint for every exit.
SOL_MINT = "So11111111111111111111111111111111111111112"

# Trailing window used by every feature computation.
FEATURE_WINDOW_SECONDS = 300
# Window used to estimate liquidity depth from recent buys.
LIQUIDITY_WINDOW_SECONDS = 60
LIQUIDITY_DEPTH_MULTIPLIER = 5.0

# Placeholder mark for assets without an observed price.
PLACEHOLDER_PRICE_SOL = 0.000001

# Flat proportional fee charged on every simulated fill.
PAPER_FEE_RATE = 0.003
# Base slippage applied to exits before the paper multiplier.
SELL_BASE_SLIPPAGE_BPS = 50
# Share of the tokens bought below which a remainder counts as closed.
POSITION_DUST_FRACTION = 1e-6

# Orders above this size (SOL) are split in two.
LARGE_ORDER_THRESHOLD_SOL = 1.0

__all__ = [
    "utc_now",
    "LAMPORTS_PER_SOL",
    "SOL_MINT",
    "FEATURE_WINDOW_SECONDS",
    "LIQUIDITY_WINDOW_SECONDS",
    "LIQUIDITY_DEPTH_MULTIPLIER",
    "PLACEHOLDER_PRICE_SOL",
    "PAPER_FEE_RATE",
    "SELL_BASE_SLIPPAGE_BPS",
    "POSITION_DUST_FRACTION",
    "LARGE_ORDER_THRESHOLD_SOL",
]
