"""Price sources used to mark open positions."""

from __future__ import annotations

import random
from typing import Dict, Optional, Protocol

# Upward bias of the paper random walk: the draw is centred on +0.05 rather than 0.
DRIFT_CENTER = 0.45
STEP_SCALE = 0.1


class PriceFeed(Protocol):
    def get_price(self, mint: str, last_price: float) -> Optional[float]:
        ...


class RandomWalkPriceFeed:
    """Paper-mode price feed: each call moves the last price between -4.5% and +5.5%."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()
        self._last: Dict[str, float] = {}

    def get_price(self, mint: str, last_price: float) -> Optional[float]:
        if last_price <= 0:
            return None
        price = last_price * (1 + (self._rng.random() - DRIFT_CENTER) * STEP_SCALE)
        self._last[mint] = price
        return price

    def last_price(self, mint: str) -> Optional[float]:
        return self._last.get(mint)


__all__ = ["PriceFeed", "RandomWalkPriceFeed"]
