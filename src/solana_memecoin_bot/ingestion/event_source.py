"""Market event sources feeding the feature aggregator and the evaluation queue."""

from __future__ import annotations

import asyncio
import heapq
import random
from dataclasses import dataclass, replace
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Union

from ..datalake.schemas import EventKind, MarketEvent, TokenInfo, TokenPhase
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import utc_now

SleepFn = Callable[[float], Awaitable[None]]

TOKEN_NAMES = (
    "DOGE2",
    "MOONCAT",
    "SHIBX",
    "PEPEMOON",
    "BONKINU",
    "WIFHAT",
    "CATGOLD",
    "SOLDOG",
    "POPCAT2",
    "FROGKING",
    "MOONDOGE",
    "CATWIF",
    "SOLAPE",
    "PUMPDOG",
    "MEMESOL",
)

GRADUATION_PROBABILITY = 0.2
CREATOR_DUMP_PROBABILITY = 0.1
UNSAFE_AUTHORITY_PROBABILITY = 0.05
SELL_PROBABILITY = 0.4
BUY_SPREAD_SECONDS = 30.0
MAX_ACTIVE_TOKENS = 50


@dataclass(frozen=True, slots=True)
class SourceEvent:
    """A market event plus, for launches and graduations, the updated token descriptor."""

    event: MarketEvent
    token: Optional[TokenInfo] = None


class EventSource(Protocol):
    """Async producer of market events."""

    def stream(self) -> AsyncIterator[SourceEvent]:
        ...

    def close(self) -> None:
        ...


class SyntheticEventSource:
    """Seeded generator of launches, trades, and graduations for paper trading.

    Every tick launches one token and schedules its activity over the following
    ticks: a burst of 1-15 buys with a mostly-small size mix, occasional sells,
    a graduation for roughly one launch in five, and a creator dump for a few.
    Scheduling runs on the source's own elapsed time so a run is reproducible
    for a given seed regardless of wall-clock jitter.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now,
        *,
        tick_seconds: float = 2.0,
        sleep: SleepFn = asyncio.sleep,
        max_ticks: Optional[int] = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock
        self._tick_seconds = tick_seconds
        self._sleep = sleep
        self._max_ticks = max_ticks
        self._elapsed = 0.0
        self._sequence = 0
        self._pending: List[Tuple[float, int, SourceEvent]] = []
        self._active: Dict[str, TokenInfo] = {}
        self._closed = False
        self._logger = get_logger(__name__)

    @property
    def active_tokens(self) -> int:
        return len(self._active)

    def close(self) -> None:
        self._closed = True

    async def stream(self) -> AsyncIterator[SourceEvent]:
        ticks = 0
        while not self._closed:
            if self._max_ticks is not None and ticks >= self._max_ticks:
                break
            await self._sleep(self._tick_seconds)
            self._elapsed += self._tick_seconds
            ticks += 1
            for item in self.tick():
                if self._closed:
                    return
                yield item

    def tick(self) -> List[SourceEvent]:
        """Generate one tick of activity and return every event now due."""

        self._schedule_launch()
        if self._active and self._rng.random() < SELL_PROBABILITY:
            mint = self._rng.choice(sorted(self._active))
            self._schedule(
                0.0,
                self._event(EventKind.SELL, mint, self._wallet("seller"), 0.05 + self._rng.random() * 2),
            )
        due: List[SourceEvent] = []
        while self._pending and self._pending[0][0] <= self._elapsed:
            _, _, item = heapq.heappop(self._pending)
            due.append(self._stamp(item))
        METRICS.increment("ingestion_events", len(due))
        return due

    # ---------------------------------------------------------------- helpers
    def _schedule_launch(self) -> None:
        rng = self._rng
        name = f"{rng.choice(TOKEN_NAMES)}{rng.randrange(100)}"
        mint = f"{name.lower()}{self._sequence:06d}{rng.getrandbits(32):08x}mint"
        unsafe = rng.random() < UNSAFE_AUTHORITY_PROBABILITY
        token = TokenInfo(
            mint=mint,
            symbol=name[:6].upper(),
            name=name,
            created_at=self._clock(),
            creator=self._wallet("creator"),
            phase=TokenPhase.BONDING_CURVE,
            bonding_curve_address=f"curve{rng.getrandbits(40):010x}",
            mint_authority_revoked=not unsafe,
            freeze_authority_revoked=True,
            price_sol=1e-6 * rng.uniform(0.5, 2.0),
        )
        self._active[mint] = token
        if len(self._active) > MAX_ACTIVE_TOKENS:
            self._active.pop(next(iter(self._active)))
        launch = self._event(EventKind.LAUNCH, mint, token.creator, 0.0)
        self._schedule(0.0, SourceEvent(launch, replace(token)))

        for _ in range(rng.randint(1, 15)):
            self._schedule(
                rng.random() * BUY_SPREAD_SECONDS,
                self._event(EventKind.BUY, mint, self._wallet("buyer"), self._buy_size()),
            )
        if rng.random() < CREATOR_DUMP_PROBABILITY:
            self._schedule(
                rng.uniform(5.0, BUY_SPREAD_SECONDS),
                self._event(EventKind.SELL, mint, token.creator, 0.5 + rng.random() * 3),
            )
        if rng.random() < GRADUATION_PROBABILITY:
            delay = 5.0 + rng.random() * 60.0
            graduated = replace(
                token,
                phase=TokenPhase.GRADUATED,
                pool_address=f"pool{rng.getrandbits(40):010x}",
                price_sol=token.price_sol * rng.uniform(1.5, 4.0),
            )
            self._schedule(
                delay,
                SourceEvent(self._event(EventKind.GRADUATION, mint, token.creator, 0.0), graduated),
            )

    def _buy_size(self) -> float:
        rng = self._rng
        if rng.random() < 0.7:
            return 0.01 + rng.random() * 0.09
        if rng.random() < 0.8:
            return 0.1 + rng.random() * 0.9
        return 1.0 + rng.random() * 5.0

    def _wallet(self, prefix: str) -> str:
        return f"{prefix}{self._rng.getrandbits(40):010x}"

    def _event(
        self, kind: EventKind, mint: str, wallet: Optional[str], amount_sol: float
    ) -> MarketEvent:
        # Timestamp is reassigned when the event becomes due.
        return MarketEvent(
            kind=kind, mint=mint, wallet=wallet or "", amount_sol=amount_sol, timestamp=self._clock()
        )

    def _schedule(self, delay: float, item: Union[SourceEvent, MarketEvent]) -> None:
        if isinstance(item, MarketEvent):
            item = SourceEvent(item)
        self._sequence += 1
        heapq.heappush(self._pending, (self._elapsed + delay, self._sequence, item))

    def _stamp(self, item: SourceEvent) -> SourceEvent:
        now = self._clock()
        event = replace(item.event, timestamp=now)
        token = item.token
        if token is not None and event.kind == EventKind.GRADUATION:
            token = replace(token, graduated_at=now)
            self._active[token.mint] = token
            self._logger.debug("Synthetic graduation for %s", token.symbol)
        return SourceEvent(event=event, token=token)


__all__ = ["EventSource", "SourceEvent", "SyntheticEventSource", "TOKEN_NAMES"]
