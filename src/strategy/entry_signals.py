from __future__ import annotations

"""Entry selection: price bands, per-market locks, cooldowns and order intents."""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Mapping, Optional, Sequence

from src.data.market.constants import DIRECTIONS
from src.data.market.models import Market, OrderBookLevel, OrderBookSummary

from .risk_gates import GateDecision, RiskGateEvaluator, RiskInputs

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.config.scalp_strategy_config import PriceBand, ScalpStrategyConfig
    from src.data.market.positions import PositionTracker

logger = logging.getLogger("updownStrategy.strategy.entry")


@dataclass(slots=True, frozen=True)
class OrderIntent:
    market_slug: str
    instrument: str
    token_id: str
    direction: str
    price: float
    size: float
    observed_price: float
    observed_side: str
    seconds_left: float
    expires_at: float

    @property
    def notional(self) -> float:
        return self.price * self.size


@dataclass(slots=True)
class MarketContext:
    """Everything the entry evaluator needs about one market for one cycle."""

    market: Market
    books: Mapping[str, OrderBookSummary]
    now: float
    current_price: Optional[float] = None
    price_to_beat: Optional[float] = None
    secondary_price: Optional[float] = None

    @property
    def seconds_left(self) -> float:
        return self.market.seconds_left(self.now)

    def book(self, direction: str) -> Optional[OrderBookSummary]:
        return self.books.get(self.market.token_for(direction))

    def best_ask(self, direction: str) -> Optional[OrderBookLevel]:
        book = self.book(direction)
        return book.best_ask if book is not None else None

    def best_bid(self, direction: str) -> Optional[OrderBookLevel]:
        book = self.book(direction)
        return book.best_bid if book is not None else None


def match_band(price: Optional[float], bands: Sequence["PriceBand"]) -> Optional["PriceBand"]:
    if price is None:
        return None
    for band in bands:
        if band.contains(price):
            return band
    return None


class EntryLockTable:
    """Short-lived per-market locks held while an order is being placed."""

    def __init__(self, lock_seconds: float) -> None:
        self._lock_seconds = lock_seconds
        self._locks: Dict[str, float] = {}

    def is_locked(self, market_slug: str, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        expires = self._locks.get(market_slug)
        if expires is None:
            return False
        if expires <= current:
            self._locks.pop(market_slug, None)
            return False
        return True

    def acquire(self, market_slug: str, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        if self.is_locked(market_slug, current):
            return False
        self._locks[market_slug] = current + self._lock_seconds
        return True

    def release(self, market_slug: str) -> None:
        self._locks.pop(market_slug, None)


@dataclass(slots=True)
class _Cooldown:
    until: float
    reason: str


@dataclass(slots=True)
class CooldownBook:
    """Keys (market slugs or instruments) blocked from entries until a deadline."""

    _entries: Dict[str, _Cooldown] = field(default_factory=dict)

    def block(self, key: str, seconds: float, reason: str, *, now: Optional[float] = None) -> None:
        if seconds <= 0:
            return
        current = time.time() if now is None else now
        until = current + seconds
        existing = self._entries.get(key)
        if existing is not None and existing.until >= until:
            return
        self._entries[key] = _Cooldown(until=until, reason=reason)
        logger.info("Entries for %s paused %.0fs (%s)", key, seconds, reason)

    def remaining(self, key: str, *, now: Optional[float] = None) -> float:
        current = time.time() if now is None else now
        entry = self._entries.get(key)
        if entry is None:
            return 0.0
        if entry.until <= current:
            self._entries.pop(key, None)
            return 0.0
        return entry.until - current

    def active(self, key: str, *, now: Optional[float] = None) -> bool:
        return self.remaining(key, now=now) > 0

    def reason(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        return entry.reason if entry is not None else None


class EntrySignalEvaluator:
    """Pick at most one order intent per market per cycle.

    Outcomes are tried up before down. The best ask is matched against the
    bands before the best bid; the band's quote becomes the limit price.
    """

    def __init__(
        self,
        *,
        config: "ScalpStrategyConfig",
        positions: "PositionTracker",
        risk: RiskGateEvaluator,
    ) -> None:
        self._config = config
        self._positions = positions
        self._risk = risk
        self.last_decisions: Dict[str, GateDecision] = {}

    def _size_for(self, level: OrderBookLevel) -> float:
        size = max(self._config.min_order_size, min(level.size, self._config.max_order_size))
        return math.floor(size * 100 + 1e-9) / 100

    def _window_open(self, seconds_left: float) -> bool:
        if seconds_left < self._config.entry_min_seconds_left:
            return False
        if self._config.entry_max_seconds_left > 0 and seconds_left > self._config.entry_max_seconds_left:
            return False
        return True

    def evaluate(
        self,
        context: MarketContext,
        *,
        has_pending: bool = False,
        reserved_slots: int = 0,
    ) -> Optional[OrderIntent]:
        market = context.market
        self.last_decisions.pop(market.slug, None)
        if not self._config.enabled:
            return None
        if has_pending:
            return None
        if self._positions.at_capacity(reserved_slots):
            return None
        seconds_left = context.seconds_left
        if not self._window_open(seconds_left):
            return None

        for direction in DIRECTIONS:
            ask = context.best_ask(direction)
            bid = context.best_bid(direction)
            level, side = ask, "ask"
            band = match_band(ask.price if ask else None, self._config.bands)
            if band is None:
                level, side = bid, "bid"
                band = match_band(bid.price if bid else None, self._config.bands)
            if band is None or level is None:
                continue
            size = self._size_for(level)
            notional = band.quote * size
            if notional < self._config.min_order_notional:
                logger.debug("Discarding %s %s: notional %.2f below minimum", market.slug, direction, notional)
                continue
            decision = self._risk.evaluate(
                RiskInputs(
                    instrument=market.instrument,
                    direction=direction,
                    seconds_to_expiry=seconds_left,
                    current_price=context.current_price,
                    price_to_beat=context.price_to_beat,
                    secondary_price=context.secondary_price,
                    best_ask=ask,
                )
            )
            self.last_decisions[market.slug] = decision
            if not decision:
                continue
            if not self._positions.can_open(market.slug, notional):
                return None
            return OrderIntent(
                market_slug=market.slug,
                instrument=market.instrument,
                token_id=market.token_for(direction),
                direction=direction,
                price=band.quote,
                size=size,
                observed_price=level.price,
                observed_side=side,
                seconds_left=seconds_left,
                expires_at=market.end_time,
            )
        return None
