from __future__ import annotations

"""Bounded per-instrument price history and the indicators derived from it."""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Deque, Dict, Optional

from src.data.market.constants import DIRECTION_DOWN, DIRECTION_UP

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.config.scalp_strategy_config import InstrumentRiskProfile


@dataclass(slots=True, frozen=True)
class PriceSample:
    price: float
    timestamp: float


class PriceHistoryTracker:
    """FIFO buffer of recent reference prices, one per instrument.

    Indicators are permissive while an instrument has fewer than the profile's
    ``min_samples``: they never veto on thin data.
    """

    def __init__(self, *, capacity: int = 30) -> None:
        self.capacity = max(2, capacity)
        self._lock = threading.Lock()
        self._history: Dict[str, Deque[PriceSample]] = {}

    def record(self, instrument: str, price: float, *, now: Optional[float] = None) -> None:
        if price <= 0:
            return
        sample = PriceSample(price=price, timestamp=time.time() if now is None else now)
        with self._lock:
            buffer = self._history.get(instrument)
            if buffer is None:
                buffer = deque(maxlen=self.capacity)
                self._history[instrument] = buffer
            buffer.append(sample)

    def samples(self, instrument: str) -> list[PriceSample]:
        with self._lock:
            return list(self._history.get(instrument, ()))

    def clear(self, instrument: Optional[str] = None) -> None:
        with self._lock:
            if instrument is None:
                self._history.clear()
            else:
                self._history.pop(instrument, None)

    def average(self, instrument: str, window: Optional[int] = None) -> Optional[float]:
        samples = self.samples(instrument)
        if window is not None and window > 0:
            samples = samples[-window:]
        if not samples:
            return None
        return sum(sample.price for sample in samples) / len(samples)

    def price_range(self, instrument: str) -> float:
        samples = self.samples(instrument)
        if len(samples) < 2:
            return 0.0
        prices = [sample.price for sample in samples]
        return max(prices) - min(prices)

    def overextended(self, instrument: str, price: float, profile: "InstrumentRiskProfile") -> bool:
        if profile.overextension_pct <= 0:
            return False
        samples = self.samples(instrument)
        if len(samples) < profile.min_samples:
            return False
        window = samples[-profile.long_window :] if profile.long_window > 0 else samples
        average = sum(sample.price for sample in window) / len(window)
        if average <= 0:
            return False
        return abs(price - average) / average > profile.overextension_pct

    def momentum(self, instrument: str, lookback: int) -> Optional[float]:
        """Latest price minus the sample ``lookback`` ticks earlier."""

        samples = self.samples(instrument)
        if lookback <= 0 or len(samples) <= lookback:
            return None
        return samples[-1].price - samples[-1 - lookback].price

    def momentum_dangerous(self, instrument: str, direction: str, profile: "InstrumentRiskProfile") -> bool:
        if profile.momentum_threshold <= 0 or len(self.samples(instrument)) < profile.min_samples:
            return False
        delta = self.momentum(instrument, profile.momentum_lookback)
        if delta is None:
            return False
        if direction == DIRECTION_UP:
            return delta < -profile.momentum_threshold
        if direction == DIRECTION_DOWN:
            return delta > profile.momentum_threshold
        return False
