from __future__ import annotations

"""Container for the currently tradable up/down markets."""

import threading
import time
from typing import Iterable, Optional, Sequence

from .models import Market


class ActiveMarketStore:
    """In-memory container for markets whose window is currently open."""

    def __init__(self, *, exclusions: Iterable[str] | None = None) -> None:
        self._exclusions = {slug.lower() for slug in (exclusions or [])}
        self._markets: dict[str, Market] = {}
        self._upcoming: list[Market] = []
        self._refreshed_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def refreshed_at(self) -> Optional[float]:
        with self._lock:
            return self._refreshed_at

    def exclusions(self) -> set[str]:
        with self._lock:
            return set(self._exclusions)

    def add_exclusions(self, slugs: Iterable[str]) -> None:
        with self._lock:
            self._exclusions.update(slug.lower() for slug in slugs)
            self._markets = {
                slug: market for slug, market in self._markets.items() if slug.lower() not in self._exclusions
            }

    def clear(self) -> None:
        with self._lock:
            self._markets.clear()
            self._upcoming.clear()
            self._refreshed_at = None

    def markets(self) -> list[Market]:
        with self._lock:
            return sorted(self._markets.values(), key=lambda market: market.end_time)

    def upcoming(self) -> list[Market]:
        with self._lock:
            return list(self._upcoming)

    def get(self, slug: str) -> Optional[Market]:
        with self._lock:
            return self._markets.get(slug)

    def slugs(self) -> set[str]:
        with self._lock:
            return set(self._markets)

    def has_expired(self, now: Optional[float] = None) -> bool:
        """True when any stored market's window has already closed."""

        current = time.time() if now is None else now
        with self._lock:
            return any(market.end_time <= current for market in self._markets.values())

    def drop_expired(self, now: Optional[float] = None) -> list[Market]:
        current = time.time() if now is None else now
        with self._lock:
            expired = [market for market in self._markets.values() if market.end_time <= current]
            for market in expired:
                self._markets.pop(market.slug, None)
            return expired

    def update(
        self,
        markets: Sequence[Market],
        *,
        upcoming: Sequence[Market] = (),
        now: Optional[float] = None,
    ) -> list[Market]:
        unique: dict[str, Market] = {}
        for market in markets:
            if market.slug.lower() in self._exclusions or market.slug in unique:
                continue
            unique[market.slug] = market
        with self._lock:
            self._markets = unique
            self._upcoming = sorted(upcoming, key=lambda market: market.start_time)
            self._refreshed_at = time.time() if now is None else now
            return sorted(self._markets.values(), key=lambda market: market.end_time)
