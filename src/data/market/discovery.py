from __future__ import annotations

"""Discovery of live up/down windows on Gamma and order-book snapshots from the CLOB."""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Iterable, Optional

from .models import Market, OrderBookSummary, parse_gamma_event, parse_order_books
from .store import ActiveMarketStore

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.config.market_discovery_config import MarketDiscoveryConfig
    from src.exchange.polymarket_rest import PolymarketRESTClient

logger = logging.getLogger("updownStrategy.market.discovery")


def window_slug(instrument: str, window: str, slot_start: int) -> str:
    return f"{instrument.lower()}-updown-{window}-{slot_start}"


class GammaMarketDiscovery:
    """Resolve the previous, current and next few window slugs per instrument."""

    def __init__(self, *, rest: "PolymarketRESTClient", config: "MarketDiscoveryConfig") -> None:
        self._rest = rest
        self._instruments = tuple(config.instruments)
        self._window = config.window
        self._window_seconds = config.window_seconds
        self._lookahead = max(0, config.lookahead_slots)

    @property
    def instruments(self) -> tuple[str, ...]:
        return self._instruments

    def slot_starts(self, now: float) -> list[int]:
        current = int(now // self._window_seconds) * self._window_seconds
        return [current + offset * self._window_seconds for offset in range(-1, self._lookahead + 1)]

    async def _fetch_slot(self, instrument: str, slot_start: int) -> list[Market]:
        slug = window_slug(instrument, self._window, slot_start)
        payload = await self._rest.get_event_by_slug(slug)
        if payload is None:
            logger.debug("No event published for %s", slug)
            return []
        return parse_gamma_event(
            payload,
            instrument=instrument,
            slot_start=slot_start,
            window_seconds=self._window_seconds,
        )

    async def fetch(self, now: Optional[float] = None) -> tuple[list[Market], list[Market]]:
        """Return ``(active, upcoming)`` markets around ``now``."""

        current = time.time() if now is None else now
        jobs = [(instrument, slot) for instrument in self._instruments for slot in self.slot_starts(current)]
        results = await asyncio.gather(
            *(self._fetch_slot(instrument, slot) for instrument, slot in jobs),
            return_exceptions=True,
        )
        active: list[Market] = []
        upcoming: list[Market] = []
        for (instrument, slot), result in zip(jobs, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Gamma lookup failed for %s: %s",
                    window_slug(instrument, self._window, slot),
                    result,
                )
                continue
            for market in result:
                if market.in_window(current):
                    active.append(market)
                elif market.start_time > current:
                    upcoming.append(market)
        return active, upcoming


class MarketDataService:
    """Market-data collaborator of the trading loop.

    Active markets are re-fetched every ``refresh_interval`` seconds or as soon
    as a cached market has expired; order books are fetched in one batch per
    cycle so decisions run on a single snapshot.
    """

    def __init__(
        self,
        *,
        discovery: GammaMarketDiscovery,
        rest: "PolymarketRESTClient",
        store: Optional[ActiveMarketStore] = None,
        refresh_interval: float = 30.0,
    ) -> None:
        self._discovery = discovery
        self._rest = rest
        self._store = store or ActiveMarketStore()
        self.refresh_interval = refresh_interval

    @property
    def store(self) -> ActiveMarketStore:
        return self._store

    def _refresh_due(self, now: float) -> bool:
        refreshed_at = self._store.refreshed_at
        if refreshed_at is None or now - refreshed_at >= self.refresh_interval:
            return True
        return self._store.has_expired(now)

    async def refresh(self, now: Optional[float] = None) -> list[Market]:
        current = time.time() if now is None else now
        active, upcoming = await self._discovery.fetch(current)
        markets = self._store.update(active, upcoming=upcoming, now=current)
        if markets:
            logger.debug("Active markets: %s", ", ".join(market.slug for market in markets))
        else:
            next_start = self.seconds_until_next_window(current)
            if next_start is not None:
                logger.info("No active window; next opens in %.0fs", next_start)
        return markets

    async def get_active_markets(self, now: Optional[float] = None) -> list[Market]:
        current = time.time() if now is None else now
        if self._refresh_due(current):
            try:
                await self.refresh(current)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Market refresh failed: %s", exc)
                self._store.drop_expired(current)
        return [market for market in self._store.markets() if market.end_time > current]

    def seconds_until_next_window(self, now: Optional[float] = None) -> Optional[float]:
        current = time.time() if now is None else now
        starts = [market.start_time - current for market in self._store.upcoming() if market.start_time > current]
        return min(starts) if starts else None

    async def get_order_books(self, token_ids: Iterable[str]) -> dict[str, OrderBookSummary]:
        unique = list(dict.fromkeys(token for token in token_ids if token))
        if not unique:
            return {}
        payloads = await self._rest.get_order_books(unique)
        return parse_order_books(payloads, fetched_at=time.time())
