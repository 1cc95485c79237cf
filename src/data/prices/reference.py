from __future__ import annotations

"""Reference price provider combining streaming feeds with OKX REST fallbacks."""

import logging
import time
from typing import TYPE_CHECKING, Dict, Optional, Tuple

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.config.scalp_strategy_config import ScalpStrategyConfig
    from src.exchange.okx_rest import OkxRESTClient
    from src.exchange.price_feeds import StreamingPriceFeed

logger = logging.getLogger("updownStrategy.prices.reference")

_REST_CACHE_SECONDS = 1.0
_MISS_RETRY_SECONDS = 5.0


class ReferencePriceProvider:
    """Pull-based access to spot prices for the entry gates.

    ``current_price`` prefers the primary stream and falls back to REST when the
    stream is stale; ``secondary_price`` only reads the secondary stream and is
    used for the divergence check.
    """

    def __init__(
        self,
        *,
        config: "ScalpStrategyConfig",
        primary: Optional["StreamingPriceFeed"] = None,
        secondary: Optional["StreamingPriceFeed"] = None,
        rest: Optional["OkxRESTClient"] = None,
    ) -> None:
        self._config = config
        self._primary = primary
        self._secondary = secondary
        self._rest = rest
        self._rest_cache: Dict[str, Tuple[float, float]] = {}
        self._open_cache: Dict[Tuple[str, int], float] = {}
        self._open_misses: Dict[Tuple[str, int], float] = {}

    async def current_price(self, instrument: str, *, now: Optional[float] = None) -> Optional[float]:
        profile = self._config.profile_for(instrument)
        current = time.time() if now is None else now
        if self._primary is not None:
            price = self._primary.latest(profile.okx_inst_id, now=current)
            if price is not None:
                return price
        if self._rest is None:
            return None
        cached = self._rest_cache.get(profile.okx_inst_id)
        if cached is not None and current - cached[1] <= _REST_CACHE_SECONDS:
            return cached[0]
        try:
            price = await self._rest.get_last_price(profile.okx_inst_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("REST ticker fallback failed for %s: %s", profile.okx_inst_id, exc)
            return None
        if price is not None:
            self._rest_cache[profile.okx_inst_id] = (price, current)
        return price

    def secondary_price(self, instrument: str, *, now: Optional[float] = None) -> Optional[float]:
        if self._secondary is None:
            return None
        profile = self._config.profile_for(instrument)
        return self._secondary.latest(profile.binance_symbol, now=now)

    async def price_at(self, instrument: str, unix_seconds: int, *, now: Optional[float] = None) -> Optional[float]:
        """Open of the one-minute candle starting at ``unix_seconds`` (the price to beat)."""

        key = (instrument.upper(), int(unix_seconds))
        cached = self._open_cache.get(key)
        if cached is not None:
            return cached
        if self._rest is None:
            return None
        current = time.time() if now is None else now
        missed_at = self._open_misses.get(key)
        if missed_at is not None and current - missed_at < _MISS_RETRY_SECONDS:
            return None
        profile = self._config.profile_for(instrument)
        try:
            price = await self._rest.get_minute_open(profile.okx_inst_id, key[1])
        except Exception as exc:  # noqa: BLE001
            logger.warning("Price-to-beat lookup failed for %s@%s: %s", profile.okx_inst_id, key[1], exc)
            price = None
        if price is None:
            self._open_misses[key] = current
            return None
        self._open_misses.pop(key, None)
        self._open_cache[key] = price
        logger.info("Price to beat for %s window %s: %.6f", key[0], key[1], price)
        return price

    def forget_before(self, unix_seconds: float) -> None:
        for store in (self._open_cache, self._open_misses):
            for key in [key for key in store if key[1] < unix_seconds]:
                store.pop(key, None)
