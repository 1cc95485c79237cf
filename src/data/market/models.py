from __future__ import annotations

"""Typed views of Gamma markets and CLOB order books.

Raw API payloads are validated here; anything malformed is discarded so the
rest of the engine only ever sees complete records.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from .constants import DEFAULT_TICK_SIZE, DIRECTION_DOWN, DIRECTION_UP

logger = logging.getLogger("updownStrategy.market.models")

_UP_OUTCOMES = {"up", "yes"}
_DOWN_OUTCOMES = {"down", "no"}


def _to_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if result != result:  # NaN
        return None
    return result


def _parse_timestamp(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) / 1000.0 if value > 1_000_000_000_000 else float(value)
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return None
        if cleaned.isdigit():
            return _parse_timestamp(int(cleaned))
        if cleaned.endswith("Z"):
            cleaned = cleaned[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(cleaned)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return None


def _json_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return []
        return decoded if isinstance(decoded, list) else []
    return []


@dataclass(slots=True, frozen=True)
class OrderBookLevel:
    price: float
    size: float

    @property
    def notional(self) -> float:
        return self.price * self.size


@dataclass(slots=True, frozen=True)
class OrderBookSummary:
    """One token's book. Bids best (highest) first, asks best (lowest) first."""

    token_id: str
    bids: tuple[OrderBookLevel, ...]
    asks: tuple[OrderBookLevel, ...]
    market: str = ""
    tick_size: float = DEFAULT_TICK_SIZE
    fetched_at: float = 0.0

    @property
    def best_bid(self) -> Optional[OrderBookLevel]:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[OrderBookLevel]:
        return self.asks[0] if self.asks else None

    @staticmethod
    def _levels(raw: Any) -> list[OrderBookLevel]:
        levels: list[OrderBookLevel] = []
        if not isinstance(raw, list):
            return levels
        for item in raw:
            if not isinstance(item, dict):
                continue
            price = _to_float(item.get("price"))
            size = _to_float(item.get("size"))
            if price is None or size is None or price <= 0 or size <= 0:
                continue
            levels.append(OrderBookLevel(price=price, size=size))
        return levels

    @classmethod
    def from_payload(
        cls,
        payload: Any,
        *,
        fetched_at: Optional[float] = None,
    ) -> Optional["OrderBookSummary"]:
        if not isinstance(payload, dict):
            return None
        token_id = str(payload.get("asset_id") or payload.get("token_id") or "").strip()
        if not token_id:
            return None
        bids = sorted(cls._levels(payload.get("bids")), key=lambda lvl: lvl.price, reverse=True)
        asks = sorted(cls._levels(payload.get("asks")), key=lambda lvl: lvl.price)
        tick_size = _to_float(payload.get("tick_size")) or DEFAULT_TICK_SIZE
        return cls(
            token_id=token_id,
            bids=tuple(bids),
            asks=tuple(asks),
            market=str(payload.get("market") or ""),
            tick_size=tick_size,
            fetched_at=fetched_at if fetched_at is not None else time.time(),
        )


@dataclass(slots=True, frozen=True)
class Market:
    """A single up/down window with its two outcome tokens."""

    slug: str
    instrument: str
    condition_id: str
    up_token_id: str
    down_token_id: str
    start_time: float
    end_time: float
    question: str = ""
    tick_size: float = DEFAULT_TICK_SIZE
    neg_risk: bool = False

    @property
    def token_ids(self) -> tuple[str, str]:
        return (self.up_token_id, self.down_token_id)

    def token_for(self, direction: str) -> str:
        if direction == DIRECTION_UP:
            return self.up_token_id
        if direction == DIRECTION_DOWN:
            return self.down_token_id
        raise ValueError(f"unknown direction: {direction}")

    def direction_of(self, token_id: str) -> Optional[str]:
        if token_id == self.up_token_id:
            return DIRECTION_UP
        if token_id == self.down_token_id:
            return DIRECTION_DOWN
        return None

    def seconds_left(self, now: Optional[float] = None) -> float:
        return self.end_time - (time.time() if now is None else now)

    def in_window(self, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        return self.start_time <= current < self.end_time


def _token_pair(payload: dict[str, Any]) -> Optional[tuple[str, str]]:
    token_ids = [str(item).strip() for item in _json_list(payload.get("clobTokenIds"))]
    outcomes = [str(item).strip().lower() for item in _json_list(payload.get("outcomes"))]
    if not token_ids:
        tokens = payload.get("tokens")
        if isinstance(tokens, list):
            for item in tokens:
                if isinstance(item, dict) and item.get("token_id"):
                    token_ids.append(str(item["token_id"]).strip())
                    outcomes.append(str(item.get("outcome", "")).strip().lower())
    if len(token_ids) < 2 or not all(token_ids[:2]):
        return None
    up_token: Optional[str] = None
    down_token: Optional[str] = None
    for index, token_id in enumerate(token_ids):
        outcome = outcomes[index] if index < len(outcomes) else ""
        if outcome in _UP_OUTCOMES and up_token is None:
            up_token = token_id
        elif outcome in _DOWN_OUTCOMES and down_token is None:
            down_token = token_id
    if up_token is None or down_token is None:
        # outcome labels missing: Gamma lists the "up" token first
        up_token, down_token = token_ids[0], token_ids[1]
    if up_token == down_token:
        return None
    return up_token, down_token


def parse_gamma_market(
    payload: Any,
    *,
    instrument: str,
    slot_start: float,
    window_seconds: float,
) -> Optional[Market]:
    """Convert one Gamma market record into a :class:`Market` or ``None`` if unusable."""

    if not isinstance(payload, dict):
        return None
    if payload.get("closed") is True:
        return None
    slug = str(payload.get("slug") or payload.get("marketSlug") or "").strip()
    if not slug:
        return None
    tokens = _token_pair(payload)
    if tokens is None:
        logger.debug("Discarding market %s without two outcome tokens", slug)
        return None
    end_time = _parse_timestamp(payload.get("endDate")) or float(slot_start + window_seconds)
    tick_size = _to_float(payload.get("orderPriceMinTickSize")) or DEFAULT_TICK_SIZE
    return Market(
        slug=slug,
        instrument=instrument.upper(),
        condition_id=str(payload.get("conditionId") or ""),
        up_token_id=tokens[0],
        down_token_id=tokens[1],
        start_time=float(slot_start),
        end_time=end_time,
        question=str(payload.get("question") or ""),
        tick_size=tick_size,
        neg_risk=bool(payload.get("negRisk", False)),
    )


def parse_gamma_event(
    payload: Any,
    *,
    instrument: str,
    slot_start: float,
    window_seconds: float,
) -> list[Market]:
    if not isinstance(payload, dict) or payload.get("closed") is True:
        return []
    raw_markets = payload.get("markets")
    if not isinstance(raw_markets, list):
        return []
    markets: list[Market] = []
    for raw in raw_markets:
        market = parse_gamma_market(
            raw,
            instrument=instrument,
            slot_start=slot_start,
            window_seconds=window_seconds,
        )
        if market is not None:
            markets.append(market)
    return markets


def parse_order_books(
    payloads: Iterable[Any],
    *,
    fetched_at: Optional[float] = None,
) -> dict[str, OrderBookSummary]:
    books: dict[str, OrderBookSummary] = {}
    stamp = fetched_at if fetched_at is not None else time.time()
    for payload in payloads:
        book = OrderBookSummary.from_payload(payload, fetched_at=stamp)
        if book is None:
            logger.debug("Discarding malformed order book payload: %s", payload)
            continue
        books[book.token_id] = book
    return books
