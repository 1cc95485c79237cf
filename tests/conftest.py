"""Shared fakes for the strategy tests.

The fakes implement just enough of the venue, market-data and price contracts
for the engine to run without network access.
"""

from __future__ import annotations

import itertools
from typing import Iterable, Optional

import pytest

from src.config.scalp_strategy_config import PriceBand, ScalpStrategyConfig
from src.data.market.models import Market, OrderBookLevel, OrderBookSummary
from src.exchange.gateway import (
    ExecutionGateway,
    GatewayError,
    OrderResult,
    OrderSemantics,
    OrderStatus,
)

WINDOW_START = 1_700_000_100.0
WINDOW_END = WINDOW_START + 900.0


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_market(
    slug: str = "btc-updown-15m-1700000100",
    *,
    instrument: str = "BTC",
    start: float = WINDOW_START,
    end: float = WINDOW_END,
) -> Market:
    return Market(
        slug=slug,
        instrument=instrument,
        condition_id=f"cond-{slug}",
        up_token_id=f"{slug}-up",
        down_token_id=f"{slug}-down",
        start_time=start,
        end_time=end,
    )


def make_book(
    token_id: str,
    *,
    bid: Optional[float] = None,
    bid_size: float = 100.0,
    ask: Optional[float] = None,
    ask_size: float = 20.0,
) -> OrderBookSummary:
    bids = (OrderBookLevel(bid, bid_size),) if bid is not None else ()
    asks = (OrderBookLevel(ask, ask_size),) if ask is not None else ()
    return OrderBookSummary(token_id=token_id, bids=bids, asks=asks)


def make_config(**overrides) -> ScalpStrategyConfig:
    """Config with every wait collapsed to zero so tests never sleep."""

    values = dict(
        balance_wait_seconds=0.0,
        balance_error_wait_seconds=0.0,
        settlement_delay_seconds=0.0,
        authorization_sync_interval=0.0,
        reconcile_retry_delay=0.0,
    )
    values.update(overrides)
    return ScalpStrategyConfig(**values)


def narrow_band_config(**overrides) -> ScalpStrategyConfig:
    """One band around 0.96 so a take-profit bid does not re-trigger an entry."""

    overrides.setdefault("bands", (PriceBand(low=0.95, high=0.97, quote=0.96),))
    return make_config(**overrides)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeGateway(ExecutionGateway):
    """In-memory venue. Orders fill completely unless ``fills`` says otherwise."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.submitted: list[dict] = []
        self.cancelled: list[str] = []
        self.synced: list[str] = []
        self.requested: dict[str, float] = {}
        self.fills: dict[str, float] = {}
        self.status_errors: dict[str, int] = {}
        self.missing_orders: set[str] = set()
        self.balances: dict[str, float] = {}
        self.default_balance = 1000.0
        self.balance_errors = 0
        self.reject_with: list[Optional[str]] = []
        self.cancel_result = True
        self.cancel_raises = False
        self.resting_orders: list[str] = []
        self.cancel_all_raises = False
        self.collateral_synced = 0
        self.collateral_sync_result = True

    async def submit_order(
        self,
        token_id: str,
        side: str,
        price: float,
        size: float,
        order_semantics: OrderSemantics = OrderSemantics.GTC,
    ) -> OrderResult:
        self.submitted.append(
            {"token_id": token_id, "side": side, "price": price, "size": size, "semantics": order_semantics}
        )
        if self.reject_with:
            error = self.reject_with.pop(0)
            if error is not None:
                return OrderResult.rejected(error)
        order_id = f"order-{next(self._ids)}"
        self.requested[order_id] = size
        return OrderResult.accepted(order_id)

    async def cancel_order(self, order_id: str) -> bool:
        if self.cancel_raises:
            raise GatewayError("cancel transport failure")
        self.cancelled.append(order_id)
        return self.cancel_result

    async def get_order_status(self, order_id: str) -> Optional[OrderStatus]:
        remaining_errors = self.status_errors.get(order_id, 0)
        if remaining_errors > 0:
            self.status_errors[order_id] = remaining_errors - 1
            raise GatewayError("status lookup failed")
        if order_id in self.missing_orders:
            return None
        requested = self.requested.get(order_id, 0.0)
        return OrderStatus(
            matched_size=self.fills.get(order_id, requested),
            requested_size=requested,
            status="matched",
        )

    async def get_token_balance(self, token_id: str) -> float:
        if self.balance_errors > 0:
            self.balance_errors -= 1
            raise GatewayError("balance lookup failed")
        return self.balances.get(token_id, self.default_balance)

    async def sync_token_authorization(self, token_id: str) -> bool:
        self.synced.append(token_id)
        return True

    async def cancel_all_orders(self) -> int:
        if self.cancel_all_raises:
            raise GatewayError("cancel-all transport failure")
        cancelled, self.resting_orders = self.resting_orders, []
        self.cancelled.extend(cancelled)
        return len(cancelled)

    async def sync_collateral_authorization(self) -> bool:
        self.collateral_synced += 1
        return self.collateral_sync_result

    def sells(self) -> list[dict]:
        return [order for order in self.submitted if order["side"] == "SELL"]

    def buys(self) -> list[dict]:
        return [order for order in self.submitted if order["side"] == "BUY"]


class FakeMarketData:
    def __init__(self, markets: Iterable[Market] = ()) -> None:
        self.markets = list(markets)
        self.books: dict[str, OrderBookSummary] = {}
        self.next_window: Optional[float] = None
        self.book_error: Optional[Exception] = None

    async def get_active_markets(self, now: Optional[float] = None) -> list[Market]:
        if now is None:
            return list(self.markets)
        return [market for market in self.markets if market.end_time > now]

    async def get_order_books(self, token_ids: Iterable[str]) -> dict[str, OrderBookSummary]:
        if self.book_error is not None:
            raise self.book_error
        return {token: self.books[token] for token in token_ids if token in self.books}

    def seconds_until_next_window(self, now: Optional[float] = None) -> Optional[float]:
        return self.next_window

    def set_books(self, *books: OrderBookSummary) -> None:
        self.books = {book.token_id: book for book in books}


class FakePrices:
    def __init__(
        self,
        *,
        current: Optional[float] = None,
        secondary: Optional[float] = None,
        price_to_beat: Optional[float] = None,
    ) -> None:
        self.current = current
        self.secondary = secondary
        self.price_to_beat = price_to_beat
        self.forgotten: list[float] = []

    async def current_price(self, instrument: str, *, now: Optional[float] = None) -> Optional[float]:
        return self.current

    def secondary_price(self, instrument: str, *, now: Optional[float] = None) -> Optional[float]:
        return self.secondary

    async def price_at(self, instrument: str, unix_seconds: int, *, now: Optional[float] = None) -> Optional[float]:
        return self.price_to_beat

    def forget_before(self, unix_seconds: float) -> None:
        self.forgotten.append(unix_seconds)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> ScalpStrategyConfig:
    return make_config()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def market() -> Market:
    return make_market()
