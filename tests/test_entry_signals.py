"""Unit tests for entry selection, locks and cooldowns."""

from __future__ import annotations

from typing import Optional

import pytest
from conftest import WINDOW_START, make_book, make_config, make_market

from src.config.scalp_strategy_config import ScalpStrategyConfig
from src.data.market.models import Market, OrderBookSummary
from src.data.market.positions import PositionTracker
from src.data.prices.history import PriceHistoryTracker
from src.strategy.entry_signals import (
    CooldownBook,
    EntryLockTable,
    EntrySignalEvaluator,
    MarketContext,
    match_band,
)
from src.strategy.risk_gates import REASON_GAP, RiskGateEvaluator

NOW = WINDOW_START + 300.0


def _evaluator(config: ScalpStrategyConfig, positions: Optional[PositionTracker] = None) -> EntrySignalEvaluator:
    return EntrySignalEvaluator(
        config=config,
        positions=positions or PositionTracker(config=config),
        risk=RiskGateEvaluator(config=config, history=PriceHistoryTracker()),
    )


def _context(
    market: Market,
    *books: OrderBookSummary,
    now: float = NOW,
    current: Optional[float] = 100_100.0,
    target: Optional[float] = 100_000.0,
) -> MarketContext:
    return MarketContext(
        market=market,
        books={book.token_id: book for book in books},
        now=now,
        current_price=current,
        price_to_beat=target,
    )


class TestBands:
    @pytest.mark.parametrize(
        ("price", "quote"),
        [(0.978, 0.98), (0.984, 0.98), (0.985, 0.99), (0.99, 0.99), (0.9999, 0.99)],
    )
    def test_band_boundaries(self, price: float, quote: float) -> None:
        band = match_band(price, make_config().bands)
        assert band is not None
        assert band.quote == quote

    @pytest.mark.parametrize("price", [0.977, 0.9845, 1.0, None])
    def test_prices_outside_bands(self, price: Optional[float]) -> None:
        assert match_band(price, make_config().bands) is None


class TestEvaluate:
    def test_ask_in_band_produces_intent(self, market: Market) -> None:
        evaluator = _evaluator(make_config())
        intent = evaluator.evaluate(_context(market, make_book(market.up_token_id, ask=0.98, ask_size=20.0)))
        assert intent is not None
        assert intent.direction == "up"
        assert intent.token_id == market.up_token_id
        assert intent.price == 0.98
        assert intent.size == 20.0
        assert intent.observed_side == "ask"
        assert intent.expires_at == market.end_time
        assert intent.notional == pytest.approx(19.6)

    def test_upper_band_quotes_higher(self, market: Market) -> None:
        evaluator = _evaluator(make_config())
        intent = evaluator.evaluate(_context(market, make_book(market.up_token_id, ask=0.985)))
        assert intent is not None
        assert intent.price == 0.99

    def test_falls_back_to_bid(self, market: Market) -> None:
        evaluator = _evaluator(make_config())
        book = make_book(market.up_token_id, bid=0.98, bid_size=10.0, ask=0.96)
        intent = evaluator.evaluate(_context(market, book))
        assert intent is not None
        assert intent.observed_side == "bid"
        assert intent.observed_price == 0.98
        assert intent.size == 10.0

    def test_down_outcome_when_spot_below_target(self, market: Market) -> None:
        evaluator = _evaluator(make_config())
        books = (
            make_book(market.up_token_id, ask=0.98),
            make_book(market.down_token_id, ask=0.98),
        )
        intent = evaluator.evaluate(_context(market, *books, current=99_900.0))
        assert intent is not None
        assert intent.direction == "down"
        assert intent.token_id == market.down_token_id

    def test_risk_veto_records_decision(self, market: Market) -> None:
        evaluator = _evaluator(make_config())
        intent = evaluator.evaluate(
            _context(market, make_book(market.up_token_id, ask=0.98), current=100_010.0)
        )
        assert intent is None
        decision = evaluator.last_decisions[market.slug]
        assert not decision
        assert REASON_GAP in decision.reasons

    @pytest.mark.parametrize(("level_size", "expected"), [(200.0, 50.0), (2.0, 5.0), (12.345, 12.34)])
    def test_size_clamped(self, market: Market, level_size: float, expected: float) -> None:
        evaluator = _evaluator(make_config())
        intent = evaluator.evaluate(_context(market, make_book(market.up_token_id, ask=0.98, ask_size=level_size)))
        assert intent is not None
        assert intent.size == pytest.approx(expected)

    def test_min_notional(self, market: Market) -> None:
        evaluator = _evaluator(make_config(min_order_notional=10.0))
        intent = evaluator.evaluate(_context(market, make_book(market.up_token_id, ask=0.98, ask_size=5.0)))
        assert intent is None

    def test_budget_ceiling(self, market: Market) -> None:
        evaluator = _evaluator(make_config(max_position_per_market=10.0))
        assert evaluator.evaluate(_context(market, make_book(market.up_token_id, ask=0.98))) is None

    def test_pending_order_blocks(self, market: Market) -> None:
        evaluator = _evaluator(make_config())
        context = _context(market, make_book(market.up_token_id, ask=0.98))
        assert evaluator.evaluate(context, has_pending=True) is None
        assert evaluator.evaluate(context, reserved_slots=1) is None

    def test_at_most_one_position(self, market: Market) -> None:
        config = make_config()
        positions = PositionTracker(config=config)
        positions.record_fill("other-token", "up", 0.98, 10.0, "eth-updown-15m-1", now=NOW)
        evaluator = _evaluator(config, positions)
        assert evaluator.evaluate(_context(market, make_book(market.up_token_id, ask=0.98))) is None

    def test_entry_window(self, market: Market) -> None:
        evaluator = _evaluator(make_config(entry_max_seconds_left=300.0))
        book = make_book(market.up_token_id, ask=0.98)
        assert evaluator.evaluate(_context(market, book)) is None
        assert evaluator.evaluate(_context(market, book, now=market.end_time - 200.0)) is not None
        assert evaluator.evaluate(_context(market, book, now=market.end_time - 10.0)) is None

    def test_disabled(self, market: Market) -> None:
        evaluator = _evaluator(make_config(enabled=False))
        assert evaluator.evaluate(_context(market, make_book(market.up_token_id, ask=0.98))) is None

    def test_missing_book(self) -> None:
        market = make_market()
        assert _evaluator(make_config()).evaluate(_context(market)) is None


class TestEntryLockTable:
    def test_lock_expires(self) -> None:
        locks = EntryLockTable(10.0)
        assert locks.acquire("m", 100.0)
        assert not locks.acquire("m", 105.0)
        assert locks.is_locked("m", 105.0)
        assert not locks.is_locked("m", 110.0)
        assert locks.acquire("m", 110.0)

    def test_release(self) -> None:
        locks = EntryLockTable(10.0)
        locks.acquire("m", 100.0)
        locks.release("m")
        assert not locks.is_locked("m", 101.0)


class TestCooldownBook:
    def test_block_and_expire(self) -> None:
        book = CooldownBook()
        book.block("m", 30.0, "stop_loss", now=100.0)
        assert book.active("m", now=120.0)
        assert book.remaining("m", now=120.0) == pytest.approx(10.0)
        assert book.reason("m") == "stop_loss"
        assert not book.active("m", now=130.0)

    def test_longer_block_wins(self) -> None:
        book = CooldownBook()
        book.block("m", 60.0, "forced_clear", now=100.0)
        book.block("m", 10.0, "stop_loss", now=100.0)
        assert book.reason("m") == "forced_clear"
        assert book.active("m", now=150.0)

    def test_zero_seconds_ignored(self) -> None:
        book = CooldownBook()
        book.block("m", 0.0, "noop", now=100.0)
        assert not book.active("m", now=100.0)
