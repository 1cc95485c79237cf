"""Unit tests for the bounded price history and its indicators."""

from __future__ import annotations

import pytest

from src.config.scalp_strategy_config import InstrumentRiskProfile
from src.data.prices.history import PriceHistoryTracker


def _profile(**overrides) -> InstrumentRiskProfile:
    values = dict(
        symbol="BTC",
        okx_inst_id="BTC-USDT",
        binance_symbol="btcusdt",
        base_gap=40.0,
        gap_floor=15.0,
        overextension_pct=0.002,
        momentum_threshold=30.0,
        momentum_lookback=3,
        min_samples=5,
        long_window=20,
    )
    values.update(overrides)
    return InstrumentRiskProfile(**values)


def _fill(history: PriceHistoryTracker, prices: list[float], instrument: str = "BTC") -> None:
    for index, price in enumerate(prices):
        history.record(instrument, price, now=1000.0 + index)


class TestRecording:
    def test_buffer_is_bounded_fifo(self) -> None:
        history = PriceHistoryTracker(capacity=3)
        _fill(history, [1.0, 2.0, 3.0, 4.0])
        assert [sample.price for sample in history.samples("BTC")] == [2.0, 3.0, 4.0]

    def test_non_positive_prices_ignored(self) -> None:
        history = PriceHistoryTracker()
        history.record("BTC", 0.0)
        history.record("BTC", -5.0)
        assert history.samples("BTC") == []

    def test_instruments_are_independent(self) -> None:
        history = PriceHistoryTracker()
        _fill(history, [100.0, 101.0], "BTC")
        _fill(history, [5.0], "ETH")
        assert len(history.samples("BTC")) == 2
        assert len(history.samples("ETH")) == 1
        history.clear("BTC")
        assert history.samples("BTC") == []
        assert len(history.samples("ETH")) == 1


class TestIndicators:
    def test_average_and_window(self) -> None:
        history = PriceHistoryTracker()
        _fill(history, [10.0, 20.0, 30.0, 40.0])
        assert history.average("BTC") == pytest.approx(25.0)
        assert history.average("BTC", window=2) == pytest.approx(35.0)
        assert history.average("ETH") is None

    def test_price_range(self) -> None:
        history = PriceHistoryTracker()
        assert history.price_range("BTC") == 0.0
        _fill(history, [100.0, 130.0, 90.0])
        assert history.price_range("BTC") == pytest.approx(40.0)

    def test_momentum_compares_lookback_sample(self) -> None:
        history = PriceHistoryTracker()
        _fill(history, [100.0, 110.0, 120.0, 150.0])
        assert history.momentum("BTC", 3) == pytest.approx(50.0)
        assert history.momentum("BTC", 4) is None


class TestOverextension:
    def test_permissive_with_thin_history(self) -> None:
        history = PriceHistoryTracker()
        _fill(history, [100.0, 100.0])
        assert history.overextended("BTC", 200.0, _profile()) is False

    def test_flags_price_far_from_average(self) -> None:
        history = PriceHistoryTracker()
        _fill(history, [100_000.0] * 6)
        profile = _profile()
        assert history.overextended("BTC", 100_100.0, profile) is False
        assert history.overextended("BTC", 100_300.0, profile) is True

    def test_zero_threshold_disables_gate(self) -> None:
        history = PriceHistoryTracker()
        _fill(history, [100_000.0] * 6)
        assert history.overextended("BTC", 150_000.0, _profile(overextension_pct=0.0)) is False


class TestMomentumDanger:
    def test_falling_price_blocks_up(self) -> None:
        history = PriceHistoryTracker()
        _fill(history, [100_100.0, 100_100.0, 100_100.0, 100_080.0, 100_060.0, 100_040.0])
        profile = _profile()
        assert history.momentum_dangerous("BTC", "up", profile) is True
        assert history.momentum_dangerous("BTC", "down", profile) is False

    def test_rising_price_blocks_down(self) -> None:
        history = PriceHistoryTracker()
        _fill(history, [100_000.0, 100_000.0, 100_000.0, 100_020.0, 100_040.0, 100_060.0])
        profile = _profile()
        assert history.momentum_dangerous("BTC", "down", profile) is True
        assert history.momentum_dangerous("BTC", "up", profile) is False

    def test_small_moves_are_not_dangerous(self) -> None:
        history = PriceHistoryTracker()
        _fill(history, [100_000.0, 100_005.0, 100_000.0, 99_995.0, 100_000.0, 99_990.0])
        assert history.momentum_dangerous("BTC", "up", _profile()) is False

    def test_permissive_below_min_samples(self) -> None:
        history = PriceHistoryTracker()
        _fill(history, [100_100.0, 100_000.0, 99_000.0, 98_000.0])
        assert history.momentum_dangerous("BTC", "up", _profile()) is False
