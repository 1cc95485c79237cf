"""Unit tests for the entry risk gates."""

from __future__ import annotations

import pytest
from conftest import make_config

from src.config.scalp_strategy_config import GapStep
from src.data.market.models import OrderBookLevel
from src.data.prices.history import PriceHistoryTracker
from src.strategy.risk_gates import (
    REASON_DEPTH,
    REASON_DIVERGENCE,
    REASON_GAP,
    REASON_NO_PRICE,
    REASON_NO_TARGET,
    RiskGateEvaluator,
    RiskInputs,
    depth_acceptable,
    gap_satisfied,
    required_gap,
    sources_converged,
)


@pytest.fixture
def evaluator() -> RiskGateEvaluator:
    return RiskGateEvaluator(config=make_config(), history=PriceHistoryTracker())


def _inputs(**overrides) -> RiskInputs:
    values = dict(
        instrument="BTC",
        direction="up",
        seconds_to_expiry=600.0,
        current_price=100_100.0,
        price_to_beat=100_000.0,
    )
    values.update(overrides)
    return RiskInputs(**values)


class TestRequiredGap:
    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(300.0, 40.0), (240.0, 40.0), (150.0, 32.0), (45.0, 18.0), (10.0, 15.0)],
    )
    def test_shrinks_with_time_but_respects_floor(self, seconds: float, expected: float) -> None:
        config = make_config()
        profile = config.profile_for("BTC")
        assert required_gap(seconds, 40.0, profile, config.gap_steps) == pytest.approx(expected)

    def test_no_steps_uses_full_buffer(self) -> None:
        profile = make_config().profile_for("BTC")
        assert required_gap(5.0, 40.0, profile, ()) == pytest.approx(40.0)

    def test_unmatched_seconds_use_smallest_step(self) -> None:
        profile = make_config().profile_for("BTC")
        steps = (GapStep(min_seconds=60.0, factor=0.5), GapStep(min_seconds=120.0, factor=1.0))
        assert required_gap(10.0, 40.0, profile, steps) == pytest.approx(20.0)


class TestPredicates:
    def test_gap_direction(self) -> None:
        assert gap_satisfied("up", 100_050.0, 100_000.0, 40.0)
        assert not gap_satisfied("up", 100_030.0, 100_000.0, 40.0)
        assert gap_satisfied("down", 99_950.0, 100_000.0, 40.0)
        assert not gap_satisfied("down", 100_050.0, 100_000.0, 40.0)
        assert not gap_satisfied("sideways", 100_050.0, 100_000.0, 0.0)

    def test_depth(self) -> None:
        assert depth_acceptable(None, 5000.0)
        assert depth_acceptable(OrderBookLevel(0.98, 100.0), 5000.0)
        assert not depth_acceptable(OrderBookLevel(0.98, 6000.0), 5000.0)
        assert depth_acceptable(OrderBookLevel(0.98, 6000.0), 0.0)

    def test_sources_converged(self) -> None:
        assert sources_converged(100.0, None, 5.0)
        assert sources_converged(100.0, 104.0, 5.0)
        assert not sources_converged(100.0, 106.0, 5.0)
        assert sources_converged(100.0, 200.0, 0.0)


class TestEvaluator:
    def test_allows_clean_entry(self, evaluator: RiskGateEvaluator) -> None:
        decision = evaluator.evaluate(_inputs())
        assert decision
        assert decision.reasons == ()
        assert decision.required_gap == pytest.approx(40.0)

    def test_missing_reference_price_denies(self, evaluator: RiskGateEvaluator) -> None:
        decision = evaluator.evaluate(_inputs(current_price=None))
        assert not decision
        assert decision.reasons == (REASON_NO_PRICE,)

    def test_missing_price_to_beat_denies(self, evaluator: RiskGateEvaluator) -> None:
        decision = evaluator.evaluate(_inputs(price_to_beat=None))
        assert not decision
        assert decision.reasons == (REASON_NO_TARGET,)

    def test_collects_every_failing_gate(self, evaluator: RiskGateEvaluator) -> None:
        decision = evaluator.evaluate(
            _inputs(
                current_price=100_020.0,
                secondary_price=100_060.0,
                best_ask=OrderBookLevel(0.98, 6000.0),
            )
        )
        assert not decision
        assert set(decision.reasons) == {REASON_GAP, REASON_DEPTH, REASON_DIVERGENCE}

    def test_down_direction_gap(self, evaluator: RiskGateEvaluator) -> None:
        assert evaluator.evaluate(_inputs(direction="down", current_price=99_950.0))
        assert not evaluator.evaluate(_inputs(direction="down", current_price=100_100.0))

    def test_dynamic_buffer_grows_with_range(self) -> None:
        history = PriceHistoryTracker()
        history.record("BTC", 100_000.0, now=1.0)
        history.record("BTC", 100_100.0, now=2.0)
        evaluator = RiskGateEvaluator(config=make_config(), history=history)
        assert evaluator.dynamic_buffer("BTC") == pytest.approx(40.0 + 0.6 * 100.0)
        assert not evaluator.evaluate(_inputs(current_price=100_090.0))

    def test_unknown_instrument_only_needs_direction(self, evaluator: RiskGateEvaluator) -> None:
        decision = evaluator.evaluate(
            _inputs(instrument="DOGE", current_price=0.1, price_to_beat=0.1, secondary_price=5.0)
        )
        assert decision

    def test_diverged(self, evaluator: RiskGateEvaluator) -> None:
        assert evaluator.diverged("BTC", 100_000.0, 100_020.0)
        assert not evaluator.diverged("BTC", 100_000.0, 100_005.0)
        assert not evaluator.diverged("BTC", 100_000.0, None)
