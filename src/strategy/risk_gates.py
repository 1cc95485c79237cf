from __future__ import annotations

"""Entry risk gates.

Every gate is a plain predicate so it can be tested on its own;
``RiskGateEvaluator`` only composes them and records which ones vetoed.

- gap: spot must sit at least ``required_gap`` beyond the price to beat in the
  proposed direction; the requirement shrinks as the window runs out but never
  below the instrument's absolute floor.
- overextension: spot far from its recent average suggests a spike that may
  reverse.
- momentum: a fast move against the proposed direction.
- depth: an unusually large resting ask at the top of book.
- divergence: primary and secondary spot sources disagree.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

from src.data.market.constants import DIRECTION_DOWN, DIRECTION_UP
from src.data.market.models import OrderBookLevel

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.config.scalp_strategy_config import (
        GapStep,
        InstrumentRiskProfile,
        ScalpStrategyConfig,
    )
    from src.data.prices.history import PriceHistoryTracker

logger = logging.getLogger("updownStrategy.strategy.risk_gates")

REASON_NO_PRICE = "no_reference_price"
REASON_NO_TARGET = "no_price_to_beat"
REASON_GAP = "gap"
REASON_OVEREXTENDED = "overextended"
REASON_MOMENTUM = "momentum"
REASON_DEPTH = "depth"
REASON_DIVERGENCE = "divergence"


def required_gap(
    seconds_to_expiry: float,
    dynamic_buffer: float,
    profile: "InstrumentRiskProfile",
    steps: Sequence["GapStep"],
) -> float:
    factor = 1.0
    for step in sorted(steps, key=lambda item: item.min_seconds, reverse=True):
        factor = step.factor
        if seconds_to_expiry >= step.min_seconds:
            break
    return max(profile.gap_floor, dynamic_buffer * factor)


def gap_satisfied(direction: str, current_price: float, price_to_beat: float, gap: float) -> bool:
    if direction == DIRECTION_UP:
        return current_price - price_to_beat >= gap
    if direction == DIRECTION_DOWN:
        return price_to_beat - current_price >= gap
    return False


def depth_acceptable(best_ask: Optional[OrderBookLevel], max_notional: float) -> bool:
    if best_ask is None or max_notional <= 0:
        return True
    return best_ask.notional <= max_notional


def sources_converged(primary: Optional[float], secondary: Optional[float], threshold: float) -> bool:
    """True unless both sources are present and differ by more than ``threshold``."""

    if primary is None or secondary is None or threshold <= 0:
        return True
    return abs(primary - secondary) <= threshold


@dataclass(slots=True, frozen=True)
class RiskInputs:
    instrument: str
    direction: str
    seconds_to_expiry: float
    current_price: Optional[float]
    price_to_beat: Optional[float]
    secondary_price: Optional[float] = None
    best_ask: Optional[OrderBookLevel] = None


@dataclass(slots=True, frozen=True)
class GateDecision:
    allowed: bool
    reasons: tuple[str, ...] = ()
    required_gap: Optional[float] = None

    def __bool__(self) -> bool:
        return self.allowed


class RiskGateEvaluator:
    def __init__(self, *, config: "ScalpStrategyConfig", history: "PriceHistoryTracker") -> None:
        self._config = config
        self._history = history

    def dynamic_buffer(self, instrument: str) -> float:
        profile = self._config.profile_for(instrument)
        return profile.base_gap + self._config.dynamic_range_weight * self._history.price_range(instrument)

    def diverged(self, instrument: str, primary: Optional[float], secondary: Optional[float]) -> bool:
        profile = self._config.profile_for(instrument)
        return not sources_converged(primary, secondary, profile.divergence_threshold)

    def evaluate(self, inputs: RiskInputs) -> GateDecision:
        profile = self._config.profile_for(inputs.instrument)
        if inputs.current_price is None:
            return GateDecision(False, (REASON_NO_PRICE,))
        if inputs.price_to_beat is None:
            return GateDecision(False, (REASON_NO_TARGET,))
        reasons: list[str] = []
        gap = required_gap(
            inputs.seconds_to_expiry,
            self.dynamic_buffer(inputs.instrument),
            profile,
            self._config.gap_steps,
        )
        if not gap_satisfied(inputs.direction, inputs.current_price, inputs.price_to_beat, gap):
            reasons.append(REASON_GAP)
        if self._history.overextended(inputs.instrument, inputs.current_price, profile):
            reasons.append(REASON_OVEREXTENDED)
        if self._history.momentum_dangerous(inputs.instrument, inputs.direction, profile):
            reasons.append(REASON_MOMENTUM)
        if not depth_acceptable(inputs.best_ask, profile.max_top_ask_notional):
            reasons.append(REASON_DEPTH)
        if not sources_converged(inputs.current_price, inputs.secondary_price, profile.divergence_threshold):
            reasons.append(REASON_DIVERGENCE)
        if reasons:
            logger.debug(
                "Entry vetoed for %s %s: %s (spot=%.6f target=%.6f gap=%.6f left=%.0fs)",
                inputs.instrument,
                inputs.direction,
                ",".join(reasons),
                inputs.current_price,
                inputs.price_to_beat,
                gap,
                inputs.seconds_to_expiry,
            )
        return GateDecision(not reasons, tuple(reasons), gap)
