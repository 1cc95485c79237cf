from __future__ import annotations

"""Tracking of open outcome-token positions and per-market budgets."""

import logging
import math
import threading
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Dict, Iterable, Mapping, Optional

from .constants import POSITION_EPSILON
from .models import OrderBookLevel
from .snapshots import POSITION_CLOSING, POSITION_OPEN, ExitReason, ExitSignal, Position

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.config.scalp_strategy_config import ScalpStrategyConfig

logger = logging.getLogger("updownStrategy.market.positions")

# bids at or below this are treated as an empty book
_DEAD_BID = 0.01
_TOLERANCE = 1e-9


class PositionTracker:
    """Own open positions, their exit rules and the per-market spend counters.

    Positions move through ``open -> closing -> removed``. Nothing outside this
    class mutates position or budget state; callers receive copies.
    """

    def __init__(self, *, config: "ScalpStrategyConfig") -> None:
        self._profit_target = config.profit_target
        self._stop_loss = config.stop_loss
        self._max_hold = config.max_hold_seconds
        self._min_exit_size = config.min_exit_size
        self._max_spend = config.max_position_per_market
        self._max_trades = config.max_trades_per_window
        self._max_open = config.max_open_positions
        self._lock = threading.Lock()
        self._positions: Dict[str, Position] = {}
        self._spend: Dict[str, float] = {}
        self._trades: Dict[str, int] = {}

    def positions(self) -> Dict[str, Position]:
        with self._lock:
            return {token: replace(pos) for token, pos in self._positions.items()}

    def get(self, token_id: str) -> Optional[Position]:
        with self._lock:
            pos = self._positions.get(token_id)
            return replace(pos) if pos is not None else None

    def open_count(self) -> int:
        with self._lock:
            return len(self._positions)

    def has_open_position(self) -> bool:
        return self.open_count() > 0

    def at_capacity(self, reserved: int = 0) -> bool:
        return self.open_count() + reserved >= self._max_open

    def market_spend(self, market_slug: str) -> float:
        with self._lock:
            return self._spend.get(market_slug, 0.0)

    def trade_count(self, market_slug: str) -> int:
        with self._lock:
            return self._trades.get(market_slug, 0)

    def can_open(self, market_slug: str, additional_cost: float) -> bool:
        with self._lock:
            spent = self._spend.get(market_slug, 0.0)
            trades = self._trades.get(market_slug, 0)
        if spent + additional_cost > self._max_spend + _TOLERANCE:
            logger.debug(
                "Budget exceeded for %s: spent=%.2f additional=%.2f ceiling=%.2f",
                market_slug,
                spent,
                additional_cost,
                self._max_spend,
            )
            return False
        if trades >= self._max_trades:
            logger.debug("Trade cap reached for %s: trades=%s cap=%s", market_slug, trades, self._max_trades)
            return False
        return True

    def record_fill(
        self,
        token_id: str,
        direction: str,
        price: float,
        size: float,
        market_slug: str,
        *,
        instrument: str = "",
        now: Optional[float] = None,
    ) -> Position:
        if size <= 0 or price <= 0:
            raise ValueError(f"fill must have positive price and size, got {price}x{size}")
        timestamp = time.time() if now is None else now
        cost = price * size
        with self._lock:
            existing = self._positions.get(token_id)
            if existing is None:
                position = Position(
                    token_id=token_id,
                    direction=direction,
                    avg_price=price,
                    size=size,
                    cost_basis=cost,
                    market_slug=market_slug,
                    entry_time=timestamp,
                    instrument=instrument,
                )
                self._positions[token_id] = position
            else:
                position = existing
                total_size = position.size + size
                position.cost_basis += cost
                position.avg_price = position.cost_basis / total_size
                position.size = total_size
                position.fills += 1
            self._spend[market_slug] = self._spend.get(market_slug, 0.0) + cost
            self._trades[market_slug] = self._trades.get(market_slug, 0) + 1
            snapshot = replace(position)
        logger.info(
            "Position %s %s: +%.2f @ %.4f -> size=%.2f avg=%.4f (market=%s)",
            "opened" if snapshot.fills == 1 else "increased",
            snapshot.direction,
            size,
            price,
            snapshot.size,
            snapshot.avg_price,
            market_slug,
        )
        return snapshot

    def _exit_reason(self, position: Position, pnl: float, now: float) -> Optional[ExitReason]:
        if pnl >= self._profit_target - _TOLERANCE:
            return ExitReason.TAKE_PROFIT
        if pnl <= -self._stop_loss + _TOLERANCE:
            return ExitReason.STOP_LOSS
        if position.held_seconds(now) >= self._max_hold:
            return ExitReason.LATE_TAKE_PROFIT if pnl >= 0 else ExitReason.LATE_STOP_LOSS
        return None

    def evaluate_exits(
        self,
        current_bids: Mapping[str, Optional[OrderBookLevel]],
        *,
        now: Optional[float] = None,
    ) -> list[ExitSignal]:
        timestamp = time.time() if now is None else now
        signals: list[ExitSignal] = []
        with self._lock:
            candidates = [replace(pos) for pos in self._positions.values() if pos.state == POSITION_OPEN]
        for position in candidates:
            bid = current_bids.get(position.token_id)
            if bid is None or bid.price <= _DEAD_BID:
                continue
            pnl = position.pnl_per_unit(bid.price)
            reason = self._exit_reason(position, pnl, timestamp)
            if reason is None:
                continue
            size = math.floor(min(position.size, bid.size) + _TOLERANCE)
            if size < self._min_exit_size:
                logger.info(
                    "Exit %s for %s deferred: sellable size %.2f below %.2f (bid size %.2f)",
                    reason.value,
                    position.token_id,
                    size,
                    self._min_exit_size,
                    bid.size,
                )
                continue
            signals.append(
                ExitSignal(
                    token_id=position.token_id,
                    market_slug=position.market_slug,
                    instrument=position.instrument,
                    direction=position.direction,
                    price=bid.price,
                    size=float(size),
                    reason=reason,
                    avg_price=position.avg_price,
                    pnl_per_unit=pnl,
                    held_seconds=position.held_seconds(timestamp),
                )
            )
        return signals

    def mark_closing(self, token_id: str) -> Optional[Position]:
        with self._lock:
            position = self._positions.get(token_id)
            if position is None:
                return None
            position.state = POSITION_CLOSING
            return replace(position)

    def record_sell(self, token_id: str, size: float) -> Optional[Position]:
        """Reduce a position after a sale; return what remains, or ``None`` once closed."""

        with self._lock:
            position = self._positions.get(token_id)
            if position is None:
                return None
            remaining = position.size - size
            if remaining < POSITION_EPSILON:
                self._positions.pop(token_id, None)
                logger.info("Position %s closed (sold %.2f)", token_id, size)
                return None
            position.cost_basis = position.avg_price * remaining
            position.size = remaining
            position.state = POSITION_OPEN
            logger.info("Position %s reduced by %.2f, %.2f remaining", token_id, size, remaining)
            return replace(position)

    def force_clear(self, token_id: str) -> Optional[Position]:
        with self._lock:
            removed = self._positions.pop(token_id, None)
        if removed is not None:
            logger.warning(
                "Position %s force-cleared locally: size=%.2f avg=%.4f market=%s",
                token_id,
                removed.size,
                removed.avg_price,
                removed.market_slug,
            )
        return removed

    def cleanup(self, active_markets: Iterable[str]) -> list[Position]:
        """Purge positions and budget counters of markets that are no longer active."""

        active = set(active_markets)
        with self._lock:
            removed = [
                self._positions.pop(token)
                for token, pos in list(self._positions.items())
                if pos.market_slug not in active
            ]
            stale_markets = [slug for slug in set(self._spend) | set(self._trades) if slug not in active]
            for slug in stale_markets:
                self._spend.pop(slug, None)
                self._trades.pop(slug, None)
        for position in removed:
            logger.info(
                "Market %s left the active set; dropping position %s (size=%.2f avg=%.4f)",
                position.market_slug,
                position.token_id,
                position.size,
                position.avg_price,
            )
        if stale_markets:
            logger.debug("Reset budget counters for %s", ", ".join(sorted(stale_markets)))
        return removed

    def summary(self) -> str:
        with self._lock:
            if not self._positions:
                return "no open positions"
            return "; ".join(
                f"{pos.direction} {pos.size:.2f}@{pos.avg_price:.4f} ({pos.market_slug}, {pos.state})"
                for pos in self._positions.values()
            )
