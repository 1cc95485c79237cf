from __future__ import annotations

"""Registry of submitted-but-unfilled entry orders and their reconciliation."""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterable, Optional

from src.exchange.gateway import ExecutionGateway, GatewayError

from .retry import BoundedRetry, RetryPolicy

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.config.scalp_strategy_config import ScalpStrategyConfig
    from src.data.market.positions import PositionTracker
    from src.data.market.snapshots import Position

logger = logging.getLogger("updownStrategy.strategy.pending")


class FillOutcome(str, Enum):
    NONE = "none"
    PARTIAL_TRADABLE = "partial_tradable"
    FULL = "full"


class ReconcileKind(str, Enum):
    FILLED = "filled"
    PARTIAL = "partial"
    EXPIRED = "expired"
    STALE = "stale"
    ORPHANED = "orphaned"
    SUPERSEDED = "superseded"


@dataclass(slots=True)
class PendingOrder:
    order_id: str
    token_id: str
    direction: str
    price: float
    size: float
    market_slug: str
    instrument: str
    placed_at: float
    expires_at: float

    def seconds_left(self, now: float) -> float:
        return self.expires_at - now

    def age(self, now: float) -> float:
        return max(0.0, now - self.placed_at)


@dataclass(slots=True, frozen=True)
class FillReport:
    outcome: FillOutcome
    matched_size: float = 0.0


@dataclass(slots=True, frozen=True)
class ReconcileEvent:
    kind: ReconcileKind
    order: PendingOrder
    matched_size: float = 0.0
    position: Optional["Position"] = None


def classify_fill(matched: float, requested: float, *, full_ratio: float, partial_min: float) -> FillOutcome:
    if matched <= 0 or requested <= 0:
        return FillOutcome.NONE
    if matched >= requested * full_ratio:
        return FillOutcome.FULL
    if matched >= partial_min:
        return FillOutcome.PARTIAL_TRADABLE
    return FillOutcome.NONE


class PendingOrderRegistry:
    """Sole owner of pending entry orders.

    Each ``reconcile_all`` pass handles, per order: orphaned markets, the expiry
    safety valve, venue fill state and finally staleness. A fill is promoted to
    the position tracker and every other order of the same market is cancelled.
    """

    def __init__(
        self,
        *,
        config: "ScalpStrategyConfig",
        gateway: ExecutionGateway,
        positions: "PositionTracker",
        retry: Optional[BoundedRetry] = None,
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._positions = positions
        self._retry = retry or BoundedRetry(
            RetryPolicy(max_attempts=config.reconcile_attempts, delay=config.reconcile_retry_delay),
            name="order status",
        )
        self._orders: Dict[str, PendingOrder] = {}

    def add(self, order: PendingOrder) -> None:
        self._orders[order.order_id] = order
        logger.info(
            "Pending %s %s x%.2f @ %.4f in %s (id=%s, %.0fs left)",
            order.direction,
            order.token_id,
            order.size,
            order.price,
            order.market_slug,
            order.order_id,
            order.seconds_left(order.placed_at),
        )

    def get(self, order_id: str) -> Optional[PendingOrder]:
        return self._orders.get(order_id)

    def orders(self) -> list[PendingOrder]:
        return list(self._orders.values())

    def count(self) -> int:
        return len(self._orders)

    def has_pending(self, market_slug: str) -> bool:
        return any(order.market_slug == market_slug for order in self._orders.values())

    def markets_with_pending(self) -> set[str]:
        return {order.market_slug for order in self._orders.values()}

    def count_excluding(self, market_slug: str) -> int:
        return sum(1 for order in self._orders.values() if order.market_slug != market_slug)

    async def reconcile(self, order: PendingOrder) -> FillReport:
        outcome = await self._retry.run(
            lambda _attempt: self._gateway.get_order_status(order.order_id),
            retry_on=(GatewayError,),
        )
        if not outcome.succeeded:
            logger.warning("Order status unavailable for %s: %s", order.order_id, outcome.error)
            return FillReport(FillOutcome.NONE)
        status = outcome.value
        if status is None:
            return FillReport(FillOutcome.NONE)
        requested = status.requested_size or order.size
        matched = min(status.matched_size, requested)
        fill = classify_fill(
            matched,
            requested,
            full_ratio=self._config.full_fill_ratio,
            partial_min=self._config.partial_fill_min_size,
        )
        return FillReport(fill, matched)

    async def _cancel(self, order: PendingOrder, reason: str) -> bool:
        try:
            cancelled = await self._gateway.cancel_order(order.order_id)
        except GatewayError as exc:
            logger.warning("Cancel (%s) failed for %s: %s", reason, order.order_id, exc)
            return False
        if cancelled:
            logger.info("Cancelled %s order %s in %s", reason, order.order_id, order.market_slug)
        return cancelled

    def _discard(self, order: PendingOrder) -> None:
        self._orders.pop(order.order_id, None)

    async def cancel_market(self, market_slug: str, *, keep: Optional[str] = None) -> list[PendingOrder]:
        cancelled: list[PendingOrder] = []
        for order in [o for o in self._orders.values() if o.market_slug == market_slug and o.order_id != keep]:
            await self._cancel(order, "superseded")
            self._discard(order)
            cancelled.append(order)
        return cancelled

    async def _promote(self, order: PendingOrder, report: FillReport, now: float) -> list[ReconcileEvent]:
        position = self._positions.record_fill(
            order.token_id,
            order.direction,
            order.price,
            report.matched_size,
            order.market_slug,
            instrument=order.instrument,
            now=now,
        )
        if report.outcome is FillOutcome.PARTIAL_TRADABLE:
            await self._cancel(order, "residual")
        self._discard(order)
        kind = ReconcileKind.FILLED if report.outcome is FillOutcome.FULL else ReconcileKind.PARTIAL
        events = [ReconcileEvent(kind, order, report.matched_size, position)]
        for sibling in await self.cancel_market(order.market_slug):
            events.append(ReconcileEvent(ReconcileKind.SUPERSEDED, sibling))
        return events

    async def reconcile_all(
        self,
        active_markets: Iterable[str],
        *,
        now: Optional[float] = None,
    ) -> list[ReconcileEvent]:
        current = time.time() if now is None else now
        active = set(active_markets)
        events: list[ReconcileEvent] = []
        for order in list(self._orders.values()):
            if order.order_id not in self._orders:
                # already superseded earlier in this pass
                continue
            if order.market_slug not in active:
                await self._cancel(order, "orphaned")
                self._discard(order)
                events.append(ReconcileEvent(ReconcileKind.ORPHANED, order))
                continue
            if order.seconds_left(current) < self._config.expiry_safety_seconds:
                await self._cancel(order, "expiring")
                self._discard(order)
                events.append(ReconcileEvent(ReconcileKind.EXPIRED, order))
                continue
            report = await self.reconcile(order)
            if report.outcome is not FillOutcome.NONE:
                events.extend(await self._promote(order, report, current))
                continue
            if order.age(current) >= self._config.pending_max_age_seconds:
                if await self._cancel(order, "stale"):
                    self._discard(order)
                    events.append(ReconcileEvent(ReconcileKind.STALE, order, report.matched_size))
                else:
                    logger.warning("Stale order %s still open; retrying cancel next cycle", order.order_id)
        return events

    async def cancel_all(self) -> None:
        for order in list(self._orders.values()):
            await self._cancel(order, "shutdown")
            self._discard(order)
