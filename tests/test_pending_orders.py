"""Unit tests for pending order reconciliation."""

from __future__ import annotations

import pytest
from conftest import WINDOW_END, WINDOW_START, FakeGateway, make_config

from src.data.market.positions import PositionTracker
from src.strategy.pending_orders import (
    FillOutcome,
    PendingOrder,
    PendingOrderRegistry,
    ReconcileKind,
    classify_fill,
)

SLUG = "btc-updown-15m-1700000100"
NOW = WINDOW_START + 300.0


def _order(
    gateway: FakeGateway,
    order_id: str,
    *,
    size: float = 20.0,
    slug: str = SLUG,
    placed_at: float = NOW,
    expires_at: float = WINDOW_END,
    token_id: str = "tok-up",
) -> PendingOrder:
    gateway.requested[order_id] = size
    return PendingOrder(
        order_id=order_id,
        token_id=token_id,
        direction="up",
        price=0.98,
        size=size,
        market_slug=slug,
        instrument="BTC",
        placed_at=placed_at,
        expires_at=expires_at,
    )


@pytest.fixture
def positions() -> PositionTracker:
    return PositionTracker(config=make_config())


@pytest.fixture
def registry(gateway: FakeGateway, positions: PositionTracker) -> PendingOrderRegistry:
    return PendingOrderRegistry(config=make_config(), gateway=gateway, positions=positions)


class TestClassifyFill:
    @pytest.mark.parametrize(
        ("matched", "requested", "expected"),
        [
            (20.0, 20.0, FillOutcome.FULL),
            (19.85, 20.0, FillOutcome.FULL),
            (10.0, 20.0, FillOutcome.PARTIAL_TRADABLE),
            (5.0, 20.0, FillOutcome.PARTIAL_TRADABLE),
            (4.99, 20.0, FillOutcome.NONE),
            (0.0, 20.0, FillOutcome.NONE),
            (5.0, 0.0, FillOutcome.NONE),
        ],
    )
    def test_thresholds(self, matched: float, requested: float, expected: FillOutcome) -> None:
        assert classify_fill(matched, requested, full_ratio=0.99, partial_min=5.0) is expected


class TestRegistry:
    def test_queries(self, registry: PendingOrderRegistry, gateway: FakeGateway) -> None:
        registry.add(_order(gateway, "a"))
        registry.add(_order(gateway, "b", slug="eth-market"))
        assert registry.count() == 2
        assert registry.has_pending(SLUG)
        assert not registry.has_pending("other")
        assert registry.markets_with_pending() == {SLUG, "eth-market"}
        assert registry.count_excluding(SLUG) == 1
        assert registry.get("a") is not None
        assert registry.get("zzz") is None


class TestReconcileAll:
    async def _run(self, registry: PendingOrderRegistry, now: float = NOW, active=(SLUG,)):
        return await registry.reconcile_all(active, now=now)

    @pytest.mark.asyncio
    async def test_full_fill_promotes_position(
        self, registry: PendingOrderRegistry, gateway: FakeGateway, positions: PositionTracker
    ) -> None:
        registry.add(_order(gateway, "a"))
        events = await self._run(registry)
        assert [event.kind for event in events] == [ReconcileKind.FILLED]
        assert events[0].matched_size == pytest.approx(20.0)
        position = positions.get("tok-up")
        assert position is not None
        assert position.size == pytest.approx(20.0)
        assert position.avg_price == pytest.approx(0.98)
        assert position.instrument == "BTC"
        assert registry.count() == 0
        assert gateway.cancelled == []

    @pytest.mark.asyncio
    async def test_partial_fill_cancels_residual(
        self, registry: PendingOrderRegistry, gateway: FakeGateway, positions: PositionTracker
    ) -> None:
        registry.add(_order(gateway, "a"))
        gateway.fills["a"] = 10.0
        events = await self._run(registry)
        assert [event.kind for event in events] == [ReconcileKind.PARTIAL]
        assert gateway.cancelled == ["a"]
        assert positions.get("tok-up").size == pytest.approx(10.0)
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_dust_fill_keeps_waiting(
        self, registry: PendingOrderRegistry, gateway: FakeGateway, positions: PositionTracker
    ) -> None:
        registry.add(_order(gateway, "a"))
        gateway.fills["a"] = 3.0
        assert await self._run(registry) == []
        assert registry.count() == 1
        assert positions.get("tok-up") is None

    @pytest.mark.asyncio
    async def test_fill_cancels_sibling_orders(
        self, registry: PendingOrderRegistry, gateway: FakeGateway
    ) -> None:
        registry.add(_order(gateway, "a"))
        registry.add(_order(gateway, "b", token_id="tok-down"))
        events = await self._run(registry)
        assert [event.kind for event in events] == [ReconcileKind.FILLED, ReconcileKind.SUPERSEDED]
        assert events[1].order.order_id == "b"
        assert gateway.cancelled == ["b"]
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_orphaned_market(self, registry: PendingOrderRegistry, gateway: FakeGateway) -> None:
        registry.add(_order(gateway, "a"))
        events = await self._run(registry, active=())
        assert [event.kind for event in events] == [ReconcileKind.ORPHANED]
        assert gateway.cancelled == ["a"]
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_expiry_valve_near_window_end(
        self, registry: PendingOrderRegistry, gateway: FakeGateway, positions: PositionTracker
    ) -> None:
        registry.add(_order(gateway, "a", expires_at=NOW + 20.0))
        gateway.fills["a"] = 0.0
        assert await self._run(registry) == []
        assert registry.count() == 1

        events = await self._run(registry, now=NOW + 13.0)
        assert [event.kind for event in events] == [ReconcileKind.EXPIRED]
        assert gateway.cancelled == ["a"]
        assert registry.count() == 0
        assert positions.get("tok-up") is None

    @pytest.mark.asyncio
    async def test_stale_order_cancelled(self, registry: PendingOrderRegistry, gateway: FakeGateway) -> None:
        registry.add(_order(gateway, "a", placed_at=NOW - 50.0))
        gateway.fills["a"] = 0.0
        events = await self._run(registry)
        assert [event.kind for event in events] == [ReconcileKind.STALE]
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_stale_order_kept_when_cancel_fails(
        self, registry: PendingOrderRegistry, gateway: FakeGateway
    ) -> None:
        registry.add(_order(gateway, "a", placed_at=NOW - 50.0))
        gateway.fills["a"] = 0.0
        gateway.cancel_raises = True
        assert await self._run(registry) == []
        assert registry.count() == 1

    @pytest.mark.asyncio
    async def test_status_retry_recovers(
        self, registry: PendingOrderRegistry, gateway: FakeGateway
    ) -> None:
        registry.add(_order(gateway, "a"))
        gateway.status_errors["a"] = 1
        events = await self._run(registry)
        assert [event.kind for event in events] == [ReconcileKind.FILLED]

    @pytest.mark.asyncio
    async def test_status_unavailable_keeps_order(
        self, registry: PendingOrderRegistry, gateway: FakeGateway
    ) -> None:
        registry.add(_order(gateway, "a"))
        gateway.status_errors["a"] = 5
        assert await self._run(registry) == []
        assert registry.count() == 1

    @pytest.mark.asyncio
    async def test_unknown_order_treated_as_unfilled(
        self, registry: PendingOrderRegistry, gateway: FakeGateway
    ) -> None:
        registry.add(_order(gateway, "a"))
        gateway.missing_orders.add("a")
        assert await self._run(registry) == []
        assert registry.count() == 1

    @pytest.mark.asyncio
    async def test_cancel_all(self, registry: PendingOrderRegistry, gateway: FakeGateway) -> None:
        registry.add(_order(gateway, "a"))
        registry.add(_order(gateway, "b", slug="other"))
        await registry.cancel_all()
        assert sorted(gateway.cancelled) == ["a", "b"]
        assert registry.count() == 0
