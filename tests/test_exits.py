"""Unit tests for exit execution."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from conftest import FakeGateway, make_config

from src.data.market.positions import PositionTracker
from src.data.market.snapshots import ExitReason, ExitSignal
from src.exchange.gateway import OrderSemantics
from src.strategy.exits import ExitExecutionController, ExitStatus

TOKEN = "tok-up"
SLUG = "btc-updown-15m-1700000100"


def _signal(size: float = 10.0, price: float = 0.90, reason: ExitReason = ExitReason.TAKE_PROFIT) -> ExitSignal:
    return ExitSignal(
        token_id=TOKEN,
        market_slug=SLUG,
        instrument="BTC",
        direction="up",
        price=price,
        size=size,
        reason=reason,
        avg_price=0.80,
        pnl_per_unit=price - 0.80,
        held_seconds=30.0,
    )


@pytest.fixture
def positions() -> PositionTracker:
    tracker = PositionTracker(config=make_config())
    tracker.record_fill(TOKEN, "up", 0.80, 10.0, SLUG, instrument="BTC", now=0.0)
    return tracker


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


def _controller(gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock, **overrides):
    return ExitExecutionController(
        config=make_config(**overrides),
        gateway=gateway,
        positions=positions,
        sleep=sleep,
    )


class TestSell:
    @pytest.mark.asyncio
    async def test_sold_in_one_attempt(self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock) -> None:
        result = await _controller(gateway, positions, sleep).execute(_signal())
        assert result.status is ExitStatus.SOLD
        assert result.sold_size == pytest.approx(10.0)
        assert result.avg_sell_price == pytest.approx(0.90)
        assert result.realized_pnl == pytest.approx(1.0)
        assert result.attempts == 1
        assert not result.forced
        assert positions.get(TOKEN) is None
        sell = gateway.sells()[0]
        assert sell["price"] == 0.90
        assert sell["semantics"] is OrderSemantics.GTC

    @pytest.mark.asyncio
    async def test_price_steps_down_and_final_attempt_is_fak(
        self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock
    ) -> None:
        gateway.reject_with = ["no match", "no match", None]
        result = await _controller(gateway, positions, sleep).execute(_signal())
        assert result.status is ExitStatus.SOLD
        assert result.attempts == 3
        assert [order["price"] for order in gateway.sells()] == [0.90, 0.89, 0.88]
        assert [order["semantics"] for order in gateway.sells()] == [
            OrderSemantics.GTC,
            OrderSemantics.GTC,
            OrderSemantics.FAK,
        ]
        assert result.avg_sell_price == pytest.approx(0.88)

    @pytest.mark.asyncio
    async def test_partial_sell_retries_remainder(
        self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock
    ) -> None:
        gateway.fills["order-1"] = 4.0
        result = await _controller(gateway, positions, sleep).execute(_signal())
        assert result.status is ExitStatus.SOLD
        assert result.sold_size == pytest.approx(10.0)
        assert [order["size"] for order in gateway.sells()] == [10.0, 6.0]
        assert "order-1" in gateway.cancelled
        assert result.avg_sell_price == pytest.approx((4 * 0.90 + 6 * 0.89) / 10)

    @pytest.mark.asyncio
    async def test_unknown_sell_status_assumed_filled(
        self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock
    ) -> None:
        gateway.status_errors["order-1"] = 10
        result = await _controller(gateway, positions, sleep).execute(_signal())
        assert result.status is ExitStatus.SOLD
        assert result.sold_size == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_bid_limited_exit_leaves_remainder_open(
        self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock
    ) -> None:
        result = await _controller(gateway, positions, sleep).execute(_signal(size=6.0))
        assert result.status is ExitStatus.PARTIAL
        assert result.forced_size == 0.0
        remaining = positions.get(TOKEN)
        assert remaining is not None
        assert remaining.size == pytest.approx(4.0)
        assert remaining.state == "open"

    @pytest.mark.asyncio
    async def test_missing_position_skipped(self, gateway: FakeGateway, sleep: AsyncMock) -> None:
        tracker = PositionTracker(config=make_config())
        result = await _controller(gateway, tracker, sleep).execute(_signal())
        assert result.status is ExitStatus.SKIPPED
        assert gateway.submitted == []


class TestForcedClear:
    @pytest.mark.asyncio
    async def test_rejections_exhaust_attempts(
        self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock
    ) -> None:
        gateway.reject_with = ["not enough balance / allowance"] * 3
        result = await _controller(gateway, positions, sleep).execute(_signal(reason=ExitReason.STOP_LOSS))
        assert result.status is ExitStatus.FORCED_CLEAR
        assert result.forced
        assert result.sold_size == 0.0
        assert result.forced_size == pytest.approx(10.0)
        assert result.error == "not enough balance / allowance"
        assert positions.get(TOKEN) is None
        assert gateway.synced.count(TOKEN) == 3

    @pytest.mark.asyncio
    async def test_balance_below_minimum_clears_without_selling(
        self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock
    ) -> None:
        gateway.balances[TOKEN] = 3.0
        result = await _controller(gateway, positions, sleep).execute(_signal())
        assert result.status is ExitStatus.FORCED_CLEAR
        assert result.forced_size == pytest.approx(10.0)
        assert gateway.sells() == []
        assert positions.get(TOKEN) is None

    @pytest.mark.asyncio
    async def test_balance_limited_sells_what_exists(
        self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock
    ) -> None:
        gateway.balances[TOKEN] = 7.5
        result = await _controller(gateway, positions, sleep).execute(_signal())
        assert result.status is ExitStatus.PARTIAL
        assert result.sold_size == pytest.approx(7.5)
        assert result.forced_size == pytest.approx(2.5)
        assert result.forced
        assert gateway.sells()[0]["size"] == pytest.approx(7.5)
        assert positions.get(TOKEN) is None


class TestBalanceVerification:
    @pytest.mark.asyncio
    async def test_lookup_errors_do_not_block_sell(
        self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock
    ) -> None:
        gateway.balance_errors = 10
        result = await _controller(gateway, positions, sleep).execute(_signal())
        assert result.status is ExitStatus.SOLD

    @pytest.mark.asyncio
    async def test_settlement_delay_after_slow_balance(
        self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock
    ) -> None:
        gateway.balance_errors = 1
        controller = _controller(gateway, positions, sleep, settlement_delay_seconds=1.5)
        result = await controller.execute(_signal())
        assert result.status is ExitStatus.SOLD
        sleep.assert_any_await(1.5)
        assert TOKEN in gateway.synced

    @pytest.mark.asyncio
    async def test_no_settlement_delay_when_balance_ready(
        self, gateway: FakeGateway, positions: PositionTracker, sleep: AsyncMock
    ) -> None:
        controller = _controller(gateway, positions, sleep, settlement_delay_seconds=1.5)
        await controller.execute(_signal())
        sleep.assert_not_awaited()
