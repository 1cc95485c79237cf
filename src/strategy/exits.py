from __future__ import annotations

"""Exit execution: balance verification, sell retries and forced clears."""

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from src.data.market.constants import MIN_PRICE, POSITION_EPSILON
from src.data.market.snapshots import ExitSignal
from src.exchange.gateway import (
    SIDE_SELL,
    ExecutionGateway,
    GatewayError,
    OrderSemantics,
    RejectionReason,
)

from .retry import BoundedRetry, RetryPolicy

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.config.scalp_strategy_config import ScalpStrategyConfig
    from src.data.market.positions import PositionTracker

logger = logging.getLogger("updownStrategy.strategy.exits")


class ExitStatus(str, Enum):
    SOLD = "sold"
    PARTIAL = "partial"
    FORCED_CLEAR = "forced_clear"
    SKIPPED = "skipped"


@dataclass(slots=True, frozen=True)
class ExitResult:
    status: ExitStatus
    signal: ExitSignal
    sold_size: float = 0.0
    avg_sell_price: float = 0.0
    forced_size: float = 0.0
    attempts: int = 0
    error: Optional[str] = None

    @property
    def forced(self) -> bool:
        return self.status is ExitStatus.FORCED_CLEAR or self.forced_size > 0

    @property
    def realized_pnl(self) -> float:
        return (self.avg_sell_price - self.signal.avg_price) * self.sold_size


class ExitExecutionController:
    """Turn an exit signal into sells through the gateway.

    States: signalled -> balance-verifying -> submitting (bounded retries with a
    price step-down, the last attempt fill-and-kill) -> sold or forced clear.
    Whatever happens, the tracker no longer holds the signalled quantity when
    ``execute`` returns.
    """

    def __init__(
        self,
        *,
        config: "ScalpStrategyConfig",
        gateway: ExecutionGateway,
        positions: "PositionTracker",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._positions = positions
        self._sleep = sleep

    async def _verify_balance(self, token_id: str, expected: float) -> tuple[Optional[float], int]:
        """Return ``(last_seen_balance, attempts)``; ``None`` when every lookup failed."""

        async def _lookup(attempt: int) -> float:
            if attempt > 1:
                await self._gateway.sync_token_authorization(token_id)
            try:
                return await self._gateway.get_token_balance(token_id)
            except GatewayError:
                await self._sleep(self._config.balance_error_wait_seconds)
                raise

        retry = BoundedRetry(
            RetryPolicy(
                max_attempts=self._config.balance_wait_attempts,
                delay=self._config.balance_wait_seconds,
            ),
            name=f"balance check {token_id}",
            sleep=self._sleep,
        )
        outcome = await retry.run(
            _lookup,
            accept=lambda balance: balance + POSITION_EPSILON >= expected,
            retry_on=(GatewayError,),
        )
        if not outcome.succeeded:
            logger.warning(
                "Balance for %s not confirmed after %s attempts: last=%s expected=%.2f",
                token_id,
                outcome.attempts,
                outcome.value,
                expected,
            )
        return outcome.value, outcome.attempts

    def _price_for(self, signal: ExitSignal, attempt: int) -> float:
        stepped = signal.price - self._config.exit_price_step * (attempt - 1)
        return round(max(MIN_PRICE, stepped), 4)

    def _semantics_for(self, attempt: int) -> OrderSemantics:
        if self._config.exit_final_fak and attempt >= self._config.exit_max_attempts:
            return OrderSemantics.FAK
        return OrderSemantics.GTC

    async def _matched(self, order_id: Optional[str], requested: float) -> float:
        if not order_id:
            return requested
        try:
            status = await self._gateway.get_order_status(order_id)
        except GatewayError as exc:
            logger.warning("Sell %s status unknown (%s); assuming filled", order_id, exc)
            return requested
        if status is None:
            return requested
        matched = min(status.matched_size, requested)
        if matched < requested - POSITION_EPSILON:
            await self._gateway.cancel_order(order_id)
        return matched

    async def execute(self, signal: ExitSignal) -> ExitResult:
        position = self._positions.mark_closing(signal.token_id)
        if position is None:
            return ExitResult(ExitStatus.SKIPPED, signal)
        target = min(signal.size, position.size)
        logger.info(
            "Exit %s for %s %s: %.2f @ %.4f (avg %.4f, pnl/unit %+.4f, held %.0fs)",
            signal.reason.value,
            signal.market_slug,
            signal.direction,
            target,
            signal.price,
            signal.avg_price,
            signal.pnl_per_unit,
            signal.held_seconds,
        )

        balance, balance_attempts = await self._verify_balance(signal.token_id, target)
        balance_limited = False
        if balance is not None and balance + POSITION_EPSILON < target:
            sellable = math.floor(balance * 100) / 100
            if sellable < self._config.min_exit_size:
                cleared = self._positions.force_clear(signal.token_id)
                return ExitResult(
                    ExitStatus.FORCED_CLEAR,
                    signal,
                    forced_size=cleared.size if cleared else target,
                    error=f"balance {balance:.2f} below sellable size",
                )
            target = sellable
            balance_limited = True
        if balance_attempts > 1 and self._config.settlement_delay_seconds > 0:
            await self._sleep(self._config.settlement_delay_seconds)

        sold = 0.0
        proceeds = 0.0
        last_error: Optional[str] = None

        async def _attempt(attempt: int) -> float:
            nonlocal sold, proceeds, last_error
            remaining = round(target - sold, 2)
            price = self._price_for(signal, attempt)
            result = await self._gateway.submit_order(
                signal.token_id,
                SIDE_SELL,
                price,
                remaining,
                self._semantics_for(attempt),
            )
            if not result.success:
                last_error = result.error
                logger.warning(
                    "Sell attempt %s for %s rejected (%s): %s",
                    attempt,
                    signal.token_id,
                    result.rejection.value if result.rejection else "unknown",
                    result.error,
                )
                if result.rejection in (RejectionReason.INSUFFICIENT_BALANCE, RejectionReason.AUTHORIZATION):
                    await self._gateway.sync_token_authorization(signal.token_id)
                return target - sold
            matched = await self._matched(result.order_id, remaining)
            sold += matched
            proceeds += matched * price
            return target - sold

        retry = BoundedRetry(
            RetryPolicy(max_attempts=self._config.exit_max_attempts),
            name=f"sell {signal.token_id}",
            sleep=self._sleep,
        )
        outcome = await retry.run(_attempt, accept=lambda left: left < POSITION_EPSILON)
        avg_sell = proceeds / sold if sold > 0 else 0.0

        if sold > 0:
            remaining_position = self._positions.record_sell(signal.token_id, sold)
        else:
            remaining_position = self._positions.get(signal.token_id)
        if outcome.succeeded and not balance_limited:
            status = ExitStatus.SOLD if remaining_position is None else ExitStatus.PARTIAL
            return ExitResult(status, signal, sold, avg_sell, attempts=outcome.attempts)

        cleared = self._positions.force_clear(signal.token_id)
        forced_size = cleared.size if cleared is not None else 0.0
        logger.error(
            "Exit for %s unresolved after %s attempts: sold %.2f, force-cleared %.2f (%s)",
            signal.token_id,
            outcome.attempts,
            sold,
            forced_size,
            last_error or ("balance limited" if balance_limited else "unfilled"),
        )
        status = ExitStatus.FORCED_CLEAR if sold <= 0 else ExitStatus.PARTIAL
        return ExitResult(
            status,
            signal,
            sold,
            avg_sell,
            forced_size=forced_size,
            attempts=outcome.attempts,
            error=last_error,
        )
