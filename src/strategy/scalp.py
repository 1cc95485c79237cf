from __future__ import annotations

"""Up/down scalp strategy: one evaluation pass per polling tick."""

import asyncio
import json
import logging
import time
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional

from src.config.scalp_strategy_config import (
    ScalpStrategyConfig,
    default_scalp_strategy_config,
    maybe_load_scalp_strategy_config,
)
from src.data.market.constants import DIRECTION_DOWN, DIRECTION_UP, POSITION_EPSILON
from src.data.market.models import Market, OrderBookSummary
from src.data.market.positions import PositionTracker
from src.data.prices.history import PriceHistoryTracker
from src.exchange.gateway import (
    SIDE_BUY,
    ExecutionGateway,
    GatewayError,
    OrderSemantics,
    RejectionReason,
)
from src.strategy.analytics import PerformanceTracker, RoundSnapshot, TradeEvent, TradeLedger
from src.strategy.entry_signals import (
    CooldownBook,
    EntryLockTable,
    EntrySignalEvaluator,
    MarketContext,
    OrderIntent,
)
from src.strategy.exits import ExitExecutionController, ExitResult, ExitStatus
from src.strategy.pending_orders import (
    PendingOrder,
    PendingOrderRegistry,
    ReconcileEvent,
    ReconcileKind,
)
from src.strategy.retry import BoundedRetry, RetryPolicy
from src.strategy.risk_gates import RiskGateEvaluator

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.data.market.discovery import MarketDataService
    from src.data.prices.reference import ReferencePriceProvider
    from src.notify.telegram_notifier import TelegramNotifier

logger = logging.getLogger("updownStrategy.strategy.scalp")

_PRICE_CACHE_RETENTION = 3600.0


class ScalpTradingStrategy:
    """Drive reconcile -> exits -> entries against the active up/down markets.

    State lives in the components it owns (pending orders, positions, price
    history); this class only sequences them and emits observability output.
    """

    def __init__(
        self,
        *,
        gateway: ExecutionGateway,
        market_data: "MarketDataService",
        prices: "ReferencePriceProvider",
        config: Optional[ScalpStrategyConfig] = None,
        history: Optional[PriceHistoryTracker] = None,
        positions: Optional[PositionTracker] = None,
        notifier: Optional["TelegramNotifier"] = None,
        analytics_dir: Optional[Path] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        resolved_config = config
        if resolved_config is None:
            resolved_config = maybe_load_scalp_strategy_config()
        if resolved_config is None:
            resolved_config = default_scalp_strategy_config()
            logger.warning("Falling back to in-memory defaults for scalp strategy config")
        if not resolved_config.bands:
            raise ValueError("Scalp strategy requires at least one price band")
        self._config = resolved_config
        self._gateway = gateway
        self._market_data = market_data
        self._prices = prices
        self._notifier = notifier
        self._sleep = sleep
        self._history = history or PriceHistoryTracker(capacity=resolved_config.history_capacity)
        self._positions = positions or PositionTracker(config=resolved_config)
        self._pending = PendingOrderRegistry(
            config=resolved_config,
            gateway=gateway,
            positions=self._positions,
            retry=BoundedRetry(
                RetryPolicy(
                    max_attempts=resolved_config.reconcile_attempts,
                    delay=resolved_config.reconcile_retry_delay,
                ),
                name="order status",
                sleep=sleep,
            ),
        )
        self._exits = ExitExecutionController(
            config=resolved_config,
            gateway=gateway,
            positions=self._positions,
            sleep=sleep,
        )
        self._risk = RiskGateEvaluator(config=resolved_config, history=self._history)
        self._entries = EntrySignalEvaluator(config=resolved_config, positions=self._positions, risk=self._risk)
        self._locks = EntryLockTable(resolved_config.entry_lock_seconds)
        self._cooldowns = CooldownBook()

        analytics_root = analytics_dir or Path(__file__).resolve().parents[2] / "analytics"
        analytics_root.mkdir(parents=True, exist_ok=True)
        self._ledger = TradeLedger(directory=analytics_root)
        self._performance = PerformanceTracker(
            history_file=self._ledger.history_file,
            output_file=analytics_root / "performance_snapshot.json",
        )
        self._status_file = analytics_root / "status_snapshot.json"

        self._active: dict[str, Market] = {}
        self._last_books: dict[str, OrderBookSummary] = {}
        self._last_prices: dict[str, float] = {}
        self._last_drift_check: Optional[float] = None

    @property
    def config(self) -> ScalpStrategyConfig:
        return self._config

    @property
    def positions(self) -> PositionTracker:
        return self._positions

    @property
    def pending(self) -> PendingOrderRegistry:
        return self._pending

    @property
    def history(self) -> PriceHistoryTracker:
        return self._history

    @property
    def cooldowns(self) -> CooldownBook:
        return self._cooldowns

    @property
    def ledger(self) -> TradeLedger:
        return self._ledger

    @property
    def performance(self) -> PerformanceTracker:
        return self._performance

    # -------- Cycle --------
    async def run_once(self, now: Optional[float] = None) -> None:
        current = time.time() if now is None else now
        markets = await self._market_data.get_active_markets(current)
        active = {market.slug: market for market in markets}
        await self._close_rounds(active, current)
        for position in self._positions.cleanup(active):
            self._ledger.record_event(
                TradeEvent(
                    action="settlement",
                    market_slug=position.market_slug,
                    instrument=position.instrument,
                    direction=position.direction,
                    price=position.avg_price,
                    size=position.size,
                    timestamp=current,
                    reason="window_closed",
                    token_id=position.token_id,
                )
            )
        self._active = active

        books: dict[str, OrderBookSummary] = {}
        if markets:
            try:
                books = await self._market_data.get_order_books(
                    token for market in markets for token in market.token_ids
                )
            except Exception as exc:  # noqa: BLE001
                logger.exception("Order book snapshot failed; skipping decisions this cycle: %s", exc)
            self._last_books.update(books)
        await self._refresh_prices(markets, current)

        for event in await self._pending.reconcile_all(active, now=current):
            await self._handle_reconcile_event(event, current)
        await self._process_exits(books, current)
        await self._process_entries(markets, books, current)
        await self._maybe_check_drift(current)
        self._write_status(current)

    def next_poll_interval(self, now: Optional[float] = None) -> float:
        current = time.time() if now is None else now
        if self._positions.open_count() or self._pending.count():
            return self._config.position_poll_interval
        if any(market.in_window(current) for market in self._active.values()):
            return self._config.active_poll_interval
        interval = self._config.idle_poll_interval
        next_start = self._market_data.seconds_until_next_window(current)
        if next_start is not None:
            interval = min(interval, max(self._config.active_poll_interval, next_start))
        return interval

    async def startup(self) -> int:
        """Prepare the venue before the first cycle.

        Pending orders are only tracked in memory, so anything still resting from
        an earlier process is cancelled here; otherwise it could fill into a
        position nobody tracks. Returns the number of orders the venue cancelled.
        """

        if not await self._gateway.sync_collateral_authorization():
            logger.warning("Collateral allowance not refreshed; entries may be rejected until it syncs")
        try:
            cancelled = await self._gateway.cancel_all_orders()
        except GatewayError as exc:
            logger.error("Could not cancel resting orders at startup: %s", exc)
            return 0
        if cancelled:
            logger.warning("Cancelled %s resting order(s) left over from a previous run", cancelled)
        else:
            logger.info("No resting orders found at startup")
        return cancelled

    async def shutdown(self) -> None:
        await self._pending.cancel_all()

    # -------- Inputs --------
    async def _refresh_prices(self, markets: Iterable[Market], now: float) -> None:
        for instrument in sorted({market.instrument for market in markets}):
            try:
                price = await self._prices.current_price(instrument, now=now)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Reference price lookup failed for %s: %s", instrument, exc)
                continue
            if price is None:
                logger.debug("No reference price for %s this cycle", instrument)
                self._last_prices.pop(instrument, None)
                continue
            self._history.record(instrument, price, now=now)
            self._last_prices[instrument] = price

    async def _close_rounds(self, active: dict[str, Market], now: float) -> None:
        for slug, market in self._active.items():
            if slug in active:
                continue
            up_book = self._last_books.pop(market.up_token_id, None)
            down_book = self._last_books.pop(market.down_token_id, None)
            price_to_beat = await self._prices.price_at(market.instrument, int(market.start_time), now=now)
            snapshot = RoundSnapshot(
                market_slug=slug,
                instrument=market.instrument,
                end_time=market.end_time,
                up_bid=up_book.best_bid.price if up_book and up_book.best_bid else None,
                up_ask=up_book.best_ask.price if up_book and up_book.best_ask else None,
                down_bid=down_book.best_bid.price if down_book and down_book.best_bid else None,
                down_ask=down_book.best_ask.price if down_book and down_book.best_ask else None,
                reference_price=self._last_prices.get(market.instrument),
                price_to_beat=price_to_beat,
                captured_at=now,
            )
            self._ledger.record_round(snapshot)
        self._prices.forget_before(now - _PRICE_CACHE_RETENTION)

    # -------- Pending orders --------
    async def _handle_reconcile_event(self, event: ReconcileEvent, now: float) -> None:
        order = event.order
        filled = event.kind in (ReconcileKind.FILLED, ReconcileKind.PARTIAL)
        self._ledger.record_event(
            TradeEvent(
                action="entry_filled" if filled else "entry_cancelled",
                market_slug=order.market_slug,
                instrument=order.instrument,
                direction=order.direction,
                price=order.price,
                size=event.matched_size if filled else order.size,
                timestamp=now,
                reason=event.kind.value,
                token_id=order.token_id,
                order_id=order.order_id,
            )
        )
        if filled:
            await self._sync_authorization(order.token_id)

    async def _sync_authorization(self, token_id: str) -> bool:
        retry = BoundedRetry(
            RetryPolicy(
                max_attempts=self._config.authorization_sync_attempts,
                delay=self._config.authorization_sync_interval,
            ),
            name=f"authorization sync {token_id}",
            sleep=self._sleep,
        )
        outcome = await retry.run(
            lambda _attempt: self._gateway.sync_token_authorization(token_id),
            accept=bool,
            retry_on=(GatewayError,),
        )
        if not outcome.succeeded:
            logger.warning("Token authorization for %s not confirmed; exit will re-check balance", token_id)
        return outcome.succeeded

    # -------- Exits --------
    async def _process_exits(self, books: dict[str, OrderBookSummary], now: float) -> None:
        if not books or not self._positions.open_count():
            return
        bids = {token: book.best_bid for token, book in books.items()}
        for signal in self._positions.evaluate_exits(bids, now=now):
            result = await self._exits.execute(signal)
            if result.status is ExitStatus.SKIPPED:
                continue
            await self._record_exit(result, now)

    async def _record_exit(self, result: ExitResult, now: float) -> None:
        signal = result.signal
        context = {
            "status": result.status.value,
            "sold_size": result.sold_size,
            "forced_size": result.forced_size,
            "avg_entry": signal.avg_price,
            "attempts": result.attempts,
        }
        parts = []
        if result.sold_size > 0:
            parts.append(("exit", result.avg_sell_price, result.sold_size))
        if result.forced_size > 0:
            parts.append(("exit_forced_clear", signal.price, result.forced_size))
        for action, price, size in parts:
            self._ledger.record_event(
                TradeEvent(
                    action=action,
                    market_slug=signal.market_slug,
                    instrument=signal.instrument,
                    direction=signal.direction,
                    price=price,
                    size=size,
                    timestamp=now,
                    reason=signal.reason.value,
                    token_id=signal.token_id,
                    context=context,
                )
            )
        records = self._ledger.record_exit(result, now=now)
        record = records[0] if records else None
        if records:
            snapshot = self._performance.record(records)
            if snapshot:
                total = snapshot["total"]
                logger.info(
                    "Performance: trades=%s win_rate=%.2f%% net_pnl=%.4f forced=%s",
                    total["trades"],
                    total["win_rate"] * 100,
                    total["net_pnl"],
                    total["forced_clears"],
                )
        if result.forced or signal.reason.is_loss:
            reason = "forced_clear" if result.forced else signal.reason.value
            self._cooldowns.block(signal.market_slug, self._config.loss_cooldown_seconds, reason, now=now)
        if self._notifier is not None:
            await self._notifier.notify_exit(result, record)

    # -------- Entries --------
    async def _process_entries(
        self,
        markets: list[Market],
        books: dict[str, OrderBookSummary],
        now: float,
    ) -> None:
        if not self._config.enabled or not books:
            return
        if self._positions.at_capacity():
            return
        diverged: set[str] = set()
        for instrument in {market.instrument for market in markets}:
            secondary = self._prices.secondary_price(instrument, now=now)
            if self._risk.diverged(instrument, self._last_prices.get(instrument), secondary):
                diverged.add(instrument)
                logger.info(
                    "Entries for %s suppressed: sources diverge (primary=%s secondary=%s)",
                    instrument,
                    self._last_prices.get(instrument),
                    secondary,
                )
        for market in markets:
            if market.instrument in diverged:
                continue
            if self._cooldowns.active(market.slug, now=now):
                continue
            if self._cooldowns.active(f"balance:{market.instrument}", now=now):
                continue
            if self._locks.is_locked(market.slug, now):
                continue
            if market.seconds_left(now) < self._config.entry_min_seconds_left:
                continue
            context = MarketContext(
                market=market,
                books=books,
                now=now,
                current_price=self._last_prices.get(market.instrument),
                price_to_beat=await self._prices.price_at(market.instrument, int(market.start_time), now=now),
                secondary_price=self._prices.secondary_price(market.instrument, now=now),
            )
            intent = self._entries.evaluate(
                context,
                has_pending=self._pending.has_pending(market.slug),
                reserved_slots=self._pending.count(),
            )
            decision = self._entries.last_decisions.get(market.slug)
            if decision is not None:
                self._log_decision_snapshot(
                    {
                        "market": market.slug,
                        "instrument": market.instrument,
                        "seconds_left": round(context.seconds_left, 1),
                        "spot": context.current_price,
                        "price_to_beat": context.price_to_beat,
                        "secondary": context.secondary_price,
                        "up_ask": self._top(context, DIRECTION_UP),
                        "down_ask": self._top(context, DIRECTION_DOWN),
                        "allowed": decision.allowed,
                        "reasons": list(decision.reasons),
                        "required_gap": decision.required_gap,
                        "intent": asdict(intent) if intent else None,
                    }
                )
            if intent is not None:
                await self._submit_entry(intent, now)

    @staticmethod
    def _top(context: MarketContext, direction: str) -> Optional[float]:
        level = context.best_ask(direction)
        return level.price if level is not None else None

    async def _submit_entry(self, intent: OrderIntent, now: float) -> None:
        if not self._locks.acquire(intent.market_slug, now):
            return
        try:
            result = await self._gateway.submit_order(
                intent.token_id,
                SIDE_BUY,
                intent.price,
                intent.size,
                OrderSemantics.GTC,
            )
        finally:
            self._locks.release(intent.market_slug)
        event = TradeEvent(
            action="entry_submitted",
            market_slug=intent.market_slug,
            instrument=intent.instrument,
            direction=intent.direction,
            price=intent.price,
            size=intent.size,
            timestamp=now,
            reason=f"{intent.observed_side}@{intent.observed_price:.4f}",
            token_id=intent.token_id,
            order_id=result.order_id,
        )
        if result.success and result.order_id:
            self._pending.add(
                PendingOrder(
                    order_id=result.order_id,
                    token_id=intent.token_id,
                    direction=intent.direction,
                    price=intent.price,
                    size=intent.size,
                    market_slug=intent.market_slug,
                    instrument=intent.instrument,
                    placed_at=now,
                    expires_at=intent.expires_at,
                )
            )
            self._ledger.record_event(event)
            return
        event.action = "entry_rejected"
        event.reason = result.rejection.value if result.rejection else (result.error or "rejected")
        self._ledger.record_event(event)
        logger.warning("Entry for %s rejected: %s", intent.market_slug, result.error)
        if result.rejection is RejectionReason.INSUFFICIENT_BALANCE:
            self._cooldowns.block(
                f"balance:{intent.instrument}",
                self._config.balance_cooldown_seconds,
                "insufficient_balance",
                now=now,
            )

    # -------- Observability --------
    async def _maybe_check_drift(self, now: float) -> None:
        interval = self._config.drift_check_interval_seconds
        if interval <= 0:
            return
        if self._last_drift_check is not None and now - self._last_drift_check < interval:
            return
        self._last_drift_check = now
        for position in self._positions.positions().values():
            try:
                balance = await self._gateway.get_token_balance(position.token_id)
            except GatewayError as exc:
                logger.info("Drift check skipped for %s: %s", position.token_id, exc)
                continue
            if abs(balance - position.size) > POSITION_EPSILON:
                logger.warning(
                    "Balance drift on %s (%s): tracked %.2f, venue %.2f",
                    position.token_id,
                    position.market_slug,
                    position.size,
                    balance,
                )

    def status_payload(self, now: Optional[float] = None) -> dict[str, Any]:
        current = time.time() if now is None else now
        return {
            "updated_at": datetime.fromtimestamp(current, tz=timezone.utc).isoformat(),
            "positions": [asdict(position) for position in self._positions.positions().values()],
            "pending_orders": [asdict(order) for order in self._pending.orders()],
            "active_markets": [
                {"slug": market.slug, "seconds_left": round(market.seconds_left(current), 1)}
                for market in self._active.values()
            ],
            "reference_prices": dict(self._last_prices),
        }

    def _write_status(self, now: float) -> None:
        try:
            self._status_file.write_text(
                json.dumps(self.status_payload(now), ensure_ascii=True, indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.error("Failed to write status snapshot to %s: %s", self._status_file, exc)

    def _log_decision_snapshot(self, payload: dict[str, Any]) -> None:
        try:
            message = json.dumps(payload, default=self._json_default, ensure_ascii=True)
        except TypeError:
            logger.debug("Failed to serialize decision snapshot payload; emitting fallback repr")
            message = repr(payload)
        logger.info("DecisionSnapshot %s", message)

    @staticmethod
    def _json_default(obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, set):
            return sorted(obj)
        if hasattr(obj, "value"):
            return obj.value
        raise TypeError(f"Object of type {type(obj)!r} is not JSON serializable")
