from __future__ import annotations

"""Append-only JSONL persistence for trade events, round snapshots and realized trades."""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Optional

from .models import RoundSnapshot, TradeEvent, TradeRecord

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.strategy.exits import ExitResult

logger = logging.getLogger("updownStrategy.analytics.trade_ledger")

EVENTS_FILE = "trade_events.jsonl"
ROUNDS_FILE = "round_snapshots.jsonl"
HISTORY_FILE = "trade_history.jsonl"


class TradeLedger:
    """Write one JSON object per line into the analytics directory."""

    def __init__(self, *, directory: Path) -> None:
        self._directory = directory
        self._directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def history_file(self) -> Path:
        return self._directory / HISTORY_FILE

    def _append(self, name: str, payloads: Iterable[dict[str, Any]]) -> None:
        path = self._directory / name
        with self._lock:
            try:
                with path.open("a", encoding="utf-8") as handle:
                    for payload in payloads:
                        handle.write(json.dumps(payload, ensure_ascii=True))
                        handle.write("\n")
            except OSError as exc:
                logger.error("Failed to append to %s: %s", path, exc)

    def record_event(self, event: TradeEvent) -> None:
        logger.info(
            "TradeEvent %s %s %s %.2f @ %.4f (%s)",
            event.action,
            event.market_slug,
            event.direction,
            event.size,
            event.price,
            event.reason or "-",
        )
        self._append(EVENTS_FILE, [event.to_dict()])

    def record_round(self, snapshot: RoundSnapshot) -> None:
        logger.info(
            "Round closed %s: up bid=%s down bid=%s winner=%s",
            snapshot.market_slug,
            snapshot.up_bid,
            snapshot.down_bid,
            snapshot.implied_winner or "unclear",
        )
        self._append(ROUNDS_FILE, [snapshot.to_dict()])

    def record_trade(self, record: TradeRecord) -> None:
        self._append(HISTORY_FILE, [record.to_dict()])

    @staticmethod
    def _exit_record(
        result: "ExitResult",
        *,
        size: float,
        exit_price: float,
        realized_pnl: float,
        exit_reason: str,
        forced: bool,
        now: float,
    ) -> TradeRecord:
        signal = result.signal
        return TradeRecord(
            market_slug=signal.market_slug,
            instrument=signal.instrument,
            direction=signal.direction,
            size=size,
            entry_price=signal.avg_price,
            exit_price=exit_price,
            realized_pnl=realized_pnl,
            notional=signal.avg_price * size,
            opened_at=datetime.fromtimestamp(now - signal.held_seconds, tz=timezone.utc),
            closed_at=datetime.fromtimestamp(now, tz=timezone.utc),
            holding_seconds=signal.held_seconds,
            exit_reason=exit_reason,
            forced=forced,
            metadata={
                "signal_reason": signal.reason.value,
                "signal_price": signal.price,
                "status": result.status.value,
                "attempts": result.attempts,
                "error": result.error,
            },
        )

    def record_exit(self, result: "ExitResult", *, now: float) -> list[TradeRecord]:
        """Persist the round trips of an executed exit.

        The sold part and the force-cleared part are separate records so that a
        forced clear is never reported as a sale. Empty when nothing changed hands.
        """

        records: list[TradeRecord] = []
        if result.sold_size > 0:
            records.append(
                self._exit_record(
                    result,
                    size=result.sold_size,
                    exit_price=result.avg_sell_price,
                    realized_pnl=result.realized_pnl,
                    exit_reason=result.signal.reason.value,
                    forced=False,
                    now=now,
                )
            )
        if result.forced_size > 0:
            records.append(
                self._exit_record(
                    result,
                    size=result.forced_size,
                    exit_price=0.0,
                    realized_pnl=0.0,
                    exit_reason="forced_clear",
                    forced=True,
                    now=now,
                )
            )
        for record in records:
            self.record_trade(record)
        return records


__all__ = ["TradeLedger"]
