from __future__ import annotations

"""Dataclasses shared by strategy analytics utilities."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _iso(value: float) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


@dataclass(slots=True)
class TradeEvent:
    """One step of an order or position lifecycle, written as a JSON line."""

    action: str
    market_slug: str
    instrument: str
    direction: str
    price: float
    size: float
    timestamp: float
    reason: str = ""
    token_id: str = ""
    order_id: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "market_slug": self.market_slug,
            "instrument": self.instrument,
            "direction": self.direction,
            "price": self.price,
            "size": self.size,
            "reason": self.reason,
            "token_id": self.token_id,
            "order_id": self.order_id,
            "timestamp": _iso(self.timestamp),
            "context": self.context,
        }


@dataclass(slots=True)
class RoundSnapshot:
    """Last observed top of book of a market when its window closed."""

    market_slug: str
    instrument: str
    end_time: float
    up_bid: Optional[float]
    up_ask: Optional[float]
    down_bid: Optional[float]
    down_ask: Optional[float]
    reference_price: Optional[float] = None
    price_to_beat: Optional[float] = None
    captured_at: float = 0.0

    @property
    def implied_winner(self) -> Optional[str]:
        up = self.up_bid or 0.0
        down = self.down_bid or 0.0
        if up == down:
            return None
        return "up" if up > down else "down"

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_slug": self.market_slug,
            "instrument": self.instrument,
            "end_time": _iso(self.end_time),
            "up_bid": self.up_bid,
            "up_ask": self.up_ask,
            "down_bid": self.down_bid,
            "down_ask": self.down_ask,
            "reference_price": self.reference_price,
            "price_to_beat": self.price_to_beat,
            "implied_winner": self.implied_winner,
            "captured_at": _iso(self.captured_at),
        }


@dataclass(slots=True)
class TradeRecord:
    """Realized round trip (entry fill to exit or forced clear)."""

    market_slug: str
    instrument: str
    direction: str
    size: float
    entry_price: float
    exit_price: float
    realized_pnl: float
    notional: float
    opened_at: datetime
    closed_at: datetime
    holding_seconds: float
    exit_reason: str
    forced: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def return_pct(self) -> Optional[float]:
        return self.realized_pnl / self.notional if self.notional else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_slug": self.market_slug,
            "instrument": self.instrument,
            "direction": self.direction,
            "size": self.size,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "realized_pnl": self.realized_pnl,
            "notional": self.notional,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat(),
            "holding_seconds": self.holding_seconds,
            "exit_reason": self.exit_reason,
            "forced": self.forced,
            "return_pct": self.return_pct,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TradeRecord":
        return cls(
            market_slug=str(payload.get("market_slug", "")),
            instrument=str(payload.get("instrument", "")).upper(),
            direction=str(payload.get("direction", "")),
            size=float(payload.get("size", 0.0) or 0.0),
            entry_price=float(payload.get("entry_price", 0.0) or 0.0),
            exit_price=float(payload.get("exit_price", 0.0) or 0.0),
            realized_pnl=float(payload.get("realized_pnl", 0.0) or 0.0),
            notional=float(payload.get("notional", 0.0) or 0.0),
            opened_at=cls._parse_datetime(payload.get("opened_at")),
            closed_at=cls._parse_datetime(payload.get("closed_at")),
            holding_seconds=float(payload.get("holding_seconds", 0.0) or 0.0),
            exit_reason=str(payload.get("exit_reason", "")),
            forced=bool(payload.get("forced", False)),
            metadata=dict(payload.get("metadata", {}) or {}),
        )

    @staticmethod
    def _parse_datetime(value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        if isinstance(value, str) and value:
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                pass
        return datetime.now(timezone.utc)


__all__ = ["RoundSnapshot", "TradeEvent", "TradeRecord"]
