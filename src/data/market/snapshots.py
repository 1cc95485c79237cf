from __future__ import annotations

"""Data structures for representing position state and exit decisions."""

from dataclasses import dataclass
from enum import Enum

POSITION_OPEN = "open"
POSITION_CLOSING = "closing"


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    LATE_TAKE_PROFIT = "late_take_profit"
    LATE_STOP_LOSS = "late_stop_loss"

    @property
    def is_loss(self) -> bool:
        return self in (ExitReason.STOP_LOSS, ExitReason.LATE_STOP_LOSS)

    @property
    def is_time_stop(self) -> bool:
        return self in (ExitReason.LATE_TAKE_PROFIT, ExitReason.LATE_STOP_LOSS)


@dataclass(slots=True)
class Position:
    """Open holding of one outcome token."""

    token_id: str
    direction: str
    avg_price: float
    size: float
    cost_basis: float
    market_slug: str
    entry_time: float
    instrument: str = ""
    state: str = POSITION_OPEN
    fills: int = 1

    def pnl_per_unit(self, bid: float) -> float:
        return bid - self.avg_price

    def held_seconds(self, now: float) -> float:
        return max(0.0, now - self.entry_time)


@dataclass(slots=True, frozen=True)
class ExitSignal:
    token_id: str
    market_slug: str
    instrument: str
    direction: str
    price: float
    size: float
    reason: ExitReason
    avg_price: float
    pnl_per_unit: float
    held_seconds: float
