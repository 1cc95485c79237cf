"""Up/down market models, the active-market store and position tracking."""

from .models import Market, OrderBookLevel, OrderBookSummary
from .positions import PositionTracker
from .snapshots import ExitReason, ExitSignal, Position
from .store import ActiveMarketStore

__all__ = [
    "ActiveMarketStore",
    "ExitReason",
    "ExitSignal",
    "Market",
    "OrderBookLevel",
    "OrderBookSummary",
    "Position",
    "PositionTracker",
]
