"""Analytics helpers for trade persistence and performance monitoring."""

from .models import RoundSnapshot, TradeEvent, TradeRecord
from .performance import PerformanceSummary, PerformanceTracker
from .trade_ledger import TradeLedger

__all__ = [
    "PerformanceSummary",
    "PerformanceTracker",
    "RoundSnapshot",
    "TradeEvent",
    "TradeLedger",
    "TradeRecord",
]
