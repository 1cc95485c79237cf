"""Reference-price history and providers."""

from .history import PriceHistoryTracker, PriceSample
from .reference import ReferencePriceProvider

__all__ = [
    "PriceHistoryTracker",
    "PriceSample",
    "ReferencePriceProvider",
]
