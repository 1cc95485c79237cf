"""Wallet manager utilities."""

from .constants import DEFAULT_REFRESH_INTERVAL
from .manager import CollateralSnapshot, WalletDataManager

__all__ = [
    "DEFAULT_REFRESH_INTERVAL",
    "CollateralSnapshot",
    "WalletDataManager",
]
