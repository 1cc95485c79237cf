from __future__ import annotations

"""Defaults for collateral wallet polling."""

DEFAULT_REFRESH_INTERVAL = 300.0
DEFAULT_LOW_BALANCE_WARNING = 10.0
COLLATERAL_SYMBOL = "USDC"
