from __future__ import annotations

"""Collateral (USDC) wallet snapshots for status logging."""

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from src.data.wallet_manager.constants import (
    COLLATERAL_SYMBOL,
    DEFAULT_LOW_BALANCE_WARNING,
    DEFAULT_REFRESH_INTERVAL,
)

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.config.wallet_config import WalletConfig
    from src.exchange.polymarket_clob import PolymarketExecutionGateway

logger = logging.getLogger("updownStrategy.wallet")


def _maybe_load_wallet_config(path: str | os.PathLike[str] | None) -> Optional["WalletConfig"]:
    from src.config.wallet_config import maybe_load_wallet_config

    return maybe_load_wallet_config(path)


@dataclass(slots=True)
class CollateralSnapshot:
    symbol: str
    balance: float
    allowance: float
    fetched_at: datetime

    @property
    def spendable(self) -> float:
        return min(self.balance, self.allowance) if self.allowance > 0 else self.balance


class WalletDataManager:
    """Fetch the collateral balance on demand and at most every ``refresh_interval``."""

    def __init__(
        self,
        gateway: "PolymarketExecutionGateway",
        *,
        refresh_interval: Optional[float] = None,
        low_balance_warning: Optional[float] = None,
        wallet_config_path: str | os.PathLike[str] | None = None,
    ) -> None:
        self._gateway = gateway
        wallet_config = None
        if refresh_interval is None or low_balance_warning is None:
            wallet_config = _maybe_load_wallet_config(wallet_config_path)
        if refresh_interval is None and wallet_config is not None:
            refresh_interval = wallet_config.refresh_interval
        if low_balance_warning is None and wallet_config is not None:
            low_balance_warning = wallet_config.low_balance_warning
        self.refresh_interval = refresh_interval or DEFAULT_REFRESH_INTERVAL
        self.low_balance_warning = (
            low_balance_warning if low_balance_warning is not None else DEFAULT_LOW_BALANCE_WARNING
        )
        self._snapshot: Optional[CollateralSnapshot] = None
        self._fetched_monotonic: Optional[float] = None

    @property
    def snapshot(self) -> Optional[CollateralSnapshot]:
        return self._snapshot

    async def fetch_once(self) -> CollateralSnapshot:
        balance, allowance = await self._gateway.get_collateral_balance()
        snapshot = CollateralSnapshot(
            symbol=COLLATERAL_SYMBOL,
            balance=balance,
            allowance=allowance,
            fetched_at=datetime.now(timezone.utc),
        )
        self._snapshot = snapshot
        self._fetched_monotonic = time.monotonic()
        logger.info(
            "Collateral snapshot: balance=%.2f %s allowance=%.2f",
            snapshot.balance,
            snapshot.symbol,
            snapshot.allowance,
        )
        if snapshot.spendable < self.low_balance_warning:
            logger.warning(
                "Spendable collateral %.2f %s below warning level %.2f",
                snapshot.spendable,
                snapshot.symbol,
                self.low_balance_warning,
            )
        return snapshot

    async def maybe_refresh(self) -> Optional[CollateralSnapshot]:
        if self._fetched_monotonic is not None and time.monotonic() - self._fetched_monotonic < self.refresh_interval:
            return self._snapshot
        try:
            return await self.fetch_once()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to refresh collateral balance: %s", exc)
            self._fetched_monotonic = time.monotonic()
            return self._snapshot
