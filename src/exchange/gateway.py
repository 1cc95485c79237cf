from __future__ import annotations

"""Execution gateway contract and the typed results it returns."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

SIDE_BUY = "BUY"
SIDE_SELL = "SELL"


class OrderSemantics(str, Enum):
    GTC = "GTC"
    FAK = "FAK"
    FOK = "FOK"


class RejectionReason(str, Enum):
    INSUFFICIENT_BALANCE = "insufficient_balance"
    AUTHORIZATION = "authorization"
    INVALID_ORDER = "invalid_order"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


_REJECTION_MARKERS: tuple[tuple[RejectionReason, tuple[str, ...]], ...] = (
    (RejectionReason.INSUFFICIENT_BALANCE, ("not enough balance", "insufficient", "balance")),
    (RejectionReason.AUTHORIZATION, ("allowance", "unauthorized", "api key", "signature", "forbidden")),
    (RejectionReason.INVALID_ORDER, ("invalid", "tick size", "min size", "minimum", "price")),
    (RejectionReason.TRANSPORT, ("timeout", "timed out", "connection", "network")),
)


def classify_rejection(message: Optional[str]) -> RejectionReason:
    text = (message or "").lower()
    for reason, markers in _REJECTION_MARKERS:
        if any(marker in text for marker in markers):
            return reason
    return RejectionReason.UNKNOWN


class GatewayError(Exception):
    """Transport or API failure while talking to the execution venue."""


class GatewayUnavailableError(GatewayError):
    """The gateway could not be constructed (missing or rejected credentials)."""


@dataclass(slots=True, frozen=True)
class OrderResult:
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None
    rejection: Optional[RejectionReason] = None

    @classmethod
    def accepted(cls, order_id: Optional[str]) -> "OrderResult":
        return cls(success=True, order_id=order_id)

    @classmethod
    def rejected(cls, error: str, reason: Optional[RejectionReason] = None) -> "OrderResult":
        return cls(success=False, error=error, rejection=reason or classify_rejection(error))


@dataclass(slots=True, frozen=True)
class OrderStatus:
    matched_size: float
    requested_size: float
    status: str = ""


class ExecutionGateway(ABC):
    """Abstract venue operations used by the order and exit lifecycle."""

    @abstractmethod
    async def submit_order(
        self,
        token_id: str,
        side: str,
        price: float,
        size: float,
        order_semantics: OrderSemantics = OrderSemantics.GTC,
    ) -> OrderResult:
        """Post a limit order; rejections are returned, never raised."""

    @abstractmethod
    async def cancel_order(self, order_id: str) -> bool:
        """Cancel a resting order; ``False`` when the venue did not confirm."""

    @abstractmethod
    async def get_order_status(self, order_id: str) -> Optional[OrderStatus]:
        """Return fill state, ``None`` for unknown orders; raises GatewayError on transport failure."""

    @abstractmethod
    async def get_token_balance(self, token_id: str) -> float:
        """Spendable outcome-token balance in shares; raises GatewayError on failure."""

    @abstractmethod
    async def sync_token_authorization(self, token_id: str) -> bool:
        """Ask the venue to refresh balance/allowance bookkeeping for a token."""

    @abstractmethod
    async def cancel_all_orders(self) -> int:
        """Cancel every resting order of the account; returns how many the venue confirmed."""

    @abstractmethod
    async def sync_collateral_authorization(self) -> bool:
        """Ask the venue to refresh collateral balance/allowance bookkeeping."""
