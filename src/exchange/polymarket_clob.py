"""Polymarket CLOB execution gateway backed by py-clob-client.

py-clob-client is synchronous; every call is moved to a worker thread with
``asyncio.to_thread`` and bounded by ``asyncio.wait_for`` so a hung request
only costs the current cycle.

Balances for conditional (outcome) tokens and USDC collateral are reported by
the venue in 1e6 base units and converted to shares/dollars here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import (
    ApiCreds,
    AssetType,
    BalanceAllowanceParams,
    OrderArgs,
    OrderType,
)
from py_clob_client.exceptions import PolyApiException

from src.config.account_config import PolymarketAccountConfig

from .gateway import (
    ExecutionGateway,
    GatewayError,
    GatewayUnavailableError,
    OrderResult,
    OrderSemantics,
    OrderStatus,
    RejectionReason,
)

logger = logging.getLogger("updownStrategy.exchange.polymarket_clob")

BASE_UNITS = 1_000_000

_ORDER_TYPES = {
    OrderSemantics.GTC: OrderType.GTC,
    OrderSemantics.FAK: OrderType.FAK,
    OrderSemantics.FOK: OrderType.FOK,
}


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _error_text(exc: Exception) -> str:
    if isinstance(exc, PolyApiException):
        message = exc.error_msg
        if isinstance(message, dict):
            message = message.get("error") or message.get("errorMsg") or message
        return str(message)
    return str(exc) or exc.__class__.__name__


class PolymarketExecutionGateway(ExecutionGateway):
    def __init__(self, client: ClobClient, *, call_timeout: float = 10.0) -> None:
        self._client = client
        self._call_timeout = call_timeout

    @classmethod
    def from_account_config(
        cls,
        config: PolymarketAccountConfig,
        *,
        call_timeout: float = 10.0,
    ) -> "PolymarketExecutionGateway":
        """Build an authenticated client; any failure here is fatal for the process."""

        try:
            client = ClobClient(
                config.clob_host,
                key=config.normalized_private_key,
                chain_id=config.chain_id,
                signature_type=config.signature_type,
                funder=config.funder_address,
            )
            if config.has_api_creds:
                creds = ApiCreds(
                    api_key=config.api_key or "",
                    api_secret=config.api_secret or "",
                    api_passphrase=config.api_passphrase or "",
                )
            else:
                logger.info("No API credentials configured; deriving them from the wallet key")
                creds = client.create_or_derive_api_creds()
            client.set_api_creds(creds)
        except Exception as exc:  # noqa: BLE001
            raise GatewayUnavailableError(f"unable to initialise CLOB client: {_error_text(exc)}") from exc
        logger.info(
            "CLOB client ready: host=%s chain_id=%s signature_type=%s funder=%s",
            config.clob_host,
            config.chain_id,
            config.signature_type,
            config.funder_address,
        )
        return cls(client, call_timeout=call_timeout)

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self._call_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise GatewayError(f"{getattr(func, '__name__', 'call')} timed out after {self._call_timeout}s") from exc
        except PolyApiException as exc:
            raise GatewayError(_error_text(exc)) from exc

    async def submit_order(
        self,
        token_id: str,
        side: str,
        price: float,
        size: float,
        order_semantics: OrderSemantics = OrderSemantics.GTC,
    ) -> OrderResult:
        order_args = OrderArgs(token_id=token_id, price=round(price, 4), size=round(size, 2), side=side)
        try:
            signed = await self._call(self._client.create_order, order_args)
            response = await self._call(self._client.post_order, signed, _ORDER_TYPES[order_semantics])
        except GatewayError as exc:
            logger.warning("Order %s %s@%s x%s rejected: %s", side, token_id, price, size, exc)
            return OrderResult.rejected(str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error posting %s order for %s: %s", side, token_id, exc)
            return OrderResult.rejected(str(exc), RejectionReason.UNKNOWN)
        if not isinstance(response, dict):
            return OrderResult.rejected(f"unexpected post_order response: {response!r}")
        order_id = response.get("orderID") or response.get("orderId")
        if response.get("success") and order_id:
            logger.info(
                "Order accepted: %s %s x%.2f @ %.4f (%s) id=%s status=%s",
                side,
                token_id,
                size,
                price,
                order_semantics.value,
                order_id,
                response.get("status"),
            )
            return OrderResult.accepted(str(order_id))
        return OrderResult.rejected(str(response.get("errorMsg") or "order not accepted"))

    async def cancel_order(self, order_id: str) -> bool:
        try:
            response = await self._call(self._client.cancel, order_id)
        except GatewayError as exc:
            logger.warning("Cancel failed for %s: %s", order_id, exc)
            return False
        canceled = response.get("canceled") if isinstance(response, dict) else None
        if isinstance(canceled, list) and order_id in canceled:
            return True
        logger.info("Cancel for %s not confirmed: %s", order_id, response)
        return False

    async def get_order_status(self, order_id: str) -> Optional[OrderStatus]:
        response = await self._call(self._client.get_order, order_id)
        if not isinstance(response, dict) or not response:
            return None
        return OrderStatus(
            matched_size=_to_float(response.get("size_matched")),
            requested_size=_to_float(response.get("original_size")),
            status=str(response.get("status") or ""),
        )

    async def get_token_balance(self, token_id: str) -> float:
        params = BalanceAllowanceParams(asset_type=AssetType.CONDITIONAL, token_id=token_id)
        response = await self._call(self._client.get_balance_allowance, params)
        if not isinstance(response, dict):
            raise GatewayError(f"unexpected balance response for {token_id}: {response!r}")
        return _to_float(response.get("balance")) / BASE_UNITS

    async def sync_token_authorization(self, token_id: str) -> bool:
        params = BalanceAllowanceParams(asset_type=AssetType.CONDITIONAL, token_id=token_id)
        try:
            await self._call(self._client.update_balance_allowance, params)
        except GatewayError as exc:
            logger.info("Balance/allowance sync for %s failed: %s", token_id, exc)
            return False
        return True

    async def cancel_all_orders(self) -> int:
        response = await self._call(self._client.cancel_all)
        if not isinstance(response, dict):
            raise GatewayError(f"unexpected cancel_all response: {response!r}")
        canceled = response.get("canceled") or []
        not_canceled = response.get("not_canceled") or {}
        if not_canceled:
            logger.warning("Venue kept %s order(s) on cancel-all: %s", len(not_canceled), not_canceled)
        return len(canceled)

    async def sync_collateral_authorization(self) -> bool:
        params = BalanceAllowanceParams(asset_type=AssetType.COLLATERAL)
        try:
            await self._call(self._client.update_balance_allowance, params)
        except GatewayError as exc:
            logger.warning("Collateral balance/allowance sync failed: %s", exc)
            return False
        return True

    async def get_collateral_balance(self) -> tuple[float, float]:
        """Return (balance, allowance) of USDC collateral in dollars."""

        params = BalanceAllowanceParams(asset_type=AssetType.COLLATERAL)
        response = await self._call(self._client.get_balance_allowance, params)
        if not isinstance(response, dict):
            raise GatewayError(f"unexpected collateral response: {response!r}")
        allowance = response.get("allowance")
        if allowance is None and isinstance(response.get("allowances"), dict):
            allowance = max((_to_float(v) for v in response["allowances"].values()), default=0.0)
        return _to_float(response.get("balance")) / BASE_UNITS, _to_float(allowance) / BASE_UNITS
