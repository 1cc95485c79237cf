"""Minimal OKX public REST client used for reference prices.

- ``get_last_price``: spot ticker, fallback when the streaming feed is stale.
- ``get_minute_open``: open of the 1m candle starting at a unix second, used as
  the price to beat for an up/down window.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("updownStrategy.exchange.okx_rest")

DEFAULT_OKX_HOST = "https://www.okx.com"


class OkxAPIError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"OKX API error {code}: {message}")
        self.code = code
        self.message = message


class OkxRESTClient:
    def __init__(
        self,
        *,
        host: str = DEFAULT_OKX_HOST,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.host = host.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect=3.0, read=5.0, write=3.0, pool=3.0)
        )

    async def _get(self, path: str, params: Dict[str, Any]) -> list[Any]:
        try:
            resp = await self._client.get(f"{self.host}{path}", params=params)
        except httpx.RequestError as exc:
            raise OkxAPIError("transport", str(exc)) from exc
        try:
            payload = resp.json()
        except ValueError as exc:
            raise OkxAPIError(str(resp.status_code), (resp.text or "")[:200]) from exc
        if resp.status_code >= 400 or not isinstance(payload, dict) or str(payload.get("code")) != "0":
            message = payload.get("msg") if isinstance(payload, dict) else payload
            raise OkxAPIError(str(payload.get("code") if isinstance(payload, dict) else resp.status_code), str(message))
        data = payload.get("data")
        return data if isinstance(data, list) else []

    async def get_last_price(self, inst_id: str) -> Optional[float]:
        rows = await self._get("/api/v5/market/ticker", {"instId": inst_id})
        if not rows or not isinstance(rows[0], dict):
            return None
        try:
            price = float(rows[0].get("last"))
        except (TypeError, ValueError):
            return None
        return price if price > 0 else None

    async def get_minute_open(self, inst_id: str, start_ts: int) -> Optional[float]:
        # ``after`` pages backwards: records strictly older than the given ms timestamp
        rows = await self._get(
            "/api/v5/market/history-candles",
            {"instId": inst_id, "bar": "1m", "after": str((start_ts + 60) * 1000), "limit": "1"},
        )
        for row in rows:
            if not isinstance(row, list) or len(row) < 2:
                continue
            try:
                candle_ts = int(row[0]) // 1000
                open_price = float(row[1])
            except (TypeError, ValueError):
                continue
            if candle_ts != start_ts:
                logger.debug("Candle for %s at %s not published yet (got %s)", inst_id, start_ts, candle_ts)
                return None
            return open_price if open_price > 0 else None
        return None

    async def aclose(self) -> None:
        await self._client.aclose()
