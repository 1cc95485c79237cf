"""Polymarket public REST client (Gamma + CLOB market data) with retries.

This client implements the public subset required by the scalp loop:
- get_event_by_slug (Gamma)
- get_order_book / get_order_books (CLOB)

Env vars used:
- POLYMARKET_HTTP_TOTAL_TIMEOUT (seconds, default 20) caps time spent per call
  including retries.

Notes:
- Requests are async (httpx.AsyncClient) so order books for several markets
  can be fetched in one cycle without blocking the scheduler.
- Trading endpoints live in ``polymarket_clob`` and go through py-clob-client,
  which handles order signing.
"""

from __future__ import annotations

import asyncio
import os
import time
from typing import Any, Dict, Iterable, Optional
from urllib.parse import quote

import httpx

from src.data.market.constants import DEFAULT_CLOB_HOST, DEFAULT_GAMMA_HOST

_RETRY_STATUSES = {403, 500, 502, 503, 504, 520, 521}


class PolymarketAPIError(Exception):
    def __init__(self, status: int, message: str, data: Any | None = None):
        super().__init__(f"Polymarket API error {status}: {message}")
        self.status = status
        self.message = message
        self.data = data


class EdgeProtectionError(PolymarketAPIError):
    """Raised when the public edge returns HTML/non-JSON (403/5xx) after retries."""

    pass


class PolymarketRESTClient:
    def __init__(
        self,
        *,
        clob_host: str = DEFAULT_CLOB_HOST,
        gamma_host: str = DEFAULT_GAMMA_HOST,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 2,
        total_timeout: Optional[float] = None,
    ) -> None:
        self.clob_host = clob_host.rstrip("/")
        self.gamma_host = gamma_host.rstrip("/")
        self.max_retries = max(0, max_retries)
        self.total_timeout = (
            total_timeout
            if total_timeout is not None
            else float(os.environ.get("POLYMARKET_HTTP_TOTAL_TIMEOUT", "20"))
        )
        # Granular timeouts keep a slow edge from stalling a whole cycle
        timeout_obj = httpx.Timeout(connect=5.0, read=7.0, write=5.0, pool=5.0)
        self._client = client or httpx.AsyncClient(timeout=timeout_obj)

    # -------- Core request --------
    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Dict[str, Any] | None = None,
        json_body: Any | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "updown-strategy/1.0 (+httpx)",
        }
        start_ts = time.monotonic()
        attempt = 0
        while True:
            if (time.monotonic() - start_ts) > self.total_timeout:
                raise PolymarketAPIError(
                    408, f"total timeout exceeded {self.total_timeout}s for {url}"
                )
            try:
                resp = await self._client.request(
                    method,
                    url,
                    params={k: v for k, v in (params or {}).items() if v is not None} or None,
                    json=json_body,
                    headers=headers,
                )
            except httpx.RequestError as exc:
                if attempt >= self.max_retries:
                    raise PolymarketAPIError(0, f"request to {url} failed: {exc}") from exc
                await asyncio.sleep(2**attempt)
                attempt += 1
                continue

            if resp.status_code == 404 and allow_not_found:
                return None
            if resp.status_code == 429 and attempt < self.max_retries:
                await asyncio.sleep(2**attempt)
                attempt += 1
                continue

            try:
                payload = resp.json()
            except ValueError:
                snippet = (resp.text or "")[:200]
                status = resp.status_code
                if status in _RETRY_STATUSES and attempt < self.max_retries:
                    await asyncio.sleep(2**attempt)
                    attempt += 1
                    continue
                if status in _RETRY_STATUSES:
                    raise EdgeProtectionError(
                        status,
                        f"HTTP {status} non-JSON at {url}: {snippet}",
                        {"status": status, "body": snippet},
                    )
                raise PolymarketAPIError(
                    status,
                    f"HTTP {status} non-JSON response: {snippet}",
                    {"status": status, "body": snippet},
                )
            if resp.status_code >= 400:
                if resp.status_code >= 500 and attempt < self.max_retries:
                    await asyncio.sleep(2**attempt)
                    attempt += 1
                    continue
                message = payload.get("error") if isinstance(payload, dict) else None
                raise PolymarketAPIError(resp.status_code, str(message or "request rejected"), payload)
            return payload

    # -------- Gamma --------
    async def get_event_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        url = f"{self.gamma_host}/events/slug/{quote(slug, safe='')}"
        payload = await self._request("GET", url, allow_not_found=True)
        return payload if isinstance(payload, dict) else None

    # -------- CLOB public market data --------
    async def get_order_book(self, token_id: str) -> Optional[Dict[str, Any]]:
        payload = await self._request(
            "GET",
            f"{self.clob_host}/book",
            params={"token_id": token_id},
            allow_not_found=True,
        )
        return payload if isinstance(payload, dict) else None

    async def get_order_books(self, token_ids: Iterable[str]) -> list[Dict[str, Any]]:
        body = [{"token_id": token_id} for token_id in token_ids]
        if not body:
            return []
        payload = await self._request("POST", f"{self.clob_host}/books", json_body=body)
        if not isinstance(payload, list):
            raise PolymarketAPIError(200, "unexpected /books payload", payload)
        return payload

    # -------- Utilities --------
    async def aclose(self) -> None:
        await self._client.aclose()
