"""
Minimal async HTTP client for Hyperliquid info endpoints using HTTP/2.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx


class AsyncInfo:
    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        # A shared client passed in is not closed by close(); otherwise we own it.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def meta(self) -> Any:
        return await self._post_info({"type": "meta"})

    async def all_mids(self) -> Any:
        return await self._post_info({"type": "allMids"})

    async def l2_book(self, coin: str) -> Any:
        return await self._post_info({"type": "l2Book", "coin": coin})

    async def user_state(self, account: str) -> Any:
        return await self._post_info({"type": "clearinghouseState", "user": account})

    async def user_fills(self, account: str) -> Any:
        """Most recent fills for the account (all coins; caller filters)."""
        return await self._post_info({"type": "userFills", "user": account})

    async def candle_snapshot(self, coin: str, interval: str, start_ms: int, end_ms: int) -> Any:
        payload = {
            "type": "candleSnapshot",
            "req": {"coin": coin, "interval": interval, "startTime": start_ms, "endTime": end_ms},
        }
        return await self._post_info(payload)

    async def _post_info(self, payload: dict[str, Any]) -> Any:
        resp = await self.client.post("/info", json=payload)
        resp.raise_for_status()
        data = resp.json()
        # unwrap {status:'ok', response:{data:{...}}} patterns
        if isinstance(data, dict):
            if "response" in data and isinstance(data["response"], dict):
                data = data["response"]
            if "data" in data and isinstance(data["data"], dict):
                data = data["data"]
        return data
