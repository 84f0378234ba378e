"""
Runs the blocking, signing SDK Exchange on a small thread pool.

Order placement is never retried here: a timed-out order may still have
reached the book, and the next reconciliation pass is the retry.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

TIME_IN_FORCE = ("Alo", "Ioc", "Gtc")


class AsyncExchange:
    def __init__(self, exchange, timeout: float = 5.0, max_workers: int = 4) -> None:
        self._exchange = exchange
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="hl-exec")

    async def place(self, coin: str, is_buy: bool, size: float, price: float, tif: str) -> Any:
        if tif not in TIME_IN_FORCE:
            raise ValueError(f"unsupported time in force: {tif}")
        order_type = {"limit": {"tif": tif}}
        return await self._run(lambda: self._exchange.order(coin, is_buy, size, price, order_type, reduce_only=False))

    async def cancel(self, coin: str, oid: int) -> Any:
        return await self._run(lambda: self._exchange.cancel(coin, oid))

    async def set_cross_leverage(self, leverage: int, coin: str) -> Any:
        return await self._run(lambda: self._exchange.update_leverage(leverage, coin, True))

    async def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def _run(self, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(loop.run_in_executor(self._executor, fn), timeout=self._timeout)
