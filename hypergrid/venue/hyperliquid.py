"""
Hyperliquid venue adapter.

Orders and cancels go through the official SDK Exchange (which signs), wrapped
in a thread pool. Reads go through the async HTTP/2 info client. Fills and
top-of-book arrive on the SDK websocket and are handed to the event loop.
The same adapter doubles as the volatility source (candle snapshots) and as
the hedge venue.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from hyperliquid.exchange import Exchange
from hyperliquid.info import Info

from hypergrid.core.types import (
    Candle,
    FillEvent,
    MarketSnapshot,
    OrderRequest,
    OrderType,
    Side,
    TradeRecord,
    VenuePosition,
)
from hypergrid.core.utils import BoundedSet, now_ms
from hypergrid.infra.async_execution import AsyncExchange
from hypergrid.infra.async_info import AsyncInfo
from hypergrid.venue.base import OrderRejected, VenueConnector, VolatilitySource

log = logging.getLogger("hypergrid")

INTERVAL_MS = {"1m": 60_000, "5m": 300_000, "15m": 900_000, "1h": 3_600_000}

# Substrings of cancel errors meaning the order no longer rests.
_GONE_MARKERS = ("never placed", "already canceled", "already cancelled", "filled")


def round_price(px: float, sz_decimals: int) -> float:
    """
    Perp prices: at most 5 significant figures and (6 - szDecimals) decimals;
    above 100_000 prices are integers.
    """
    if px > 100_000:
        return float(round(px))
    max_decimals = max(0, 6 - sz_decimals)
    return round(float(f"{px:.5g}"), max_decimals)


def _tif(order_type: OrderType) -> str:
    if order_type is OrderType.POST_ONLY:
        return "Alo"
    if order_type is OrderType.MARKET:
        return "Ioc"
    return "Gtc"


def parse_order_response(resp: Any) -> str:
    """Extract the resting/filled oid from an SDK order response or raise OrderRejected."""
    if not isinstance(resp, dict):
        raise OrderRejected(f"unexpected response: {resp!r}")
    if resp.get("status") != "ok":
        raise OrderRejected(str(resp.get("response", resp)))
    statuses = resp.get("response", {}).get("data", {}).get("statuses") or []
    if not statuses:
        raise OrderRejected("empty statuses")
    status = statuses[0]
    if isinstance(status, dict):
        if "error" in status:
            raise OrderRejected(str(status["error"]))
        for key in ("resting", "filled"):
            if key in status and "oid" in status[key]:
                return str(status[key]["oid"])
    raise OrderRejected(f"unrecognised status: {status!r}")


def parse_cancel_response(resp: Any) -> bool:
    """True when the order is gone (cancelled now or already)."""
    if not isinstance(resp, dict) or resp.get("status") != "ok":
        raise RuntimeError(f"cancel failed: {resp!r}")
    statuses = resp.get("response", {}).get("data", {}).get("statuses") or []
    for status in statuses:
        if status == "success":
            continue
        if isinstance(status, dict) and "error" in status:
            if any(marker in str(status["error"]).lower() for marker in _GONE_MARKERS):
                continue
            raise RuntimeError(str(status["error"]))
    return True


def fill_from_ws(raw: Dict[str, Any]) -> FillEvent:
    return FillEvent(
        side=Side.parse(raw.get("side", "")),
        price=float(raw.get("px", 0.0)),
        size=float(raw.get("sz", 0.0)),
        venue_order_id=str(raw["oid"]) if raw.get("oid") is not None else None,
        fill_id=str(raw["tid"]) if raw.get("tid") is not None else None,
        timestamp_ms=int(raw["time"]) if raw.get("time") is not None else None,
    )


def trade_record_from_fill(raw: Dict[str, Any]) -> TradeRecord:
    """userFills carry startPosition (pre-trade balance); post = start + signed size."""
    side = Side.parse(raw.get("side", ""))
    size = float(raw.get("sz", 0.0))
    px = float(raw.get("px", 0.0))
    signed = size * side.sign
    start = float(raw.get("startPosition", 0.0))
    return TradeRecord(
        post_balance=start + signed,
        signed_amount=signed,
        limit_price=px * side.sign,
        base_amount=signed,
        quote_amount=-signed * px,
        timestamp_ms=int(raw.get("time", 0)),
    )


class HyperliquidVenue(VenueConnector, VolatilitySource):
    name = "hyperliquid"

    def __init__(
        self,
        base_url: str,
        account: str,
        wallet=None,
        symbol: Optional[str] = None,
        leverage: int = 0,
        timeout_sec: float = 5.0,
        stream: bool = True,
        book_stale_sec: float = 10.0,
    ) -> None:
        super().__init__(timeout_sec=timeout_sec)
        self.base_url = base_url
        self.account = account
        self.symbol = symbol
        self.leverage = leverage
        self._wallet = wallet
        self._stream = stream
        self._book_stale_sec = book_stale_sec
        self.info: Optional[Info] = None
        self.async_info = AsyncInfo(base_url, timeout=timeout_sec)
        self.exchange: Optional[AsyncExchange] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._best_bid = 0.0
        self._best_ask = 0.0
        self._book_ts = 0.0
        self._book_lock = threading.Lock()
        self._fill_seen = BoundedSet(maxlen=5000)
        self._fill_seen_lock = threading.Lock()
        self._sz_decimals: Dict[str, int] = {}

    async def connect(self) -> bool:
        self.loop = asyncio.get_running_loop()
        try:
            meta = await self.call("meta", self.async_info.meta)
        except Exception:
            return False
        self._sz_decimals = {
            u.get("name"): int(u.get("szDecimals", 5)) for u in (meta or {}).get("universe", [])
        }
        if self.symbol and self.symbol not in self._sz_decimals:
            log.error(json.dumps({"event": "unknown_symbol", "venue": self.name, "symbol": self.symbol}))
            return False

        if self._wallet is not None:
            base_exchange = Exchange(self._wallet, self.base_url, account_address=self.account)
            self.exchange = AsyncExchange(base_exchange, timeout=self.timeout_sec)
            if self.leverage > 0 and self.symbol:
                try:
                    await self.exchange.set_cross_leverage(self.leverage, self.symbol)
                    log.info(json.dumps({"event": "leverage_set", "symbol": self.symbol, "leverage": self.leverage}))
                except Exception as exc:
                    log.warning(json.dumps({"event": "leverage_update_failed", "error": str(exc)}))

        if self._stream and self.symbol:
            self.info = Info(self.base_url, skip_ws=False)
            self._subscribe()

        self.is_connected = True
        log.info(json.dumps({"event": "venue_connected", "venue": self.name, "symbol": self.symbol, "stream": self._stream}))
        return True

    def _subscribe(self) -> None:
        assert self.info is not None

        def _on_user_fills(msg: Any) -> None:
            try:
                data = msg.get("data", {})
                if data.get("isSnapshot"):
                    return
                if data.get("user", "").lower() != self.account.lower():
                    return
                for raw in data.get("fills") or []:
                    if raw.get("coin") != self.symbol:
                        continue
                    key = f"{raw.get('tid')}_{raw.get('oid')}_{raw.get('time')}"
                    with self._fill_seen_lock:
                        if not self._fill_seen.add(key):
                            continue
                    fill = fill_from_ws(raw)
                    if self.loop:
                        self.loop.call_soon_threadsafe(self.fills.put_nowait, fill)
            except Exception as exc:
                # The SDK websocket thread must never see an exception.
                log.error(json.dumps({"event": "ws_fill_parse_error", "error": str(exc)}))

        def _on_book(msg: Any) -> None:
            try:
                data = msg.get("data", {})
                if data.get("coin") != self.symbol:
                    return
                bid, ask = self._top_of_book(data.get("levels") or [])
                with self._book_lock:
                    self._best_bid, self._best_ask = bid, ask
                    self._book_ts = time.time()
            except Exception as exc:
                log.error(json.dumps({"event": "ws_book_parse_error", "error": str(exc)}))

        self.info.subscribe({"type": "userFills", "user": self.account}, _on_user_fills)
        self.info.subscribe({"type": "l2Book", "coin": self.symbol}, _on_book)

    @staticmethod
    def _top_of_book(levels: List[List[Dict[str, Any]]]) -> tuple:
        bids = levels[0] if len(levels) > 0 else []
        asks = levels[1] if len(levels) > 1 else []
        bid = float(bids[0]["px"]) if bids else 0.0
        ask = float(asks[0]["px"]) if asks else 0.0
        return bid, ask

    async def get_order_book_snapshot(self, symbol: str) -> MarketSnapshot:
        with self._book_lock:
            fresh = time.time() - self._book_ts < self._book_stale_sec
            bid, ask = self._best_bid, self._best_ask
        if not fresh or bid <= 0 or ask <= 0:
            book = await self.call("l2_book", lambda: self.async_info.l2_book(symbol))
            bid, ask = self._top_of_book((book or {}).get("levels") or [])
        return MarketSnapshot.from_book(symbol, bid, ask)

    async def get_mid_price(self, symbol: str) -> float:
        mids = await self.call("all_mids", self.async_info.all_mids)
        return float((mids or {}).get(symbol, 0.0))

    async def place_order(self, order: OrderRequest) -> str:
        self.validate_order(order)
        if self.exchange is None:
            raise OrderRejected("venue has no signer")
        is_buy = order.side is Side.BUY
        sz_decimals = self._sz_decimals.get(order.symbol, 5)
        px = round_price(order.price, sz_decimals)
        sz = round(order.size, sz_decimals)
        # Market orders are sent as IOC limits at the caller's aggressive price.
        resp = await self.call(
            "order",
            lambda: self.exchange.place(order.symbol, is_buy, sz, px, _tif(order.order_type)),
        )
        return parse_order_response(resp)

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        if self.exchange is None:
            return False
        resp = await self.call("cancel", lambda: self.exchange.cancel(symbol, int(order_id)))
        try:
            return parse_cancel_response(resp)
        except RuntimeError as exc:
            self._log_failure("cancel", exc)
            return False

    async def get_position(self, symbol: str) -> Optional[VenuePosition]:
        state = await self.call("user_state", lambda: self.async_info.user_state(self.account))
        for ap in (state or {}).get("assetPositions", []):
            p = ap.get("position", {})
            if p.get("coin") == symbol:
                entry = p.get("entryPx")
                return VenuePosition(
                    symbol=symbol,
                    size=float(p.get("szi", 0.0)),
                    entry_price=float(entry) if entry not in (None, "") else None,
                )
        return None

    async def get_balance(self) -> float:
        state = await self.call("user_state", lambda: self.async_info.user_state(self.account))
        return float((state or {}).get("marginSummary", {}).get("accountValue", 0.0))

    async def get_trade_history(self, symbol: str, limit: int = 500) -> List[TradeRecord]:
        raw = await self.call("user_fills", lambda: self.async_info.user_fills(self.account))
        fills = [f for f in (raw or []) if f.get("coin") == symbol]
        fills.sort(key=lambda f: int(f.get("time", 0)), reverse=True)
        return [trade_record_from_fill(f) for f in fills[:limit]]

    async def get_candles(self, symbol: str, interval: str, count: int) -> List[Candle]:
        end = now_ms()
        start = end - INTERVAL_MS.get(interval, 300_000) * count
        raw = await self.call("candles", lambda: self.async_info.candle_snapshot(symbol, interval, start, end))
        rows = sorted(raw or [], key=lambda c: int(c.get("t", 0)))
        return [Candle(high=float(c["h"]), low=float(c["l"]), close=float(c["c"])) for c in rows]

    async def close(self) -> None:
        await super().close()
        if self.info is not None:
            try:
                self.info.disconnect_websocket()
            except Exception as exc:
                log.warning(json.dumps({"event": "ws_disconnect_error", "error": str(exc)}))
        if self.exchange is not None:
            await self.exchange.close()
        await self.async_info.close()
