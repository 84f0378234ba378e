"""
Tests for the Hyperliquid adapter's wire parsing and account reads.

Reads are exercised against an httpx.MockTransport; nothing touches the network.
"""

import json

import httpx
import pytest
from unittest.mock import AsyncMock

from hypergrid.core.types import OrderRequest, OrderType, Side
from hypergrid.infra.async_info import AsyncInfo
from hypergrid.venue.base import OrderRejected, VenueError
from hypergrid.venue.hyperliquid import (
    HyperliquidVenue,
    _tif,
    fill_from_ws,
    parse_cancel_response,
    parse_order_response,
    round_price,
    trade_record_from_fill,
)

BASE_URL = "https://api.hyperliquid.test"
ACCOUNT = "0x00000000000000000000000000000000000000aa"


def ok(statuses):
    return {"status": "ok", "response": {"type": "order", "data": {"statuses": statuses}}}


def mock_venue(routes) -> HyperliquidVenue:
    """Venue whose info client answers from ``routes`` keyed by request type."""

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        body = routes[payload["type"]]
        if isinstance(body, Exception):
            raise body
        return httpx.Response(200, json=body)

    venue = HyperliquidVenue(BASE_URL, ACCOUNT, symbol="BTC", timeout_sec=1.0, stream=False)
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    venue.async_info = AsyncInfo(BASE_URL, client=client)
    return venue


class TestOrderResponses:
    def test_resting_oid(self):
        assert parse_order_response(ok([{"resting": {"oid": 77}}])) == "77"

    def test_filled_oid(self):
        assert parse_order_response(ok([{"filled": {"oid": 78, "totalSz": "0.01", "avgPx": "100"}}])) == "78"

    def test_status_error_is_rejection(self):
        with pytest.raises(OrderRejected) as exc:
            parse_order_response(ok([{"error": "Post only order would have immediately matched"}]))
        assert "Post only" in exc.value.reason

    def test_non_ok_is_rejection(self):
        with pytest.raises(OrderRejected):
            parse_order_response({"status": "err", "response": "Insufficient margin"})

    def test_cancel_success_and_already_gone(self):
        assert parse_cancel_response(ok(["success"]))
        assert parse_cancel_response(ok([{"error": "Order was never placed, already canceled, or filled."}]))

    def test_cancel_other_error(self):
        with pytest.raises(RuntimeError):
            parse_cancel_response(ok([{"error": "Rate limited"}]))


class TestWireConversions:
    def test_fill_from_ws(self):
        fill = fill_from_ws({"coin": "BTC", "side": "B", "px": "99900.0", "sz": "0.01", "oid": 5, "tid": 9, "time": 1700})
        assert fill.side is Side.BUY
        assert fill.price == 99_900.0
        assert fill.venue_order_id == "5"
        assert fill.fill_id == "9"
        assert fill.timestamp_ms == 1700

    def test_fill_without_ids(self):
        fill = fill_from_ws({"side": "A", "px": "1", "sz": "2"})
        assert fill.side is Side.SELL
        assert fill.fill_id is None
        assert fill.timestamp_ms is None

    def test_trade_record_from_fill(self):
        rec = trade_record_from_fill({"side": "A", "px": "100", "sz": "2", "startPosition": "3", "time": 5})
        assert rec.signed_amount == -2.0
        assert rec.post_balance == 1.0
        assert rec.pre_balance == 3.0
        assert rec.price == 100.0

    def test_round_price(self):
        assert round_price(123_456.7, 5) == 123_457.0
        assert round_price(99_900.04, 5) == 99_900.0
        assert round_price(1.234567, 2) == 1.2346

    def test_time_in_force(self):
        assert _tif(OrderType.POST_ONLY) == "Alo"
        assert _tif(OrderType.MARKET) == "Ioc"
        assert _tif(OrderType.LIMIT) == "Gtc"


class TestVenueCalls:
    @pytest.mark.asyncio
    async def test_position_and_balance(self):
        venue = mock_venue({
            "clearinghouseState": {
                "assetPositions": [{"position": {"coin": "BTC", "szi": "-0.02", "entryPx": "101000.0"}}],
                "marginSummary": {"accountValue": "1234.5"},
            },
        })
        pos = await venue.get_position("BTC")
        assert pos.size == -0.02
        assert pos.entry_price == 101_000.0
        assert await venue.get_position("ETH") is None
        assert await venue.get_balance() == 1234.5
        await venue.close()

    @pytest.mark.asyncio
    async def test_trade_history_filtered_newest_first(self):
        venue = mock_venue({
            "userFills": [
                {"coin": "BTC", "side": "B", "px": "100", "sz": "1", "startPosition": "0", "time": 1},
                {"coin": "ETH", "side": "B", "px": "5", "sz": "1", "startPosition": "0", "time": 2},
                {"coin": "BTC", "side": "B", "px": "110", "sz": "1", "startPosition": "1", "time": 3},
            ],
        })
        records = await venue.get_trade_history("BTC")
        assert [r.timestamp_ms for r in records] == [3, 1]
        assert records[0].post_balance == 2.0
        await venue.close()

    @pytest.mark.asyncio
    async def test_book_snapshot_falls_back_to_rest(self):
        venue = mock_venue({
            "l2Book": {"levels": [[{"px": "99990", "sz": "1"}], [{"px": "100010", "sz": "1"}]]},
        })
        snap = await venue.get_order_book_snapshot("BTC")
        assert snap.mid_price == 100_000.0
        await venue.close()

    @pytest.mark.asyncio
    async def test_transport_error_becomes_venue_error(self):
        venue = mock_venue({"clearinghouseState": httpx.ConnectError("down")})
        with pytest.raises(VenueError):
            await venue.get_balance()
        await venue.close()

    @pytest.mark.asyncio
    async def test_place_without_signer_is_rejected(self):
        venue = mock_venue({})
        with pytest.raises(OrderRejected):
            await venue.place_order(OrderRequest("BTC", Side.BUY, OrderType.POST_ONLY, 99_900.0, 0.01))
        await venue.close()

    @pytest.mark.asyncio
    async def test_place_sends_post_only(self):
        venue = mock_venue({})
        venue.exchange = AsyncMock()
        venue.exchange.place.return_value = ok([{"resting": {"oid": 12}}])
        oid = await venue.place_order(OrderRequest("BTC", Side.BUY, OrderType.POST_ONLY, 99_900.0, 0.01005))
        assert oid == "12"
        venue.exchange.place.assert_awaited_once_with("BTC", True, 0.01005, 99_900.0, "Alo")
        await venue.close()

    @pytest.mark.asyncio
    async def test_cancel_error_returns_false(self):
        venue = mock_venue({})
        venue.exchange = AsyncMock()
        venue.exchange.cancel.return_value = ok([{"error": "Rate limited"}])
        assert await venue.cancel_order("BTC", "12") is False
        await venue.close()
