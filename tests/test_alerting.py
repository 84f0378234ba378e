"""
Tests for alert delivery, Telegram commands and status rendering.

HTTP goes through httpx.MockTransport; requests are captured, not sent.
"""

import json
import random

import httpx
import pytest

from hypergrid.monitoring.alerting import Alert, AlertConfig, AlertManager, AlertSeverity, AlertType
from hypergrid.monitoring.commands import CommandPoller
from hypergrid.monitoring.status import render_health, render_status
from hypergrid.orchestrator.engine import Engine

from conftest import FakeVenue, make_settings

CHAT_ID = "4242"


def capture_client(requests, status_code=200, body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json=body if body is not None else {"ok": True})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def telegram_alerts(requests, **cfg) -> AlertManager:
    config = AlertConfig(telegram_bot_token="123:abc", telegram_chat_id=CHAT_ID, **cfg)
    return AlertManager(config, client=capture_client(requests))


class TestAlertManager:
    @pytest.mark.asyncio
    async def test_no_channel_sends_nothing(self):
        alerts = AlertManager(AlertConfig())
        assert not alerts.has_channel
        assert await alerts.alert_startup("BTC", 1000.0) is False

    @pytest.mark.asyncio
    async def test_telegram_delivery(self):
        requests = []
        alerts = telegram_alerts(requests)
        assert await alerts.alert_startup("BTC", 1000.0)
        assert len(requests) == 1
        assert str(requests[0].url).endswith("/sendMessage")
        payload = json.loads(requests[0].content)
        assert payload["chat_id"] == CHAT_ID
        assert "Quoting BTC" in payload["text"]

    @pytest.mark.asyncio
    async def test_rate_limit_per_type(self):
        requests = []
        alerts = telegram_alerts(requests, rate_limit_seconds=60)
        assert await alerts.alert_startup("BTC", 1000.0)
        assert not await alerts.alert_startup("BTC", 1000.0)
        assert await alerts.alert_shutdown()
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_fills_bypass_rate_limit(self):
        requests = []
        alerts = telegram_alerts(requests)
        for _ in range(3):
            assert await alerts.alert_fill("BTC", "buy", 0.01, 99_900.0)
        assert len(requests) == 3

    @pytest.mark.asyncio
    async def test_slack_webhook_format(self):
        requests = []
        config = AlertConfig(webhook_url="https://hooks.example/x", webhook_type="slack")
        alerts = AlertManager(config, client=capture_client(requests))
        await alerts.alert_circuit_breaker(True, "Drawdown 5.10% breached 5.00%", equity=949.0)
        body = json.loads(requests[0].content)
        attachment = body["attachments"][0]
        assert attachment["title"] == "Circuit breaker opened"
        assert attachment["color"] == "#D32F2F"

    @pytest.mark.asyncio
    async def test_delivery_failure_returns_false(self):
        requests = []
        config = AlertConfig(webhook_url="https://hooks.example/x")
        alerts = AlertManager(config, client=capture_client(requests, status_code=500))
        alert = Alert(AlertType.ERROR, AlertSeverity.CRITICAL, "t", "m", rate_limited=False)
        assert await alerts._http_post(config.webhook_url, alert.to_dict(), retries=0) is False
        assert alerts.sent == []

    def test_alert_text(self):
        alert = Alert(AlertType.HEDGE, AlertSeverity.INFO, "Hedge sent", "SELL 0.06 BTC", details={"px": 95000})
        assert alert.to_text() == "Hedge sent\nSELL 0.06 BTC\npx: 95000"


class TestCommandPoller:
    def make_poller(self, requests, venue=None):
        engine = Engine(make_settings(jitter_min_ms=10, jitter_max_ms=20), venue or FakeVenue(), rng=random.Random(1))
        return CommandPoller(engine, telegram_alerts(requests)), engine

    def test_parse_command(self):
        assert CommandPoller.parse_command("/status") == "status"
        assert CommandPoller.parse_command("/Status@hypergrid_bot now") == "status"
        assert CommandPoller.parse_command("status") is None
        assert CommandPoller.parse_command("") is None

    @pytest.mark.asyncio
    async def test_foreign_chat_ignored(self):
        poller, _ = self.make_poller([])
        assert await poller.handle("999", "/status") is None

    @pytest.mark.asyncio
    async def test_status_alias(self):
        poller, _ = self.make_poller([])
        reply = await poller.handle(CHAT_ID, "/s")
        assert reply.startswith("Engine status")

    @pytest.mark.asyncio
    async def test_unknown_command_ignored(self):
        poller, _ = self.make_poller([])
        assert await poller.handle(CHAT_ID, "/moon") is None

    @pytest.mark.asyncio
    async def test_stop_and_start(self):
        venue = FakeVenue()
        poller, engine = self.make_poller([], venue)
        engine.running = True
        await engine.tick()
        reply = await poller.handle(CHAT_ID, "/stop")
        assert "paused" in reply
        assert engine.paused
        assert len(engine.order_book) == 0
        reply = await poller.handle(CHAT_ID, "/start")
        assert "resumed" in reply
        assert not engine.paused

    @pytest.mark.asyncio
    async def test_handler_error_is_reported(self):
        venue = FakeVenue()
        venue.fail_balance = True
        poller, _ = self.make_poller([], venue)
        reply = await poller.handle(CHAT_ID, "/balance")
        assert reply.startswith("Command failed")

    @pytest.mark.asyncio
    async def test_poll_once_replies_and_advances_offset(self):
        requests = []
        updates = {"ok": True, "result": [{"update_id": 10, "message": {"chat": {"id": 4242}, "text": "/help"}}]}

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path.endswith("/getUpdates"):
                return httpx.Response(200, json=updates)
            return httpx.Response(200, json={"ok": True})

        engine = Engine(make_settings(), FakeVenue())
        alerts = AlertManager(
            AlertConfig(telegram_bot_token="123:abc", telegram_chat_id=CHAT_ID),
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        poller = CommandPoller(engine, alerts)
        assert await poller.poll_once() == 1
        assert poller._offset == 11
        sent = json.loads(requests[-1].content)
        assert sent["chat_id"] == CHAT_ID
        assert "/status" in sent["text"]

    def test_disabled_without_telegram(self):
        engine = Engine(make_settings(), FakeVenue())
        poller = CommandPoller(engine, AlertManager(AlertConfig()))
        assert poller.start() is None


class TestStatusRendering:
    def test_status_with_missing_mid(self):
        text = render_status({"symbol": "BTC", "running": True, "mid_price": None, "net_size": 0.0})
        assert "State: running" in text
        assert "Mid: $N/A" in text

    def test_health_without_ticks(self):
        text = render_health({"healthy": False, "running": False, "tick_age_ms": None})
        assert "Health: WARNING" in text
        assert "Last tick: N/A" in text
