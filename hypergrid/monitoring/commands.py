"""
Telegram command poller.

Long-polls getUpdates and answers operator commands from the configured
chat only. Commands map onto the engine's control surface.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

import httpx

from hypergrid.monitoring.alerting import TELEGRAM_API
from hypergrid.monitoring.status import HELP_TEXT, render_balance, render_health, render_status, render_volume

if TYPE_CHECKING:
    from hypergrid.monitoring.alerting import AlertManager
    from hypergrid.orchestrator.engine import Engine

log = logging.getLogger("hypergrid")

Handler = Callable[[], Awaitable[str]]


class CommandPoller:
    def __init__(self, engine: "Engine", alerts: "AlertManager", poll_timeout_sec: int = 25) -> None:
        self.engine = engine
        self.alerts = alerts
        self.poll_timeout_sec = poll_timeout_sec
        self._offset: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, Handler] = {}
        self._register()

    @property
    def enabled(self) -> bool:
        return self.alerts.config.telegram_enabled

    def _register(self) -> None:
        for name in ("status", "s", "stat"):
            self._handlers[name] = self._status
        for name in ("balance", "bal", "b", "inv"):
            self._handlers[name] = self._balance
        for name in ("volume", "vol", "v"):
            self._handlers[name] = self._volume
        for name in ("health", "h"):
            self._handlers[name] = self._health
        self._handlers["stop"] = self._stop
        self._handlers["start"] = self._start
        self._handlers["help"] = self._help

    async def _status(self) -> str:
        return render_status(self.engine.get_status_snapshot())

    async def _balance(self) -> str:
        return render_balance(await self.engine.get_balance_snapshot())

    async def _volume(self) -> str:
        return render_volume(self.engine.get_status_snapshot())

    async def _health(self) -> str:
        return render_health(self.engine.get_health_snapshot())

    async def _stop(self) -> str:
        await self.engine.pause(by="telegram")
        return "Trading paused, all orders cancelled. Use /start to resume."

    async def _start(self) -> str:
        await self.engine.resume(by="telegram")
        return "Trading resumed. Circuit breaker reset to current equity."

    async def _help(self) -> str:
        return HELP_TEXT

    @staticmethod
    def parse_command(text: str) -> Optional[str]:
        """'/status@my_bot extra' -> 'status'."""
        if not text or not text.startswith("/"):
            return None
        head = text.split()[0][1:]
        return head.split("@", 1)[0].lower() or None

    async def handle(self, chat_id: Any, text: str) -> Optional[str]:
        """Reply text for one message, or None when it is ignored."""
        if str(chat_id) != str(self.alerts.config.telegram_chat_id):
            log.warning(json.dumps({"event": "telegram_foreign_chat", "chat_id": chat_id}))
            return None
        command = self.parse_command(text)
        handler = self._handlers.get(command) if command else None
        if handler is None:
            return None
        log.info(json.dumps({"event": "telegram_command", "command": command}))
        try:
            return await handler()
        except Exception as exc:
            log.error(json.dumps({"event": "telegram_command_error", "command": command, "error": str(exc)}))
            return f"Command failed: {exc}"

    async def poll_once(self) -> int:
        url = f"{TELEGRAM_API}/bot{self.alerts.config.telegram_bot_token}/getUpdates"
        params: Dict[str, Any] = {"timeout": self.poll_timeout_sec}
        if self._offset is not None:
            params["offset"] = self._offset
        resp = await self.alerts.client.get(url, params=params, timeout=self.poll_timeout_sec + 10)
        resp.raise_for_status()
        updates: List[Dict[str, Any]] = resp.json().get("result", [])
        for update in updates:
            self._offset = int(update["update_id"]) + 1
            message = update.get("message") or {}
            chat_id = (message.get("chat") or {}).get("id")
            reply = await self.handle(chat_id, message.get("text", ""))
            if reply:
                await self.alerts.send_telegram(reply, chat_id=str(chat_id))
        return len(updates)

    async def run(self) -> None:
        log.info(json.dumps({"event": "telegram_polling_started"}))
        while True:
            try:
                await self.poll_once()
            except (httpx.HTTPError, ValueError) as exc:
                log.warning(json.dumps({"event": "telegram_poll_error", "error": str(exc)}))
                await asyncio.sleep(5)

    def start(self) -> Optional[asyncio.Task]:
        if not self.enabled:
            return None
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="telegram_commands")
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
