"""
Alert delivery for operator-facing events.

- Telegram sendMessage and/or a webhook (generic, Slack, Discord)
- Per-type rate limiting to prevent alert storms
- Async delivery over a shared httpx client; failures are logged, never raised
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

import httpx

from hypergrid.core.utils import now_ms

if TYPE_CHECKING:
    from hypergrid.config.config import Settings

logger = logging.getLogger("hypergrid")

TELEGRAM_API = "https://api.telegram.org"


class AlertSeverity(Enum):
    CRITICAL = auto()
    WARNING = auto()
    INFO = auto()


class AlertType(Enum):
    STARTUP = auto()
    SHUTDOWN = auto()
    FILL = auto()
    POSITION_LOADED = auto()
    CIRCUIT_BREAKER_OPEN = auto()
    CIRCUIT_BREAKER_CLOSED = auto()
    HEDGE = auto()
    TRADING_PAUSED = auto()
    TRADING_RESUMED = auto()
    ERROR = auto()


# Palette shared by the Slack and Discord payloads.
SEVERITY_COLOR = {
    AlertSeverity.CRITICAL: 0xD32F2F,
    AlertSeverity.WARNING: 0xF57C00,
    AlertSeverity.INFO: 0x1976D2,
}
MAX_FIELDS = 6


@dataclass
class Alert:
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    coin: Optional[str] = None
    rate_limited: bool = True
    created_ms: int = field(default_factory=now_ms)

    def fields(self) -> List[Tuple[str, str]]:
        """Label/value pairs for chat embeds: coin first, then details."""
        pairs = [("coin", self.coin)] if self.coin else []
        pairs.extend((key, str(value)) for key, value in self.details.items())
        return pairs[:MAX_FIELDS]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert": self.alert_type.name.lower(),
            "level": self.severity.name.lower(),
            "coin": self.coin,
            "title": self.title,
            "message": self.message,
            "details": self.details,
            "at_ms": self.created_ms,
        }

    def to_text(self) -> str:
        lines = [self.title, self.message]
        lines.extend(f"{key}: {value}" for key, value in self.details.items())
        return "\n".join(line for line in lines if line)


@dataclass
class AlertConfig:
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_type: str = "generic"  # generic, slack, discord
    min_severity: AlertSeverity = AlertSeverity.INFO
    rate_limit_seconds: int = 60
    timeout_sec: float = 10.0
    enabled: bool = True
    bot_name: str = "hypergrid"

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @classmethod
    def from_settings(cls, cfg: "Settings") -> "AlertConfig":
        return cls(
            telegram_bot_token=cfg.telegram_bot_token,
            telegram_chat_id=cfg.telegram_chat_id,
            webhook_url=cfg.alert_webhook_url,
            webhook_type=cfg.alert_webhook_type,
        )


def slack_payload(alert: Alert, bot_name: str) -> Dict[str, Any]:
    return {
        "username": bot_name,
        "attachments": [{
            "color": f"#{SEVERITY_COLOR[alert.severity]:06X}",
            "title": alert.title,
            "text": alert.message,
            "fields": [{"title": k, "value": v, "short": True} for k, v in alert.fields()],
            "ts": alert.created_ms // 1000,
        }],
    }


def discord_payload(alert: Alert, bot_name: str) -> Dict[str, Any]:
    return {
        "username": bot_name,
        "embeds": [{
            "title": alert.title,
            "description": alert.message,
            "color": SEVERITY_COLOR[alert.severity],
            "fields": [{"name": k, "value": v, "inline": True} for k, v in alert.fields()],
        }],
    }


def webhook_payload(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
    if config.webhook_type == "slack":
        return slack_payload(alert, config.bot_name)
    if config.webhook_type == "discord":
        return discord_payload(alert, config.bot_name)
    return {"source": config.bot_name, **alert.to_dict()}


class AlertManager:
    """
    Delivers alerts with per-type rate limiting.

    Alerts with ``rate_limited=False`` (fills) always go out.
    """

    def __init__(self, config: Optional[AlertConfig] = None, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config or AlertConfig()
        self._client = client
        self._owns_client = client is None
        self._last_sent_ms: Dict[AlertType, int] = {}
        self.sent: List[Alert] = []

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_sec)
        return self._client

    @property
    def has_channel(self) -> bool:
        return self.config.telegram_enabled or bool(self.config.webhook_url)

    def _should_send(self, alert: Alert) -> bool:
        if not self.config.enabled or not self.has_channel:
            return False
        # CRITICAL=1 < WARNING=2 < INFO=3
        if alert.severity.value > self.config.min_severity.value:
            return False
        if not alert.rate_limited:
            return True
        last = self._last_sent_ms.get(alert.alert_type)
        if last is not None and alert.created_ms - last < self.config.rate_limit_seconds * 1000:
            logger.debug(json.dumps({"event": "alert_rate_limited", "alert": alert.alert_type.name}))
            return False
        self._last_sent_ms[alert.alert_type] = alert.created_ms
        return True

    async def send_alert(self, alert: Alert) -> bool:
        """Deliver an alert to every configured channel. True if any accepted it."""
        if not self._should_send(alert):
            return False
        results = []
        if self.config.telegram_enabled:
            results.append(await self.send_telegram(alert.to_text()))
        if self.config.webhook_url:
            results.append(await self._http_post(self.config.webhook_url, webhook_payload(alert, self.config)))
        if any(results):
            self.sent.append(alert)
        return any(results)

    async def send_telegram(self, text: str, chat_id: Optional[str] = None) -> bool:
        if not self.config.telegram_bot_token:
            return False
        url = f"{TELEGRAM_API}/bot{self.config.telegram_bot_token}/sendMessage"
        payload = {"chat_id": chat_id or self.config.telegram_chat_id, "text": text}
        return await self._http_post(url, payload)

    async def _http_post(self, url: str, payload: Dict[str, Any], retries: int = 1) -> bool:
        """POST with a short linear backoff. Never raises."""
        attempts = retries + 1
        for attempt in range(1, attempts + 1):
            try:
                resp = await self.client.post(url, json=payload)
            except httpx.HTTPError as exc:
                logger.warning(json.dumps({"event": "alert_delivery_error", "error": str(exc), "attempt": attempt}))
            else:
                if resp.is_success:
                    return True
                logger.warning(json.dumps({"event": "alert_delivery_failed", "status": resp.status_code, "attempt": attempt}))
            if attempt < attempts:
                await asyncio.sleep(attempt)
        return False

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    # ------------------------------------------------------------------ #
    # Convenience methods for common alerts
    # ------------------------------------------------------------------ #

    async def alert_startup(self, coin: str, equity: float, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.STARTUP,
            severity=AlertSeverity.INFO,
            title="Engine started",
            message=f"Quoting {coin}, equity ${equity:,.2f}",
            coin=coin,
            details=details,
        ))

    async def alert_shutdown(self, reason: str = "normal", **details) -> bool:
        severity = AlertSeverity.INFO if reason == "normal" else AlertSeverity.WARNING
        return await self.send_alert(Alert(
            alert_type=AlertType.SHUTDOWN,
            severity=severity,
            title="Engine stopped",
            message=f"Shutting down: {reason}",
            details=details,
        ))

    async def alert_fill(self, coin: str, side: str, size: float, price: float, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.FILL,
            severity=AlertSeverity.INFO,
            title="Fill",
            message=f"{side.upper()} {size} {coin} @ {price}",
            coin=coin,
            details=details,
            rate_limited=False,
        ))

    async def alert_position_loaded(self, coin: str, size: float, avg_entry: float, target_close: float) -> bool:
        side = "LONG" if size > 0 else "SHORT"
        return await self.send_alert(Alert(
            alert_type=AlertType.POSITION_LOADED,
            severity=AlertSeverity.INFO,
            title="Position loaded",
            message=f"{side} {abs(size)} {coin} @ {avg_entry:.2f}",
            coin=coin,
            details={"target_close": round(target_close, 2)},
        ))

    async def alert_circuit_breaker(self, is_open: bool, reason: str, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.CIRCUIT_BREAKER_OPEN if is_open else AlertType.CIRCUIT_BREAKER_CLOSED,
            severity=AlertSeverity.CRITICAL if is_open else AlertSeverity.INFO,
            title="Circuit breaker opened" if is_open else "Circuit breaker closed",
            message=reason,
            details=details,
            rate_limited=False,
        ))

    async def alert_hedge(self, coin: str, side: str, size: float, ok: bool, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.HEDGE,
            severity=AlertSeverity.INFO if ok else AlertSeverity.WARNING,
            title="Hedge sent" if ok else "Hedge failed",
            message=f"{side.upper()} {size} {coin}",
            coin=coin,
            details=details,
            rate_limited=False,
        ))

    async def alert_trading(self, paused: bool, by: str = "operator") -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.TRADING_PAUSED if paused else AlertType.TRADING_RESUMED,
            severity=AlertSeverity.WARNING if paused else AlertSeverity.INFO,
            title="Trading paused" if paused else "Trading resumed",
            message=f"by {by}",
            rate_limited=False,
        ))
