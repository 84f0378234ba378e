"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
import sys

from hypergrid.config.config import Settings
from hypergrid.infra.logging_cfg import build_logger
from hypergrid.monitoring.alerting import AlertConfig, AlertManager
from hypergrid.monitoring.commands import CommandPoller
from hypergrid.monitoring.metrics_rich import RichMetrics
from hypergrid.orchestrator.engine import Engine
from hypergrid.venue.base import StartupError
from hypergrid.venue.hyperliquid import HyperliquidVenue

log = build_logger("hypergrid", file_path=os.getenv("HG_LOG_FILE", "hypergrid.log") or None)


def build_engine(cfg: Settings, metrics: RichMetrics, alerts: AlertManager) -> Engine:
    account = cfg.resolve_account()
    wallet = cfg.resolve_signer()
    venue = HyperliquidVenue(
        cfg.base_url,
        account,
        wallet=wallet,
        symbol=cfg.symbol,
        leverage=cfg.leverage,
        timeout_sec=cfg.venue_timeout_sec,
    )
    hedge_venue = None
    if cfg.enable_hedging:
        hedge_venue = HyperliquidVenue(
            cfg.base_url,
            account,
            wallet=wallet,
            symbol=cfg.hedge_symbol,
            timeout_sec=cfg.venue_timeout_sec,
            stream=False,
        )
    return Engine(
        cfg,
        venue,
        hedge_venue=hedge_venue,
        volatility_source=hedge_venue or venue,
        metrics=metrics,
        alerts=alerts,
    )


async def main() -> int:
    try:
        cfg = Settings.load()
    except ValueError as exc:
        log.error(json.dumps({"event": "config_invalid", "error": str(exc)}))
        return 1

    metrics = RichMetrics(symbol=cfg.symbol)
    if cfg.metrics_port > 0:
        metrics.serve(cfg.metrics_port)
        log.info(json.dumps({"event": "metrics_server_started", "port": cfg.metrics_port}))

    alerts = AlertManager(AlertConfig.from_settings(cfg))
    try:
        engine = build_engine(cfg, metrics, alerts)
    except RuntimeError as exc:
        log.error(json.dumps({"event": "credentials_missing", "error": str(exc)}))
        await alerts.close()
        return 1
    commands = CommandPoller(engine, alerts)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    try:
        await engine.start()
    except StartupError as exc:
        log.error(json.dumps({"event": "startup_failed", "error": str(exc)}))
        await engine.shutdown("startup_failed")
        await alerts.close()
        return 1

    commands.start()
    log.info(json.dumps({"event": "startup", "coin": cfg.symbol}))
    try:
        await stop_event.wait()
        log.info("Shutdown signal received, cleaning up...")
    finally:
        await commands.stop()
        await engine.shutdown("signal_received")
        await alerts.close()
        log.info("Shutdown complete")
    return 0


def run() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
