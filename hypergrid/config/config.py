"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger("hypergrid")

DEFAULT_SPREADS = "0.0006,0.0012,0.002,0.003,0.004"
DEFAULT_RATIOS = "0.5,0.2,0.1,0.1,0.1"


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


def _float_list_env(key: str, default: str) -> List[float]:
    raw = os.getenv(key) or default
    return [float(x) for x in raw.split(",") if x.strip()]


@dataclass(frozen=True)
class Settings:
    # Venue
    base_url: str
    symbol: str
    hedge_symbol: str
    private_key: Optional[str]
    user_address: Optional[str]
    leverage: int
    venue_timeout_sec: float
    # Ladder
    order_size_usd: float
    long_spreads: List[float]
    short_spreads: List[float]
    order_ratios: List[float]
    min_spread_floor: float
    price_tick: float
    size_step: float
    min_order_notional: float
    min_profit_spread: float
    # Inventory
    max_position_usd: float
    skew_multiplier: float
    hard_cap_multiple: float
    soft_cap_skip_levels: int
    # Reconciliation
    reprice_mode: str  # absolute | chase
    reprice_deadband: float
    reprice_safety_distance: float
    reprice_size_tolerance: float
    stale_order_ms: int
    zombie_order_ms: int
    # Loop cadence
    jitter_min_ms: int
    jitter_max_ms: int
    # Volatility
    atr_period: int
    atr_interval: str
    base_spread: float
    vol_multiplier_min: float
    vol_multiplier_max: float
    vol_refresh_sec: float
    # Circuit breaker
    circuit_threshold: float
    circuit_cooldown_sec: float
    circuit_check_interval_sec: float
    circuit_idle_sleep_sec: float
    # Hedging
    enable_hedging: bool
    hedge_threshold_usd: float
    hedge_slippage: float
    # Startup
    cost_basis_source: str  # venue | history
    trade_history_limit: int
    # Shutdown
    shutdown_grace_sec: float  # wait for an in-flight tick before cancel-all
    # Observability
    health_max_tick_age_ms: int
    metrics_port: int
    log_file: Optional[str]
    telegram_bot_token: Optional[str]
    telegram_chat_id: Optional[str]
    alert_webhook_url: Optional[str]
    alert_webhook_type: str  # generic, slack, discord

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging (secrets masked)."""
        data = self.__dict__.copy()
        for key in ("private_key", "telegram_bot_token"):
            if data.get(key):
                data[key] = "***"
        return data

    @property
    def max_levels(self) -> int:
        return min(len(self.order_ratios), max(len(self.long_spreads), len(self.short_spreads)))

    @classmethod
    def load(cls) -> "Settings":
        cfg = cls(
            base_url=os.getenv("HG_BASE_URL", "https://api.hyperliquid.xyz"),
            symbol=os.getenv("HG_SYMBOL", "BTC"),
            hedge_symbol=os.getenv("HG_HEDGE_SYMBOL", "BTC"),
            private_key=os.getenv("HG_PRIVATE_KEY"),
            user_address=os.getenv("HG_USER_ADDRESS"),
            leverage=_int_env("HG_LEVERAGE", 5),
            venue_timeout_sec=_float_env("HG_VENUE_TIMEOUT_SEC", 5.0),
            order_size_usd=_float_env("HG_ORDER_SIZE_USD", 1000.0),
            long_spreads=_float_list_env("HG_LONG_SPREADS", DEFAULT_SPREADS),
            short_spreads=_float_list_env("HG_SHORT_SPREADS", DEFAULT_SPREADS),
            order_ratios=_float_list_env("HG_ORDER_RATIOS", DEFAULT_RATIOS),
            min_spread_floor=_float_env("HG_MIN_SPREAD_FLOOR", 0.0001),
            price_tick=_float_env("HG_PRICE_TICK", 0.1),
            size_step=_float_env("HG_SIZE_STEP", 0.00005),
            min_order_notional=_float_env("HG_MIN_ORDER_NOTIONAL", 100.0),
            min_profit_spread=_float_env("HG_MIN_PROFIT_SPREAD", 0.0003),
            max_position_usd=_float_env("HG_MAX_POSITION_USD", 6000.0),
            skew_multiplier=_float_env("HG_INVENTORY_SKEW_MULTIPLIER", 1.5),
            hard_cap_multiple=_float_env("HG_HARD_CAP_MULTIPLE", 1.5),
            soft_cap_skip_levels=_int_env("HG_SOFT_CAP_SKIP_LEVELS", 2),
            reprice_mode=os.getenv("HG_REPRICE_MODE", "absolute").lower(),
            reprice_deadband=_float_env("HG_REPRICE_DEADBAND", 30.0),
            reprice_safety_distance=_float_env("HG_REPRICE_SAFETY_DISTANCE", 150.0),
            reprice_size_tolerance=_float_env("HG_REPRICE_SIZE_TOLERANCE", 0.05),
            stale_order_ms=_int_env("HG_STALE_ORDER_MS", 300_000),
            zombie_order_ms=_int_env("HG_ZOMBIE_ORDER_MS", 900_000),
            jitter_min_ms=_int_env("HG_JITTER_MIN_MS", 1500),
            jitter_max_ms=_int_env("HG_JITTER_MAX_MS", 4000),
            atr_period=_int_env("HG_ATR_PERIOD", 14),
            atr_interval=os.getenv("HG_ATR_INTERVAL", "5m"),
            base_spread=_float_env("HG_BASE_SPREAD", 0.001),
            vol_multiplier_min=_float_env("HG_VOL_MULTIPLIER_MIN", 0.5),
            vol_multiplier_max=_float_env("HG_VOL_MULTIPLIER_MAX", 2.0),
            vol_refresh_sec=_float_env("HG_VOL_REFRESH_SEC", 60.0),
            circuit_threshold=_float_env("HG_CIRCUIT_BREAKER_THRESHOLD", 0.05),
            circuit_cooldown_sec=_float_env("HG_CIRCUIT_BREAKER_COOLDOWN_SEC", 1800.0),
            circuit_check_interval_sec=_float_env("HG_CIRCUIT_CHECK_INTERVAL_SEC", 60.0),
            circuit_idle_sleep_sec=_float_env("HG_CIRCUIT_IDLE_SLEEP_SEC", 5.0),
            enable_hedging=env_bool("HG_ENABLE_HEDGING", False),
            hedge_threshold_usd=_float_env("HG_HEDGE_THRESHOLD_USD", 5000.0),
            hedge_slippage=_float_env("HG_HEDGE_SLIPPAGE", 0.05),
            cost_basis_source=os.getenv("HG_COST_BASIS_SOURCE", "venue").lower(),
            trade_history_limit=_int_env("HG_TRADE_HISTORY_LIMIT", 500),
            shutdown_grace_sec=_float_env("HG_SHUTDOWN_GRACE_SEC", 10.0),
            health_max_tick_age_ms=_int_env("HG_HEALTH_MAX_TICK_AGE_MS", 30_000),
            metrics_port=_int_env("HG_METRICS_PORT", 9095),
            log_file=os.getenv("HG_LOG_FILE", "hypergrid.log") or None,
            telegram_bot_token=os.getenv("HG_TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.getenv("HG_TELEGRAM_CHAT_ID"),
            alert_webhook_url=os.getenv("HG_ALERT_WEBHOOK_URL"),
            alert_webhook_type=os.getenv("HG_ALERT_WEBHOOK_TYPE", "generic"),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def resolve_account(self) -> str:
        if self.user_address:
            return self.user_address
        if self.private_key:
            from eth_account import Account

            return Account.from_key(self.private_key).address
        raise RuntimeError("Missing HG_USER_ADDRESS or HG_PRIVATE_KEY")

    def resolve_signer(self):
        from eth_account import Account

        if self.private_key:
            return Account.from_key(self.private_key)
        raise RuntimeError("Missing credentials: set HG_PRIVATE_KEY")

    def _validate(self) -> None:
        if not self.long_spreads or not self.short_spreads or not self.order_ratios:
            raise ValueError("HG_LONG_SPREADS, HG_SHORT_SPREADS and HG_ORDER_RATIOS must be non-empty")
        if len(self.long_spreads) != len(self.short_spreads):
            raise ValueError("HG_LONG_SPREADS and HG_SHORT_SPREADS must have the same length")
        if any(s <= 0 for s in self.long_spreads + self.short_spreads):
            raise ValueError("Spreads must be > 0")
        if any(r <= 0 for r in self.order_ratios):
            raise ValueError("HG_ORDER_RATIOS must be > 0")
        if self.order_size_usd <= 0:
            raise ValueError("HG_ORDER_SIZE_USD must be > 0")
        if self.max_position_usd <= 0:
            raise ValueError("HG_MAX_POSITION_USD must be > 0")
        if self.hard_cap_multiple < 1.0:
            raise ValueError("HG_HARD_CAP_MULTIPLE must be >= 1")
        if self.price_tick <= 0 or self.size_step <= 0:
            raise ValueError("HG_PRICE_TICK and HG_SIZE_STEP must be > 0")
        if self.jitter_min_ms <= 0 or self.jitter_min_ms > self.jitter_max_ms:
            raise ValueError("Require 0 < HG_JITTER_MIN_MS <= HG_JITTER_MAX_MS")
        if self.vol_multiplier_min <= 0 or self.vol_multiplier_min > self.vol_multiplier_max:
            raise ValueError("Require 0 < HG_VOL_MULTIPLIER_MIN <= HG_VOL_MULTIPLIER_MAX")
        if self.atr_period <= 0:
            raise ValueError("HG_ATR_PERIOD must be > 0")
        if not 0 < self.circuit_threshold < 1:
            raise ValueError("HG_CIRCUIT_BREAKER_THRESHOLD must be in (0, 1)")
        if self.circuit_cooldown_sec <= 0 or self.circuit_check_interval_sec <= 0:
            raise ValueError("Circuit breaker intervals must be > 0")
        if self.reprice_mode not in {"absolute", "chase"}:
            raise ValueError("HG_REPRICE_MODE must be 'absolute' or 'chase'")
        if self.reprice_deadband < 0:
            raise ValueError("HG_REPRICE_DEADBAND must be >= 0")
        if self.reprice_mode == "chase" and self.reprice_safety_distance < self.reprice_deadband:
            raise ValueError("HG_REPRICE_SAFETY_DISTANCE must be >= HG_REPRICE_DEADBAND in chase mode")
        if self.cost_basis_source not in {"venue", "history"}:
            raise ValueError("HG_COST_BASIS_SOURCE must be 'venue' or 'history'")
        if self.shutdown_grace_sec < 0:
            raise ValueError("HG_SHUTDOWN_GRACE_SEC must be >= 0")
        if self.venue_timeout_sec <= 0:
            raise ValueError("HG_VENUE_TIMEOUT_SEC must be > 0")
        if len(self.order_ratios) < len(self.long_spreads):
            log.warning(
                "WARNING: fewer HG_ORDER_RATIOS than spread levels; "
                "levels without a ratio are not quoted."
            )
        if self.zombie_order_ms <= self.stale_order_ms:
            log.warning(
                "WARNING: HG_ZOMBIE_ORDER_MS <= HG_STALE_ORDER_MS; "
                "the sweeper will cancel orders before the staleness refresh replaces them."
            )
        if self.circuit_threshold > 0.20:
            log.warning(
                f"WARNING: HG_CIRCUIT_BREAKER_THRESHOLD is {self.circuit_threshold:.1%}. "
                "Consider a tighter drawdown limit for capital preservation."
            )
        if self.leverage > 20:
            log.warning(
                f"WARNING: HG_LEVERAGE is {self.leverage}x which is high for grid trading."
            )


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    payload = {
        "event": "config_loaded",
        "symbol": cfg.symbol,
        "order_size_usd": cfg.order_size_usd,
        "levels": cfg.max_levels,
        "max_position_usd": cfg.max_position_usd,
        "reprice_mode": cfg.reprice_mode,
        "circuit_threshold": cfg.circuit_threshold,
        "hedging": cfg.enable_hedging,
    }
    log.info(json.dumps(payload))
