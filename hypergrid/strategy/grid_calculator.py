"""
GridCalculator - desired ladder computation.

Pure calculation, no side effects: given the market snapshot, the position
and the volatility multiplier it returns the set of DesiredOrder keyed by
slot ("buy_0", "sell_3", ...). Placement is the reconciler's job.

Per level the calculator applies, in order:
- inventory skew and volatility scaling of the base spread
- tick/step quantization (bids floored, asks ceiled, sizes ceiled)
- risk gating on position notional (soft cap drops inner levels, hard cap
  drops the whole side)
- profit protection for orders that close the open position
- the venue's minimum order notional
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, TYPE_CHECKING

from hypergrid.core.types import DesiredOrder, MarketSnapshot, PositionState, Side
from hypergrid.core.utils import ceil_to_step, floor_to_step

if TYPE_CHECKING:
    from hypergrid.config.config import Settings

log = logging.getLogger("hypergrid")


def slot_key(side: Side, index: int) -> str:
    return f"{side.value}_{index}"


@dataclass
class GridConfig:
    long_spreads: List[float]
    short_spreads: List[float]
    order_ratios: List[float]
    order_size_usd: float = 1000.0
    min_spread_floor: float = 0.0001
    price_tick: float = 0.1
    size_step: float = 0.00005
    min_order_notional: float = 100.0
    min_profit_spread: float = 0.0003
    max_position_usd: float = 6000.0
    skew_multiplier: float = 1.5
    hard_cap_multiple: float = 1.5
    soft_cap_skip_levels: int = 2
    vol_multiplier_min: float = 0.5
    vol_multiplier_max: float = 2.0

    @classmethod
    def from_settings(cls, cfg: "Settings") -> "GridConfig":
        return cls(
            long_spreads=list(cfg.long_spreads),
            short_spreads=list(cfg.short_spreads),
            order_ratios=list(cfg.order_ratios),
            order_size_usd=cfg.order_size_usd,
            min_spread_floor=cfg.min_spread_floor,
            price_tick=cfg.price_tick,
            size_step=cfg.size_step,
            min_order_notional=cfg.min_order_notional,
            min_profit_spread=cfg.min_profit_spread,
            max_position_usd=cfg.max_position_usd,
            skew_multiplier=cfg.skew_multiplier,
            hard_cap_multiple=cfg.hard_cap_multiple,
            soft_cap_skip_levels=cfg.soft_cap_skip_levels,
            vol_multiplier_min=cfg.vol_multiplier_min,
            vol_multiplier_max=cfg.vol_multiplier_max,
        )


@dataclass
class GridBuildResult:
    """Desired ladder plus the inputs that shaped it (for logs and status)."""
    orders: Dict[str, DesiredOrder]
    mid: float
    vol_multiplier: float
    inventory_adj: float
    position_notional: float
    buy_spreads: List[float] = field(default_factory=list)
    sell_spreads: List[float] = field(default_factory=list)
    gated: int = 0
    below_min_notional: int = 0
    profit_clamped: int = 0

    def __len__(self) -> int:
        return len(self.orders)


class GridCalculator:
    """
    Stateless ladder builder.

    Thread-safety: holds configuration only; safe to share.
    """

    def __init__(self, config: GridConfig) -> None:
        self.config = config

    def inventory_adjustment(self, position_notional: float) -> float:
        cfg = self.config
        return (position_notional / cfg.max_position_usd) * cfg.skew_multiplier

    def effective_spreads(self, base: List[float], adj_sign: int, adj: float, vol_mult: float) -> List[float]:
        floor = self.config.min_spread_floor
        return [max(floor, s * (1 + adj_sign * adj) * vol_mult) for s in base]

    def is_gated(self, side: Side, index: int, position_notional: float) -> bool:
        """
        Soft cap: once the side's exposure reaches max_position_usd only the
        outer levels stay. Hard cap: at hard_cap_multiple of it, none do.
        """
        cfg = self.config
        exposure = position_notional if side is Side.BUY else -position_notional
        if exposure < cfg.max_position_usd:
            return False
        if exposure >= cfg.max_position_usd * cfg.hard_cap_multiple:
            return True
        return index < cfg.soft_cap_skip_levels

    def protect_profit(self, side: Side, price: float, position: PositionState) -> float:
        """
        Orders that close the open position never price inside
        avg_entry * (1 -/+ min_profit_spread).
        """
        cfg = self.config
        entry = position.avg_entry_price
        if entry <= 0:
            return price
        if side is Side.BUY and position.net_size < 0:
            limit = entry * (1 - cfg.min_profit_spread)
            if price > limit:
                return floor_to_step(limit, cfg.price_tick)
        elif side is Side.SELL and position.net_size > 0:
            limit = entry * (1 + cfg.min_profit_spread)
            if price < limit:
                return ceil_to_step(limit, cfg.price_tick)
        return price

    def level_price(self, side: Side, mid: float, spread: float) -> float:
        tick = self.config.price_tick
        if side is Side.BUY:
            return floor_to_step(mid * (1 - spread), tick)
        return ceil_to_step(mid * (1 + spread), tick)

    def build(self, market: MarketSnapshot, position: PositionState, vol_multiplier: float = 1.0) -> GridBuildResult:
        cfg = self.config
        mid = market.mid_price
        vol = max(cfg.vol_multiplier_min, min(cfg.vol_multiplier_max, vol_multiplier))
        pos_notional = position.notional(mid)
        adj = self.inventory_adjustment(pos_notional)
        result = GridBuildResult(
            orders={},
            mid=mid,
            vol_multiplier=vol,
            inventory_adj=adj,
            position_notional=pos_notional,
            buy_spreads=self.effective_spreads(cfg.long_spreads, +1, adj, vol),
            sell_spreads=self.effective_spreads(cfg.short_spreads, -1, adj, vol),
        )
        if mid <= 0:
            return result

        for side, spreads in ((Side.BUY, result.buy_spreads), (Side.SELL, result.sell_spreads)):
            for i, spread in enumerate(spreads):
                if i >= len(cfg.order_ratios):
                    break
                if self.is_gated(side, i, pos_notional):
                    result.gated += 1
                    continue
                order = self._build_level(side, i, mid, spread, position, result)
                if order is not None:
                    result.orders[order.slot_key] = order
        return result

    def _build_level(
        self,
        side: Side,
        index: int,
        mid: float,
        spread: float,
        position: PositionState,
        result: GridBuildResult,
    ) -> Optional[DesiredOrder]:
        cfg = self.config
        price = self.level_price(side, mid, spread)
        if price <= 0:
            return None
        notional = cfg.order_size_usd * cfg.order_ratios[index]
        size = ceil_to_step(notional / price, cfg.size_step)

        protected = self.protect_profit(side, price, position)
        if protected != price:
            result.profit_clamped += 1
            log.debug(json.dumps({
                "event": "profit_protect",
                "slot": slot_key(side, index),
                "from_px": price,
                "to_px": protected,
                "avg_entry": position.avg_entry_price,
            }))
            price = protected

        if size <= 0 or notional < cfg.min_order_notional:
            result.below_min_notional += 1
            return None
        return DesiredOrder(slot_key=slot_key(side, index), side=side, price=price, size=size)
