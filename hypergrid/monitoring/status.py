"""
Plain-text renderers for operator status replies.

Each takes the dict produced by the engine's control surface.
"""

from __future__ import annotations

from typing import Any, Dict

HELP_TEXT = """hypergrid commands

/s, /status   - engine status
/b, /balance  - balance and inventory
/v, /volume   - session volume
/h, /health   - health check
/stop         - pause trading (cancels all orders)
/start        - resume trading (resets the circuit breaker)
/help         - this message"""


def _fmt(value: Any, fmt: str = ".2f", missing: str = "N/A") -> str:
    if value is None:
        return missing
    return format(value, fmt)


def render_status(s: Dict[str, Any]) -> str:
    state = "paused" if s.get("paused") else ("running" if s.get("running") else "stopped")
    circuit = s.get("circuit") or {}
    return "\n".join([
        "Engine status",
        f"State: {state}",
        f"Circuit: {'OPEN' if s.get('circuit_open') else 'closed'} (trips: {circuit.get('trip_count', 0)})",
        f"Drawdown: {_fmt(circuit.get('drawdown'), '.2%')}",
        f"Equity baseline: ${_fmt(s.get('baseline_equity'))}",
        f"Session volume: ${_fmt(s.get('session_volume_usd'))}",
        f"Mid: ${_fmt(s.get('mid_price'), '.1f')}",
        f"Position: {_fmt(s.get('net_size'), '.5f')} {s.get('symbol', '')} @ {_fmt(s.get('avg_entry_price'), '.1f')}",
        f"Vol multiplier: x{_fmt(s.get('vol_multiplier'))}",
        f"Live orders: {s.get('live_orders', 0)}",
        f"Hedging: {'on' if s.get('hedging') else 'off'}",
    ])


def render_balance(b: Dict[str, Any]) -> str:
    return "\n".join([
        f"Balance: ${_fmt(b.get('balance'))}",
        f"Inventory: {_fmt(b.get('net_size'), '.5f')} {b.get('symbol', '')}",
        f"Notional: ${_fmt(b.get('notional'))}",
    ])


def render_volume(s: Dict[str, Any]) -> str:
    return "\n".join([
        "Trading volume (this session)",
        f"Total: ${_fmt(s.get('session_volume_usd'))}",
        f"Fills: {s.get('fill_count', 0)}",
    ])


def render_health(h: Dict[str, Any]) -> str:
    age = h.get("tick_age_ms")
    return "\n".join([
        f"Health: {'OK' if h.get('healthy') else 'WARNING'}",
        f"Running: {'yes' if h.get('running') else 'no'}",
        f"Last tick: {f'{age / 1000:.1f}s ago' if age is not None else 'N/A'}",
        f"Live orders: {h.get('live_orders', 0)}",
        f"Circuit: {'OPEN' if h.get('circuit_open') else 'closed'}",
    ])
