"""
Prometheus metrics for the market-making loop.

Organized into: execution, fills, strategy, risk, operational.
Recording helpers swallow their own failures so metrics never break trading.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class RichMetrics:
    """Metrics for hypergrid observability."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, symbol: str = "BTC"):
        reg = registry or CollectorRegistry()
        self.symbol = symbol

        # === Execution Metrics ===
        self.orders_placed = Counter(
            'orders_placed_total',
            'Orders accepted by the venue',
            labelnames=['coin', 'side'],
            registry=reg
        )
        self.orders_repriced = Counter(
            'orders_repriced_total',
            'Cancel-and-replace cycles',
            labelnames=['coin', 'reason'],
            registry=reg
        )
        self.orders_cancelled = Counter(
            'orders_cancelled_total',
            'Orders cancelled',
            labelnames=['coin', 'reason'],
            registry=reg
        )
        self.orders_rejected = Counter(
            'orders_rejected_total',
            'Orders rejected by the venue or failed to place',
            labelnames=['coin'],
            registry=reg
        )
        self.live_orders = Gauge(
            'live_orders',
            'Orders currently tracked as resting',
            labelnames=['coin'],
            registry=reg
        )

        # === Fill Metrics ===
        self.fills_total = Counter(
            'fills_total',
            'Fills applied to the position',
            labelnames=['coin', 'side'],
            registry=reg
        )
        self.traded_volume_usd = Counter(
            'traded_volume_usd_total',
            'Traded notional this session (USD)',
            labelnames=['coin'],
            registry=reg
        )
        self.position = Gauge(
            'position',
            'Current net position (coins)',
            labelnames=['coin'],
            registry=reg
        )
        self.avg_entry_price = Gauge(
            'avg_entry_price',
            'Weighted average entry price',
            labelnames=['coin'],
            registry=reg
        )
        self.hedges_total = Counter(
            'hedges_total',
            'Taker hedge orders sent',
            labelnames=['coin', 'result'],
            registry=reg
        )

        # === Strategy Metrics ===
        self.mid_price = Gauge(
            'mid_price',
            'Last mid price',
            labelnames=['coin'],
            registry=reg
        )
        self.volatility_multiplier = Gauge(
            'volatility_multiplier',
            'ATR-derived spread multiplier',
            labelnames=['coin'],
            registry=reg
        )
        self.inventory_adj = Gauge(
            'inventory_adj',
            'Inventory skew adjustment',
            labelnames=['coin'],
            registry=reg
        )

        # === Risk Metrics ===
        self.equity = Gauge(
            'equity',
            'Account equity (USD)',
            labelnames=['coin'],
            registry=reg
        )
        self.drawdown_pct = Gauge(
            'drawdown_pct',
            'Drawdown from breaker baseline (fraction)',
            labelnames=['coin'],
            registry=reg
        )
        self.circuit_open = Gauge(
            'circuit_open',
            'Drawdown breaker status (1=open, 0=closed)',
            labelnames=['coin'],
            registry=reg
        )
        self.circuit_trips = Counter(
            'circuit_trips_total',
            'Drawdown breaker trips',
            labelnames=['coin'],
            registry=reg
        )

        # === Operational Metrics ===
        self.tick_duration_ms = Histogram(
            'tick_duration_ms',
            'Control loop tick duration (milliseconds)',
            labelnames=['coin'],
            buckets=[10, 50, 100, 250, 500, 1000, 2500, 5000],
            registry=reg
        )
        self.tick_errors = Counter(
            'tick_errors_total',
            'Ticks aborted by an error',
            labelnames=['coin'],
            registry=reg
        )
        self.zombie_sweeps = Counter(
            'zombie_orders_swept_total',
            'Orders removed by the zombie sweeper',
            labelnames=['coin'],
            registry=reg
        )
        self.engine_started = Counter(
            'engine_started_total',
            'Engine starts',
            labelnames=['coin'],
            registry=reg
        )

        self.registry = reg

    def get_registry(self):
        """Return the Prometheus registry for export."""
        return self.registry

    def serve(self, port: int) -> None:
        start_http_server(port, registry=self.registry)

    # ------------------------------------------------------------------ #
    # Recording helpers
    # ------------------------------------------------------------------ #

    def record_placed(self, side: str) -> None:
        try:
            self.orders_placed.labels(coin=self.symbol, side=side).inc()
        except Exception:
            pass  # Metrics must not break execution

    def record_repriced(self, reason: str) -> None:
        try:
            self.orders_repriced.labels(coin=self.symbol, reason=reason).inc()
        except Exception:
            pass

    def record_cancelled(self, reason: str, count: int = 1) -> None:
        try:
            self.orders_cancelled.labels(coin=self.symbol, reason=reason).inc(count)
        except Exception:
            pass

    def record_rejected(self) -> None:
        try:
            self.orders_rejected.labels(coin=self.symbol).inc()
        except Exception:
            pass

    def record_fill(self, side: str, notional: float, net_size: float, avg_entry: float) -> None:
        try:
            self.fills_total.labels(coin=self.symbol, side=side).inc()
            self.traded_volume_usd.labels(coin=self.symbol).inc(notional)
            self.position.labels(coin=self.symbol).set(net_size)
            self.avg_entry_price.labels(coin=self.symbol).set(avg_entry)
        except Exception:
            pass

    def record_hedge(self, result: str) -> None:
        try:
            self.hedges_total.labels(coin=self.symbol, result=result).inc()
        except Exception:
            pass

    def record_tick(self, duration_ms: float, mid: float, vol_mult: float, inventory_adj: float, live: int) -> None:
        try:
            self.tick_duration_ms.labels(coin=self.symbol).observe(duration_ms)
            self.mid_price.labels(coin=self.symbol).set(mid)
            self.volatility_multiplier.labels(coin=self.symbol).set(vol_mult)
            self.inventory_adj.labels(coin=self.symbol).set(inventory_adj)
            self.live_orders.labels(coin=self.symbol).set(live)
        except Exception:
            pass

    def record_tick_error(self) -> None:
        try:
            self.tick_errors.labels(coin=self.symbol).inc()
        except Exception:
            pass

    def record_zombies(self, count: int) -> None:
        try:
            self.zombie_sweeps.labels(coin=self.symbol).inc(count)
        except Exception:
            pass

    def record_equity(self, equity: float, drawdown: float) -> None:
        try:
            self.equity.labels(coin=self.symbol).set(equity)
            self.drawdown_pct.labels(coin=self.symbol).set(drawdown)
        except Exception:
            pass

    def record_circuit(self, is_open: bool, tripped: bool = False) -> None:
        try:
            self.circuit_open.labels(coin=self.symbol).set(1 if is_open else 0)
            if tripped:
                self.circuit_trips.labels(coin=self.symbol).inc()
        except Exception:
            pass

    def record_started(self) -> None:
        try:
            self.engine_started.labels(coin=self.symbol).inc()
        except Exception:
            pass
