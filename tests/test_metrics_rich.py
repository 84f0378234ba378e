"""Unit tests for RichMetrics recording helpers."""

from prometheus_client import CollectorRegistry

from hypergrid.monitoring.metrics_rich import RichMetrics


def sample(metrics: RichMetrics, name: str, **labels) -> float:
    return metrics.get_registry().get_sample_value(name, {"coin": "BTC", **labels})


def test_order_counters():
    metrics = RichMetrics(CollectorRegistry(), symbol="BTC")
    metrics.record_placed("buy")
    metrics.record_placed("buy")
    metrics.record_repriced("price")
    metrics.record_cancelled("shutdown", count=3)
    assert sample(metrics, "orders_placed_total", side="buy") == 2.0
    assert sample(metrics, "orders_repriced_total", reason="price") == 1.0
    assert sample(metrics, "orders_cancelled_total", reason="shutdown") == 3.0


def test_fill_updates_position_and_volume():
    metrics = RichMetrics(symbol="BTC")
    metrics.record_fill("sell", 999.0, -0.01, 99_900.0)
    assert sample(metrics, "fills_total", side="sell") == 1.0
    assert sample(metrics, "traded_volume_usd_total") == 999.0
    assert sample(metrics, "position") == -0.01
    assert sample(metrics, "avg_entry_price") == 99_900.0


def test_circuit_gauge_and_trips():
    metrics = RichMetrics(symbol="BTC")
    metrics.record_circuit(True, tripped=True)
    assert sample(metrics, "circuit_open") == 1.0
    assert sample(metrics, "circuit_trips_total") == 1.0
    metrics.record_circuit(False)
    assert sample(metrics, "circuit_open") == 0.0


def test_tick_gauges():
    metrics = RichMetrics(symbol="BTC")
    metrics.record_tick(12.5, 100_000.0, 1.2, 0.3, 10)
    assert sample(metrics, "mid_price") == 100_000.0
    assert sample(metrics, "live_orders") == 10.0
    assert sample(metrics, "tick_duration_ms_count") == 1.0


def test_separate_instances_do_not_collide():
    RichMetrics(symbol="BTC")
    RichMetrics(symbol="BTC")
