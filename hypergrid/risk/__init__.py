"""
Risk package - drawdown circuit breaker.
"""

from hypergrid.risk.circuit_breaker import CircuitBreakerConfig, CircuitBreakerState, DrawdownCircuitBreaker

__all__ = ["CircuitBreakerConfig", "CircuitBreakerState", "DrawdownCircuitBreaker"]
