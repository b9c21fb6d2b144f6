"""
Core application modules: logging, tracing, metrics, caching, error types
and the circuit breaker shared by every service.
"""
