"""
Core application modules.
Contains logging, metrics, configuration and the circuit breaker.
"""
