"""Módulo de resiliencia del pipeline.

Contiene:
- CircuitBreaker: protege el sink relacional
- DeadLetterQueue: payloads descartados por el dispatcher
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    CircuitState,
)
from .dead_letter import DeadLetterQueue

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpen",
    "CircuitState",
    "DeadLetterQueue",
]
