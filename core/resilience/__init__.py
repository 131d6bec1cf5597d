"""
Geeta Stores Core Resilience: Fault Tolerance Primitives.

Provides reliability patterns for database-backed reads:
- RetryPolicy: Bounded exponential backoff for TransientError
"""
from core.resilience.retry import RetryPolicy

__all__ = [
    "RetryPolicy",
]
