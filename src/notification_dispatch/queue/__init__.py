"""Dispatch queue backends and retry policy."""

from __future__ import annotations

from .memory import InMemoryDispatchQueue
from .redis import RedisDispatchQueue
from .retry import BackoffStrategy, RetryPolicy

__all__ = [
    "BackoffStrategy",
    "InMemoryDispatchQueue",
    "RedisDispatchQueue",
    "RetryPolicy",
]
