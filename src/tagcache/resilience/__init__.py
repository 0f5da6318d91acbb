"""
TagCache - Resilience Module

Exponential backoff retry used by the HTTP transport.
"""

from .retry import RetryConfig, RetryOutcome, exponential_backoff, with_retry_sync

__all__ = [
    "RetryConfig",
    "RetryOutcome",
    "exponential_backoff",
    "with_retry_sync",
]
