"""Shared utilities for configuration, logging, and retries"""

from subsync.utils.retry import exponential_backoff_retry, retry_call

__all__ = ["exponential_backoff_retry", "retry_call"]
