"""Side-effect delivery: cache invalidation and webhook notification."""

from subsync.dispatch.cache import CacheBackend, InMemoryCache
from subsync.dispatch.dispatcher import NotificationDispatcher
from subsync.dispatch.webhook import WebhookClient, build_change_envelope, sign_payload

__all__ = [
    "CacheBackend",
    "InMemoryCache",
    "NotificationDispatcher",
    "WebhookClient",
    "build_change_envelope",
    "sign_payload",
]
