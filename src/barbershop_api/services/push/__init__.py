"""Web Push delivery services."""

from .backend import (  # noqa: F401
    DeliveryOutcome,
    DeliveryResult,
    InMemoryPushBackend,
    PushBackend,
    SubscriptionTarget,
    WebPushBackend,
    build_push_backend,
    classify_status,
)
from .dispatcher import DispatchResult, NotificationDispatcher, PushMessage  # noqa: F401
from .keys import MalformedKeyError, VapidKeyPair  # noqa: F401
from .preferences import CATEGORY_PREFERENCE_FIELDS, PreferenceFilter, preference_field_for  # noqa: F401

__all__ = [
    "CATEGORY_PREFERENCE_FIELDS",
    "DeliveryOutcome",
    "DeliveryResult",
    "DispatchResult",
    "InMemoryPushBackend",
    "MalformedKeyError",
    "NotificationDispatcher",
    "PreferenceFilter",
    "PushBackend",
    "PushMessage",
    "SubscriptionTarget",
    "VapidKeyPair",
    "WebPushBackend",
    "build_push_backend",
    "classify_status",
    "preference_field_for",
]
