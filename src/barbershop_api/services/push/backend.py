"""Web Push delivery backends."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Literal, Optional, Protocol
from urllib.parse import urlsplit

import httpx
from loguru import logger
from py_vapid import Vapid02
from pywebpush import WebPusher, WebPushException

from barbershop_api.core.settings import Settings, settings as default_settings

from .keys import VapidKeyPair

Urgency = Literal["very-low", "low", "normal", "high"]

GONE_STATUS_CODES = frozenset({404, 410})
JWT_LIFETIME_SECONDS = 12 * 60 * 60
CONTENT_ENCODING = "aes128gcm"


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    GONE = "gone"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(frozen=True, slots=True)
class SubscriptionTarget:
    """What a backend needs to reach one browser installation."""

    endpoint: str
    p256dh: str
    auth: str

    def validation_error(self) -> str | None:
        for name in ("endpoint", "p256dh", "auth"):
            if not (getattr(self, name) or "").strip():
                return f"subscription is missing {name}"
        return None

    def as_subscription_info(self) -> dict[str, object]:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    outcome: DeliveryOutcome
    status_code: int | None = None
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.outcome is DeliveryOutcome.DELIVERED


class PushBackend(Protocol):
    """Performs exactly one push attempt and classifies it."""

    async def deliver(
        self,
        subscription: SubscriptionTarget,
        payload: bytes,
        *,
        urgency: Urgency = "normal",
        ttl_seconds: int = 86_400,
    ) -> DeliveryResult:
        ...


def classify_status(status_code: int) -> DeliveryOutcome:
    if 200 <= status_code < 300:
        return DeliveryOutcome.DELIVERED
    if status_code in GONE_STATUS_CODES:
        return DeliveryOutcome.GONE
    return DeliveryOutcome.TRANSIENT_FAILURE


class WebPushBackend:
    """VAPID-signed, aes128gcm-encrypted Web Push over httpx."""

    def __init__(
        self,
        keys: VapidKeyPair,
        *,
        subject: str,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._keys = keys
        self._vapid = Vapid02(private_key=keys.private_key())
        self._subject = subject
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None

    @property
    def public_key(self) -> str:
        return self._keys.public_key

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _authorization_headers(self, endpoint: str) -> dict[str, str]:
        parts = urlsplit(endpoint)
        claims = {
            "aud": f"{parts.scheme}://{parts.netloc}",
            "sub": self._subject,
            "exp": int(time.time()) + JWT_LIFETIME_SECONDS,
        }
        return self._vapid.sign(claims)

    async def deliver(
        self,
        subscription: SubscriptionTarget,
        payload: bytes,
        *,
        urgency: Urgency = "normal",
        ttl_seconds: int = 86_400,
    ) -> DeliveryResult:
        problem = subscription.validation_error()
        if problem:
            return DeliveryResult(DeliveryOutcome.TRANSIENT_FAILURE, error=problem)

        try:
            encoded = WebPusher(subscription.as_subscription_info()).encode(
                payload, content_encoding=CONTENT_ENCODING
            )
        except (WebPushException, ValueError) as exc:
            return DeliveryResult(DeliveryOutcome.TRANSIENT_FAILURE, error=f"encryption failed: {exc}")

        headers = {
            **self._authorization_headers(subscription.endpoint),
            "TTL": str(ttl_seconds),
            "Urgency": urgency,
            "Content-Encoding": CONTENT_ENCODING,
            "Content-Type": "application/octet-stream",
        }

        try:
            response = await self._client.post(subscription.endpoint, content=encoded["body"], headers=headers)
        except httpx.TimeoutException as exc:
            return DeliveryResult(DeliveryOutcome.TRANSIENT_FAILURE, error=f"timeout: {exc}")
        except httpx.HTTPError as exc:
            return DeliveryResult(DeliveryOutcome.TRANSIENT_FAILURE, error=f"request_error: {exc}")

        outcome = classify_status(response.status_code)
        error = None
        if outcome is DeliveryOutcome.TRANSIENT_FAILURE:
            error = f"{response.status_code}: {response.text[:256]}"
            logger.warning(
                "Push provider rejected delivery",
                status_code=response.status_code,
                endpoint=subscription.endpoint[:50],
            )
        return DeliveryResult(outcome, status_code=response.status_code, error=error)


@dataclass
class InMemoryPushBackend:
    """In-memory push dispatcher for validation and dry runs."""

    sent_messages: List[dict[str, object]] = field(default_factory=list)
    outcomes: dict[str, DeliveryOutcome] = field(default_factory=dict)
    public_key: str = ""

    async def deliver(
        self,
        subscription: SubscriptionTarget,
        payload: bytes,
        *,
        urgency: Urgency = "normal",
        ttl_seconds: int = 86_400,
    ) -> DeliveryResult:
        outcome = self.outcomes.get(subscription.endpoint, DeliveryOutcome.DELIVERED)
        self.sent_messages.append(
            {
                "endpoint": subscription.endpoint,
                "payload": payload,
                "urgency": urgency,
                "ttl_seconds": ttl_seconds,
                "outcome": outcome,
            }
        )
        if outcome is DeliveryOutcome.TRANSIENT_FAILURE:
            return DeliveryResult(outcome, status_code=500, error="500: scripted failure")
        if outcome is DeliveryOutcome.GONE:
            return DeliveryResult(outcome, status_code=410)
        return DeliveryResult(outcome, status_code=201)

    async def aclose(self) -> None:
        return None


def build_push_backend(config: Optional[Settings] = None) -> WebPushBackend | InMemoryPushBackend | None:
    """Build the configured backend; ``None`` when VAPID keys are not configured.

    Raises ``MalformedKeyError`` when keys are present but unusable.
    """

    config = config or default_settings
    if config.push_dry_run:
        return InMemoryPushBackend(public_key=config.vapid_public_key)
    if not config.vapid_public_key or not config.vapid_private_key:
        return None
    keys = VapidKeyPair.from_raw(config.vapid_public_key, config.vapid_private_key)
    return WebPushBackend(
        keys,
        subject=config.vapid_subject,
        timeout_seconds=config.push_request_timeout_seconds,
    )
