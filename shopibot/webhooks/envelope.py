"""Per-request webhook values: the envelope and the verification outcome."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from shopibot.errors import ErrorKind

HEADER_SIGNATURE = "x-shopify-hmac-sha256"
HEADER_TOPIC = "x-shopify-topic"
HEADER_SHOP = "x-shopify-shop-domain"
HEADER_WEBHOOK_ID = "x-shopify-webhook-id"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class WebhookEnvelope:
    """Raw webhook as received. Built once per request, never persisted."""

    topic: str | None
    shop: str | None
    webhook_id: str | None
    signature: str | None
    raw_body: bytes

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], raw_body: bytes) -> WebhookEnvelope:
        """Extract webhook metadata from request headers (any key case).

        Empty header values are treated as absent.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        return cls(
            topic=_clean(lowered.get(HEADER_TOPIC)),
            shop=_clean(lowered.get(HEADER_SHOP)),
            webhook_id=_clean(lowered.get(HEADER_WEBHOOK_ID)),
            signature=_clean(lowered.get(HEADER_SIGNATURE)),
            raw_body=raw_body,
        )


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of the verification stage chain, consumed once by the dispatcher."""

    is_valid: bool
    topic: str | None
    shop: str | None
    webhook_id: str | None
    error: ErrorKind | None = None

    @classmethod
    def accepted(cls, envelope: WebhookEnvelope) -> VerificationOutcome:
        return cls(True, envelope.topic, envelope.shop, envelope.webhook_id)

    @classmethod
    def rejected(cls, envelope: WebhookEnvelope, error: ErrorKind) -> VerificationOutcome:
        return cls(False, envelope.topic, envelope.shop, envelope.webhook_id, error)
