"""Webhook authentication: constant-time HMAC and freshness window.

Security contract:
- HMAC-SHA256 over the raw body bytes, before any JSON parsing
- Comparison uses hmac.compare_digest() (constant-time, no timing attacks)
- Missing signature or missing secret -> verification fails (fail-closed)
- Verifiers never raise to the caller; they return False / an ErrorKind
- The secret and the computed digest are never logged
- Freshness is a window check on the webhook id timestamp (300s default),
  not a deduplication store (see idempotency.py for that)
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import time
from collections.abc import Callable

from shopibot.config import DEFAULT_MAX_AGE_SECONDS
from shopibot.errors import ErrorKind
from shopibot.webhooks.envelope import VerificationOutcome, WebhookEnvelope

logger = logging.getLogger(__name__)

_DECIMAL_RE = re.compile(r"\d+", re.ASCII)


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of the raw body, as sent in X-Shopify-Hmac-SHA256."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class SignatureVerifier:
    """Verifies Shopify webhook signatures with a secret injected at construction."""

    def __init__(self, secret: str):
        self._secret = secret

    def __repr__(self) -> str:
        return f"SignatureVerifier(secret={'***' if self._secret else ''!r})"

    def check(self, raw_body: bytes, signature_header: str | None) -> ErrorKind | None:
        """Return None if the signature is valid, else the reason it is not."""
        if not signature_header:
            logger.warning("Webhook verification failed: no signature provided")
            return ErrorKind.SIGNATURE_MISSING
        if not self._secret:
            logger.warning("Webhook verification failed: no secret configured")
            return ErrorKind.SECRET_MISSING

        expected = compute_signature(raw_body, self._secret).encode("ascii")
        received = signature_header.encode("utf-8")
        if hmac.compare_digest(expected, received):
            return None

        logger.warning(
            "Webhook verification failed: signature mismatch "
            "(received %d chars starting %r, expected %d chars)",
            len(signature_header),
            signature_header[:6],
            len(expected),
        )
        return ErrorKind.SIGNATURE_MISMATCH

    def verify(self, raw_body: bytes, signature_header: str | None) -> bool:
        """True if the signature header matches the raw body."""
        return self.check(raw_body, signature_header) is None


def verify_signature(raw_body: bytes, signature_header: str | None, secret: str) -> bool:
    """Verify a Shopify webhook signature.

    Args:
        raw_body: Request body bytes exactly as received
        signature_header: Value of X-Shopify-Hmac-SHA256 (base64)
        secret: App webhook secret

    Returns:
        True if the signature is valid
    """
    return SignatureVerifier(secret).verify(raw_body, signature_header)


def parse_webhook_timestamp(webhook_id: str | None) -> int | None:
    """Parse a webhook id as a decimal Unix timestamp. None if it isn't one."""
    if webhook_id is None:
        return None
    candidate = webhook_id.strip()
    if not _DECIMAL_RE.fullmatch(candidate):
        return None
    return int(candidate)


class FreshnessGuard:
    """Rejects webhooks whose id timestamp is older than the allowed window."""

    def __init__(
        self,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] | None = None,
    ):
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.time()

    def is_fresh(self, webhook_id: str | None, max_age_seconds: int | None = None) -> bool:
        window = self.max_age_seconds if max_age_seconds is None else max_age_seconds
        timestamp = parse_webhook_timestamp(webhook_id)
        if timestamp is None:
            logger.warning("Unparsable webhook id %r, treating as stale", webhook_id)
            return False

        age = self._now() - timestamp
        if age > window:
            logger.warning("Old webhook detected: %.0fs old (max: %ds)", age, window)
            return False
        return True


def is_webhook_fresh(
    webhook_id: str | None, max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS
) -> bool:
    """True iff now - int(webhook_id) <= max_age_seconds."""
    return FreshnessGuard(max_age_seconds).is_fresh(webhook_id)


def verify_envelope(
    envelope: WebhookEnvelope,
    verifier: SignatureVerifier,
    freshness: FreshnessGuard,
) -> VerificationOutcome:
    """Run the verification stages in order, stopping at the first failure.

    Signature, then freshness, then presence of topic and shop. Topic and
    shop come from headers and are only trusted once the body is authentic.
    """
    error = verifier.check(envelope.raw_body, envelope.signature)
    if error is not None:
        return VerificationOutcome.rejected(envelope, error)

    if not freshness.is_fresh(envelope.webhook_id):
        return VerificationOutcome.rejected(envelope, ErrorKind.STALE_NOTIFICATION)

    if not envelope.topic:
        return VerificationOutcome.rejected(envelope, ErrorKind.TOPIC_MISSING)

    if not envelope.shop:
        return VerificationOutcome.rejected(envelope, ErrorKind.SHOP_MISSING)

    return VerificationOutcome.accepted(envelope)
