"""Tests for webhook authentication.

Tests:
- HMAC-SHA256 signature verification (base64, constant-time, fail-closed)
- Freshness window on the webhook id timestamp
- Verification stage ordering (signature -> freshness -> topic -> shop)
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from freezegun import freeze_time
from hypothesis import given, settings
from hypothesis import strategies as st

from shopibot.errors import ErrorKind
from shopibot.webhooks.envelope import WebhookEnvelope
from shopibot.webhooks.verification import (
    FreshnessGuard,
    SignatureVerifier,
    compute_signature,
    is_webhook_fresh,
    parse_webhook_timestamp,
    verify_envelope,
    verify_signature,
)
from webhook_helpers import SECRET, sign


# ── Signature Verification ────────────────────────────────────────────────


class TestSignatureVerification:
    """Shopify HMAC-SHA256 verification (base64-encoded)."""

    def test_valid_signature(self):
        body = b'{"customer": {"id": "42"}}'
        assert verify_signature(body, sign(body), SECRET) is True

    def test_compute_matches_reference(self):
        body = b'{"customer": {"id": "42"}}'
        assert compute_signature(body, SECRET) == sign(body)

    def test_invalid_signature(self):
        assert verify_signature(b'{"id": 1}', "deadbeef", SECRET) is False

    def test_tampered_body(self):
        body = b'{"customer": {"id": "42"}}'
        sig = sign(body)
        assert verify_signature(b'{"customer": {"id": "43"}}', sig, SECRET) is False

    def test_reserialized_body_rejected(self):
        """Semantically equal JSON with different bytes does not verify."""
        body = b'{"customer":{"id":"42"}}'
        sig = sign(body)
        assert verify_signature(b'{"customer": {"id": "42"}}', sig, SECRET) is False

    def test_wrong_secret(self):
        body = b"payload"
        assert verify_signature(body, sign(body, "other-secret"), SECRET) is False

    def test_missing_signature(self):
        assert verify_signature(b"body", None, SECRET) is False
        assert verify_signature(b"body", "", SECRET) is False

    def test_missing_secret_rejects(self):
        """No secret configured -> always reject (fail-closed)."""
        body = b"body"
        assert verify_signature(body, sign(body, ""), "") is False

    def test_non_ascii_header_does_not_raise(self):
        assert verify_signature(b"body", "sïgnature", SECRET) is False

    def test_check_reports_reason(self):
        verifier = SignatureVerifier(SECRET)
        assert verifier.check(b"body", None) is ErrorKind.SIGNATURE_MISSING
        assert verifier.check(b"body", "nope") is ErrorKind.SIGNATURE_MISMATCH
        assert SignatureVerifier("").check(b"body", "nope") is ErrorKind.SECRET_MISSING
        assert verifier.check(b"body", sign(b"body")) is None

    def test_uses_constant_time_compare(self):
        body = b"body"
        with patch(
            "shopibot.webhooks.verification.hmac.compare_digest", return_value=True
        ) as mock_compare:
            assert verify_signature(body, "anything", SECRET) is True
        mock_compare.assert_called_once()

    def test_secret_not_logged(self, caplog):
        with caplog.at_level("DEBUG"):
            verify_signature(b"body", "deadbeef", SECRET)
        assert SECRET not in caplog.text
        assert compute_signature(b"body", SECRET) not in caplog.text

    def test_repr_hides_secret(self):
        assert SECRET not in repr(SignatureVerifier(SECRET))


class TestSignatureProperties:
    """Round-trip and tamper properties over arbitrary bodies and secrets."""

    @given(body=st.binary(max_size=512), secret=st.text(min_size=1, max_size=64))
    @settings(max_examples=100, deadline=None)
    def test_own_signature_verifies(self, body, secret):
        assert verify_signature(body, compute_signature(body, secret), secret) is True

    @given(
        body=st.binary(max_size=256),
        other=st.binary(max_size=256),
        secret=st.text(min_size=1, max_size=32),
    )
    @settings(max_examples=100, deadline=None)
    def test_other_body_does_not_verify(self, body, other, secret):
        if body == other:
            return
        assert verify_signature(other, compute_signature(body, secret), secret) is False


# ── Freshness ─────────────────────────────────────────────────────────────


class TestFreshness:
    """Webhook id treated as a Unix timestamp, 300s window by default."""

    NOW = 1_767_225_600  # 2026-01-01T00:00:00Z

    @freeze_time("2026-01-01 00:00:00")
    def test_current_id_is_fresh(self):
        assert is_webhook_fresh(str(self.NOW)) is True

    @freeze_time("2026-01-01 00:00:00")
    def test_exactly_at_window_is_fresh(self):
        assert is_webhook_fresh(str(self.NOW - 300)) is True

    @freeze_time("2026-01-01 00:00:00")
    def test_older_than_window_is_stale(self):
        assert is_webhook_fresh(str(self.NOW - 301)) is False
        assert is_webhook_fresh(str(self.NOW - 400)) is False

    @freeze_time("2026-01-01 00:00:00")
    def test_custom_window(self):
        assert is_webhook_fresh(str(self.NOW - 400), max_age_seconds=600) is True
        guard = FreshnessGuard(max_age_seconds=60)
        assert guard.is_fresh(str(self.NOW - 61)) is False
        assert guard.is_fresh(str(self.NOW - 61), max_age_seconds=120) is True

    @pytest.mark.parametrize(
        "webhook_id",
        [None, "", "   ", "abc", "b54557e4-bdd9-4b37-8a5f-bf7d70bcd043", "12.5", "-5", "1_000", "１２３"],
    )
    def test_unparsable_is_stale(self, webhook_id):
        assert is_webhook_fresh(webhook_id) is False

    def test_injected_clock(self):
        guard = FreshnessGuard(max_age_seconds=300, clock=lambda: 1000.0)
        assert guard.is_fresh("700") is True
        assert guard.is_fresh("699") is False

    def test_window_check_only(self):
        """Two distinct ids inside the window both pass (no dedup here)."""
        guard = FreshnessGuard(clock=lambda: 1000.0)
        assert guard.is_fresh("990") is True
        assert guard.is_fresh("995") is True
        assert guard.is_fresh("995") is True

    def test_parse_allows_surrounding_whitespace(self):
        assert parse_webhook_timestamp(" 1700000000 ") == 1_700_000_000


# ── Stage ordering ────────────────────────────────────────────────────────


def _envelope(**overrides) -> WebhookEnvelope:
    body = overrides.pop("raw_body", b'{"customer": {"id": "42"}}')
    values = {
        "topic": "customers/redact",
        "shop": "demo.example",
        "webhook_id": "1000",
        "signature": sign(body),
        "raw_body": body,
    }
    values.update(overrides)
    return WebhookEnvelope(**values)


class TestVerifyEnvelope:
    VERIFIER = SignatureVerifier(SECRET)
    GUARD = FreshnessGuard(clock=lambda: 1000.0)

    def test_valid(self):
        outcome = verify_envelope(_envelope(), self.VERIFIER, self.GUARD)
        assert outcome.is_valid is True
        assert outcome.error is None
        assert (outcome.topic, outcome.shop, outcome.webhook_id) == (
            "customers/redact",
            "demo.example",
            "1000",
        )

    def test_signature_checked_before_freshness(self):
        outcome = verify_envelope(
            _envelope(signature="deadbeef", webhook_id="1"), self.VERIFIER, self.GUARD
        )
        assert outcome.error is ErrorKind.SIGNATURE_MISMATCH

    def test_stale(self):
        outcome = verify_envelope(_envelope(webhook_id="600"), self.VERIFIER, self.GUARD)
        assert outcome.is_valid is False
        assert outcome.error is ErrorKind.STALE_NOTIFICATION

    def test_freshness_checked_before_topic(self):
        outcome = verify_envelope(
            _envelope(webhook_id="600", topic=None), self.VERIFIER, self.GUARD
        )
        assert outcome.error is ErrorKind.STALE_NOTIFICATION

    def test_missing_topic(self):
        outcome = verify_envelope(_envelope(topic=None), self.VERIFIER, self.GUARD)
        assert outcome.error is ErrorKind.TOPIC_MISSING

    def test_missing_shop(self):
        outcome = verify_envelope(_envelope(shop=None), self.VERIFIER, self.GUARD)
        assert outcome.error is ErrorKind.SHOP_MISSING

    def test_missing_signature(self):
        outcome = verify_envelope(_envelope(signature=None), self.VERIFIER, self.GUARD)
        assert outcome.error is ErrorKind.SIGNATURE_MISSING


class TestEnvelopeFromHeaders:
    def test_case_insensitive_headers(self):
        envelope = WebhookEnvelope.from_headers(
            {
                "X-Shopify-Topic": "shop/redact",
                "x-shopify-shop-domain": "demo.example",
                "X-SHOPIFY-WEBHOOK-ID": "123",
                "X-Shopify-Hmac-Sha256": "sig",
            },
            b"{}",
        )
        assert envelope.topic == "shop/redact"
        assert envelope.shop == "demo.example"
        assert envelope.webhook_id == "123"
        assert envelope.signature == "sig"
        assert envelope.raw_body == b"{}"

    def test_missing_and_blank_headers_are_none(self):
        envelope = WebhookEnvelope.from_headers({"X-Shopify-Topic": "  "}, b"")
        assert envelope.topic is None
        assert envelope.shop is None
        assert envelope.webhook_id is None
        assert envelope.signature is None

    def test_envelope_is_immutable(self):
        envelope = WebhookEnvelope.from_headers({}, b"")
        with pytest.raises(AttributeError):
            envelope.topic = "x"
