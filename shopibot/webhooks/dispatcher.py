"""Webhook dispatcher: drives one webhook from receipt to response.

States: RECEIVED -> AUTHENTICATED -> CLASSIFIED -> (ROUTED | REJECTED) -> RESPONDED

Outcome policy:
- Signature or freshness failure -> 401. Forged senders never get a 200.
- Missing topic or shop -> 400. So is a topic header that disagrees with
  the endpoint, or a shop header that disagrees with the signed body.
- Once authenticated and classified, business failures (redaction rolled
  back, no customer identifier, unparsable payload) -> 200 with
  success=false and the error in the body. The platform redelivers on
  non-2xx; a deletion failing for a structural reason would just fail
  again, so these go to the audit log for manual follow-up instead.
- Nothing is retried inside the dispatcher.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import ValidationError

from shopibot.compliance.export import CustomerDataExporter
from shopibot.compliance.redaction import CustomerIdentity, RedactionOrchestrator
from shopibot.errors import ERROR_MESSAGES, ErrorKind, WebhookError
from shopibot.webhooks import topics
from shopibot.webhooks.audit import AuditLog, AuditRecord
from shopibot.webhooks.envelope import VerificationOutcome, WebhookEnvelope
from shopibot.webhooks.idempotency import SeenWebhookStore
from shopibot.webhooks.payloads import CompliancePayload
from shopibot.webhooks.verification import FreshnessGuard, SignatureVerifier, verify_envelope

logger = logging.getLogger(__name__)


class DispatchState(str, Enum):
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    CLASSIFIED = "classified"
    ROUTED = "routed"
    REJECTED = "rejected"
    RESPONDED = "responded"


@dataclass
class DispatchResult:
    """HTTP-level outcome of one webhook."""

    status_code: int
    body: dict[str, Any]
    error: ErrorKind | None = None
    trail: list[DispatchState] = field(default_factory=list)

    @property
    def state(self) -> DispatchState:
        return self.trail[-1] if self.trail else DispatchState.RECEIVED


class _RouteFailure(Exception):
    """Business failure after classification; reported with a 200."""

    def __init__(self, kind: ErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _request_details(payload: CompliancePayload | None) -> dict[str, Any]:
    """Request references kept on the audit record. This app stores no orders."""
    if payload is None:
        return {}
    details: dict[str, Any] = {
        "shop_id": payload.shop_id,
        "data_request_id": payload.data_request.id if payload.data_request else None,
        "orders_requested": payload.orders_requested,
        "orders_to_redact": payload.orders_to_redact,
    }
    return {key: value for key, value in details.items() if value}


class WebhookDispatcher:
    """Verifies, classifies and routes webhooks. Stateless per request."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        freshness: FreshnessGuard,
        orchestrator: RedactionOrchestrator,
        exporter: CustomerDataExporter,
        audit: AuditLog | None = None,
        seen_store: SeenWebhookStore | None = None,
    ):
        self._verifier = verifier
        self._freshness = freshness
        self._orchestrator = orchestrator
        self._exporter = exporter
        self.audit = audit or AuditLog()
        self._seen_store = seen_store

    # ── Entry point ───────────────────────────────────────────────────────

    def dispatch(
        self, envelope: WebhookEnvelope, expected_topic: str | None = None
    ) -> DispatchResult:
        """Run one webhook from receipt to response.

        Topic and shop headers are not covered by the signature. A dedicated
        endpoint passes ``expected_topic`` and a delivery whose header names
        another topic is rejected rather than re-routed. For the mandatory
        topics, a shop named in the signed body must match the header.
        """
        start = time.monotonic()
        trail = [DispatchState.RECEIVED]

        outcome = verify_envelope(envelope, self._verifier, self._freshness)
        if outcome.is_valid and expected_topic is not None and outcome.topic != expected_topic:
            outcome = replace(outcome, is_valid=False, error=ErrorKind.TOPIC_MISMATCH)
        if not outcome.is_valid:
            return self._reject(outcome, trail)
        trail += [DispatchState.AUTHENTICATED, DispatchState.CLASSIFIED]

        topic, shop = outcome.topic, outcome.shop
        deadline = (
            topics.compliance_deadline() if topics.is_compliance_topic(topic) else None
        )

        try:
            payload = self._parse(topic, envelope.raw_body)
        except _RouteFailure as failure:
            return self._fail(outcome, failure, trail, deadline)

        if payload is not None and payload.names_other_shop(shop):
            logger.warning(
                "Webhook %s for %s names shop %s in its body",
                topic,
                shop,
                payload.declared_shop,
            )
            outcome = replace(outcome, is_valid=False, error=ErrorKind.SHOP_MISMATCH)
            return self._reject(outcome, trail)

        if self._seen_store is not None and self._seen_store.is_duplicate(
            shop, outcome.webhook_id
        ):
            self._audit(outcome, "duplicate", deadline=deadline)
            trail.append(DispatchState.RESPONDED)
            return DispatchResult(
                200,
                {"success": True, "duplicate": True, "message": "Duplicate webhook ignored"},
                trail=trail,
            )

        try:
            body = self._route(topic, shop, payload)
        except _RouteFailure as failure:
            return self._fail(outcome, failure, trail, deadline)
        except Exception:
            # Surfaces as a 5xx; the redelivery must not look like a replay
            if self._seen_store is not None:
                self._seen_store.forget(shop, outcome.webhook_id)
            raise

        self._audit(outcome, "accepted", deadline=deadline, details=_request_details(payload))
        trail += [DispatchState.ROUTED, DispatchState.RESPONDED]
        logger.debug(
            "Webhook processed in %.1fms: %s/%s",
            (time.monotonic() - start) * 1000,
            shop,
            topic,
        )
        return DispatchResult(200, body, trail=trail)

    # ── Rejection and failure ─────────────────────────────────────────────

    def _reject(self, outcome: VerificationOutcome, trail: list[DispatchState]) -> DispatchResult:
        error = outcome.error or ErrorKind.SIGNATURE_MISMATCH
        if error.is_authentication:
            status, label = 401, "Unauthorized"
            logger.warning(
                "Webhook verification failed: topic=%s shop=%s error=%s webhook_id=%s",
                outcome.topic,
                outcome.shop,
                error.value,
                outcome.webhook_id,
            )
        else:
            if DispatchState.AUTHENTICATED not in trail:
                trail.append(DispatchState.AUTHENTICATED)
            status, label = 400, "Bad Request"
            logger.warning(
                "Webhook request invalid: topic=%s shop=%s error=%s webhook_id=%s",
                outcome.topic,
                outcome.shop,
                error.value,
                outcome.webhook_id,
            )

        self._audit(outcome, "rejected", error=error)
        trail += [DispatchState.REJECTED, DispatchState.RESPONDED]
        return DispatchResult(
            status,
            {"success": False, "error": label, "message": ERROR_MESSAGES[error]},
            error=error,
            trail=trail,
        )

    def _fail(
        self,
        outcome: VerificationOutcome,
        failure: _RouteFailure,
        trail: list[DispatchState],
        deadline: datetime | None,
    ) -> DispatchResult:
        logger.error(
            "Webhook %s for %s failed after authentication: %s",
            outcome.topic,
            outcome.shop,
            failure.message,
        )
        self._audit(
            outcome,
            "failed",
            error=failure.kind,
            deadline=deadline,
            details={"message": failure.message},
        )
        trail += [DispatchState.ROUTED, DispatchState.RESPONDED]
        return DispatchResult(
            200,
            {
                "success": False,
                "error": ERROR_MESSAGES[failure.kind],
                "message": failure.message,
            },
            error=failure.kind,
            trail=trail,
        )

    # ── Routing ───────────────────────────────────────────────────────────

    @staticmethod
    def _parse(topic: str, raw_body: bytes) -> CompliancePayload | None:
        if not topics.is_mandatory_topic(topic):
            return None
        # Parsed only now: the signature was checked against these exact bytes
        try:
            return CompliancePayload.model_validate_json(raw_body)
        except ValidationError as exc:
            kind = ErrorKind.INVALID_PAYLOAD
            raise _RouteFailure(kind, ERROR_MESSAGES[kind]) from exc

    def _route(self, topic: str, shop: str, payload: CompliancePayload | None) -> dict[str, Any]:
        if topic == topics.CUSTOMERS_REDACT:
            return self._redact_customer(shop, payload)
        if topic == topics.DATA_REQUEST:
            return self._export_customer(shop, payload)
        if topic in (topics.SHOP_REDACT, topics.APP_UNINSTALLED):
            return self._purge_shop(shop, payload)

        logger.info("Non-compliance webhook %s for %s, acknowledged", topic, shop)
        return {"success": True, "message": "Webhook received"}

    @staticmethod
    def _identity(payload: CompliancePayload) -> CustomerIdentity:
        customer = payload.customer
        if customer is None:
            return CustomerIdentity()
        return CustomerIdentity(customer_id=customer.id, email=customer.email, phone=customer.phone)

    def _redact_customer(self, shop: str, payload: CompliancePayload) -> dict[str, Any]:
        identity = self._identity(payload)
        try:
            result = self._orchestrator.redact(shop, identity)
        except WebhookError as exc:
            raise _RouteFailure(exc.kind, str(exc)) from exc

        if result.deleted_profile_count:
            message = "Customer data deleted successfully"
        else:
            message = "No customer data found to delete"
        return {
            "success": True,
            "message": message,
            "customer_id": identity.customer_id,
            **result.to_dict(),
            "deleted_at": _now_iso(),
        }

    def _export_customer(self, shop: str, payload: CompliancePayload) -> dict[str, Any]:
        identity = self._identity(payload)
        try:
            data = self._exporter.export(shop, identity)
        except WebhookError as exc:
            raise _RouteFailure(exc.kind, str(exc)) from exc
        except Exception as exc:
            logger.exception("Customer data export failed for %s", shop)
            raise _RouteFailure(ErrorKind.EXPORT_FAILED, str(exc)) from exc
        return {
            "success": True,
            "message": "Customer data collected",
            "data_request_id": payload.data_request.id if payload.data_request else None,
            "customer_data": data,
        }

    def _purge_shop(self, shop: str, payload: CompliancePayload) -> dict[str, Any]:
        try:
            result = self._orchestrator.purge_shop(shop)
        except WebhookError as exc:
            raise _RouteFailure(exc.kind, str(exc)) from exc
        return {
            "success": True,
            "message": "Shop data deleted successfully",
            "shop_domain": shop,
            "shop_id": payload.shop_id,
            "deletion_summary": result.to_dict(),
            "deleted_at": _now_iso(),
        }

    # ── Audit ─────────────────────────────────────────────────────────────

    def _audit(
        self,
        outcome: VerificationOutcome,
        status: str,
        *,
        error: ErrorKind | None = None,
        deadline: datetime | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.audit.record(
            AuditRecord(
                topic=outcome.topic,
                shop=outcome.shop,
                status=status,
                error=error.value if error else None,
                webhook_id=outcome.webhook_id,
                deadline=deadline,
                details=details or {},
            )
        )
