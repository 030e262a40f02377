"""Error taxonomy for the webhook pipeline.

Authentication-class errors are terminal for a request and surface as a
rejected response. Redaction errors are caught at the dispatcher and
reported with a success status so the platform does not redeliver.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Why a webhook was rejected or failed."""

    SIGNATURE_MISSING = "signature_missing"
    SECRET_MISSING = "secret_missing"
    SIGNATURE_MISMATCH = "signature_mismatch"
    STALE_NOTIFICATION = "stale_notification"
    TOPIC_MISSING = "topic_missing"
    SHOP_MISSING = "shop_missing"
    TOPIC_MISMATCH = "topic_mismatch"
    SHOP_MISMATCH = "shop_mismatch"
    IDENTITY_MISSING = "identity_missing"
    REDACTION_FAILED = "redaction_failed"
    INVALID_PAYLOAD = "invalid_payload"
    EXPORT_FAILED = "export_failed"

    @property
    def is_authentication(self) -> bool:
        return self in _AUTHENTICATION_ERRORS

    @property
    def is_validation(self) -> bool:
        return self in _VALIDATION_ERRORS


_AUTHENTICATION_ERRORS = frozenset(
    {
        ErrorKind.SIGNATURE_MISSING,
        ErrorKind.SECRET_MISSING,
        ErrorKind.SIGNATURE_MISMATCH,
        ErrorKind.STALE_NOTIFICATION,
    }
)

_VALIDATION_ERRORS = frozenset(
    {
        ErrorKind.TOPIC_MISSING,
        ErrorKind.SHOP_MISSING,
        ErrorKind.TOPIC_MISMATCH,
        ErrorKind.SHOP_MISMATCH,
    }
)

# Human-readable messages returned to the caller and written to the audit log
ERROR_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.SIGNATURE_MISSING: "Missing webhook signature",
    ErrorKind.SECRET_MISSING: "Webhook secret not configured",
    ErrorKind.SIGNATURE_MISMATCH: "Invalid webhook signature",
    ErrorKind.STALE_NOTIFICATION: "Webhook is too old",
    ErrorKind.TOPIC_MISSING: "Missing webhook topic",
    ErrorKind.SHOP_MISSING: "Missing shop domain",
    ErrorKind.TOPIC_MISMATCH: "Webhook topic does not match endpoint",
    ErrorKind.SHOP_MISMATCH: "Shop domain does not match payload",
    ErrorKind.IDENTITY_MISSING: "No customer identifier provided",
    ErrorKind.REDACTION_FAILED: "Error deleting customer data",
    ErrorKind.INVALID_PAYLOAD: "Webhook payload could not be parsed",
    ErrorKind.EXPORT_FAILED: "Error collecting customer data",
}


class WebhookError(Exception):
    """Base class for errors raised inside the webhook pipeline."""

    kind: ErrorKind

    def __init__(self, message: str | None = None):
        super().__init__(message or ERROR_MESSAGES[self.kind])


class IdentityMissing(WebhookError):
    """Raised when a redaction request names no customer at all."""

    kind = ErrorKind.IDENTITY_MISSING


class RedactionFailed(WebhookError):
    """Raised when the deletion transaction failed and was rolled back.

    The underlying exception is kept on ``cause`` (and chained via
    ``raise ... from``) for operator follow-up.
    """

    kind = ErrorKind.REDACTION_FAILED

    def __init__(self, cause: BaseException, message: str | None = None):
        self.cause = cause
        super().__init__(message or f"{ERROR_MESSAGES[self.kind]}: {cause}")
