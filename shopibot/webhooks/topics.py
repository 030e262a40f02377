"""Webhook topic classification.

The topic sets are closed: anything outside MANDATORY_TOPICS goes down
the ordinary webhook path.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

DATA_REQUEST = "customers/data_request"
CUSTOMERS_REDACT = "customers/redact"
SHOP_REDACT = "shop/redact"
APP_UNINSTALLED = "app/uninstalled"

COMPLIANCE_TOPICS: frozenset[str] = frozenset({DATA_REQUEST, CUSTOMERS_REDACT, SHOP_REDACT})
MANDATORY_TOPICS: frozenset[str] = COMPLIANCE_TOPICS | {APP_UNINSTALLED}

# Privacy-law compliance requests must be completed within 30 days
COMPLIANCE_DEADLINE_DAYS = 30


class TopicKind(str, Enum):
    COMPLIANCE = "compliance"
    ORDINARY = "ordinary"


class ComplianceKind(str, Enum):
    DATA_ACCESS_REQUEST = "data_access_request"
    DATA_ERASURE_REQUEST = "data_erasure_request"
    ACCOUNT_ERASURE_REQUEST = "account_erasure_request"


_COMPLIANCE_KINDS = {
    DATA_REQUEST: ComplianceKind.DATA_ACCESS_REQUEST,
    CUSTOMERS_REDACT: ComplianceKind.DATA_ERASURE_REQUEST,
    SHOP_REDACT: ComplianceKind.ACCOUNT_ERASURE_REQUEST,
}


def is_compliance_topic(topic: str | None) -> bool:
    return topic in COMPLIANCE_TOPICS


def is_mandatory_topic(topic: str | None) -> bool:
    return topic in MANDATORY_TOPICS


def classify(topic: str | None) -> TopicKind:
    return TopicKind.COMPLIANCE if is_compliance_topic(topic) else TopicKind.ORDINARY


def compliance_kind(topic: str | None) -> ComplianceKind | None:
    if topic is None:
        return None
    return _COMPLIANCE_KINDS.get(topic)


def is_erasure_topic(topic: str | None) -> bool:
    return compliance_kind(topic) in (
        ComplianceKind.DATA_ERASURE_REQUEST,
        ComplianceKind.ACCOUNT_ERASURE_REQUEST,
    )


def compliance_deadline(received_at: datetime | None = None) -> datetime:
    """When a compliance request received at ``received_at`` must be done by."""
    received_at = received_at or datetime.now(timezone.utc)
    return received_at + timedelta(days=COMPLIANCE_DEADLINE_DAYS)
