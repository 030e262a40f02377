"""Customer data export for customers/data_request.

Collects everything stored for a customer (profiles, their chat sessions
and messages) plus the shop's recent aggregated analytics, in the shape
handed back to the platform.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from shopibot.compliance.redaction import CustomerIdentity
from shopibot.errors import IdentityMissing
from shopibot.storage.base import DataStore

logger = logging.getLogger(__name__)

# Days of analytics included with an export
_ANALYTICS_LIMIT = 30


def _iso(value: Any) -> Any:
    return value.isoformat() if hasattr(value, "isoformat") else value


class CustomerDataExporter:
    """Read-only view over a DataStore for data access requests."""

    def __init__(self, store: DataStore, analytics_limit: int = _ANALYTICS_LIMIT):
        self._store = store
        self._analytics_limit = analytics_limit

    def export(self, shop: str, identity: CustomerIdentity) -> dict[str, Any]:
        if identity.is_empty:
            raise IdentityMissing()

        data: dict[str, Any] = {
            "shop_domain": shop,
            "customer_id": identity.customer_id,
            "customer_email": identity.email,
            "customer_phone": identity.phone,
            "data_requested_at": datetime.now(timezone.utc).isoformat(),
            "profiles": [],
            "chat_sessions": [],
            "chat_messages": [],
            "analytics": [],
        }

        with self._store.transaction() as tx:
            profiles = tx.find_profiles(shop, identity.customer_id) if identity.customer_id else []
            sessions = tx.sessions_for_profiles([p.id for p in profiles])
            messages = tx.messages_for_sessions([s.id for s in sessions])
            analytics = tx.analytics_for_shop(shop, limit=self._analytics_limit)

        data["profiles"] = [
            {
                "profile_id": p.id,
                "session_id": p.session_id,
                "preferences": p.preferences,
                "browsing_history": p.browsing_history,
                "created_at": _iso(p.created_at),
                "updated_at": _iso(p.updated_at),
            }
            for p in profiles
        ]
        data["chat_sessions"] = [
            {
                "session_id": s.id,
                "profile_id": s.user_profile_id,
                "context": s.context,
                "last_message_at": _iso(s.last_message_at),
                "created_at": _iso(s.created_at),
            }
            for s in sessions
        ]
        data["chat_messages"] = [
            {
                "message_id": m.id,
                "session_id": m.session_id,
                "role": m.role,
                "content": m.content,
                "intent": m.intent,
                "sentiment": m.sentiment,
                "confidence": m.confidence,
                "metadata": m.metadata,
                "timestamp": _iso(m.timestamp),
            }
            for m in messages
        ]
        data["analytics"] = [
            {
                "date": _iso(a.date),
                "total_sessions": a.total_sessions,
                "total_messages": a.total_messages,
                "avg_response_time": a.avg_response_time,
                "avg_confidence": a.avg_confidence,
            }
            for a in analytics
        ]

        logger.info(
            "Customer data export for %s customer_id=%s: %d profiles, %d sessions, %d messages",
            shop,
            identity.customer_id,
            len(profiles),
            len(sessions),
            len(messages),
        )
        return data
