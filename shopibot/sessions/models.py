"""Customer conversation data models.

Ownership edges: UserProfile owns ChatSession owns ChatMessage.
These are the personal-data units that redaction removes.

AggregatedAnalytics is de-identified (per-shop, per-day counters) and is
not owned by any profile; it survives customer redaction.

Security contract:
- Profiles are tenant-scoped: every lookup filters by shop domain
- customer_id is the platform-assigned id, the only redaction match key
- Analytics rows never carry a customer id, session id, or message text
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class UserProfile:
    """A storefront customer's profile, scoped to one shop."""

    shop: str
    session_id: str
    customer_id: str | None = None
    id: str = field(default_factory=new_id)
    preferences: dict[str, Any] = field(default_factory=dict)
    browsing_history: list[Any] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class ChatSession:
    """One conversational thread, owned by exactly one profile."""

    shop: str
    user_profile_id: str
    id: str = field(default_factory=new_id)
    context: dict[str, Any] = field(default_factory=dict)
    last_message_at: datetime = field(default_factory=_now)
    created_at: datetime = field(default_factory=_now)


@dataclass
class ChatMessage:
    """A single message in a chat session."""

    session_id: str
    role: str  # user, assistant, system
    content: str
    id: str = field(default_factory=new_id)
    intent: str | None = None
    sentiment: str | None = None
    confidence: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)


@dataclass
class AggregatedAnalytics:
    """Per-shop daily counters. No field is traceable to a customer."""

    shop: str
    date: date
    id: str = field(default_factory=new_id)
    total_sessions: int = 0
    total_messages: int = 0
    avg_response_time: float = 0.0
    avg_confidence: float = 0.0
