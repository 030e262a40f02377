"""In-memory store: id-keyed arena with snapshot transactions.

Each entity collection is a dict keyed by id, with ownership indexes
(profile -> session ids, session -> message ids) maintained alongside.
A transaction works on a private copy of the arena and swaps it in on
commit, so a failure at any step leaves the committed state untouched.

Transactions are serialized by a lock: each one observes the state left
by the previous commit, never a half-applied cascade.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from shopibot.sessions.models import (
    AggregatedAnalytics,
    ChatMessage,
    ChatSession,
    UserProfile,
)
from shopibot.storage.base import IntegrityError

logger = logging.getLogger(__name__)


@dataclass
class _Arena:
    profiles: dict[str, UserProfile] = field(default_factory=dict)
    sessions: dict[str, ChatSession] = field(default_factory=dict)
    messages: dict[str, ChatMessage] = field(default_factory=dict)
    analytics: dict[str, AggregatedAnalytics] = field(default_factory=dict)
    # Ownership indexes
    sessions_by_profile: dict[str, set[str]] = field(default_factory=dict)
    messages_by_session: dict[str, set[str]] = field(default_factory=dict)

    def clone(self) -> _Arena:
        return _Arena(
            profiles=dict(self.profiles),
            sessions=dict(self.sessions),
            messages=dict(self.messages),
            analytics=dict(self.analytics),
            sessions_by_profile={k: set(v) for k, v in self.sessions_by_profile.items()},
            messages_by_session={k: set(v) for k, v in self.messages_by_session.items()},
        )


class _MemoryTransaction:
    """StoreTransaction over a private arena copy."""

    def __init__(self, arena: _Arena):
        self._arena = arena

    # ── Inserts ───────────────────────────────────────────────────────────

    def add_profile(self, profile: UserProfile) -> UserProfile:
        if profile.id in self._arena.profiles:
            raise IntegrityError(f"Duplicate profile id {profile.id}")
        self._arena.profiles[profile.id] = profile
        self._arena.sessions_by_profile.setdefault(profile.id, set())
        return profile

    def add_session(self, session: ChatSession) -> ChatSession:
        if session.user_profile_id not in self._arena.profiles:
            raise IntegrityError(f"Unknown profile {session.user_profile_id}")
        if session.id in self._arena.sessions:
            raise IntegrityError(f"Duplicate session id {session.id}")
        self._arena.sessions[session.id] = session
        self._arena.sessions_by_profile[session.user_profile_id].add(session.id)
        self._arena.messages_by_session.setdefault(session.id, set())
        return session

    def add_message(self, message: ChatMessage) -> ChatMessage:
        if message.session_id not in self._arena.sessions:
            raise IntegrityError(f"Unknown session {message.session_id}")
        if message.id in self._arena.messages:
            raise IntegrityError(f"Duplicate message id {message.id}")
        self._arena.messages[message.id] = message
        self._arena.messages_by_session[message.session_id].add(message.id)
        return message

    def add_analytics(self, row: AggregatedAnalytics) -> AggregatedAnalytics:
        self._arena.analytics[row.id] = row
        return row

    # ── Lookups ───────────────────────────────────────────────────────────

    def find_profiles(self, shop: str, customer_id: str) -> list[UserProfile]:
        return [
            p
            for p in self._arena.profiles.values()
            if p.shop == shop and p.customer_id == customer_id
        ]

    def profiles_for_shop(self, shop: str) -> list[UserProfile]:
        return [p for p in self._arena.profiles.values() if p.shop == shop]

    def sessions_for_profiles(self, profile_ids: Iterable[str]) -> list[ChatSession]:
        sessions = []
        for profile_id in profile_ids:
            for session_id in sorted(self._arena.sessions_by_profile.get(profile_id, ())):
                sessions.append(self._arena.sessions[session_id])
        return sessions

    def messages_for_sessions(self, session_ids: Iterable[str]) -> list[ChatMessage]:
        messages = []
        for session_id in session_ids:
            for message_id in self._arena.messages_by_session.get(session_id, ()):
                messages.append(self._arena.messages[message_id])
        return sorted(messages, key=lambda m: m.timestamp)

    def analytics_for_shop(
        self, shop: str, limit: int | None = None
    ) -> list[AggregatedAnalytics]:
        rows = sorted(
            (a for a in self._arena.analytics.values() if a.shop == shop),
            key=lambda a: a.date,
            reverse=True,
        )
        return rows if limit is None else rows[:limit]

    # ── Deletes ───────────────────────────────────────────────────────────

    def delete_messages(self, session_ids: Iterable[str]) -> int:
        count = 0
        for session_id in set(session_ids):
            for message_id in self._arena.messages_by_session.get(session_id, set()):
                del self._arena.messages[message_id]
                count += 1
            if session_id in self._arena.messages_by_session:
                self._arena.messages_by_session[session_id] = set()
        return count

    def delete_sessions(self, session_ids: Iterable[str]) -> int:
        count = 0
        for session_id in set(session_ids):
            session = self._arena.sessions.get(session_id)
            if session is None:
                continue
            if self._arena.messages_by_session.get(session_id):
                raise IntegrityError(f"Session {session_id} still owns messages")
            del self._arena.sessions[session_id]
            self._arena.messages_by_session.pop(session_id, None)
            self._arena.sessions_by_profile[session.user_profile_id].discard(session_id)
            count += 1
        return count

    def delete_profiles(self, profile_ids: Iterable[str]) -> int:
        count = 0
        for profile_id in set(profile_ids):
            if profile_id not in self._arena.profiles:
                continue
            if self._arena.sessions_by_profile.get(profile_id):
                raise IntegrityError(f"Profile {profile_id} still owns sessions")
            del self._arena.profiles[profile_id]
            self._arena.sessions_by_profile.pop(profile_id, None)
            count += 1
        return count

    def delete_analytics(self, shop: str) -> int:
        doomed = [k for k, a in self._arena.analytics.items() if a.shop == shop]
        for key in doomed:
            del self._arena.analytics[key]
        return len(doomed)


class InMemoryStore:
    """Process-local DataStore.

    Used in tests and for single-process development. For production,
    use PostgresStore.
    """

    def __init__(self):
        self._arena = _Arena()
        self._lock = threading.Lock()

    @contextmanager
    def transaction(self) -> Iterator[_MemoryTransaction]:
        with self._lock:
            working = self._arena.clone()
            yield _MemoryTransaction(working)
            # Only reached when the block did not raise
            self._arena = working

    # ── Read-only counters (committed state) ──────────────────────────────

    @property
    def profile_count(self) -> int:
        return len(self._arena.profiles)

    @property
    def session_count(self) -> int:
        return len(self._arena.sessions)

    @property
    def message_count(self) -> int:
        return len(self._arena.messages)

    @property
    def analytics_count(self) -> int:
        return len(self._arena.analytics)
