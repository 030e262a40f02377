"""Store protocol used by the compliance components.

A DataStore hands out transactions. Everything done through one
StoreTransaction commits together when the ``with`` block exits normally
and is rolled back entirely when it raises.

Deletes are id-set based and never cascade on their own: callers delete
children before parents. Deleting a parent that still has children
raises IntegrityError.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractContextManager
from typing import Protocol, runtime_checkable

from shopibot.sessions.models import (
    AggregatedAnalytics,
    ChatMessage,
    ChatSession,
    UserProfile,
)


class IntegrityError(Exception):
    """An ownership edge would be broken (orphan or dangling reference)."""


@runtime_checkable
class StoreTransaction(Protocol):
    """Operations available inside one atomic unit of work."""

    # ── Inserts (used by the conversation subsystem and fixtures) ──────────

    def add_profile(self, profile: UserProfile) -> UserProfile: ...

    def add_session(self, session: ChatSession) -> ChatSession: ...

    def add_message(self, message: ChatMessage) -> ChatMessage: ...

    def add_analytics(self, row: AggregatedAnalytics) -> AggregatedAnalytics: ...

    # ── Lookups ────────────────────────────────────────────────────────────

    def find_profiles(self, shop: str, customer_id: str) -> list[UserProfile]: ...

    def profiles_for_shop(self, shop: str) -> list[UserProfile]: ...

    def sessions_for_profiles(self, profile_ids: Iterable[str]) -> list[ChatSession]: ...

    def messages_for_sessions(self, session_ids: Iterable[str]) -> list[ChatMessage]: ...

    def analytics_for_shop(
        self, shop: str, limit: int | None = None
    ) -> list[AggregatedAnalytics]: ...

    # ── Deletes (return number of rows removed) ────────────────────────────

    def delete_messages(self, session_ids: Iterable[str]) -> int: ...

    def delete_sessions(self, session_ids: Iterable[str]) -> int: ...

    def delete_profiles(self, profile_ids: Iterable[str]) -> int: ...

    def delete_analytics(self, shop: str) -> int: ...


@runtime_checkable
class DataStore(Protocol):
    """A store offering atomic multi-statement transactions."""

    def transaction(self) -> AbstractContextManager[StoreTransaction]: ...
