"""Tests for the in-memory arena store.

Tests:
- Ownership edges enforced on insert and delete
- Commit on normal exit, total rollback on exception
- Lookups scoped by shop and customer id
"""

from __future__ import annotations

import pytest

from shopibot.sessions.models import ChatMessage, ChatSession, UserProfile
from shopibot.storage import DataStore, StoreTransaction
from shopibot.storage.base import IntegrityError
from shopibot.storage.memory import InMemoryStore


class TestProtocol:
    def test_satisfies_protocols(self, store):
        assert isinstance(store, DataStore)
        with store.transaction() as tx:
            assert isinstance(tx, StoreTransaction)


class TestOwnershipEdges:
    def test_session_requires_profile(self, store):
        with pytest.raises(IntegrityError):
            with store.transaction() as tx:
                tx.add_session(ChatSession(shop="s", user_profile_id="missing"))

    def test_message_requires_session(self, store):
        with pytest.raises(IntegrityError):
            with store.transaction() as tx:
                tx.add_message(ChatMessage(session_id="missing", role="user", content="hi"))

    def test_cannot_delete_session_with_messages(self, store, seed_customer):
        profile = seed_customer()
        with pytest.raises(IntegrityError):
            with store.transaction() as tx:
                ids = [s.id for s in tx.sessions_for_profiles([profile.id])]
                tx.delete_sessions(ids)

    def test_cannot_delete_profile_with_sessions(self, store, seed_customer):
        profile = seed_customer()
        with pytest.raises(IntegrityError):
            with store.transaction() as tx:
                tx.delete_profiles([profile.id])

    def test_children_first_cascade(self, store, seed_customer):
        profile = seed_customer(sessions=2, messages_per_session=3)
        with store.transaction() as tx:
            ids = [s.id for s in tx.sessions_for_profiles([profile.id])]
            assert tx.delete_messages(ids) == 6
            assert tx.delete_sessions(ids) == 2
            assert tx.delete_profiles([profile.id]) == 1
        assert (store.profile_count, store.session_count, store.message_count) == (0, 0, 0)

    def test_duplicate_profile_id(self, store):
        profile = UserProfile(shop="s", session_id="b")
        with store.transaction() as tx:
            tx.add_profile(profile)
        with pytest.raises(IntegrityError):
            with store.transaction() as tx:
                tx.add_profile(UserProfile(shop="s", session_id="b", id=profile.id))


class TestTransactions:
    def test_rollback_restores_everything(self, store, seed_customer):
        profile = seed_customer(sessions=1, messages_per_session=2)
        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                ids = [s.id for s in tx.sessions_for_profiles([profile.id])]
                tx.delete_messages(ids)
                tx.delete_sessions(ids)
                raise RuntimeError("crash mid-cascade")
        assert (store.profile_count, store.session_count, store.message_count) == (1, 1, 2)
        with store.transaction() as tx:
            sessions = tx.sessions_for_profiles([profile.id])
            assert len(tx.messages_for_sessions([s.id for s in sessions])) == 2

    def test_uncommitted_changes_invisible_after_rollback(self, store):
        with pytest.raises(ValueError):
            with store.transaction() as tx:
                tx.add_profile(UserProfile(shop="s", session_id="b"))
                raise ValueError("abort")
        assert store.profile_count == 0

    def test_delete_missing_ids_is_noop(self, store):
        with store.transaction() as tx:
            assert tx.delete_messages(["nope"]) == 0
            assert tx.delete_sessions(["nope"]) == 0
            assert tx.delete_profiles(["nope"]) == 0


class TestLookups:
    def test_find_profiles_scoped_by_shop(self, store, seed_customer):
        seed_customer("42", shop="a.example")
        seed_customer("42", shop="b.example")
        seed_customer("43", shop="a.example")
        with store.transaction() as tx:
            found = tx.find_profiles("a.example", "42")
            assert len(found) == 1
            assert found[0].shop == "a.example"
            assert len(tx.profiles_for_shop("a.example")) == 2

    def test_analytics_newest_first(self, store, seed_analytics):
        from datetime import date

        seed_analytics(day=date(2026, 1, 1))
        seed_analytics(day=date(2026, 1, 3))
        seed_analytics(day=date(2026, 1, 2))
        with store.transaction() as tx:
            rows = tx.analytics_for_shop("demo.example", limit=2)
        assert [r.date for r in rows] == [date(2026, 1, 3), date(2026, 1, 2)]

    def test_fresh_store_is_empty(self):
        store = InMemoryStore()
        assert store.analytics_count == 0
        assert store.profile_count == 0
