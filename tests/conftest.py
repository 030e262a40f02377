"""Shared fixtures for the webhook compliance test suite."""

from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient

from shopibot.config import Settings
from shopibot.serve import create_app
from shopibot.sessions.models import (
    AggregatedAnalytics,
    ChatMessage,
    ChatSession,
    UserProfile,
)
from shopibot.storage.memory import InMemoryStore
from webhook_helpers import SECRET, SHOP


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def seed_customer(store):
    """Factory: create a profile with sessions and messages for a customer.

    Returns the created profile.
    """

    def _seed(
        customer_id: str | None = "42",
        shop: str = SHOP,
        sessions: int = 2,
        messages_per_session: int = 3,
    ) -> UserProfile:
        with store.transaction() as tx:
            profile = tx.add_profile(
                UserProfile(shop=shop, customer_id=customer_id, session_id=f"browser-{customer_id}")
            )
            for i in range(sessions):
                session = tx.add_session(ChatSession(shop=shop, user_profile_id=profile.id))
                for j in range(messages_per_session):
                    tx.add_message(
                        ChatMessage(
                            session_id=session.id,
                            role="user" if j % 2 == 0 else "assistant",
                            content=f"message {i}-{j} from {customer_id}",
                        )
                    )
        return profile

    return _seed


@pytest.fixture
def seed_analytics(store):
    """Factory: add a daily analytics row for a shop."""

    def _seed(shop: str = SHOP, day: date = date(2026, 1, 1)) -> AggregatedAnalytics:
        with store.transaction() as tx:
            return tx.add_analytics(
                AggregatedAnalytics(shop=shop, date=day, total_sessions=10, total_messages=50)
            )

    return _seed


@pytest.fixture
def settings() -> Settings:
    return Settings(webhook_secret=SECRET, max_age_seconds=300)


@pytest.fixture
def app(settings, store):
    return create_app(settings=settings, store=store)


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
