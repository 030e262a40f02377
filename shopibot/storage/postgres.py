"""PostgreSQL store via psycopg 3.

Tables: user_profiles, chat_sessions, chat_messages, chat_analytics.
Foreign keys are declared without ON DELETE CASCADE; the redaction code
deletes children before parents explicitly, inside one transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from shopibot.sessions.models import (
    AggregatedAnalytics,
    ChatMessage,
    ChatSession,
    UserProfile,
)

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        id               TEXT PRIMARY KEY,
        shop             TEXT NOT NULL,
        customer_id      TEXT,
        session_id       TEXT NOT NULL,
        preferences      JSONB DEFAULT '{}',
        browsing_history JSONB DEFAULT '[]',
        created_at       TIMESTAMPTZ DEFAULT now(),
        updated_at       TIMESTAMPTZ DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_user_profiles_shop_customer "
    "ON user_profiles (shop, customer_id)",
    """
    CREATE TABLE IF NOT EXISTS chat_sessions (
        id               TEXT PRIMARY KEY,
        shop             TEXT NOT NULL,
        user_profile_id  TEXT NOT NULL REFERENCES user_profiles (id),
        context          JSONB DEFAULT '{}',
        last_message_at  TIMESTAMPTZ DEFAULT now(),
        created_at       TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_messages (
        id          TEXT PRIMARY KEY,
        session_id  TEXT NOT NULL REFERENCES chat_sessions (id),
        role        TEXT NOT NULL,
        content     TEXT NOT NULL,
        intent      TEXT,
        sentiment   TEXT,
        confidence  REAL,
        metadata    JSONB DEFAULT '{}',
        timestamp   TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_analytics (
        id                 TEXT PRIMARY KEY,
        shop               TEXT NOT NULL,
        date               DATE NOT NULL,
        total_sessions     INT DEFAULT 0,
        total_messages     INT DEFAULT 0,
        avg_response_time  REAL DEFAULT 0,
        avg_confidence     REAL DEFAULT 0,
        UNIQUE (shop, date)
    )
    """,
)


def _ids(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def _profile(row: dict[str, Any]) -> UserProfile:
    return UserProfile(
        id=row["id"],
        shop=row["shop"],
        customer_id=row["customer_id"],
        session_id=row["session_id"],
        preferences=row["preferences"] or {},
        browsing_history=row["browsing_history"] or [],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _session(row: dict[str, Any]) -> ChatSession:
    return ChatSession(
        id=row["id"],
        shop=row["shop"],
        user_profile_id=row["user_profile_id"],
        context=row["context"] or {},
        last_message_at=row["last_message_at"],
        created_at=row["created_at"],
    )


def _message(row: dict[str, Any]) -> ChatMessage:
    return ChatMessage(
        id=row["id"],
        session_id=row["session_id"],
        role=row["role"],
        content=row["content"],
        intent=row["intent"],
        sentiment=row["sentiment"],
        confidence=row["confidence"],
        metadata=row["metadata"] or {},
        timestamp=row["timestamp"],
    )


def _analytics(row: dict[str, Any]) -> AggregatedAnalytics:
    return AggregatedAnalytics(
        id=row["id"],
        shop=row["shop"],
        date=row["date"],
        total_sessions=row["total_sessions"],
        total_messages=row["total_messages"],
        avg_response_time=row["avg_response_time"],
        avg_confidence=row["avg_confidence"],
    )


class _PostgresTransaction:
    """StoreTransaction bound to one open psycopg connection."""

    def __init__(self, conn: psycopg.Connection):
        self._conn = conn

    def add_profile(self, profile: UserProfile) -> UserProfile:
        self._conn.execute(
            """INSERT INTO user_profiles
               (id, shop, customer_id, session_id, preferences, browsing_history,
                created_at, updated_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
            (
                profile.id,
                profile.shop,
                profile.customer_id,
                profile.session_id,
                Jsonb(profile.preferences),
                Jsonb(profile.browsing_history),
                profile.created_at,
                profile.updated_at,
            ),
        )
        return profile

    def add_session(self, session: ChatSession) -> ChatSession:
        self._conn.execute(
            """INSERT INTO chat_sessions
               (id, shop, user_profile_id, context, last_message_at, created_at)
               VALUES (%s, %s, %s, %s, %s, %s)""",
            (
                session.id,
                session.shop,
                session.user_profile_id,
                Jsonb(session.context),
                session.last_message_at,
                session.created_at,
            ),
        )
        return session

    def add_message(self, message: ChatMessage) -> ChatMessage:
        self._conn.execute(
            """INSERT INTO chat_messages
               (id, session_id, role, content, intent, sentiment, confidence,
                metadata, timestamp)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            (
                message.id,
                message.session_id,
                message.role,
                message.content,
                message.intent,
                message.sentiment,
                message.confidence,
                Jsonb(message.metadata),
                message.timestamp,
            ),
        )
        return message

    def add_analytics(self, row: AggregatedAnalytics) -> AggregatedAnalytics:
        self._conn.execute(
            """INSERT INTO chat_analytics
               (id, shop, date, total_sessions, total_messages,
                avg_response_time, avg_confidence)
               VALUES (%s, %s, %s, %s, %s, %s, %s)""",
            (
                row.id,
                row.shop,
                row.date,
                row.total_sessions,
                row.total_messages,
                row.avg_response_time,
                row.avg_confidence,
            ),
        )
        return row

    def find_profiles(self, shop: str, customer_id: str) -> list[UserProfile]:
        rows = self._conn.execute(
            "SELECT * FROM user_profiles WHERE shop = %s AND customer_id = %s",
            (shop, customer_id),
        ).fetchall()
        return [_profile(r) for r in rows]

    def profiles_for_shop(self, shop: str) -> list[UserProfile]:
        rows = self._conn.execute(
            "SELECT * FROM user_profiles WHERE shop = %s", (shop,)
        ).fetchall()
        return [_profile(r) for r in rows]

    def sessions_for_profiles(self, profile_ids: Iterable[str]) -> list[ChatSession]:
        ids = _ids(profile_ids)
        if not ids:
            return []
        rows = self._conn.execute(
            "SELECT * FROM chat_sessions WHERE user_profile_id = ANY(%s) ORDER BY created_at",
            (ids,),
        ).fetchall()
        return [_session(r) for r in rows]

    def messages_for_sessions(self, session_ids: Iterable[str]) -> list[ChatMessage]:
        ids = _ids(session_ids)
        if not ids:
            return []
        rows = self._conn.execute(
            "SELECT * FROM chat_messages WHERE session_id = ANY(%s) ORDER BY timestamp",
            (ids,),
        ).fetchall()
        return [_message(r) for r in rows]

    def analytics_for_shop(
        self, shop: str, limit: int | None = None
    ) -> list[AggregatedAnalytics]:
        if limit is None:
            rows = self._conn.execute(
                "SELECT * FROM chat_analytics WHERE shop = %s ORDER BY date DESC",
                (shop,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM chat_analytics WHERE shop = %s ORDER BY date DESC LIMIT %s",
                (shop, limit),
            ).fetchall()
        return [_analytics(r) for r in rows]

    def delete_messages(self, session_ids: Iterable[str]) -> int:
        ids = _ids(session_ids)
        if not ids:
            return 0
        cur = self._conn.execute(
            "DELETE FROM chat_messages WHERE session_id = ANY(%s)", (ids,)
        )
        return cur.rowcount

    def delete_sessions(self, session_ids: Iterable[str]) -> int:
        ids = _ids(session_ids)
        if not ids:
            return 0
        cur = self._conn.execute("DELETE FROM chat_sessions WHERE id = ANY(%s)", (ids,))
        return cur.rowcount

    def delete_profiles(self, profile_ids: Iterable[str]) -> int:
        ids = _ids(profile_ids)
        if not ids:
            return 0
        cur = self._conn.execute("DELETE FROM user_profiles WHERE id = ANY(%s)", (ids,))
        return cur.rowcount

    def delete_analytics(self, shop: str) -> int:
        cur = self._conn.execute("DELETE FROM chat_analytics WHERE shop = %s", (shop,))
        return cur.rowcount


class PostgresStore:
    """DataStore backed by PostgreSQL.

    One connection per transaction. psycopg's ``conn.transaction()``
    commits when the block exits normally and rolls back when it raises,
    including when the request that started it has gone away.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn

    def _get_conn(self) -> psycopg.Connection:
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def init_tables(self) -> None:
        """Create tables if they don't exist. Idempotent."""
        with self._get_conn() as conn:
            with conn.transaction():
                for statement in _SCHEMA:
                    conn.execute(statement)
        logger.info("Compliance store tables initialized")

    @contextmanager
    def transaction(self) -> Iterator[_PostgresTransaction]:
        with self._get_conn() as conn:
            with conn.transaction():
                yield _PostgresTransaction(conn)
