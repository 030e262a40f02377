"""Audit sink for webhook activity.

Every rejected or failed request produces an AuditRecord with topic, shop,
error and webhook id; compliance topics also record their legal deadline.
Records go to the ``shopibot.audit`` logger as ``WEBHOOK_AUDIT key=value``
lines and are counted per status for the status endpoint.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

audit_logger = logging.getLogger("shopibot.audit")

_RECENT_LIMIT = 200


@dataclass(frozen=True)
class AuditRecord:
    topic: str | None
    shop: str | None
    status: str  # accepted, rejected, failed, duplicate
    error: str | None = None
    webhook_id: str | None = None
    deadline: datetime | None = None
    details: dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("deadline", "recorded_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class AuditLog:
    """Thread-safe audit sink: log line + per-status counters + recent ring."""

    def __init__(self, recent_limit: int = _RECENT_LIMIT):
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()
        self._recent: deque[AuditRecord] = deque(maxlen=recent_limit)

    def record(self, record: AuditRecord) -> None:
        with self._lock:
            self._counts[record.status] += 1
            self._recent.append(record)
            count = self._counts[record.status]

        level = logging.INFO if record.error is None else logging.WARNING
        audit_logger.log(
            level,
            "WEBHOOK_AUDIT topic=%s shop=%s id=%s status=%s error=%s deadline=%s count=%d",
            record.topic,
            record.shop,
            record.webhook_id,
            record.status,
            record.error,
            record.deadline.date().isoformat() if record.deadline else None,
            count,
        )

    @property
    def counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def recent(self, limit: int = 50) -> list[AuditRecord]:
        with self._lock:
            return list(self._recent)[-limit:]
