"""Webhook replay protection: Redis-based seen-id set.

Closes the gap left by the freshness window: a delivery captured and
replayed inside the window carries a still-fresh id.

Security contract:
- Tracks accepted webhook ids in Redis with TTL equal to the freshness window
  (older ids are rejected by FreshnessGuard anyway)
- Duplicates are acknowledged with 200, not an error (provider retries on errors)
- Key pattern: webhook:seen:{shop}:{webhook_id}
- If Redis is down, falls back to allowing (fail-open for availability)
"""

from __future__ import annotations

import logging

import redis

from shopibot.config import DEFAULT_MAX_AGE_SECONDS

logger = logging.getLogger(__name__)

_KEY_PREFIX = "webhook:seen"


class SeenWebhookStore:
    """Time-bounded set of recently accepted webhook ids."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = DEFAULT_MAX_AGE_SECONDS):
        self._redis = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str, ttl_seconds: int = DEFAULT_MAX_AGE_SECONDS) -> SeenWebhookStore:
        return cls(redis.from_url(redis_url, decode_responses=True), ttl_seconds)

    @staticmethod
    def key(shop: str, webhook_id: str) -> str:
        return f"{_KEY_PREFIX}:{shop}:{webhook_id}"

    def is_duplicate(self, shop: str, webhook_id: str | None) -> bool:
        """Check-and-mark: True if this id was already accepted in the window.

        Uses SET NX EX so concurrent deliveries of the same id race safely:
        exactly one of them sets the key.
        """
        if not webhook_id:
            return False  # No id = can't dedup, allow through

        try:
            was_set = self._redis.set(
                self.key(shop, webhook_id), "1", nx=True, ex=self.ttl_seconds
            )
        except redis.RedisError:
            logger.warning(
                "Redis unavailable for webhook dedup, allowing %s/%s",
                shop,
                webhook_id,
                exc_info=True,
            )
            return False

        if not was_set:
            logger.info("Duplicate webhook rejected: %s/%s", shop, webhook_id)
            return True
        return False

    def forget(self, shop: str, webhook_id: str) -> None:
        """Drop an id so a redelivery is processed again."""
        try:
            self._redis.delete(self.key(shop, webhook_id))
        except redis.RedisError:
            logger.warning("Failed to forget webhook id: %s/%s", shop, webhook_id)
