"""Customer and shop data redaction.

Security contract:
- All deletes for one request run in ONE store transaction (all or nothing)
- Children are deleted before parents: messages -> sessions -> profiles,
  so no ChatSession or ChatMessage is ever left without its owner
- Customer redaction matches on (shop, customer_id) only; email and phone
  are recorded for the audit trail but are not match keys
- Aggregated analytics survive customer redaction (de-identified);
  a shop purge removes that shop's analytics too
- Zero matches is success: redaction is idempotent and safe to retry
- Any failure inside the transaction is raised as RedactionFailed, never
  reported as a partial success
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from shopibot.errors import IdentityMissing, RedactionFailed
from shopibot.storage.base import DataStore

logger = logging.getLogger(__name__)


def mask_email(email: str | None) -> str | None:
    """Show only the domain of an email address."""
    if not email:
        return email
    if "@" in email:
        return "***@" + email.split("@", 1)[1]
    return "***"


@dataclass(frozen=True)
class CustomerIdentity:
    """Who a redaction or data request is about."""

    customer_id: str | None = None
    email: str | None = None
    phone: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.customer_id or self.email or self.phone)

    def describe(self) -> str:
        """Log-safe description (no raw email or phone)."""
        return (
            f"customer_id={self.customer_id} email={mask_email(self.email)} "
            f"phone={'***' if self.phone else None}"
        )


@dataclass(frozen=True)
class RedactionResult:
    deleted_profile_count: int = 0
    deleted_session_count: int = 0
    deleted_message_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class ShopPurgeResult:
    chat_messages: int = 0
    chat_sessions: int = 0
    user_profiles: int = 0
    chat_analytics: int = 0

    @property
    def total(self) -> int:
        return sum(asdict(self).values())

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class RedactionOrchestrator:
    """Runs cascading deletes against a DataStore."""

    def __init__(self, store: DataStore):
        self._store = store

    def redact(self, shop: str, identity: CustomerIdentity) -> RedactionResult:
        """Delete every profile for ``identity`` in ``shop`` and all it owns.

        Raises:
            IdentityMissing: no customer id, email, or phone was given
            RedactionFailed: the transaction failed and was rolled back
        """
        if identity.is_empty:
            raise IdentityMissing()

        if not identity.customer_id:
            # Alternate identifiers are informational: nothing to match on
            logger.warning(
                "Redaction for %s has no customer id (%s), no profiles matched",
                shop,
                identity.describe(),
            )
            return RedactionResult()

        try:
            with self._store.transaction() as tx:
                profiles = tx.find_profiles(shop, identity.customer_id)
                profile_ids = [p.id for p in profiles]
                if not profile_ids:
                    return RedactionResult()

                session_ids = [s.id for s in tx.sessions_for_profiles(profile_ids)]
                messages = tx.delete_messages(session_ids)
                sessions = tx.delete_sessions(session_ids)
                deleted = tx.delete_profiles(profile_ids)
                # Aggregated analytics are deliberately left in place
        except Exception as exc:
            logger.exception(
                "Customer redaction rolled back for %s (%s)", shop, identity.describe()
            )
            raise RedactionFailed(exc) from exc

        result = RedactionResult(
            deleted_profile_count=deleted,
            deleted_session_count=sessions,
            deleted_message_count=messages,
        )
        logger.info(
            "Customer data redacted for %s customer_id=%s: %s",
            shop,
            identity.customer_id,
            result.to_dict(),
        )
        return result

    def purge_shop(self, shop: str) -> ShopPurgeResult:
        """Delete all customer conversation data and analytics for a shop.

        Raises:
            RedactionFailed: the transaction failed and was rolled back
        """
        try:
            with self._store.transaction() as tx:
                profile_ids = [p.id for p in tx.profiles_for_shop(shop)]
                session_ids = [s.id for s in tx.sessions_for_profiles(profile_ids)]
                result = ShopPurgeResult(
                    chat_messages=tx.delete_messages(session_ids),
                    chat_sessions=tx.delete_sessions(session_ids),
                    user_profiles=tx.delete_profiles(profile_ids),
                    chat_analytics=tx.delete_analytics(shop),
                )
        except Exception as exc:
            logger.exception("Shop purge rolled back for %s", shop)
            raise RedactionFailed(exc, f"Error deleting shop data: {exc}") from exc

        logger.info(
            "Shop data deleted for %s: %s (total=%d)", shop, result.to_dict(), result.total
        )
        return result
