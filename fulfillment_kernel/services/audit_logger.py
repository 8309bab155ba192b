"""
AuditLogger -- append-only, hash-chained order status history.

Responsibility:
    Writes exactly one AuditEntry for every order status transition, inside
    the transaction that performs the transition.  Each entry is linked to
    the order's previous entry by hash, so a rewritten or removed entry is
    detectable.  Reads go through selectors/history_selector.py.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by OrderLifecycleEngine only.  An entry has no meaning detached
    from the state change it records, so append() is never retried on its
    own; it commits or rolls back with that change.

Invariants enforced:
    - One entry per transition; from_status is None only for creation.
    - seq counts the order's entries from 1.  It is read from the order's
      last entry under the order's entity lock, so transactions on
      different orders share no row and never wait on each other.  Entries
      sharing a timestamp are still totally ordered by it.
    - hash = H(order_id | from | to | payload_hash | prev_hash), where
      prev_hash is the hash of the order's previous entry (None for the
      first).

Failure modes:
    - AuditChainBrokenError from verify_chain() on any hash or link
      mismatch.

Audit relevance:
    The chain covers the actor and reason, so neither can be altered after
    the fact without breaking every later link of the same order.
"""

from uuid import UUID

from sqlalchemy import select

from fulfillment_kernel.domain.actor import SYSTEM_ACTOR, Actor
from fulfillment_kernel.exceptions import AuditChainBrokenError
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.audit_entry import AuditEntry
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.utils.hashing import hash_audit_entry, hash_payload

logger = get_logger("services.audit")


def _payload(actor: Actor, reason: str | None) -> dict:
    return {
        "actor_type": actor.actor_type.value,
        "actor_id": actor.actor_id,
        "reason": reason,
    }


class AuditLogger(BaseService):
    """
    Writer for the order status history.

    Contract:
        The caller holds the order's entity lock, so no other transaction
        appends to the same order's chain concurrently.
    """

    def _last_entry(self, order_id: UUID) -> AuditEntry | None:
        return self.session.execute(
            select(AuditEntry)
            .where(AuditEntry.order_id == order_id)
            .order_by(AuditEntry.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def append(
        self,
        order_id: UUID,
        from_status: str | None,
        to_status: str,
        actor: Actor | None = None,
        reason: str | None = None,
    ) -> AuditEntry:
        """
        Record one transition of an order.

        Args:
            order_id: The order that changed status.
            from_status: Previous status value, None on creation.
            to_status: New status value.
            actor: Who caused the transition. Defaults to the system actor.
            reason: Free-text reason (cancellations).

        Returns:
            The flushed AuditEntry.
        """
        actor = actor or SYSTEM_ACTOR
        payload = _payload(actor, reason)
        payload_hash = hash_payload(payload)

        last = self._last_entry(order_id)
        prev_hash = last.hash if last else None

        entry = AuditEntry(
            seq=last.seq + 1 if last else 1,
            order_id=order_id,
            from_status=from_status,
            to_status=to_status,
            occurred_at=self.clock.now(),
            actor_type=actor.actor_type.value,
            actor_id=actor.actor_id,
            reason=reason,
            payload=payload,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=hash_audit_entry(
                str(order_id), from_status, to_status, payload_hash, prev_hash
            ),
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "audit_entry_appended",
            extra={
                "order_id": str(order_id),
                "from_status": from_status,
                "to_status": to_status,
                "seq": entry.seq,
                "actor": str(actor),
            },
        )
        return entry

    def verify_chain(self, order_id: UUID) -> bool:
        """
        Validate the hash chain of one order.

        Postconditions:
            - Returns True only if seq runs 1..n without gaps, every entry's
              payload_hash and hash match their recomputed values, and every
              prev_hash matches the hash of the entry before it.

        Raises:
            AuditChainBrokenError: If validation fails at any point.
        """
        entries = self.session.execute(
            select(AuditEntry)
            .where(AuditEntry.order_id == order_id)
            .order_by(AuditEntry.seq)
        ).scalars().all()

        expected_prev: str | None = None
        for position, entry in enumerate(entries, start=1):
            if entry.seq != position or entry.prev_hash != expected_prev:
                logger.critical(
                    "audit_chain_broken",
                    extra={"order_id": str(order_id), "entry_id": str(entry.id)},
                )
                raise AuditChainBrokenError(
                    str(entry.id), expected_prev or "None", entry.prev_hash or "None"
                )

            payload_hash = hash_payload(
                {
                    "actor_type": entry.actor_type,
                    "actor_id": entry.actor_id,
                    "reason": entry.reason,
                }
            )
            expected_hash = hash_audit_entry(
                str(entry.order_id),
                entry.from_status,
                entry.to_status,
                payload_hash,
                entry.prev_hash,
            )
            if payload_hash != entry.payload_hash or expected_hash != entry.hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"order_id": str(order_id), "entry_id": str(entry.id)},
                )
                raise AuditChainBrokenError(str(entry.id), expected_hash, entry.hash)

            expected_prev = entry.hash

        logger.info(
            "audit_chain_valid",
            extra={"order_id": str(order_id), "entry_count": len(entries)},
        )
        return True
