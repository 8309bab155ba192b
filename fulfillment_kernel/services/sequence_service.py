"""
SequenceService -- order number allocation.

Responsibility:
    Hands out strictly increasing order numbers.  On PostgreSQL the numbers
    come from the ``order_number_seq`` database sequence, which never blocks
    concurrent transactions.  On SQLite (a single-writer backend, see
    db/engine.py) they come from a counter row updated under the database
    write lock the transaction already holds.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by OrderLifecycleEngine during placement.  Audit entries do not
    use it: their seq is per order (AuditLogger).

Invariants enforced:
    - Monotonicity: a value is never handed out twice and later values are
      larger.  SELECT MAX(...) + 1 is never used.
    - PostgreSQL: nextval() is not transactional, so a rolled-back placement
      leaves a gap in order numbers.  Numbers are unique and increasing,
      not dense.
    - SQLite: the increment is only visible after the caller commits, and a
      rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race on the counter-row
      path (handled via savepoint rollback and retry).
"""

from sqlalchemy import BigInteger, Sequence, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.services.base import BaseService

logger = get_logger("services.sequence")

# Created by create_all on dialects that support sequences; ignored elsewhere
ORDER_NUMBER_SEQUENCE = Sequence("order_number_seq", start=1, metadata=Base.metadata)


class SequenceCounter(Base):
    """
    Counter rows for backends without database sequences.

    Each row represents a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService(BaseService):
    """
    Order number allocation for the current transaction.

    Usage:
        def _txn(txn):
            number = SequenceService(txn.session).next_value(
                SequenceService.ORDER_NUMBER
            )
    """

    ORDER_NUMBER = "order_number"

    _DATABASE_SEQUENCES = {ORDER_NUMBER: ORDER_NUMBER_SEQUENCE}

    def _uses_database_sequence(self, sequence_name: str) -> bool:
        return (
            sequence_name in self._DATABASE_SEQUENCES
            and self.session.get_bind().dialect.supports_sequences
        )

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously handed out for this sequence name.
        """
        if self._uses_database_sequence(sequence_name):
            value = self.session.execute(
                select(self._DATABASE_SEQUENCES[sequence_name].next_value())
            ).scalar_one()
        else:
            value = self._next_counter_value(sequence_name)

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self.session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _next_counter_value(self, sequence_name: str) -> int:
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use. Another transaction may create it simultaneously;
            # the savepoint keeps the rest of our work intact if it does.
            savepoint = self.session.begin_nested()
            try:
                self.session.add(SequenceCounter(name=sequence_name, current_value=1))
                self.session.flush()
                savepoint.commit()
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self.session.flush()
        return counter.current_value
