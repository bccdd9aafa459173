"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Allocates strictly increasing numbers for per-tenant journal entry
    numbering.  A dedicated counter table is locked with
    ``SELECT ... FOR UPDATE`` so concurrent posters never share a number.

Invariants enforced:
    - The locked counter row is the only source of the next value; the
      aggregate max-plus-one pattern is never used.
    - The increment is transactional: a rolled-back posting returns its
      number, so committed entry numbers are gap-free.

Failure modes:
    - IntegrityError when two transactions create the same counter row
      concurrently; it propagates and the caller retries the operation.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    One row per named sequence (``journal_entry:<tenant_id>``).
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller controls boundaries.
    """

    JOURNAL_ENTRY = "journal_entry"

    def __init__(self, session: Session):
        self._session = session

    @classmethod
    def journal_sequence_name(cls, tenant_id: str) -> str:
        return f"{cls.JOURNAL_ENTRY}:{tenant_id}"

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment it and
        return the new value.  The counter stays locked until the caller's
        transaction ends.
        """
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)

        counter.current_value += 1
        self._session.flush()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int:
        """Return the last allocated value (0 if the sequence is unused)."""
        value = self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return value or 0
