"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Mints the numeric part of budget numbers (ORC-0007), direct order
    numbers (OS-0012), invoice numbers (FAT-0003) and party codes.  Uses a
    dedicated counter table with row-level locking (``SELECT ... FOR
    UPDATE``) so concurrent callers never receive the same value.

Invariants enforced:
    - The locked counter row is the sole source of truth for the next
      value.  MAX(number)+1 over the business tables is never used.
    - The increment is transactional: a rollback returns the value.

Failure modes:
    - IntegrityError on a concurrent first-use race (handled with a
      savepoint rollback and re-read).
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from fabshop_kernel.db.base import Base
from fabshop_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    One row per named sequence.  Row-level locking keeps allocation
    monotonic under concurrency.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Usage:
        n = SequenceService(session).next_value(SequenceService.BUDGET)
        number = format_number("ORC", n)   # "ORC-0001"
    """

    BUDGET = "budget"
    SERVICE_ORDER = "service_order"
    INVOICE = "invoice"
    CLIENT = "party_client"
    WORKER = "party_worker"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment it and
        return the new value (always > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  Another transaction may create it at the same time;
            # the savepoint keeps the caller's work intact if we lose.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
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
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Set a sequence to a specific value.

        Used when importing numbered documents from an older system so that
        new numbers continue after the imported ones.
        """
        counter = self._locked_counter(sequence_name)
        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=value)
            self._session.add(counter)
        else:
            counter.current_value = value
        self._session.flush()


def format_number(prefix: str, value: int, padding: int = 4, separator: str = "-") -> str:
    """``format_number("ORC", 7) -> "ORC-0007"``."""
    return f"{prefix}{separator}{value:0{padding}d}"
