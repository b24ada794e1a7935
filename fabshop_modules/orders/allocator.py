"""
Order Identifier Allocator (``fabshop_modules.orders.allocator``).

Responsibility
--------------
Derive an order number from a budget number (``ORC-0007`` -> ``OS-0007``)
and insert the order under the first free candidate of

    BASE, BASE-1, BASE-2, ...

Concurrency model
-----------------
The existence pre-check is best effort: another transaction may take the
same candidate between the check and the insert.  The unique constraint on
``order_number`` is the hard guarantee.  Each insert runs in a SAVEPOINT; an
insert-time uniqueness violation rolls back only that savepoint, refreshes
the occupied set and resumes after the suffix that collided.

Suffixes the pre-check already saw as taken are skipped for free; each
insert counts as one attempt.  Reaching ``max_attempts`` inserts without a
free number raises ``AllocationExhaustedError``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterator

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fabshop_config.schema import NumberingConfig
from fabshop_kernel.exceptions import AllocationExhaustedError, ValidationError
from fabshop_kernel.logging_config import get_logger
from fabshop_modules.orders.orm import ServiceOrderModel

logger = get_logger("modules.orders.allocator")


@dataclass(frozen=True)
class Allocation:
    order: ServiceOrderModel
    base: str
    attempts: int
    collisions: int


class OrderNumberAllocator:
    """
    Mints globally unique order numbers.

    Flushes inside savepoints; never commits.
    """

    def __init__(self, session: Session, numbering: NumberingConfig | None = None):
        self.session = session
        self.numbering = numbering or NumberingConfig()
        self.max_attempts = self.numbering.max_allocation_attempts

    # -------------------------------------------------------------------------
    # Pure helpers
    # -------------------------------------------------------------------------

    def derive_base(self, budget_number: str) -> str:
        """
        Replace the leading quote prefix with the order prefix.

        Raises:
            ValidationError: If the number does not start with the quote prefix.
        """
        quote = self.numbering.quote_prefix
        number = (budget_number or "").strip()
        if not number.startswith(quote) or len(number) == len(quote):
            raise ValidationError(
                "budget_number", f"{budget_number!r} does not start with {quote!r}"
            )
        return self.numbering.order_prefix + number[len(quote):]

    def candidate(self, base: str, suffix: int) -> str:
        if suffix == 0:
            return base
        return f"{base}{self.numbering.separator}{suffix}"

    def candidates(self, base: str, start: int = 0) -> Iterator[str]:
        """BASE, BASE-1, BASE-2, ... starting at ``start``."""
        suffix = start
        while True:
            yield self.candidate(base, suffix)
            suffix += 1

    def suffix_of(self, base: str, number: str) -> int | None:
        """0 for BASE, n for BASE-n, None for anything else."""
        if number == base:
            return 0
        match = re.fullmatch(
            re.escape(base) + re.escape(self.numbering.separator) + r"([1-9]\d*)",
            number,
        )
        return int(match.group(1)) if match else None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def occupied_suffixes(self, base: str) -> set[int]:
        """Suffixes already taken for ``base`` (one query)."""
        prefix = base + self.numbering.separator
        rows = self.session.execute(
            select(ServiceOrderModel.order_number).where(
                or_(
                    ServiceOrderModel.order_number == base,
                    ServiceOrderModel.order_number.startswith(prefix, autoescape=True),
                )
            )
        ).scalars()
        taken = set()
        for number in rows:
            suffix = self.suffix_of(base, number)
            if suffix is not None:
                taken.add(suffix)
        return taken

    def is_taken(self, number: str) -> bool:
        return self.session.execute(
            select(ServiceOrderModel.id).where(ServiceOrderModel.order_number == number)
        ).first() is not None

    # -------------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------------

    def insert_unique(
        self,
        base: str,
        build: Callable[[str], ServiceOrderModel],
    ) -> Allocation:
        """
        Insert the order built by ``build(number)`` under the first free
        candidate.

        Args:
            base: Candidate base, e.g. ``OS-0007``.
            build: Returns a new, unsaved ServiceOrderModel for a number.
                Called once per insert attempt.

        Suffixes already known to be taken are skipped without an insert;
        only inserts count towards ``max_attempts``, so the cap bounds
        retries after lost races, not the number of existing orders.

        Raises:
            AllocationExhaustedError: ``max_attempts`` inserts collided.
            IntegrityError: A constraint other than the order number failed.
        """
        occupied = self.occupied_suffixes(base)
        suffix = 0
        attempts = 0
        collisions = 0

        while attempts < self.max_attempts:
            while suffix in occupied:
                suffix += 1
            number = self.candidate(base, suffix)
            attempts += 1

            order = build(number)
            try:
                with self.session.begin_nested():
                    self.session.add(order)
                    self.session.flush()
            except IntegrityError:
                if not self.is_taken(number):
                    raise
                collisions += 1
                logger.warning(
                    "order_number_collision",
                    extra={"base": base, "order_number": number, "attempt": attempts},
                )
                occupied = self.occupied_suffixes(base) | {suffix}
                suffix += 1
                continue

            if suffix > 0:
                logger.info(
                    "order_number_suffixed",
                    extra={
                        "base": base,
                        "order_number": number,
                        "attempts": attempts,
                        "collisions": collisions,
                    },
                )
            return Allocation(order=order, base=base, attempts=attempts, collisions=collisions)

        logger.error(
            "order_number_allocation_exhausted",
            extra={"base": base, "attempts": attempts, "collisions": collisions},
        )
        raise AllocationExhaustedError(base, attempts)
