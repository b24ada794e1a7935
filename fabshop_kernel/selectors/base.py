"""
Module: fabshop_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors (the "Q"
    side of the CQRS-lite split).
Architecture position: Kernel > Selectors.  MUST NOT import from services/
    or outer layers.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - No stored aggregates: every figure is recomputed from current rows.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Accepts a Session from the caller, performs read-only queries and
        returns DTOs or computed results.
    """

    def __init__(self, session: Session):
        self.session = session
