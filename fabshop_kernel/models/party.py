"""
Module: fabshop_kernel.models.party
Responsibility: ORM persistence for the people the shop deals with: clients
    (who receive budgets, orders and invoices) and workers (who are assigned
    orders and tasks and log time).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - party_code is unique (uq_party_code).
    - party_type is fixed at creation.
    - Budgets and orders copy the client's name/contact/address at the time
      they are written; editing a Party never rewrites those snapshots.

Failure modes:
    - IntegrityError on duplicate party_code.
"""

from enum import Enum

from sqlalchemy import Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fabshop_kernel.db.base import TrackedBase


class PartyType(str, Enum):
    """Classification of parties."""

    CLIENT = "client"
    WORKER = "worker"


class WorkerRole(str, Enum):
    """Shop-floor role of a worker profile."""

    ADMIN = "admin"
    MANAGER = "manager"
    WORKER = "worker"


class Party(TrackedBase):
    """
    A client or worker.

    Guarantees:
        - party_code is globally unique.
        - role is set for workers only.
    """

    __tablename__ = "parties"

    __table_args__ = (
        UniqueConstraint("party_code", name="uq_party_code"),
        Index("idx_party_type", "party_type"),
        Index("idx_party_active", "is_active"),
    )

    party_code: Mapped[str] = mapped_column(String(50), nullable=False)

    party_type: Mapped[PartyType] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Phone / contact person
    contact: Mapped[str | None] = mapped_column(String(255), nullable=True)

    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # CNPJ / CPF
    document_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    role: Mapped[WorkerRole | None] = mapped_column(String(20), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Party {self.party_code}: {self.name} ({self.party_type})>"
