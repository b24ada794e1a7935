"""Kernel ORM models."""

from fabshop_kernel.models.party import Party, PartyType, WorkerRole

__all__ = [
    "Party",
    "PartyType",
    "WorkerRole",
]
