"""Services for the fabshop kernel (write side)."""

from fabshop_kernel.services.base import BaseService
from fabshop_kernel.services.party_service import (
    ClientSnapshot,
    PartyInfo,
    PartyService,
)
from fabshop_kernel.services.sequence_service import (
    SequenceCounter,
    SequenceService,
    format_number,
)

__all__ = [
    "BaseService",
    "ClientSnapshot",
    "PartyInfo",
    "PartyService",
    "SequenceCounter",
    "SequenceService",
    "format_number",
]
