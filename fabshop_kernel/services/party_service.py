"""
Service layer for Party operations.

Manages the shop's clients and workers.  Returns PartyInfo DTOs instead of
ORM entities.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from fabshop_kernel.domain.notifications import ChangeAction, ChangedEntity
from fabshop_kernel.exceptions import PartyNotFoundError, ValidationError
from fabshop_kernel.logging_config import get_logger
from fabshop_kernel.models.party import Party, PartyType, WorkerRole
from fabshop_kernel.services.base import BaseService
from fabshop_kernel.services.sequence_service import SequenceService, format_number

logger = get_logger("services.party")

_CODE_PREFIX = {
    PartyType.CLIENT: ("CLI", SequenceService.CLIENT),
    PartyType.WORKER: ("WRK", SequenceService.WORKER),
}


@dataclass(frozen=True)
class PartyInfo:
    """Immutable DTO for party data."""

    id: UUID
    party_code: str
    party_type: PartyType
    name: str
    contact: str | None
    address: str | None
    email: str | None
    document_id: str | None
    role: WorkerRole | None
    is_active: bool

    @property
    def is_worker(self) -> bool:
        return self.party_type == PartyType.WORKER


@dataclass(frozen=True)
class ClientSnapshot:
    """Client fields copied onto budgets and orders at write time."""

    client_id: UUID | None
    name: str
    contact: str | None = None
    address: str | None = None


class PartyService(BaseService[Party]):
    """
    Service for managing clients and workers.

    All public methods return PartyInfo DTOs, not ORM Party entities.
    """

    def _to_dto(self, party: Party) -> PartyInfo:
        return PartyInfo(
            id=party.id,
            party_code=party.party_code,
            party_type=PartyType(party.party_type),
            name=party.name,
            contact=party.contact,
            address=party.address,
            email=party.email,
            document_id=party.document_id,
            role=WorkerRole(party.role) if party.role else None,
            is_active=party.is_active,
        )

    def _get_by_id(self, party_id: UUID) -> Party:
        party = self.session.get(Party, party_id)
        if party is None:
            raise PartyNotFoundError(str(party_id))
        return party

    def get_by_id(self, party_id: UUID) -> PartyInfo:
        """
        Raises:
            PartyNotFoundError: If party doesn't exist.
        """
        return self._to_dto(self._get_by_id(party_id))

    def require(self, party_id: UUID, party_type: PartyType) -> PartyInfo:
        """Fetch a party and check its type.

        Raises:
            PartyNotFoundError: If missing or of another type.
        """
        party = self._get_by_id(party_id)
        if party.party_type != party_type:
            raise PartyNotFoundError(str(party_id), entity_type=party_type.value)
        return self._to_dto(party)

    def client_snapshot(self, client_id: UUID) -> ClientSnapshot:
        client = self.require(client_id, PartyType.CLIENT)
        return ClientSnapshot(
            client_id=client.id,
            name=client.name,
            contact=client.contact,
            address=client.address,
        )

    def resolve_snapshot(
        self,
        client_id: UUID | None,
        client_name: str | None = None,
        client_contact: str | None = None,
        client_address: str | None = None,
    ) -> ClientSnapshot:
        """
        Build the client snapshot for a budget or order.

        With ``client_id`` the party's fields are copied and any explicit
        argument overrides them.  Without it, ``client_name`` is required.

        Raises:
            PartyNotFoundError: Unknown client_id.
            ValidationError: No client_id and a blank client_name.
        """
        if client_id is not None:
            snap = self.client_snapshot(client_id)
            return ClientSnapshot(
                client_id=snap.client_id,
                name=client_name.strip() if client_name and client_name.strip() else snap.name,
                contact=client_contact if client_contact is not None else snap.contact,
                address=client_address if client_address is not None else snap.address,
            )
        if not client_name or not client_name.strip():
            raise ValidationError("client_name", "required when no client_id is given")
        return ClientSnapshot(
            client_id=None,
            name=client_name.strip(),
            contact=client_contact,
            address=client_address,
        )

    def names_by_id(self, party_ids) -> dict[UUID, str]:
        """Resolve display names for a set of ids (unknown ids are skipped)."""
        ids = {pid for pid in party_ids if pid is not None}
        if not ids:
            return {}
        rows = self.session.execute(
            select(Party.id, Party.name).where(Party.id.in_(ids))
        ).all()
        return {row.id: row.name for row in rows}

    def list_by_type(
        self,
        party_type: PartyType,
        active_only: bool = True,
    ) -> list[PartyInfo]:
        stmt = select(Party).where(Party.party_type == PartyType(party_type).value)
        if active_only:
            stmt = stmt.where(Party.is_active.is_(True))
        stmt = stmt.order_by(Party.name)
        return [self._to_dto(p) for p in self.session.execute(stmt).scalars()]

    def create_party(
        self,
        party_type: PartyType,
        name: str,
        actor_id: UUID,
        party_code: str | None = None,
        contact: str | None = None,
        address: str | None = None,
        email: str | None = None,
        document_id: str | None = None,
        role: WorkerRole | None = None,
    ) -> PartyInfo:
        """
        Create a client or worker.

        Args:
            party_type: CLIENT or WORKER.
            name: Display name (required).
            actor_id: Acting user.
            party_code: Explicit code; minted from a sequence when omitted
                (CLI-0001, WRK-0001, ...).
            role: Worker role; defaults to WORKER for workers, must be None
                for clients.

        Raises:
            ValidationError: Blank name, or a role given for a client.
        """
        party_type = PartyType(party_type)
        if not name or not name.strip():
            raise ValidationError("name", "must not be blank")
        if party_type == PartyType.CLIENT and role is not None:
            raise ValidationError("role", "clients have no role")
        if party_type == PartyType.WORKER and role is None:
            role = WorkerRole.WORKER

        if party_code is None:
            prefix, sequence = _CODE_PREFIX[party_type]
            party_code = format_number(
                prefix, SequenceService(self.session).next_value(sequence)
            )

        party = Party(
            party_code=party_code,
            party_type=party_type.value,
            name=name.strip(),
            contact=contact,
            address=address,
            email=email,
            document_id=document_id,
            role=WorkerRole(role).value if role else None,
            is_active=True,
            created_at=self._now(),
            created_by_id=actor_id,
        )
        self.session.add(party)
        self.session.flush()
        self._changed(ChangedEntity.PARTY, party.id, ChangeAction.CREATED)
        logger.info(
            "party_created",
            extra={
                "party_id": str(party.id),
                "party_code": party_code,
                "party_type": party_type.value,
            },
        )
        return self._to_dto(party)

    def update_party(
        self,
        party_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        contact: str | None = None,
        address: str | None = None,
        email: str | None = None,
        document_id: str | None = None,
        role: WorkerRole | None = None,
    ) -> PartyInfo:
        """
        Update party details.  party_code and party_type cannot change.
        Existing budget / order snapshots are not touched.
        """
        party = self._get_by_id(party_id)

        if name is not None:
            if not name.strip():
                raise ValidationError("name", "must not be blank")
            party.name = name.strip()
        if contact is not None:
            party.contact = contact
        if address is not None:
            party.address = address
        if email is not None:
            party.email = email
        if document_id is not None:
            party.document_id = document_id
        if role is not None:
            if party.party_type != PartyType.WORKER:
                raise ValidationError("role", "clients have no role")
            party.role = WorkerRole(role).value

        party.updated_by_id = actor_id
        self.session.flush()
        self._changed(ChangedEntity.PARTY, party.id)
        return self._to_dto(party)

    def deactivate(self, party_id: UUID, actor_id: UUID) -> PartyInfo:
        """Deactivate a party.  History that references it stays intact."""
        party = self._get_by_id(party_id)
        party.is_active = False
        party.updated_by_id = actor_id
        self.session.flush()
        self._changed(ChangedEntity.PARTY, party.id)
        logger.info("party_deactivated", extra={"party_id": str(party_id)})
        return self._to_dto(party)
