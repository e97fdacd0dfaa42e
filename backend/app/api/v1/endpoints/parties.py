"""
Party Registry API Endpoints.

Register, list, edit, rename and delete a user's parties.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.models.ledger_enums import PartyStatus
from backend.app.schemas.party import (
    PartyCreate,
    PartyUpdate,
    PartyResponse,
    PartyUpdateResponse,
    PartyListResponse,
    PartyBulkDelete,
    PartyDeleteResponse,
)
from backend.app.services import party_registry
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/parties", tags=["Parties"])


def _enum_values(data: dict) -> dict:
    return {key: getattr(value, "value", value) for key, value in data.items()}


@router.post("", response_model=PartyResponse, status_code=status.HTTP_201_CREATED)
async def create_party(
    party_data: PartyCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a new party for the authenticated user.

    409 if the name is already registered.
    """
    fields = _enum_values(party_data.model_dump(exclude={"party_name"}))
    party = await party_registry.create_party(
        db, current_user["user_id"], party_data.party_name, **fields
    )

    await log_event(
        db=db,
        action=AuditAction.PARTY_CREATED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        target_type="party",
        target_id=party.id,
        metadata={"party_name": party.party_name, "sr_no": party.sr_no}
    )

    return PartyResponse.model_validate(party)


@router.get("", response_model=PartyListResponse)
async def list_parties(
    status_filter: Optional[PartyStatus] = Query(None, alias="status", description="A or R"),
    search: Optional[str] = Query(None, description="Case-insensitive name filter"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the authenticated user's parties ordered by serial number."""
    parties = await party_registry.list_parties(
        db,
        current_user["user_id"],
        status=status_filter.value if status_filter else None,
        search=search,
    )
    return PartyListResponse(
        parties=[PartyResponse.model_validate(party) for party in parties],
        total=len(parties),
    )


@router.get("/{party_id}", response_model=PartyResponse)
async def get_party(
    party_id: int,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get one party. 404 when missing or owned by another user."""
    party = await party_registry.get_party(db, current_user["user_id"], party_id)
    return PartyResponse.model_validate(party)


@router.patch("/{party_id}", response_model=PartyUpdateResponse)
async def update_party(
    party_id: int,
    party_data: PartyUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Update party metadata.

    A new party_name renames the party and moves all of its ledger entries.
    """
    changes = _enum_values(party_data.model_dump(exclude_unset=True))
    renamed_to = changes.get("party_name")
    party, moved = await party_registry.update_party(db, current_user["user_id"], party_id, changes)

    await log_event(
        db=db,
        action=AuditAction.PARTY_RENAMED if renamed_to else AuditAction.PARTY_UPDATED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        target_type="party",
        target_id=party.id,
        metadata={"changes": changes, "entries_moved": moved}
    )

    response = PartyUpdateResponse.model_validate(party)
    response.entries_moved = moved
    return response


async def _delete(db: AsyncSession, current_user: dict, party_ids) -> PartyDeleteResponse:
    names, deleted_entries = await party_registry.delete_parties(db, current_user["user_id"], party_ids)

    await log_event(
        db=db,
        action=AuditAction.PARTY_DELETED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        target_type="party",
        metadata={"party_ids": list(party_ids), "party_names": names, "deleted_entries": deleted_entries}
    )

    return PartyDeleteResponse(deleted_parties=names, deleted_entries=deleted_entries)


@router.delete("/{party_id}", response_model=PartyDeleteResponse)
async def delete_party(
    party_id: int,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete a party together with all of its ledger entries."""
    return await _delete(db, current_user, [party_id])


@router.post("/bulk-delete", response_model=PartyDeleteResponse)
async def delete_parties(
    payload: PartyBulkDelete,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete several parties (all must belong to the caller) with their entries."""
    return await _delete(db, current_user, payload.party_ids)
