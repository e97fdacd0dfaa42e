"""
Party Ledger API Endpoints.

Entry mutations, the per-party ledger view, Monday Final settlements and
ledger maintenance. The user id always comes from the bearer token.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.domain.ledger.settlement_service import SettlementService
from backend.app.schemas.ledger import (
    EntryCreate,
    EntryUpdate,
    EntryResponse,
    EntryMutationResponse,
    EntryDeleteResponse,
    RecalculationSummary,
    PartyLedgerResponse,
    PartyLedgerSummary,
    SettleRequest,
    SettleResponse,
    PartySettlementResponse,
    SettlementFailureResponse,
    UnsettleResponse,
    RecalculateAllResponse,
    ReclassifyResponse,
)
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/ledger", tags=["Ledger"])


async def _audit(db: AsyncSession, current_user: dict, action: str, target_type: str, target_id=None, metadata=None):
    await log_event(
        db=db,
        action=action,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        target_type=target_type,
        target_id=target_id,
        metadata=metadata
    )


@router.post("/entries", response_model=EntryMutationResponse, status_code=status.HTTP_201_CREATED)
async def add_entry(
    entry_data: EntryCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a transaction against a party.

    - 404 if the party is not registered (virtual categories are always accepted)
    - 400 if the amount is not positive
    - The whole party is replayed; partial_failure reports rows whose
      balance could not be written
    """
    entry, recalculation = await LedgerService.add_entry(
        db,
        current_user["user_id"],
        party_name=entry_data.party_name,
        entry_date=entry_data.entry_date,
        direction=entry_data.tns_type,
        amount=entry_data.amount,
        remarks=entry_data.remarks,
        chk=entry_data.chk,
        ti=entry_data.ti,
    )
    response = EntryMutationResponse(
        entry=EntryResponse.model_validate(entry),
        recalculation=[RecalculationSummary.model_validate(recalculation)],
        partial_failure=recalculation.is_partial_failure,
    )

    await _audit(db, current_user, AuditAction.ENTRY_CREATED, "entry", entry.id, {
        "party_name": entry.party_name,
        "tns_type": entry.tns_type.value,
        "amount": entry_data.amount,
    })
    return response


@router.patch("/entries/{entry_id}", response_model=EntryMutationResponse)
async def update_entry(
    entry_id: int,
    entry_data: EntryUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Edit an open entry. Settled entries and settlement markers are rejected (409).
    """
    changes = entry_data.model_dump(exclude_unset=True)
    entry, results = await LedgerService.update_entry(
        db,
        current_user["user_id"],
        entry_id,
        party_name=changes.get("party_name"),
        entry_date=changes.get("entry_date"),
        direction=changes.get("tns_type"),
        amount=changes.get("amount"),
        remarks=changes.get("remarks"),
        chk=changes.get("chk"),
    )
    response = EntryMutationResponse(
        entry=EntryResponse.model_validate(entry),
        recalculation=[RecalculationSummary.model_validate(result) for result in results],
        partial_failure=any(result.is_partial_failure for result in results),
    )

    await _audit(db, current_user, AuditAction.ENTRY_UPDATED, "entry", entry_id, {"changes": changes})
    return response


@router.delete("/entries/{entry_id}", response_model=EntryDeleteResponse)
async def delete_entry(
    entry_id: int,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete an open entry and replay its party."""
    recalculation = await LedgerService.delete_entry(db, current_user["user_id"], entry_id)

    await _audit(db, current_user, AuditAction.ENTRY_DELETED, "entry", entry_id, {
        "party_name": recalculation.party_name,
    })
    return EntryDeleteResponse(
        deleted_id=entry_id,
        recalculation=RecalculationSummary.model_validate(recalculation),
        partial_failure=recalculation.is_partial_failure,
    )


@router.get("/parties/{party_name}", response_model=PartyLedgerResponse)
async def get_party_ledger(
    party_name: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    One party's ledger in canonical order (date, then creation time).

    open_entries includes open settlement markers; closing_balance counts
    them at the net they carry.
    """
    ledger = await LedgerService.get_party_ledger(db, current_user["user_id"], party_name)
    return PartyLedgerResponse(
        party_name=ledger.party_name,
        open_entries=[EntryResponse.model_validate(entry) for entry in ledger.open_entries],
        settled_entries=[EntryResponse.model_validate(entry) for entry in ledger.settled_entries],
        closing_balance=ledger.closing_balance,
        summary=PartyLedgerSummary(
            total_credit=ledger.total_credit,
            total_debit=ledger.total_debit,
            total_entries=ledger.total_entries,
            total_old_records=ledger.total_old_records,
        ),
    )


@router.post("/recalculate", response_model=RecalculateAllResponse)
async def recalculate_all_balances(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Replay every party of the authenticated user."""
    summary = await LedgerService.recalculate_all(db, current_user["user_id"])

    await _audit(db, current_user, AuditAction.BALANCES_RECALCULATED, "ledger", metadata={
        "parties_processed": summary.parties_processed,
        "entries_updated": summary.entries_updated,
        "entries_failed": summary.entries_failed,
    })
    return RecalculateAllResponse(
        parties_processed=summary.parties_processed,
        entries_updated=summary.entries_updated,
        entries_unchanged=summary.entries_unchanged,
        entries_failed=summary.entries_failed,
        partial_failure=summary.entries_failed > 0,
    )


@router.post("/settlements", response_model=SettleResponse)
async def settle_parties(
    payload: SettleRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Monday Final: close the open entries of each named party into one
    settlement entry. Parties that fail are listed in failed_parties.
    """
    result = await SettlementService.settle(db, current_user["user_id"], payload.party_names)

    for item in result.parties:
        if item.marker_id is not None:
            await _audit(db, current_user, AuditAction.SETTLEMENT_CREATED, "settlement", item.marker_id, {
                "party_name": item.party_name,
                "settled_count": item.settled_count,
                "net_amount": item.net_amount,
                "direction": item.direction.value,
            })

    return SettleResponse(
        settled_count=result.settled_count,
        parties=[PartySettlementResponse.model_validate(item) for item in result.parties],
        failed_parties=[SettlementFailureResponse.model_validate(item) for item in result.failed_parties],
        partial_failure=bool(result.failed_parties),
    )


@router.delete("/settlements/{marker_id}", response_model=UnsettleResponse)
async def unsettle(
    marker_id: int,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Reverse one settlement: reopen what it absorbed and delete it.

    400 if the id is not a settlement entry.
    """
    result = await SettlementService.unsettle(db, current_user["user_id"], marker_id)

    await _audit(db, current_user, AuditAction.SETTLEMENT_REVERSED, "settlement", marker_id, {
        "party_name": result.party_name,
        "unsettled_count": result.unsettled_count,
        "orphans_repaired": result.orphans_repaired,
    })
    return UnsettleResponse.model_validate(result)


@router.post("/maintenance/reclassify", response_model=ReclassifyResponse)
async def reclassify_entries(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """One-time migration of legacy rows to explicit entry kinds."""
    result = await LedgerService.reclassify_entries(db, current_user["user_id"])

    await _audit(db, current_user, AuditAction.ENTRIES_RECLASSIFIED, "ledger", metadata={
        "examined": result.examined,
        "changed": result.changed,
    })
    return ReclassifyResponse.model_validate(result)
