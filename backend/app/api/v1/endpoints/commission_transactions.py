"""
Commission Transaction API Endpoints.

Brokered client/vendor deals booked through the house account. Creating
or cancelling a deal writes ledger entries and replays every party it
touches.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.domain.ledger.commission_service import CommissionTransactionService
from backend.app.models.ledger_enums import CommissionStatus
from backend.app.schemas.commission import (
    CommissionTransactionCreate,
    CommissionTransactionResponse,
    CommissionMutationResponse,
    CommissionDetailResponse,
    CommissionPeriodResponse,
    CommissionSummaryResponse,
)
from backend.app.schemas.ledger import EntryResponse, RecalculationSummary
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/commission-transactions", tags=["Commission Transactions"])


def _mutation_response(record, entries, recalculations) -> CommissionMutationResponse:
    return CommissionMutationResponse(
        transaction=CommissionTransactionResponse.model_validate(record),
        entries=[EntryResponse.model_validate(entry) for entry in entries],
        recalculation=[RecalculationSummary.model_validate(result) for result in recalculations],
        partial_failure=any(result.is_partial_failure for result in recalculations),
    )


@router.post("", response_model=CommissionMutationResponse, status_code=status.HTTP_201_CREATED)
async def create_commission_transaction(
    data: CommissionTransactionCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Book a deal between two registered parties.

    - 404 if the client or vendor is not registered
    - 400 for a non-positive amount, a rate outside 0-100, the same party
      on both sides, or a virtual category as client or vendor
    """
    record, entries, recalculations = await CommissionTransactionService.create(
        db,
        current_user["user_id"],
        client_name=data.client_name,
        vendor_name=data.vendor_name,
        original_amount=data.original_amount,
        client_commission_rate=data.client_commission_rate,
        vendor_commission_rate=data.vendor_commission_rate,
        transaction_date=data.transaction_date,
        remarks=data.remarks,
    )
    response = _mutation_response(record, entries, recalculations)

    await log_event(
        db=db,
        action=AuditAction.COMMISSION_CREATED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        target_type="commission_transaction",
        target_id=record.id,
        metadata={
            "transaction_id": record.transaction_id,
            "client_name": record.client_name,
            "vendor_name": record.vendor_name,
            "amount": record.original_amount,
        }
    )
    return response


@router.get("", response_model=List[CommissionTransactionResponse])
async def list_commission_transactions(
    status_filter: Optional[CommissionStatus] = Query(None, alias="status"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Deals, most recent transaction date first."""
    records = await CommissionTransactionService.list_transactions(db, current_user["user_id"], status_filter)
    return [CommissionTransactionResponse.model_validate(record) for record in records]


@router.get("/summary", response_model=CommissionSummaryResponse)
async def get_commission_summary(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Totals and monthly breakdown of active deals. Cancelled deals are only counted."""
    summary = await CommissionTransactionService.summary(db, current_user["user_id"], start_date, end_date)
    return CommissionSummaryResponse(
        total_transactions=summary.total_transactions,
        cancelled_transactions=summary.cancelled_transactions,
        business_volume=summary.business_volume,
        commission_collected=summary.commission_collected,
        commission_paid=summary.commission_paid,
        net_profit=summary.net_profit,
        house_balance=summary.house_balance,
        months=[CommissionPeriodResponse.model_validate(period) for period in summary.months],
    )


@router.get("/{transaction_id}", response_model=CommissionDetailResponse)
async def get_commission_transaction(
    transaction_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    record, entries = await CommissionTransactionService.get_transaction(db, current_user["user_id"], transaction_id)
    return CommissionDetailResponse(
        transaction=CommissionTransactionResponse.model_validate(record),
        entries=[EntryResponse.model_validate(entry) for entry in entries],
    )


@router.post("/{transaction_id}/cancel", response_model=CommissionMutationResponse)
async def cancel_commission_transaction(
    transaction_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Reverse every ledger line of a deal.

    - 404 if the transaction is unknown
    - 409 if it is already cancelled
    """
    record, reversals, recalculations = await CommissionTransactionService.cancel(
        db, current_user["user_id"], transaction_id
    )
    response = _mutation_response(record, reversals, recalculations)

    await log_event(
        db=db,
        action=AuditAction.COMMISSION_CANCELLED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        target_type="commission_transaction",
        target_id=record.id,
        metadata={"transaction_id": transaction_id, "reversed_entries": len(reversals)}
    )
    return response
