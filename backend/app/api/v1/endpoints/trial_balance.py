"""
Trial Balance API Endpoint.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.domain.ledger.trial_balance import trial_balance_service
from backend.app.schemas.trial_balance import (
    TrialBalanceResponse,
    TrialBalanceRowResponse,
    TrialBalanceTotals,
)

router = APIRouter(prefix="/trial-balance", tags=["Trial Balance"])


@router.get("", response_model=TrialBalanceResponse)
async def get_trial_balance(
    party_name: Optional[str] = Query(None, description="Restrict the report to one party or category"),
    force_refresh: bool = Query(False, description="Bypass the cache and recompute from the ledger"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Credit-side and debit-side closing balances of all parties.

    Served from the report cache when possible; pass force_refresh=true
    for a guaranteed-fresh result (for example right after a settlement).
    """
    report = await trial_balance_service.get_trial_balance(
        db, current_user["user_id"], party_name=party_name, force_refresh=force_refresh
    )
    return TrialBalanceResponse(
        credit_entries=[TrialBalanceRowResponse.model_validate(row) for row in report.credit_entries],
        debit_entries=[TrialBalanceRowResponse.model_validate(row) for row in report.debit_entries],
        totals=TrialBalanceTotals(
            total_credit=report.total_credit,
            total_debit=report.total_debit,
            difference=report.difference,
            is_balanced=report.is_balanced,
        ),
        orphaned_entries=report.orphaned_entries,
        generated_at=report.generated_at,
        cached=report.from_cache,
    )
