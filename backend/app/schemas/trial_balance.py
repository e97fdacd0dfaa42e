"""
Trial balance Pydantic schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import List, Optional


class TrialBalanceRowResponse(BaseModel):
    name: str
    amount: Decimal
    credit_total: Decimal
    debit_total: Decimal
    entry_count: int

    class Config:
        from_attributes = True


class TrialBalanceTotals(BaseModel):
    total_credit: Decimal
    total_debit: Decimal
    difference: Decimal
    is_balanced: bool


class TrialBalanceResponse(BaseModel):
    credit_entries: List[TrialBalanceRowResponse]
    debit_entries: List[TrialBalanceRowResponse]
    totals: TrialBalanceTotals
    orphaned_entries: int
    generated_at: Optional[datetime]
    cached: bool
