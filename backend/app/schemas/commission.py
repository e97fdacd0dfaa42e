"""
Commission transaction Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from backend.app.models.ledger_enums import CommissionStatus
from backend.app.schemas.ledger import EntryResponse, RecalculationSummary


class CommissionTransactionCreate(BaseModel):
    """Omitted rates fall back to the configured defaults."""
    client_name: str = Field(..., min_length=1, max_length=255)
    vendor_name: str = Field(..., min_length=1, max_length=255)
    original_amount: Decimal = Field(..., max_digits=15, decimal_places=2)
    client_commission_rate: Optional[Decimal] = Field(None, max_digits=5, decimal_places=2)
    vendor_commission_rate: Optional[Decimal] = Field(None, max_digits=5, decimal_places=2)
    transaction_date: Optional[date] = None
    remarks: Optional[str] = Field(None, max_length=500)


class CommissionTransactionResponse(BaseModel):
    id: int
    transaction_id: str
    client_name: str
    vendor_name: str
    house_account: str
    transaction_date: date
    original_amount: Decimal
    client_commission_rate: Decimal
    vendor_commission_rate: Decimal
    client_commission: Decimal
    vendor_commission: Decimal
    net_to_vendor: Decimal
    net_profit: Decimal
    remarks: Optional[str]
    status: CommissionStatus
    created_at: datetime
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class CommissionMutationResponse(BaseModel):
    transaction: CommissionTransactionResponse
    entries: List[EntryResponse]
    recalculation: List[RecalculationSummary]
    partial_failure: bool


class CommissionDetailResponse(BaseModel):
    transaction: CommissionTransactionResponse
    entries: List[EntryResponse]


class CommissionPeriodResponse(BaseModel):
    month: str
    transactions: int
    business_volume: Decimal
    commission_collected: Decimal
    commission_paid: Decimal
    net_profit: Decimal

    class Config:
        from_attributes = True


class CommissionSummaryResponse(BaseModel):
    total_transactions: int
    cancelled_transactions: int
    business_volume: Decimal
    commission_collected: Decimal
    commission_paid: Decimal
    net_profit: Decimal
    house_balance: Decimal
    months: List[CommissionPeriodResponse]

    class Config:
        from_attributes = True
