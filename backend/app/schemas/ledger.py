"""
Ledger Pydantic schemas.

Entry mutations, the party ledger view, settlements and maintenance.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.ledger_enums import EntryDirection, EntryKind


class EntryCreate(BaseModel):
    """Schema for recording a transaction. Amount must be positive."""
    party_name: str = Field(..., min_length=1, max_length=255)
    entry_date: date = Field(..., description="Business date of the transaction")
    tns_type: EntryDirection = Field(..., description="CR or DR")
    amount: Decimal = Field(..., max_digits=15, decimal_places=2)
    remarks: Optional[str] = Field(None, max_length=500)
    chk: bool = False
    ti: Optional[str] = Field(None, max_length=100)


class EntryUpdate(BaseModel):
    """Schema for editing an open entry. Omitted fields are unchanged."""
    party_name: Optional[str] = Field(None, min_length=1, max_length=255)
    entry_date: Optional[date] = None
    tns_type: Optional[EntryDirection] = None
    amount: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    remarks: Optional[str] = Field(None, max_length=500)
    chk: Optional[bool] = None


class EntryResponse(BaseModel):
    id: int
    party_name: str
    entry_date: date
    created_at: datetime
    tns_type: EntryDirection
    credit: Decimal
    debit: Decimal
    balance: Decimal
    remarks: Optional[str]
    kind: EntryKind
    category: Optional[str]
    is_old_record: bool
    settlement_date: Optional[datetime]
    settlement_ref: Optional[int]
    chk: bool
    ti: Optional[str]

    class Config:
        from_attributes = True


class RecalculationSummary(BaseModel):
    """Balance replay outcome. failed > 0 means some rows kept their old balance."""
    party_name: str
    updated: int
    unchanged: int
    failed: int

    class Config:
        from_attributes = True


class EntryMutationResponse(BaseModel):
    entry: EntryResponse
    recalculation: List[RecalculationSummary]
    partial_failure: bool


class EntryDeleteResponse(BaseModel):
    deleted_id: int
    recalculation: RecalculationSummary
    partial_failure: bool


class PartyLedgerSummary(BaseModel):
    total_credit: Decimal
    total_debit: Decimal
    total_entries: int
    total_old_records: int


class PartyLedgerResponse(BaseModel):
    party_name: str
    open_entries: List[EntryResponse]
    settled_entries: List[EntryResponse]
    closing_balance: Decimal
    summary: PartyLedgerSummary


class SettleRequest(BaseModel):
    party_names: List[str] = Field(..., min_length=1, description="Parties to close")


class PartySettlementResponse(BaseModel):
    party_name: str
    settled_count: int
    marker_id: Optional[int]
    absorbed_markers: int
    net_amount: Decimal
    direction: Optional[EntryDirection]

    class Config:
        from_attributes = True


class SettlementFailureResponse(BaseModel):
    party_name: str
    reason: str

    class Config:
        from_attributes = True


class SettleResponse(BaseModel):
    settled_count: int
    parties: List[PartySettlementResponse]
    failed_parties: List[SettlementFailureResponse]
    partial_failure: bool


class UnsettleResponse(BaseModel):
    marker_id: int
    party_name: str
    unsettled_count: int
    reopened_markers: int
    orphans_repaired: int

    class Config:
        from_attributes = True


class RecalculateAllResponse(BaseModel):
    parties_processed: int
    entries_updated: int
    entries_unchanged: int
    entries_failed: int
    partial_failure: bool


class ReclassifyResponse(BaseModel):
    examined: int
    changed: int
    parties_recalculated: int

    class Config:
        from_attributes = True
