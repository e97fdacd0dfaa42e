"""
Party Pydantic schemas.

Defines request and response models for the party registry.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.ledger_enums import PartyStatus, MondayFinalFlag


class PartyCreate(BaseModel):
    """Schema for registering a new party."""
    party_name: str = Field(..., min_length=1, max_length=255, description="Party name, unique per user")
    sr_no: Optional[str] = Field(None, max_length=10, description="Serial number (next free one when omitted)")
    status: PartyStatus = Field(PartyStatus.ACTIVE, description="A = active, R = resigned")
    commission_system: Optional[str] = Field(None, max_length=50)
    balance_limit: Optional[Decimal] = Field(None, ge=0)
    m_commission: Optional[str] = Field(None, max_length=50)
    rate: Optional[Decimal] = Field(None, ge=0)
    address: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[str] = Field(None, max_length=255)


class PartyUpdate(BaseModel):
    """Schema for updating a party. A new party_name renames its ledger rows too."""
    party_name: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[PartyStatus] = None
    commission_system: Optional[str] = Field(None, max_length=50)
    balance_limit: Optional[Decimal] = Field(None, ge=0)
    m_commission: Optional[str] = Field(None, max_length=50)
    rate: Optional[Decimal] = Field(None, ge=0)
    monday_final: Optional[MondayFinalFlag] = None
    address: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[str] = Field(None, max_length=255)


class PartyResponse(BaseModel):
    """Schema for party response."""
    id: int
    user_id: int
    party_name: str
    sr_no: str
    status: str
    commission_system: str
    balance_limit: Decimal
    m_commission: str
    rate: Decimal
    monday_final: str
    address: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PartyUpdateResponse(PartyResponse):
    entries_moved: int = 0


class PartyListResponse(BaseModel):
    parties: List[PartyResponse]
    total: int


class PartyBulkDelete(BaseModel):
    party_ids: List[int] = Field(..., min_length=1, description="Parties to delete with all their entries")


class PartyDeleteResponse(BaseModel):
    deleted_parties: List[str]
    deleted_entries: int
