"""
User settings Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class SettingsUpdate(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=255, description="Company self-account name")


class SettingsResponse(BaseModel):
    company_name: Optional[str]
    updated_at: datetime
    entries_moved: int = 0
