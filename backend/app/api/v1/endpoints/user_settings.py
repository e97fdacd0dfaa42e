"""
User Settings API Endpoints.

Company name: creates (or renames) the company self-account party.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.schemas.settings import SettingsResponse, SettingsUpdate
from backend.app.services import company_settings
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("", response_model=SettingsResponse)
async def get_settings(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user_settings = await company_settings.get_settings(db, current_user["user_id"])
    return SettingsResponse(company_name=user_settings.company_name, updated_at=user_settings.updated_at)


@router.put("", response_model=SettingsResponse)
async def update_settings(
    payload: SettingsUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Set the company name.

    A company party is registered when missing; a rename moves the old
    company party and its entries to the new name.
    """
    previous = (await company_settings.get_settings(db, current_user["user_id"])).company_name
    user_settings, moved = await company_settings.update_company_name(
        db, current_user["user_id"], payload.company_name
    )

    await log_event(
        db=db,
        action=AuditAction.COMPANY_RENAMED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        target_type="settings",
        target_id=user_settings.id,
        metadata={"from": previous, "to": user_settings.company_name, "entries_moved": moved}
    )

    return SettingsResponse(
        company_name=user_settings.company_name,
        updated_at=user_settings.updated_at,
        entries_moved=moved,
    )
