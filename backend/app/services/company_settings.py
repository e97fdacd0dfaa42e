"""
Company settings.

The company name is the company self-account: a party of that name is
registered automatically, and its ledger rows belong to the company virtual
category in the trial balance.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.domain.ledger.classification import classify_new_entry, normalize_name
from backend.app.domain.ledger.store import LedgerEntryStore
from backend.app.models.ledger_enums import EntryKind
from backend.app.models.user_settings import UserSettings
from backend.app.services import party_registry
from backend.app.services.cache import CompanySettingsChanged, report_cache
from backend.app.services.party_lock import party_locks

logger = logging.getLogger(__name__)


async def get_settings(db: AsyncSession, user_id: int) -> UserSettings:
    """Load the user's settings row, creating an empty one on first access."""
    result = await db.execute(select(UserSettings).where(UserSettings.user_id == user_id))
    user_settings = result.scalar_one_or_none()
    if user_settings is None:
        user_settings = UserSettings(user_id=user_id)
        db.add(user_settings)
        await db.commit()
        await db.refresh(user_settings)
    return user_settings


async def update_company_name(db: AsyncSession, user_id: int, company_name: str) -> Tuple[UserSettings, int]:
    """
    Set or change the company name.

    1. First time: register a party of that name if there is none.
    2. Rename: move the old company party and its rows to the new name,
       unless a party with the new name already exists (then the old party
       is left alone and becomes an ordinary party).
    3. Re-tag rows of the old and new names and drop cached reports.

    Returns:
        (settings, number of ledger rows moved to the new name)
    """
    new_name = normalize_name(company_name)
    user_settings = await get_settings(db, user_id)
    old_name: Optional[str] = normalize_name(user_settings.company_name) or None

    if old_name == new_name:
        await party_registry.ensure_party(db, user_id, new_name)
        return user_settings, 0

    store = LedgerEntryStore(db)
    moved = 0
    async with party_locks.hold(user_id, *[name for name in (old_name, new_name) if name]):
        user_settings.company_name = new_name
        await db.flush()

        old_party = await party_registry.get_party_by_name(db, user_id, old_name) if old_name else None
        new_party = await party_registry.get_party_by_name(db, user_id, new_name)

        if old_party and not new_party:
            moved = await party_registry.rename_party(db, user_id, old_party, new_name)
        elif not new_party:
            await db.commit()
            await party_registry.create_party(db, user_id, new_name)

        if old_name:
            # Rows left under the old name are no longer the company account
            kind, category = classify_new_entry(old_name, new_name)
            await store.set_classification(user_id, old_name, kind, category)
        await store.set_classification(user_id, new_name, EntryKind.VIRTUAL_CATEGORY, new_name)
        await db.commit()

    await db.refresh(user_settings)
    await report_cache.publish(CompanySettingsChanged(user_id=user_id, company_name=new_name))
    logger.info("Company name for user %s set to '%s' (was '%s', %d entries moved)", user_id, new_name, old_name, moved)
    return user_settings, moved
