"""
Party Registry.

The list of a user's valid counterparties. The trial balance uses it to tell
real parties from orphaned rows; entry creation uses it to reject unknown
parties. Renaming a party carries its ledger rows along, deleting a party
deletes its rows.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import DuplicatePartyError, ResourceNotFoundError
from backend.app.domain.ledger.classification import classify_new_entry, normalize_name
from backend.app.domain.ledger.recalculator import recalculate_party
from backend.app.domain.ledger.store import LedgerEntryStore
from backend.app.models.party import Party
from backend.app.models.user_settings import UserSettings
from backend.app.services.cache import PartiesRemoved, PartyMutated, report_cache
from backend.app.services.party_lock import party_locks

logger = logging.getLogger(__name__)

SR_NO_WIDTH = 3


async def get_company_name(db: AsyncSession, user_id: int) -> Optional[str]:
    result = await db.execute(select(UserSettings.company_name).where(UserSettings.user_id == user_id))
    company_name = result.scalar_one_or_none()
    return normalize_name(company_name) or None


async def next_sr_no(db: AsyncSession, user_id: int) -> str:
    """
    Next serial number for a user's party list ("001", "002", ...).

    Non-numeric serials (hand-edited rows) are ignored.
    """
    result = await db.execute(select(Party.sr_no).where(Party.user_id == user_id))
    numbers = [int(value) for value in result.scalars().all() if value and value.isdigit()]
    return str(max(numbers, default=0) + 1).zfill(SR_NO_WIDTH)


async def get_party_by_name(db: AsyncSession, user_id: int, party_name: str) -> Optional[Party]:
    result = await db.execute(
        select(Party).where(Party.user_id == user_id, Party.party_name == normalize_name(party_name))
    )
    return result.scalar_one_or_none()


async def get_party(db: AsyncSession, user_id: int, party_id: int) -> Party:
    """
    Raises:
        ResourceNotFoundError: party missing or owned by another user
    """
    result = await db.execute(select(Party).where(Party.id == party_id, Party.user_id == user_id))
    party = result.scalar_one_or_none()
    if party is None:
        raise ResourceNotFoundError("Party", party_id)
    return party


async def list_parties(
    db: AsyncSession,
    user_id: int,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Party]:
    query = select(Party).where(Party.user_id == user_id)
    if status:
        query = query.where(Party.status == status)
    if search:
        query = query.where(func.lower(Party.party_name).contains(search.strip().lower()))
    result = await db.execute(query.order_by(Party.sr_no, Party.party_name))
    return list(result.scalars().all())


async def registered_names(db: AsyncSession, user_id: int) -> Set[str]:
    result = await db.execute(select(Party.party_name).where(Party.user_id == user_id))
    return set(result.scalars().all())


async def create_party(db: AsyncSession, user_id: int, party_name: str, **fields: Any) -> Party:
    """
    Register a new party.

    Args:
        db: Database session
        user_id: Owner
        party_name: Unique (per user) name, whitespace collapsed
        **fields: Optional metadata (status, rate, address ...)

    Raises:
        DuplicatePartyError: name already registered for this user
    """
    name = normalize_name(party_name)
    if await get_party_by_name(db, user_id, name):
        raise DuplicatePartyError(name)

    party = Party(
        user_id=user_id,
        party_name=name,
        sr_no=fields.pop("sr_no", None) or await next_sr_no(db, user_id),
        **{key: value for key, value in fields.items() if value is not None},
    )
    db.add(party)
    await db.commit()
    await db.refresh(party)

    logger.info("Party %s ('%s') created for user %s", party.id, party.party_name, user_id)
    return party


async def ensure_party(db: AsyncSession, user_id: int, party_name: str) -> Tuple[Party, bool]:
    """Return the party of that name, creating it when missing. Second item is True when created."""
    existing = await get_party_by_name(db, user_id, party_name)
    if existing:
        return existing, False
    return await create_party(db, user_id, party_name), True


async def rename_party(db: AsyncSession, user_id: int, party: Party, new_name: str) -> int:
    """
    Rename a party and every ledger row recorded against it.

    Runs under both party locks. Rows are re-tagged for the new name (a
    party renamed to the company name becomes the company category).
    Does not commit.

    Returns:
        Number of ledger rows moved
    """
    new_name = normalize_name(new_name)
    old_name = party.party_name
    if new_name == old_name:
        return 0
    if await get_party_by_name(db, user_id, new_name):
        raise DuplicatePartyError(new_name)

    store = LedgerEntryStore(db)
    company_name = await get_company_name(db, user_id)
    kind, category = classify_new_entry(new_name, company_name)

    party.party_name = new_name
    await db.flush()
    moved = await store.rename_party(user_id, old_name, new_name)
    await store.set_classification(user_id, new_name, kind, category)
    await recalculate_party(db, user_id, new_name)

    logger.info("Party '%s' renamed to '%s' for user %s (%d entries)", old_name, new_name, user_id, moved)
    return moved


async def update_party(db: AsyncSession, user_id: int, party_id: int, changes: Dict[str, Any]) -> Tuple[Party, int]:
    """
    Update party metadata, renaming when party_name changes.

    Returns:
        (party, number of ledger rows moved by a rename)
    """
    party = await get_party(db, user_id, party_id)
    new_name = changes.pop("party_name", None)
    moved = 0

    if new_name is not None and normalize_name(new_name) != party.party_name:
        old_name = party.party_name
        async with party_locks.hold(user_id, old_name, new_name):
            moved = await rename_party(db, user_id, party, new_name)
            for field_name, value in changes.items():
                setattr(party, field_name, value)
            await db.commit()
        await report_cache.publish(PartyMutated(user_id=user_id, party_name=old_name))
    else:
        for field_name, value in changes.items():
            setattr(party, field_name, value)
        await db.commit()

    await db.refresh(party)
    return party, moved


async def delete_parties(db: AsyncSession, user_id: int, party_ids: Iterable[int]) -> Tuple[List[str], int]:
    """
    Delete parties and all their ledger rows.

    Every id must belong to the user; nothing is deleted otherwise.

    Returns:
        (deleted party names, number of ledger rows deleted)
    """
    parties = [await get_party(db, user_id, party_id) for party_id in dict.fromkeys(party_ids)]
    names = [party.party_name for party in parties]

    store = LedgerEntryStore(db)
    deleted_entries = 0
    async with party_locks.hold(user_id, *names):
        for party in parties:
            deleted_entries += await store.delete_for_party(user_id, party.party_name)
            await db.delete(party)
        await db.commit()

    await report_cache.publish(PartiesRemoved(user_id=user_id, party_names=tuple(names)))
    logger.info("Deleted %d parties (%d entries) for user %s", len(names), deleted_entries, user_id)
    return names, deleted_entries
