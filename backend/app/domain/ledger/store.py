"""
Ledger Entry Store.

Persistence contract for ledger rows. Every read is tenant scoped; the
store never commits, callers own the transaction.
"""

from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import EntryKind

# Database-side canonical order; the recalculator re-sorts in Python
CANONICAL_ORDER = (LedgerEntry.entry_date.asc(), LedgerEntry.created_at.asc(), LedgerEntry.id.asc())


class LedgerEntryStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: int, entry_id: int) -> Optional[LedgerEntry]:
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.id == entry_id, LedgerEntry.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_owned(self, user_id: int, entry_id: int) -> LedgerEntry:
        """
        Load an entry owned by user_id.

        Raises:
            ResourceNotFoundError: entry missing or owned by another user
        """
        entry = await self.get(user_id, entry_id)
        if entry is None:
            raise ResourceNotFoundError("Ledger entry", entry_id)
        return entry

    async def list_for_party(self, user_id: int, party_name: str, open_only: bool = False) -> List[LedgerEntry]:
        query = select(LedgerEntry).where(
            LedgerEntry.user_id == user_id,
            LedgerEntry.party_name == party_name,
        )
        if open_only:
            query = query.where(LedgerEntry.is_old_record == False)  # noqa: E712
        result = await self.db.execute(query.order_by(*CANONICAL_ORDER))
        return list(result.scalars().all())

    async def list_for_user(self, user_id: int, include_settled: bool = True) -> List[LedgerEntry]:
        query = select(LedgerEntry).where(LedgerEntry.user_id == user_id)
        if not include_settled:
            query = query.where(LedgerEntry.is_old_record == False)  # noqa: E712
        result = await self.db.execute(query.order_by(LedgerEntry.party_name, *CANONICAL_ORDER))
        return list(result.scalars().all())

    async def list_pending_classification(self, user_id: int) -> List[LedgerEntry]:
        """Imported rows that have not been through the legacy classification yet."""
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id, LedgerEntry.needs_classification == True)  # noqa: E712
            .order_by(LedgerEntry.party_name, *CANONICAL_ORDER)
        )
        return list(result.scalars().all())

    async def list_by_ti(self, user_id: int, *tis: str) -> List[LedgerEntry]:
        """Rows written under the given transaction ids, in canonical order."""
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id, LedgerEntry.ti.in_(tis))
            .order_by(*CANONICAL_ORDER)
        )
        return list(result.scalars().all())

    async def list_absorbed_by(self, user_id: int, marker_id: int, party_name: Optional[str] = None) -> List[LedgerEntry]:
        """Settled rows pointing at marker_id, optionally restricted to one party."""
        query = select(LedgerEntry).where(
            LedgerEntry.user_id == user_id,
            LedgerEntry.settlement_ref == marker_id,
            LedgerEntry.is_old_record == True,  # noqa: E712
        )
        if party_name is not None:
            query = query.where(LedgerEntry.party_name == party_name)
        result = await self.db.execute(query.order_by(*CANONICAL_ORDER))
        return list(result.scalars().all())

    async def list_referencing(self, user_id: int, marker_id: int) -> List[LedgerEntry]:
        """Any row still carrying marker_id as its settlement reference."""
        result = await self.db.execute(
            select(LedgerEntry).where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.settlement_ref == marker_id,
            ).order_by(*CANONICAL_ORDER)
        )
        return list(result.scalars().all())

    async def party_names(self, user_id: int) -> List[str]:
        result = await self.db.execute(
            select(LedgerEntry.party_name).where(LedgerEntry.user_id == user_id).distinct()
        )
        return sorted(result.scalars().all())

    async def count_settled(self, user_id: int, party_name: str) -> int:
        result = await self.db.execute(
            select(func.count(LedgerEntry.id)).where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.party_name == party_name,
                LedgerEntry.is_old_record == True,  # noqa: E712
            )
        )
        return result.scalar() or 0

    async def add(self, entry: LedgerEntry) -> LedgerEntry:
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def remove(self, entry: LedgerEntry) -> None:
        await self.db.delete(entry)
        await self.db.flush()

    async def write_balance(self, entry: LedgerEntry, balance: Decimal) -> None:
        """
        Persist one recalculated balance inside its own savepoint.

        On failure the savepoint is rolled back (the row keeps its previous
        balance) and the database error propagates to the caller.
        """
        async with self.db.begin_nested():
            await self.db.execute(
                update(LedgerEntry)
                .where(LedgerEntry.id == entry.id)
                .values(balance=balance)
                .execution_options(synchronize_session=False)
            )
        set_committed_value(entry, "balance", balance)

    async def link_to_marker(self, entries: Iterable[LedgerEntry], marker_id: int) -> None:
        """Back-fill settlement_ref once the marker has an id."""
        for entry in entries:
            entry.settlement_ref = marker_id
        await self.db.flush()

    async def rename_party(self, user_id: int, old_name: str, new_name: str) -> int:
        result = await self.db.execute(
            update(LedgerEntry)
            .where(LedgerEntry.user_id == user_id, LedgerEntry.party_name == old_name)
            .values(party_name=new_name)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def set_classification(
        self, user_id: int, party_name: str, kind: EntryKind, category: Optional[str]
    ) -> int:
        """
        Re-tag the rows of one party. Markers keep their kind and only follow
        the category, so their net still groups with the party.
        """
        result = await self.db.execute(
            update(LedgerEntry)
            .where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.party_name == party_name,
                LedgerEntry.kind != EntryKind.SETTLEMENT_MARKER,
            )
            .values(kind=kind, category=category)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.execute(
            update(LedgerEntry)
            .where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.party_name == party_name,
                LedgerEntry.kind == EntryKind.SETTLEMENT_MARKER,
            )
            .values(category=category)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def delete_for_party(self, user_id: int, party_name: str) -> int:
        result = await self.db.execute(
            delete(LedgerEntry)
            .where(LedgerEntry.user_id == user_id, LedgerEntry.party_name == party_name)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0
