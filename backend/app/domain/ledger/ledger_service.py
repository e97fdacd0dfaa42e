"""
Ledger Service (Domain Logic).

Entry mutations and read models for one user's ledger. Every mutation:
1. validates input and ownership before any write
2. takes the party lock(s)
3. writes, replays the whole party, commits
4. publishes a PartyMutated event so cached reports are dropped
"""

import logging
import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import LedgerValidationError, ResourceNotFoundError, SettledEntryError
from backend.app.core.timeutils import utcnow
from backend.app.domain.ledger.classification import (
    classify_legacy,
    classify_new_entry,
    normalize_name,
    virtual_category_for,
)
from backend.app.domain.ledger.recalculator import (
    canonical_order,
    closing_balance,
    recalculate_party,
    summarize,
)
from backend.app.domain.ledger.store import LedgerEntryStore
from backend.app.domain.ledger.types import (
    BulkRecalculationResult,
    RecalculationResult,
    ReclassificationResult,
    ZERO,
    to_amount,
)
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import EntryDirection
from backend.app.services import party_registry
from backend.app.services.cache import LedgerRebuilt, PartyMutated, report_cache
from backend.app.services.party_lock import party_locks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartyLedger:
    party_name: str
    open_entries: Tuple[LedgerEntry, ...]
    settled_entries: Tuple[LedgerEntry, ...]
    closing_balance: Decimal
    total_credit: Decimal
    total_debit: Decimal
    total_entries: int
    total_old_records: int


def _validated_amount(direction: EntryDirection, amount) -> Decimal:
    value = to_amount(amount)
    if value <= 0:
        side = "Credit" if direction == EntryDirection.CR else "Debit"
        raise LedgerValidationError(
            f"{side} amount must be greater than 0 for {direction.value} transactions",
            details={"tns_type": direction.value, "amount": str(value)},
        )
    return value


def _apply_amount(entry: LedgerEntry, direction: EntryDirection, amount: Decimal) -> None:
    entry.tns_type = direction
    entry.credit = amount if direction == EntryDirection.CR else ZERO
    entry.debit = amount if direction == EntryDirection.DR else ZERO


def _ensure_mutable(entry: LedgerEntry) -> None:
    if entry.is_settlement_marker:
        raise SettledEntryError(entry.id, "Settlement entries are removed by reversing the settlement")
    if entry.is_old_record:
        raise SettledEntryError(entry.id)


def build_entry(
    user_id: int,
    party_name: str,
    entry_date: date,
    direction: EntryDirection,
    amount: Decimal,
    remarks: Optional[str],
    company_name: Optional[str] = None,
    chk: bool = False,
    ti: Optional[str] = None,
) -> LedgerEntry:
    """New open row for a resolved party name; balance is set by the replay."""
    kind, category = classify_new_entry(party_name, company_name)
    entry = LedgerEntry(
        user_id=user_id,
        party_name=party_name,
        entry_date=entry_date,
        created_at=utcnow(),
        balance=ZERO,
        remarks=remarks if remarks else f"Transaction: {direction.value} {amount}",
        kind=kind,
        category=category,
        is_old_record=False,
        chk=chk,
        ti=ti or f"TXN_{int(time.time() * 1000)}",
    )
    _apply_amount(entry, direction, amount)
    return entry


async def _require_party(db: AsyncSession, user_id: int, party_name: str, company_name: Optional[str]) -> str:
    """
    Resolve the name entries are stored under.

    Virtual categories resolve to their canonical spelling ("commission" ->
    "Commission") so they keep a single running balance. Unknown names
    raise 404.
    """
    name = normalize_name(party_name)
    if not name:
        raise LedgerValidationError("Party name is required")
    category = virtual_category_for(name, company_name)
    if category is not None:
        return category
    if await party_registry.get_party_by_name(db, user_id, name) is None:
        raise ResourceNotFoundError("Party", name)
    return name


class LedgerService:

    @staticmethod
    async def add_entry(
        db: AsyncSession,
        user_id: int,
        party_name: str,
        entry_date: date,
        direction: EntryDirection,
        amount,
        remarks: Optional[str] = None,
        chk: bool = False,
        ti: Optional[str] = None,
    ) -> Tuple[LedgerEntry, RecalculationResult]:
        """
        Record a transaction and replay the party.

        Raises:
            LedgerValidationError: non-positive amount or empty party name
            ResourceNotFoundError: party is not registered (and not virtual)
        """
        value = _validated_amount(direction, amount)
        company_name = await party_registry.get_company_name(db, user_id)
        name = await _require_party(db, user_id, party_name, company_name)
        entry = build_entry(user_id, name, entry_date, direction, value, remarks, company_name, chk, ti)

        store = LedgerEntryStore(db)
        async with party_locks.hold(user_id, name):
            await store.add(entry)
            recalculation = await recalculate_party(db, user_id, name)
            await db.commit()

        await report_cache.publish(PartyMutated(user_id=user_id, party_name=name))
        logger.info("Entry %s added for user=%s party=%s (%s %s)", entry.id, user_id, name, direction.value, value)
        return entry, recalculation

    @staticmethod
    async def update_entry(
        db: AsyncSession,
        user_id: int,
        entry_id: int,
        party_name: Optional[str] = None,
        entry_date: Optional[date] = None,
        direction: Optional[EntryDirection] = None,
        amount=None,
        remarks: Optional[str] = None,
        chk: Optional[bool] = None,
    ) -> Tuple[LedgerEntry, List[RecalculationResult]]:
        """
        Edit an open entry and replay its party (both parties when it moves).

        Raises:
            ResourceNotFoundError: entry missing or not owned
            SettledEntryError: entry is settled or is a settlement marker
            LedgerValidationError: resulting amount is not positive
        """
        store = LedgerEntryStore(db)
        entry = await store.get_owned(user_id, entry_id)
        _ensure_mutable(entry)

        old_party = entry.party_name
        new_party = old_party
        company_name = await party_registry.get_company_name(db, user_id)
        if party_name is not None:
            new_party = await _require_party(db, user_id, party_name, company_name)

        new_direction = direction or entry.tns_type
        if direction is not None or amount is not None:
            current = entry.credit if entry.tns_type == EntryDirection.CR else entry.debit
            value = _validated_amount(new_direction, amount if amount is not None else current)
        else:
            value = None

        async with party_locks.hold(user_id, old_party, new_party):
            # Re-read under the lock: a settlement may have closed it meanwhile
            entry = await store.get_owned(user_id, entry_id)
            _ensure_mutable(entry)

            if value is not None:
                _apply_amount(entry, new_direction, value)
            if entry_date is not None:
                entry.entry_date = entry_date
            if remarks is not None:
                entry.remarks = remarks
            if chk is not None:
                entry.chk = chk
            if new_party != old_party:
                entry.party_name = new_party
                entry.kind, entry.category = classify_new_entry(new_party, company_name)
            await db.flush()

            results = [await recalculate_party(db, user_id, new_party)]
            if new_party != old_party:
                results.append(await recalculate_party(db, user_id, old_party))
            await db.commit()

        for name in {old_party, new_party}:
            await report_cache.publish(PartyMutated(user_id=user_id, party_name=name))
        logger.info("Entry %s updated for user=%s party=%s", entry.id, user_id, new_party)
        return entry, results

    @staticmethod
    async def delete_entry(db: AsyncSession, user_id: int, entry_id: int) -> RecalculationResult:
        """
        Delete an open entry and replay its party.

        Raises:
            ResourceNotFoundError: entry missing or not owned
            SettledEntryError: entry is settled or is a settlement marker
        """
        store = LedgerEntryStore(db)
        entry = await store.get_owned(user_id, entry_id)
        _ensure_mutable(entry)
        party_name = entry.party_name

        async with party_locks.hold(user_id, party_name):
            entry = await store.get_owned(user_id, entry_id)
            _ensure_mutable(entry)
            await store.remove(entry)
            recalculation = await recalculate_party(db, user_id, party_name)
            await db.commit()

        await report_cache.publish(PartyMutated(user_id=user_id, party_name=party_name))
        logger.info("Entry %s deleted for user=%s party=%s", entry_id, user_id, party_name)
        return recalculation

    @staticmethod
    async def get_party_ledger(db: AsyncSession, user_id: int, party_name: str) -> PartyLedger:
        """
        Read one party's ledger in canonical order.

        Summary totals cover open ordinary rows only; the closing balance
        also counts open settlement markers at their net.
        """
        name = normalize_name(party_name)
        name = virtual_category_for(name, await party_registry.get_company_name(db, user_id)) or name
        store = LedgerEntryStore(db)
        entries = canonical_order(await store.list_for_party(user_id, name))

        if not entries and await party_registry.get_party_by_name(db, user_id, name) is None:
            raise ResourceNotFoundError("Party", name)

        open_entries = tuple(entry for entry in entries if not entry.is_old_record)
        settled_entries = tuple(entry for entry in entries if entry.is_old_record)
        ordinary_open = [entry for entry in open_entries if not entry.is_settlement_marker]

        return PartyLedger(
            party_name=name,
            open_entries=open_entries,
            settled_entries=settled_entries,
            closing_balance=closing_balance(open_entries),
            total_credit=sum((to_amount(entry.credit) for entry in ordinary_open), ZERO),
            total_debit=sum((to_amount(entry.debit) for entry in ordinary_open), ZERO),
            total_entries=len(ordinary_open),
            total_old_records=len(settled_entries),
        )

    @staticmethod
    async def recalculate_all(db: AsyncSession, user_id: int) -> BulkRecalculationResult:
        """Replay every party of the user, one lock and one commit per party."""
        store = LedgerEntryStore(db)
        results = []
        for party_name in await store.party_names(user_id):
            async with party_locks.hold(user_id, party_name):
                results.append(await recalculate_party(db, user_id, party_name))
                await db.commit()

        summary = summarize(results)
        if summary.entries_updated:
            await report_cache.publish(LedgerRebuilt(user_id=user_id))
        logger.info(
            "Recalculated %d parties for user %s: %d updated, %d failed",
            summary.parties_processed, user_id, summary.entries_updated, summary.entries_failed,
        )
        return summary

    @staticmethod
    async def reclassify_entries(db: AsyncSession, user_id: int) -> ReclassificationResult:
        """
        One-time migration of rows imported from the old ledger.

        Only rows still flagged needs_classification are examined; each gets
        the legacy remarks/substring rules applied once and the flag cleared,
        so rows written by the service (and rows already migrated) are never
        reinterpreted from their remarks. Every party whose rows changed kind
        is replayed (a row turning into a marker stops moving the running
        balance).
        """
        store = LedgerEntryStore(db)
        company_name = await party_registry.get_company_name(db, user_id)
        registered = await party_registry.registered_names(db, user_id)
        entries = await store.list_pending_classification(user_id)

        changed_parties = set()
        changed = 0
        for entry in entries:
            kind, category = classify_legacy(entry.party_name, entry.remarks, company_name, registered)
            if (kind, category) != (entry.kind, entry.category):
                entry.kind, entry.category = kind, category
                changed_parties.add(entry.party_name)
                changed += 1
            entry.needs_classification = False
        await db.flush()

        for party_name in sorted(changed_parties):
            async with party_locks.hold(user_id, party_name):
                await recalculate_party(db, user_id, party_name)
        await db.commit()

        if changed:
            await report_cache.publish(LedgerRebuilt(user_id=user_id))
        logger.info("Reclassified %d of %d entries for user %s", changed, len(entries), user_id)
        return ReclassificationResult(
            examined=len(entries), changed=changed, parties_recalculated=len(changed_parties)
        )
