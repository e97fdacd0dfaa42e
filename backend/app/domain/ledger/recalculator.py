"""
Balance Recalculator.

Replays a party's open entries in canonical order and derives the running
balance of every row. The replay is always the whole party: an entry
inserted, edited or deleted anywhere in the history can shift every later
balance, so there is no incremental path.

Canonical order is (entry_date, created_at, id), ascending.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.timeutils import to_naive_utc
from backend.app.domain.ledger.store import LedgerEntryStore
from backend.app.domain.ledger.types import (
    BulkRecalculationResult,
    RecalculationResult,
    ZERO,
    to_amount,
)
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import EntryDirection, EntryKind

logger = logging.getLogger(__name__)


def canonical_sort_key(entry: LedgerEntry) -> Tuple:
    return (entry.entry_date, to_naive_utc(entry.created_at), entry.id if entry.id is not None else 0)


def canonical_order(entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
    return sorted(entries, key=canonical_sort_key)


def signed_amount(entry: LedgerEntry) -> Decimal:
    """Credit counts positive, debit negative."""
    if entry.tns_type == EntryDirection.CR:
        return to_amount(entry.credit)
    return -to_amount(entry.debit)


def replay_balances(entries: Iterable[LedgerEntry]) -> List[Tuple[LedgerEntry, Decimal]]:
    """
    Compute (entry, balance) pairs for a party's open entries.

    Settlement markers are passed through with a balance of 0 and do not
    move the running total. Settled rows must not be passed in.
    """
    running = ZERO
    replayed = []
    for entry in canonical_order(entries):
        if entry.kind == EntryKind.SETTLEMENT_MARKER:
            replayed.append((entry, ZERO))
            continue
        running += signed_amount(entry)
        replayed.append((entry, running))
    return replayed


def closing_balance(entries: Iterable[LedgerEntry]) -> Decimal:
    """
    Economic balance of a party: every open row counted at its signed
    amount, open markers included at the net they carry.
    """
    return sum((signed_amount(entry) for entry in entries if not entry.is_old_record), ZERO)


async def recalculate_party(db: AsyncSession, user_id: int, party_name: str) -> RecalculationResult:
    """
    Replay one (user, party) and persist every balance that changed.

    Each row is written in its own savepoint. A failed write leaves that row
    with its previous balance, is logged, and counted in `failed`; the pass
    carries on with the remaining rows. The caller commits.

    Args:
        db: Database session
        user_id: Tenant
        party_name: Party to replay

    Returns:
        RecalculationResult with updated / unchanged / failed counts
    """
    store = LedgerEntryStore(db)
    entries = await store.list_for_party(user_id, party_name, open_only=True)

    updated = unchanged = failed = 0
    for entry, balance in replay_balances(entries):
        if entry.balance is not None and to_amount(entry.balance) == balance:
            unchanged += 1
            continue
        try:
            await store.write_balance(entry, balance)
            updated += 1
        except SQLAlchemyError as exc:
            failed += 1
            logger.error(
                "Balance write failed for entry %s (user=%s party=%s): %s",
                entry.id, user_id, party_name, exc,
            )

    result = RecalculationResult(party_name=party_name, updated=updated, unchanged=unchanged, failed=failed)
    if result.is_partial_failure:
        logger.warning(
            "Partial recalculation for user=%s party=%s: %d updated, %d failed",
            user_id, party_name, updated, failed,
        )
    else:
        logger.debug("Recalculated user=%s party=%s: %d updated", user_id, party_name, updated)
    return result


def summarize(results: Iterable[RecalculationResult]) -> BulkRecalculationResult:
    results = tuple(results)
    return BulkRecalculationResult(
        parties_processed=len(results),
        entries_updated=sum(item.updated for item in results),
        entries_unchanged=sum(item.unchanged for item in results),
        entries_failed=sum(item.failed for item in results),
        parties=results,
    )
