"""
Trial Balance Aggregator.

Groups every open ledger row of a user by its effective party, nets credits
against debits and splits the non-zero results into a credit side and a
debit side. For a double-entry complete ledger the two sides are equal.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.timeutils import utcnow
from backend.app.domain.ledger.classification import normalize_name
from backend.app.domain.ledger.store import LedgerEntryStore
from backend.app.domain.ledger.types import TrialBalance, TrialBalanceRow, ZERO, to_amount
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import EntryKind
from backend.app.services import party_registry
from backend.app.services.cache import ReportCache, ReportKey, ReportKind, report_cache

logger = logging.getLogger(__name__)


@dataclass
class _Accumulator:
    credit: Decimal = ZERO
    debit: Decimal = ZERO
    count: int = 0

    @property
    def closing(self) -> Decimal:
        return self.credit - self.debit


def _grouping_key(entry: LedgerEntry) -> str:
    return entry.category or entry.party_name


def _is_internal_transfer(entry: LedgerEntry, company_name: Optional[str]) -> bool:
    """Rows whose remarks are exactly the company name or "Commission"."""
    if entry.kind == EntryKind.SETTLEMENT_MARKER:
        return False
    remarks = normalize_name(entry.remarks)
    if not remarks:
        return False
    if company_name and remarks == company_name:
        return True
    return remarks == settings.commission_category


def build_trial_balance(
    entries: Iterable[LedgerEntry],
    registered_names: Set[str],
    company_name: Optional[str] = None,
    party_name: Optional[str] = None,
) -> TrialBalance:
    """
    Aggregate a user's rows into a trial balance.

    1. Settled rows are skipped; open markers count at their net
    2. Rows against unregistered, non-virtual names are orphans: skipped and counted
    3. Internal transfers (remarks == company name / "Commission") are skipped
    4. Group by category for virtual rows, party name otherwise
    5. closing = credit - debit; positive -> credit list, negative -> debit list
       (absolute value), zero -> omitted; both sorted by amount descending

    Args:
        entries: All of one user's ledger rows
        registered_names: The user's party registry
        company_name: Current company name
        party_name: Restrict the report to one grouping key
    """
    groups: Dict[str, _Accumulator] = {}
    orphaned = 0

    for entry in entries:
        if entry.is_old_record:
            continue
        virtual = entry.kind == EntryKind.VIRTUAL_CATEGORY or entry.category is not None
        if not virtual and entry.party_name not in registered_names:
            orphaned += 1
            continue
        if _is_internal_transfer(entry, company_name):
            continue

        key = _grouping_key(entry)
        if party_name is not None and key != party_name:
            continue
        bucket = groups.setdefault(key, _Accumulator())
        bucket.credit += to_amount(entry.credit)
        bucket.debit += to_amount(entry.debit)
        bucket.count += 1

    credit_rows = []
    debit_rows = []
    for key, bucket in groups.items():
        closing = bucket.closing
        if closing == 0:
            continue
        row = TrialBalanceRow(
            name=key,
            amount=abs(closing),
            credit_total=bucket.credit,
            debit_total=bucket.debit,
            entry_count=bucket.count,
        )
        (credit_rows if closing > 0 else debit_rows).append(row)

    def order(row):
        return (-row.amount, row.name)

    credit_rows.sort(key=order)
    debit_rows.sort(key=order)

    if orphaned:
        logger.warning("Trial balance skipped %d entries against unregistered parties", orphaned)

    return TrialBalance(
        credit_entries=tuple(credit_rows),
        debit_entries=tuple(debit_rows),
        total_credit=sum((row.amount for row in credit_rows), ZERO),
        total_debit=sum((row.amount for row in debit_rows), ZERO),
        orphaned_entries=orphaned,
        generated_at=utcnow(),
    )


class TrialBalanceService:

    def __init__(self, cache: ReportCache = report_cache):
        self.cache = cache

    async def compute(self, db: AsyncSession, user_id: int, party_name: Optional[str] = None) -> TrialBalance:
        """Fresh trial balance straight from the store."""
        store = LedgerEntryStore(db)
        entries = await store.list_for_user(user_id, include_settled=False)
        registered = await party_registry.registered_names(db, user_id)
        company_name = await party_registry.get_company_name(db, user_id)
        return build_trial_balance(entries, registered, company_name, party_name)

    async def get_trial_balance(
        self,
        db: AsyncSession,
        user_id: int,
        party_name: Optional[str] = None,
        force_refresh: bool = False,
    ) -> TrialBalance:
        """
        Cached trial balance.

        force_refresh skips the cache read and recomputes from the store;
        the fresh result replaces the cached one.
        """
        party_name = normalize_name(party_name) or None
        key = ReportKey.build(user_id, ReportKind.TRIAL_BALANCE, party_name=party_name)

        if not force_refresh:
            cached = await self.cache.get(key)
            if cached is not None:
                return TrialBalance.from_dict(cached, from_cache=True)

        trial_balance = await self.compute(db, user_id, party_name)
        await self.cache.set(key, trial_balance.to_dict())
        return trial_balance


trial_balance_service = TrialBalanceService()
