"""
Commission Transactions.

A brokered deal between a client and a vendor, booked through the house
account (the user's company name, or the Commission category when no
company name is set). With amount A, client rate c% and vendor rate v%:

    client_commission  C = A * c / 100
    vendor_commission  V = A * v / 100

    1. client  DR A        2. house  CR A        client pays the house
    3. vendor  CR A - C    4. house  DR A - C    house pays the vendor net
    5. vendor  DR A        6. house  CR A        vendor pays back in full
    7. vendor  CR V        8. house  DR V        house pays the incentive

Every leg has its mirror, so the deal adds zero to the trial balance
difference. Legs with a zero amount are not written.

Cancelling writes the mirror image of every leg (dated today) instead of
deleting anything, so legs already closed by a Monday Final stay settled.
"""

import logging
import secrets
import time
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import LedgerValidationError, ResourceNotFoundError, TransactionCancelledError
from backend.app.core.timeutils import today, utcnow
from backend.app.domain.ledger.classification import normalize_name, virtual_category_for
from backend.app.domain.ledger.ledger_service import build_entry
from backend.app.domain.ledger.recalculator import recalculate_party
from backend.app.domain.ledger.store import LedgerEntryStore
from backend.app.domain.ledger.types import (
    CommissionPeriod,
    CommissionSummary,
    RecalculationResult,
    ZERO,
    to_amount,
)
from backend.app.models.commission_transaction import CommissionTransaction
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import CommissionStatus, EntryDirection
from backend.app.services import party_registry
from backend.app.services.cache import PartyMutated, report_cache
from backend.app.services.party_lock import party_locks

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
REVERSAL_SUFFIX = "-CANCEL"

# (party, direction, amount, remarks)
Leg = Tuple[str, EntryDirection, Decimal, str]


def new_transaction_id() -> str:
    return f"CT{int(time.time() * 1000)}{secrets.token_hex(3).upper()}"


def reversal_ti(transaction_id: str) -> str:
    return f"{transaction_id}{REVERSAL_SUFFIX}"


def commission_amount(amount: Decimal, rate: Decimal) -> Decimal:
    return to_amount(amount * rate / HUNDRED)


def _validated_rate(rate, label: str) -> Decimal:
    value = Decimal(str(rate))
    if value < 0 or value > HUNDRED:
        raise LedgerValidationError(
            f"{label} commission rate must be between 0 and 100",
            details={"rate": str(value)},
        )
    return value


def build_legs(
    transaction_id: str, client: str, vendor: str, house: str,
    amount: Decimal, client_commission: Decimal, vendor_commission: Decimal,
) -> List[Leg]:
    """The eight legs of a deal, in booking order, without zero-amount pairs."""
    net = amount - client_commission
    tag = f"Commission Transaction {transaction_id}"
    legs = [
        (client, EntryDirection.DR, amount,
         f"{tag}: Payment for {vendor} - Amount: {amount}, Commission: {client_commission}"),
        (house, EntryDirection.CR, amount,
         f"{tag}: Received from {client} for {vendor} - Gross: {amount}"),
        (vendor, EntryDirection.CR, net,
         f"{tag}: Payment on behalf of {client} - Net Amount: {net}"),
        (house, EntryDirection.DR, net,
         f"{tag}: Paid to {vendor} on behalf of {client} - Net: {net}"),
        (vendor, EntryDirection.DR, amount,
         f"{tag}: Payment back - Full Amount: {amount}"),
        (house, EntryDirection.CR, amount,
         f"{tag}: Received from {vendor} - Full Amount: {amount}"),
        (vendor, EntryDirection.CR, vendor_commission,
         f"{tag}: Incentive payment to {vendor} - Commission: {vendor_commission}"),
        (house, EntryDirection.DR, vendor_commission,
         f"{tag}: Paid incentive to {vendor} - Amount: {vendor_commission}"),
    ]
    return [leg for leg in legs if leg[2] > 0]


async def _require_counterparty(
    db: AsyncSession, user_id: int, party_name: str, company_name: Optional[str], role: str
) -> str:
    name = normalize_name(party_name)
    if not name:
        raise LedgerValidationError(f"{role} name is required")
    if virtual_category_for(name, company_name) is not None:
        raise LedgerValidationError(
            f"{role} must be a registered party, not the '{name}' category",
            details={"party_name": name},
        )
    if await party_registry.get_party_by_name(db, user_id, name) is None:
        raise ResourceNotFoundError("Party", name)
    return name


async def _replay(db: AsyncSession, user_id: int, party_names) -> List[RecalculationResult]:
    return [await recalculate_party(db, user_id, name) for name in sorted(set(party_names))]


class CommissionTransactionService:

    @staticmethod
    async def create(
        db: AsyncSession,
        user_id: int,
        client_name: str,
        vendor_name: str,
        original_amount,
        client_commission_rate=None,
        vendor_commission_rate=None,
        transaction_date: Optional[date] = None,
        remarks: Optional[str] = None,
    ) -> Tuple[CommissionTransaction, List[LedgerEntry], List[RecalculationResult]]:
        """
        Book a deal and replay the client, vendor and house ledgers.

        Raises:
            LedgerValidationError: amount not positive, rate outside 0-100,
                client equals vendor, or a virtual category used as client/vendor
            ResourceNotFoundError: client or vendor is not registered
        """
        amount = to_amount(original_amount)
        if amount <= 0:
            raise LedgerValidationError("Original amount must be greater than 0", details={"amount": str(amount)})
        client_rate = _validated_rate(
            settings.client_commission_rate if client_commission_rate is None else client_commission_rate, "Client"
        )
        vendor_rate = _validated_rate(
            settings.vendor_commission_rate if vendor_commission_rate is None else vendor_commission_rate, "Vendor"
        )

        if normalize_name(client_name).casefold() == normalize_name(vendor_name).casefold():
            raise LedgerValidationError(
                "Client and vendor must be different parties", details={"party_name": normalize_name(client_name)}
            )
        company_name = await party_registry.get_company_name(db, user_id)
        client = await _require_counterparty(db, user_id, client_name, company_name, "Client")
        vendor = await _require_counterparty(db, user_id, vendor_name, company_name, "Vendor")
        house = company_name or settings.commission_category

        record = CommissionTransaction(
            user_id=user_id,
            transaction_id=new_transaction_id(),
            client_name=client,
            vendor_name=vendor,
            house_account=house,
            transaction_date=transaction_date or today(),
            original_amount=amount,
            client_commission_rate=client_rate,
            vendor_commission_rate=vendor_rate,
            client_commission=commission_amount(amount, client_rate),
            vendor_commission=commission_amount(amount, vendor_rate),
            remarks=remarks,
            status=CommissionStatus.ACTIVE.value,
        )
        legs = build_legs(
            record.transaction_id, client, vendor, house,
            amount, record.client_commission, record.vendor_commission,
        )

        store = LedgerEntryStore(db)
        async with party_locks.hold(user_id, client, vendor, house):
            db.add(record)
            entries = []
            for party_name, direction, value, text in legs:
                entry = build_entry(
                    user_id, party_name, record.transaction_date, direction, value, text,
                    company_name, ti=record.transaction_id,
                )
                entries.append(await store.add(entry))
            recalculations = await _replay(db, user_id, (client, vendor, house))
            await db.commit()

        for name in (client, vendor, house):
            await report_cache.publish(PartyMutated(user_id=user_id, party_name=name))
        logger.info(
            "Commission transaction %s for user=%s: %s -> %s via %s, amount %s, profit %s",
            record.transaction_id, user_id, client, vendor, house, amount, record.net_profit,
        )
        return record, entries, recalculations

    @staticmethod
    async def get_record(db: AsyncSession, user_id: int, transaction_id: str) -> CommissionTransaction:
        result = await db.execute(
            select(CommissionTransaction).where(
                CommissionTransaction.user_id == user_id,
                CommissionTransaction.transaction_id == transaction_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise ResourceNotFoundError("Commission transaction", transaction_id)
        return record

    @staticmethod
    async def get_transaction(
        db: AsyncSession, user_id: int, transaction_id: str
    ) -> Tuple[CommissionTransaction, List[LedgerEntry]]:
        """The deal with its legs and, once cancelled, their reversals."""
        record = await CommissionTransactionService.get_record(db, user_id, transaction_id)
        entries = await LedgerEntryStore(db).list_by_ti(user_id, transaction_id, reversal_ti(transaction_id))
        return record, entries

    @staticmethod
    async def list_transactions(
        db: AsyncSession, user_id: int, status: Optional[CommissionStatus] = None
    ) -> List[CommissionTransaction]:
        query = select(CommissionTransaction).where(CommissionTransaction.user_id == user_id)
        if status is not None:
            query = query.where(CommissionTransaction.status == status.value)
        result = await db.execute(
            query.order_by(CommissionTransaction.transaction_date.desc(), CommissionTransaction.id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def summary(
        db: AsyncSession, user_id: int, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> CommissionSummary:
        """Totals over active deals dated within [start_date, end_date], with a monthly breakdown."""
        query = select(CommissionTransaction).where(CommissionTransaction.user_id == user_id)
        if start_date is not None:
            query = query.where(CommissionTransaction.transaction_date >= start_date)
        if end_date is not None:
            query = query.where(CommissionTransaction.transaction_date <= end_date)
        result = await db.execute(query.order_by(CommissionTransaction.transaction_date))
        records = list(result.scalars().all())

        active = [record for record in records if record.status == CommissionStatus.ACTIVE.value]
        by_month: Dict[str, List[CommissionTransaction]] = defaultdict(list)
        for record in active:
            by_month[record.transaction_date.strftime("%Y-%m")].append(record)

        def total(items, attribute):
            return sum((to_amount(getattr(item, attribute)) for item in items), ZERO)

        months = tuple(
            CommissionPeriod(
                month=month,
                transactions=len(items),
                business_volume=total(items, "original_amount"),
                commission_collected=total(items, "client_commission"),
                commission_paid=total(items, "vendor_commission"),
            )
            for month, items in sorted(by_month.items())
        )
        return CommissionSummary(
            total_transactions=len(active),
            cancelled_transactions=len(records) - len(active),
            business_volume=total(active, "original_amount"),
            commission_collected=total(active, "client_commission"),
            commission_paid=total(active, "vendor_commission"),
            house_balance=total(active, "house_balance"),
            months=months,
        )

    @staticmethod
    async def cancel(
        db: AsyncSession, user_id: int, transaction_id: str
    ) -> Tuple[CommissionTransaction, List[LedgerEntry], List[RecalculationResult]]:
        """
        Reverse every leg of a deal and mark it cancelled.

        Raises:
            ResourceNotFoundError: unknown transaction id
            TransactionCancelledError: already cancelled
        """
        record = await CommissionTransactionService.get_record(db, user_id, transaction_id)
        if record.status == CommissionStatus.CANCELLED.value:
            raise TransactionCancelledError(transaction_id)

        store = LedgerEntryStore(db)
        company_name = await party_registry.get_company_name(db, user_id)
        legs = await store.list_by_ti(user_id, transaction_id)
        party_names = {leg.party_name for leg in legs}

        async with party_locks.hold(user_id, *party_names):
            await db.refresh(record)
            if record.status == CommissionStatus.CANCELLED.value:
                raise TransactionCancelledError(transaction_id)

            reversals = []
            for leg in await store.list_by_ti(user_id, transaction_id):
                if leg.tns_type == EntryDirection.CR:
                    direction, value = EntryDirection.DR, to_amount(leg.credit)
                else:
                    direction, value = EntryDirection.CR, to_amount(leg.debit)
                entry = build_entry(
                    user_id, leg.party_name, today(), direction, value, f"CANCELLED: {leg.remarks}"[:500],
                    company_name, ti=reversal_ti(transaction_id),
                )
                reversals.append(await store.add(entry))

            record.status = CommissionStatus.CANCELLED.value
            record.cancelled_at = utcnow()
            recalculations = await _replay(db, user_id, party_names)
            await db.commit()

        for name in sorted(party_names):
            await report_cache.publish(PartyMutated(user_id=user_id, party_name=name))
        logger.info(
            "Commission transaction %s cancelled for user=%s: %d legs reversed",
            transaction_id, user_id, len(reversals),
        )
        return record, reversals, recalculations
