"""
Settlement Engine ("Monday Final").

Settle rolls every open entry of a party into one settlement marker that
carries their net; Unsettle is the exact inverse for one marker.

Settlement of a party runs in a single database transaction: entries are
closed, the marker is inserted and the back-references are filled in, or
nothing happens. Parties are independent, so a multi-party settle reports
the parties that failed and keeps going.

Unsettle ends with an explicit compensating step: after the marker is
gone, any row still referencing its id (left behind by an interrupted
settle, or moved to another party since) is reopened and logged.
"""

import logging
import time
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    AppException,
    NotASettlementMarkerError,
    ResourceNotFoundError,
    SettledEntryError,
)
from backend.app.core.timeutils import today, utcnow
from backend.app.domain.ledger.classification import (
    normalize_name,
    settlement_remarks,
    virtual_category_for,
)
from backend.app.domain.ledger.recalculator import recalculate_party, signed_amount
from backend.app.domain.ledger.store import LedgerEntryStore
from backend.app.domain.ledger.types import (
    PartySettlement,
    SettlementFailure,
    SettlementResult,
    UnsettlementResult,
    ZERO,
)
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import EntryDirection, EntryKind, MondayFinalFlag
from backend.app.services import party_registry
from backend.app.services.cache import PartyMutated, report_cache
from backend.app.services.party_lock import party_locks

logger = logging.getLogger(__name__)


def _reopen(entry: LedgerEntry) -> None:
    entry.is_old_record = False
    entry.settlement_date = None
    entry.settlement_ref = None


def _require_open_marker(entry: LedgerEntry) -> None:
    if not entry.is_settlement_marker:
        raise NotASettlementMarkerError(entry.id)
    if entry.is_old_record:
        # A later marker already carries its net
        raise SettledEntryError(
            entry.id,
            f"Settlement {entry.id} was absorbed by settlement {entry.settlement_ref}, reverse the later settlement first",
        )


class SettlementService:

    @staticmethod
    async def settle(db: AsyncSession, user_id: int, party_names: Iterable[str]) -> SettlementResult:
        """
        Settle each named party.

        Per party:
        1. Gather all open entries (prior open markers included, so
           settlements stack)
        2. net = sum(credit) - sum(debit)
        3. Close every gathered entry (is_old_record, settlement_date)
        4. Insert the marker: CR net if net >= 0 else DR |net|, balance 0
        5. Back-fill settlement_ref with the marker id
        6. Flag the party Monday Final, commit
        7. Replay the party

        A party with nothing open is reported with settled_count 0 and no
        marker. Unknown parties and database failures are reported in
        failed_parties; the other parties are still settled.
        """
        settled: List[PartySettlement] = []
        failed: List[SettlementFailure] = []
        company_name = await party_registry.get_company_name(db, user_id)

        names = (normalize_name(name) for name in party_names)
        for party_name in dict.fromkeys(virtual_category_for(name, company_name) or name for name in names):
            if not party_name:
                continue
            try:
                async with party_locks.hold(user_id, party_name):
                    outcome = await SettlementService._settle_party(db, user_id, party_name, company_name)
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error("Settlement rolled back for user=%s party=%s: %s", user_id, party_name, exc)
                failed.append(SettlementFailure(party_name=party_name, reason="Database error, settlement rolled back"))
                continue
            except AppException as exc:
                failed.append(SettlementFailure(party_name=party_name, reason=exc.message))
                continue

            settled.append(outcome)
            if outcome.marker_id is not None:
                await report_cache.publish(PartyMutated(user_id=user_id, party_name=party_name))

        return SettlementResult(parties=tuple(settled), failed_parties=tuple(failed))

    @staticmethod
    async def _settle_party(
        db: AsyncSession, user_id: int, party_name: str, company_name: Optional[str]
    ) -> PartySettlement:
        store = LedgerEntryStore(db)
        party = await party_registry.get_party_by_name(db, user_id, party_name)
        open_entries = await store.list_for_party(user_id, party_name, open_only=True)

        if party is None and not open_entries:
            raise ResourceNotFoundError("Party", party_name)
        if not open_entries:
            logger.info("Nothing to settle for user=%s party=%s", user_id, party_name)
            return PartySettlement(party_name=party_name, settled_count=0)

        net = sum((signed_amount(entry) for entry in open_entries), ZERO)
        absorbed_markers = sum(1 for entry in open_entries if entry.is_settlement_marker)
        direction = EntryDirection.CR if net >= 0 else EntryDirection.DR
        settled_at = utcnow()

        for entry in open_entries:
            entry.is_old_record = True
            entry.settlement_date = settled_at

        marker = LedgerEntry(
            user_id=user_id,
            party_name=party_name,
            entry_date=today(),
            created_at=settled_at,
            tns_type=direction,
            credit=net if direction == EntryDirection.CR else ZERO,
            debit=-net if direction == EntryDirection.DR else ZERO,
            balance=ZERO,
            remarks=settlement_remarks(len(open_entries), absorbed_markers),
            kind=EntryKind.SETTLEMENT_MARKER,
            category=virtual_category_for(party_name, company_name),
            is_old_record=False,
            chk=False,
            ti=f"MF_{int(time.time() * 1000)}",
        )
        await store.add(marker)
        await store.link_to_marker(open_entries, marker.id)

        if party is not None:
            party.monday_final = MondayFinalFlag.YES.value
        await db.commit()

        recalculation = await recalculate_party(db, user_id, party_name)
        await db.commit()

        logger.info(
            "Settled user=%s party=%s: %d entries (%d prior markers) into marker %s, net %s %s",
            user_id, party_name, len(open_entries), absorbed_markers, marker.id, direction.value, abs(net),
        )
        return PartySettlement(
            party_name=party_name,
            settled_count=len(open_entries),
            marker_id=marker.id,
            absorbed_markers=absorbed_markers,
            net_amount=abs(net),
            direction=direction,
            recalculation=recalculation,
        )

    @staticmethod
    async def unsettle(db: AsyncSession, user_id: int, marker_id: int) -> UnsettlementResult:
        """
        Reverse one settlement.

        1. Load the marker (404 if missing or not owned, 400 if not a marker,
           409 if a later settlement absorbed it)
        2. Reopen the ordinary entries of the party it absorbed
        3. Reopen the earlier markers it absorbed; their own entries stay
           settled under them
        4. Delete the marker
        5. Compensating re-scan: reopen anything still referencing the
           marker id and log it as an inconsistency
        6. Replay the party (and any party an orphan belonged to)
        """
        store = LedgerEntryStore(db)
        marker = await store.get_owned(user_id, marker_id)
        _require_open_marker(marker)
        party_name = marker.party_name

        async with party_locks.hold(user_id, party_name):
            marker = await store.get_owned(user_id, marker_id)
            _require_open_marker(marker)

            absorbed = await store.list_absorbed_by(user_id, marker_id, party_name=party_name)
            ordinary = [entry for entry in absorbed if not entry.is_settlement_marker]
            prior_markers = [entry for entry in absorbed if entry.is_settlement_marker]
            for entry in ordinary + prior_markers:
                _reopen(entry)

            await store.remove(marker)

            orphans = await store.list_referencing(user_id, marker_id)
            orphan_parties = sorted({entry.party_name for entry in orphans} - {party_name})
            for entry in orphans:
                _reopen(entry)
            if orphans:
                logger.warning(
                    "Inconsistency: %d entries still referenced deleted settlement %s (user=%s), reopened: %s",
                    len(orphans), marker_id, user_id, [entry.id for entry in orphans],
                )
            await db.flush()

            party = await party_registry.get_party_by_name(db, user_id, party_name)
            if party is not None and await store.count_settled(user_id, party_name) == 0:
                party.monday_final = MondayFinalFlag.NO.value
            await db.commit()

            recalculation = await recalculate_party(db, user_id, party_name)
            await db.commit()

        for orphan_party in orphan_parties:
            async with party_locks.hold(user_id, orphan_party):
                await recalculate_party(db, user_id, orphan_party)
                await db.commit()

        for name in [party_name, *orphan_parties]:
            await report_cache.publish(PartyMutated(user_id=user_id, party_name=name))

        logger.info(
            "Unsettled marker %s for user=%s party=%s: %d entries, %d markers reopened, %d orphans",
            marker_id, user_id, party_name, len(ordinary), len(prior_markers), len(orphans),
        )
        return UnsettlementResult(
            marker_id=marker_id,
            party_name=party_name,
            unsettled_count=len(ordinary) + len(orphans),
            reopened_markers=len(prior_markers),
            orphans_repaired=len(orphans),
            recalculation=recalculation,
        )
