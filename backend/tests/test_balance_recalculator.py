"""
Balance Recalculator Tests.

Running balances are derived by replaying a party's open entries in
(entry_date, created_at, id) order.
"""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.domain.ledger.recalculator import (
    canonical_order,
    closing_balance,
    replay_balances,
)
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import EntryDirection, EntryKind
from backend.app.services import party_registry

JAN_1 = date(2024, 1, 1)
JAN_2 = date(2024, 1, 2)
JAN_3 = date(2024, 1, 3)
BASE_TIME = datetime(2024, 1, 5, 9, 0, 0)


def make_entry(entry_id, entry_date, direction, amount, created_offset=0, kind=EntryKind.ORDINARY, is_old_record=False):
    amount = Decimal(amount)
    return LedgerEntry(
        id=entry_id,
        user_id=1,
        party_name="Raj",
        entry_date=entry_date,
        created_at=BASE_TIME + timedelta(seconds=created_offset),
        tns_type=direction,
        credit=amount if direction == EntryDirection.CR else Decimal("0"),
        debit=amount if direction == EntryDirection.DR else Decimal("0"),
        kind=kind,
        is_old_record=is_old_record,
    )


# TEST 1: Pure replay
def test_replay_running_balance():
    """CR 1000, DR 400, CR 200 on consecutive days -> 1000, 600, 800."""
    entries = [
        make_entry(3, JAN_3, EntryDirection.CR, "200"),
        make_entry(1, JAN_1, EntryDirection.CR, "1000"),
        make_entry(2, JAN_2, EntryDirection.DR, "400"),
    ]

    replayed = replay_balances(entries)

    assert [entry.id for entry, _ in replayed] == [1, 2, 3]
    assert [balance for _, balance in replayed] == [Decimal("1000.00"), Decimal("600.00"), Decimal("800.00")]


def test_same_date_ordered_by_creation_time():
    """Entries on the same business date follow creation order, not id order."""
    late = make_entry(1, JAN_1, EntryDirection.DR, "300", created_offset=10)
    early = make_entry(2, JAN_1, EntryDirection.CR, "500", created_offset=0)

    assert [entry.id for entry in canonical_order([late, early])] == [2, 1]
    assert [balance for _, balance in replay_balances([late, early])] == [Decimal("500.00"), Decimal("200.00")]


def test_id_breaks_full_ties():
    first = make_entry(7, JAN_1, EntryDirection.CR, "10")
    second = make_entry(8, JAN_1, EntryDirection.CR, "10")

    assert canonical_order([second, first]) == [first, second]


def test_settlement_marker_does_not_move_running_balance():
    """An open marker shows 0 and is not added into the running total."""
    marker = make_entry(1, JAN_1, EntryDirection.CR, "800", kind=EntryKind.SETTLEMENT_MARKER)
    debit = make_entry(2, JAN_2, EntryDirection.DR, "300")

    replayed = replay_balances([marker, debit])

    assert [balance for _, balance in replayed] == [Decimal("0.00"), Decimal("-300.00")]
    # The closing balance still counts what the marker carries
    assert closing_balance([marker, debit]) == Decimal("500.00")


def test_closing_balance_ignores_settled_rows():
    entries = [
        make_entry(1, JAN_1, EntryDirection.CR, "1000", is_old_record=True),
        make_entry(2, JAN_2, EntryDirection.DR, "250"),
    ]
    assert closing_balance(entries) == Decimal("-250.00")


def test_empty_party_replays_to_nothing():
    assert replay_balances([]) == []
    assert closing_balance([]) == Decimal("0.00")


# TEST 2: Persisted replay through the ledger service
@pytest.mark.asyncio
async def test_add_entries_persist_running_balance(db_session, ledger_user):
    await party_registry.create_party(db_session, ledger_user, "Raj")

    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "1000")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_2, EntryDirection.DR, "400")
    entry, recalculation = await LedgerService.add_entry(
        db_session, ledger_user, "Raj", JAN_3, EntryDirection.CR, "200"
    )

    assert entry.balance == Decimal("800.00")
    assert recalculation.failed == 0

    ledger = await LedgerService.get_party_ledger(db_session, ledger_user, "Raj")
    assert [row.balance for row in ledger.open_entries] == [Decimal("1000"), Decimal("600"), Decimal("800")]
    assert ledger.closing_balance == Decimal("800.00")
    assert ledger.total_credit == Decimal("1200.00")
    assert ledger.total_debit == Decimal("400.00")
    assert ledger.total_entries == 3


@pytest.mark.asyncio
async def test_backdated_insert_shifts_later_balances(db_session, ledger_user):
    """Inserting an entry mid-sequence updates every later balance."""
    await party_registry.create_party(db_session, ledger_user, "Raj")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "1000")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_3, EntryDirection.CR, "200")

    _, recalculation = await LedgerService.add_entry(
        db_session, ledger_user, "Raj", JAN_2, EntryDirection.DR, "400"
    )

    assert recalculation.updated == 2  # the new row and the later JAN_3 row
    assert recalculation.unchanged == 1

    ledger = await LedgerService.get_party_ledger(db_session, ledger_user, "Raj")
    assert [row.entry_date for row in ledger.open_entries] == [JAN_1, JAN_2, JAN_3]
    assert [row.balance for row in ledger.open_entries] == [Decimal("1000"), Decimal("600"), Decimal("800")]


@pytest.mark.asyncio
async def test_update_and_delete_replay_the_party(db_session, ledger_user):
    await party_registry.create_party(db_session, ledger_user, "Raj")
    first, _ = await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "1000")
    second, _ = await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_2, EntryDirection.DR, "400")
    third, _ = await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_3, EntryDirection.CR, "200")

    # Turn the debit into a credit
    updated, results = await LedgerService.update_entry(
        db_session, ledger_user, second.id, direction=EntryDirection.CR
    )
    assert updated.credit == Decimal("400.00")
    assert updated.debit == Decimal("0.00")
    assert results[0].party_name == "Raj"

    ledger = await LedgerService.get_party_ledger(db_session, ledger_user, "Raj")
    assert [row.balance for row in ledger.open_entries] == [Decimal("1000"), Decimal("1400"), Decimal("1600")]

    recalculation = await LedgerService.delete_entry(db_session, ledger_user, first.id)
    assert recalculation.entries_processed == 2

    ledger = await LedgerService.get_party_ledger(db_session, ledger_user, "Raj")
    assert [row.id for row in ledger.open_entries] == [second.id, third.id]
    assert [row.balance for row in ledger.open_entries] == [Decimal("400"), Decimal("600")]


@pytest.mark.asyncio
async def test_moving_entry_replays_both_parties(db_session, ledger_user):
    await party_registry.create_party(db_session, ledger_user, "Raj")
    await party_registry.create_party(db_session, ledger_user, "Sita")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "1000")
    moved, _ = await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_2, EntryDirection.DR, "400")

    entry, results = await LedgerService.update_entry(db_session, ledger_user, moved.id, party_name="Sita")

    assert entry.party_name == "Sita"
    assert {result.party_name for result in results} == {"Raj", "Sita"}
    assert (await LedgerService.get_party_ledger(db_session, ledger_user, "Raj")).closing_balance == Decimal("1000")
    assert (await LedgerService.get_party_ledger(db_session, ledger_user, "Sita")).closing_balance == Decimal("-400")


@pytest.mark.asyncio
async def test_recalculate_all_is_idempotent(db_session, ledger_user):
    await party_registry.create_party(db_session, ledger_user, "Raj")
    await party_registry.create_party(db_session, ledger_user, "Sita")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "1000")
    await LedgerService.add_entry(db_session, ledger_user, "Sita", JAN_1, EntryDirection.DR, "50")

    summary = await LedgerService.recalculate_all(db_session, ledger_user)

    assert summary.parties_processed == 2
    assert summary.entries_updated == 0
    assert summary.entries_unchanged == 2
    assert summary.entries_failed == 0


@pytest.mark.asyncio
async def test_delete_and_readd_restores_closing_balance(db_session, ledger_user):
    await party_registry.create_party(db_session, ledger_user, "Raj")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "1000")
    middle, _ = await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_2, EntryDirection.DR, "400")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_3, EntryDirection.CR, "200")
    before = (await LedgerService.get_party_ledger(db_session, ledger_user, "Raj")).closing_balance

    await LedgerService.delete_entry(db_session, ledger_user, middle.id)
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_2, EntryDirection.DR, "400")

    ledger = await LedgerService.get_party_ledger(db_session, ledger_user, "Raj")
    assert ledger.closing_balance == before == Decimal("800.00")
    assert [row.balance for row in ledger.open_entries] == [Decimal("1000"), Decimal("600"), Decimal("800")]
