"""
Trial Balance Aggregator Tests.

Pure aggregation over in-memory rows, then the cached service over the
database.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.domain.ledger.settlement_service import SettlementService
from backend.app.domain.ledger.trial_balance import build_trial_balance, trial_balance_service
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import EntryDirection, EntryKind
from backend.app.services import company_settings, party_registry
from backend.app.services.cache import ReportKey, ReportKind

JAN_1 = date(2024, 1, 1)


def row(party_name, direction, amount, kind=EntryKind.ORDINARY, category=None, remarks=None, is_old_record=False):
    amount = Decimal(amount)
    return LedgerEntry(
        user_id=1,
        party_name=party_name,
        entry_date=JAN_1,
        created_at=datetime(2024, 1, 1, 12, 0, 0),
        tns_type=direction,
        credit=amount if direction == EntryDirection.CR else Decimal("0"),
        debit=amount if direction == EntryDirection.DR else Decimal("0"),
        kind=kind,
        category=category,
        remarks=remarks,
        is_old_record=is_old_record,
    )


def names(rows):
    return [item.name for item in rows]


# TEST 1: Aggregation
def test_balanced_ledger_with_netted_commission():
    """Raj credit 800, Sita debit 800, Commission nets to zero and is omitted."""
    entries = [
        row("Raj", EntryDirection.CR, "1000"),
        row("Raj", EntryDirection.DR, "200"),
        row("Sita", EntryDirection.DR, "800"),
        row("Commission", EntryDirection.CR, "50", EntryKind.VIRTUAL_CATEGORY, "Commission"),
        row("Commission", EntryDirection.DR, "50", EntryKind.VIRTUAL_CATEGORY, "Commission"),
    ]

    report = build_trial_balance(entries, {"Raj", "Sita"})

    assert names(report.credit_entries) == ["Raj"]
    assert report.credit_entries[0].amount == Decimal("800.00")
    assert report.credit_entries[0].credit_total == Decimal("1000.00")
    assert report.credit_entries[0].entry_count == 2
    assert names(report.debit_entries) == ["Sita"]
    assert report.debit_entries[0].amount == Decimal("800.00")
    assert report.total_credit == report.total_debit == Decimal("800.00")
    assert report.is_balanced
    assert report.difference == Decimal("0.00")


def test_sides_sorted_by_amount_descending():
    entries = [
        row("Asha", EntryDirection.CR, "100"),
        row("Bala", EntryDirection.CR, "900"),
        row("Chetan", EntryDirection.CR, "400"),
        row("Dev", EntryDirection.DR, "50"),
        row("Esha", EntryDirection.DR, "700"),
    ]

    report = build_trial_balance(entries, {"Asha", "Bala", "Chetan", "Dev", "Esha"})

    assert names(report.credit_entries) == ["Bala", "Chetan", "Asha"]
    assert names(report.debit_entries) == ["Esha", "Dev"]
    assert report.difference == Decimal("650.00")
    assert not report.is_balanced


def test_unregistered_parties_are_counted_as_orphans():
    entries = [
        row("Raj", EntryDirection.CR, "100"),
        row("Ghost", EntryDirection.CR, "500"),
        row("Ghost", EntryDirection.DR, "20"),
    ]

    report = build_trial_balance(entries, {"Raj"})

    assert names(report.credit_entries) == ["Raj"]
    assert report.orphaned_entries == 2


def test_settled_rows_skipped_and_open_marker_counted():
    entries = [
        row("Raj", EntryDirection.CR, "1000", is_old_record=True),
        row("Raj", EntryDirection.DR, "200", is_old_record=True),
        row("Raj", EntryDirection.CR, "800", EntryKind.SETTLEMENT_MARKER, remarks="Monday Final Settlement - 2 transactions settled"),
        row("Raj", EntryDirection.DR, "100"),
    ]

    report = build_trial_balance(entries, {"Raj"})

    assert report.credit_entries[0].name == "Raj"
    assert report.credit_entries[0].amount == Decimal("700.00")
    assert report.credit_entries[0].entry_count == 2


def test_internal_transfers_are_excluded():
    """Rows whose remarks are exactly the company name or "Commission" do not count."""
    entries = [
        row("Raj", EntryDirection.CR, "300"),
        row("Raj", EntryDirection.CR, "5000", remarks="Acme Co"),
        row("Raj", EntryDirection.DR, "40", remarks="Commission"),
        row("Raj", EntryDirection.DR, "10", remarks="Commission for March"),
    ]

    report = build_trial_balance(entries, {"Raj"}, company_name="Acme Co")

    assert report.credit_entries[0].amount == Decimal("290.00")


def test_virtual_categories_group_by_category():
    entries = [
        row("Acme Co", EntryDirection.DR, "250", EntryKind.VIRTUAL_CATEGORY, "Acme Co"),
        row("Comp", EntryDirection.CR, "75", EntryKind.VIRTUAL_CATEGORY, "Comp"),
        row("Compton Traders", EntryDirection.CR, "175"),
    ]

    report = build_trial_balance(entries, {"Compton Traders"}, company_name="Acme Co")

    assert names(report.credit_entries) == ["Compton Traders", "Comp"]
    assert names(report.debit_entries) == ["Acme Co"]
    assert report.orphaned_entries == 0
    assert report.is_balanced


def test_party_filter():
    entries = [row("Raj", EntryDirection.CR, "100"), row("Sita", EntryDirection.DR, "100")]

    report = build_trial_balance(entries, {"Raj", "Sita"}, party_name="Sita")

    assert report.credit_entries == ()
    assert names(report.debit_entries) == ["Sita"]


def test_empty_ledger():
    report = build_trial_balance([], set())
    assert report.credit_entries == () and report.debit_entries == ()
    assert report.is_balanced


def test_report_survives_cache_serialization():
    report = build_trial_balance([row("Raj", EntryDirection.CR, "12.50")], {"Raj"})

    restored = type(report).from_dict(report.to_dict(), from_cache=True)

    assert restored == report
    assert restored.from_cache is True


# TEST 2: Cached service
@pytest.mark.asyncio
async def test_trial_balance_is_cached_until_ledger_changes(db_session, ledger_user, redis_client_session):
    await party_registry.create_party(db_session, ledger_user, "Raj")
    await party_registry.create_party(db_session, ledger_user, "Sita")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "800")
    await LedgerService.add_entry(db_session, ledger_user, "Sita", JAN_1, EntryDirection.DR, "800")

    first = await trial_balance_service.get_trial_balance(db_session, ledger_user)
    second = await trial_balance_service.get_trial_balance(db_session, ledger_user)

    assert first.from_cache is False
    assert second.from_cache is True
    assert second == first
    key = ReportKey.build(ledger_user, ReportKind.TRIAL_BALANCE, party_name=None).render()
    assert key in redis_client_session.store

    # Any ledger write drops the tenant's cached reports
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "100")
    assert key not in redis_client_session.store

    third = await trial_balance_service.get_trial_balance(db_session, ledger_user)
    assert third.from_cache is False
    assert third.total_credit == Decimal("900.00")


@pytest.mark.asyncio
async def test_force_refresh_bypasses_cache(db_session, ledger_user):
    await party_registry.create_party(db_session, ledger_user, "Raj")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "800")
    await trial_balance_service.get_trial_balance(db_session, ledger_user)

    report = await trial_balance_service.get_trial_balance(db_session, ledger_user, force_refresh=True)

    assert report.from_cache is False


@pytest.mark.asyncio
async def test_settlement_keeps_trial_balance_unchanged(db_session, ledger_user):
    await party_registry.create_party(db_session, ledger_user, "Raj")
    await party_registry.create_party(db_session, ledger_user, "Sita")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "1000")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.DR, "200")
    await LedgerService.add_entry(db_session, ledger_user, "Sita", JAN_1, EntryDirection.DR, "800")
    before = await trial_balance_service.get_trial_balance(db_session, ledger_user)

    await SettlementService.settle(db_session, ledger_user, ["Raj", "Sita"])
    after = await trial_balance_service.get_trial_balance(db_session, ledger_user)

    assert after.from_cache is False
    assert [(item.name, item.amount) for item in after.credit_entries] == [
        (item.name, item.amount) for item in before.credit_entries
    ]
    assert [(item.name, item.amount) for item in after.debit_entries] == [
        (item.name, item.amount) for item in before.debit_entries
    ]
    assert after.is_balanced


@pytest.mark.asyncio
async def test_company_rows_report_under_company_name(db_session, ledger_user):
    await company_settings.update_company_name(db_session, ledger_user, "Acme Co")
    await party_registry.create_party(db_session, ledger_user, "Raj")
    await LedgerService.add_entry(db_session, ledger_user, "Raj", JAN_1, EntryDirection.CR, "400")
    await LedgerService.add_entry(db_session, ledger_user, "acme co", JAN_1, EntryDirection.DR, "400")

    report = await trial_balance_service.get_trial_balance(db_session, ledger_user)

    assert names(report.credit_entries) == ["Raj"]
    assert names(report.debit_entries) == ["Acme Co"]
    assert report.is_balanced
