"""
Commission Transaction Tests.

A deal writes paired legs on the client, vendor and house ledgers, so the
trial balance stays balanced through booking and cancellation.
"""

import pytest
from datetime import date
from decimal import Decimal

from backend.app.core.exceptions import LedgerValidationError, ResourceNotFoundError, TransactionCancelledError
from backend.app.domain.ledger.commission_service import CommissionTransactionService, build_legs, reversal_ti
from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.domain.ledger.trial_balance import trial_balance_service
from backend.app.models.ledger_enums import CommissionStatus, EntryDirection
from backend.app.services import company_settings, party_registry

JAN_5 = date(2024, 1, 5)
JAN_20 = date(2024, 1, 20)
FEB_3 = date(2024, 2, 3)


async def seed_parties(db, user_id):
    for name in ("Ravi Traders", "Mehta Logistics"):
        await party_registry.create_party(db, user_id, name)


async def book(db, user_id, amount="10000", **extra):
    return await CommissionTransactionService.create(
        db, user_id, "Ravi Traders", "Mehta Logistics", amount,
        client_commission_rate=extra.pop("client_rate", "3"),
        vendor_commission_rate=extra.pop("vendor_rate", "1"),
        transaction_date=extra.pop("transaction_date", JAN_5),
        **extra,
    )


async def closing(db, user_id, name):
    ledger = await LedgerService.get_party_ledger(db, user_id, name)
    return ledger.closing_balance


# TEST 1: Legs
def test_legs_pair_up_per_party():
    legs = build_legs("CT1", "Client", "Vendor", "House", Decimal("10000.00"), Decimal("300.00"), Decimal("100.00"))

    assert len(legs) == 8
    signed = {}
    for party, direction, amount, remarks in legs:
        assert remarks.startswith("Commission Transaction CT1:")
        delta = amount if direction == EntryDirection.CR else -amount
        signed[party] = signed.get(party, Decimal("0")) + delta
    assert signed == {
        "Client": Decimal("-10000.00"),
        "Vendor": Decimal("-200.00"),
        "House": Decimal("10200.00"),
    }
    assert sum(signed.values()) == 0


def test_zero_commission_legs_are_skipped():
    legs = build_legs("CT1", "Client", "Vendor", "House", Decimal("500.00"), Decimal("0.00"), Decimal("0.00"))

    assert len(legs) == 6
    assert all(amount > 0 for _, _, amount, _ in legs)


# TEST 2: Create
@pytest.mark.asyncio
async def test_create_books_balanced_legs(db_session, ledger_user):
    await seed_parties(db_session, ledger_user)

    record, entries, recalculations = await book(db_session, ledger_user)

    assert record.transaction_id.startswith("CT")
    assert record.house_account == "Commission"
    assert record.client_commission == Decimal("300.00")
    assert record.vendor_commission == Decimal("100.00")
    assert record.net_to_vendor == Decimal("9700.00")
    assert record.net_profit == Decimal("200.00")
    assert record.status == CommissionStatus.ACTIVE.value

    assert len(entries) == 8
    assert {entry.ti for entry in entries} == {record.transaction_id}
    assert {entry.entry_date for entry in entries} == {JAN_5}
    assert [result.party_name for result in recalculations] == ["Commission", "Mehta Logistics", "Ravi Traders"]

    assert await closing(db_session, ledger_user, "Ravi Traders") == Decimal("-10000.00")
    assert await closing(db_session, ledger_user, "Mehta Logistics") == Decimal("-200.00")
    assert await closing(db_session, ledger_user, "Commission") == Decimal("10200.00")

    report = await trial_balance_service.get_trial_balance(db_session, ledger_user, force_refresh=True)
    assert report.is_balanced
    assert report.total_credit == Decimal("10200.00")
    assert report.total_debit == Decimal("10200.00")


@pytest.mark.asyncio
async def test_house_account_is_company_name_when_set(db_session, ledger_user):
    await seed_parties(db_session, ledger_user)
    await company_settings.update_company_name(db_session, ledger_user, "Acme Co")

    record, entries, _ = await book(db_session, ledger_user)

    assert record.house_account == "Acme Co"
    assert sum(1 for entry in entries if entry.party_name == "Acme Co") == 4
    assert await closing(db_session, ledger_user, "Acme Co") == Decimal("10200.00")


@pytest.mark.asyncio
async def test_default_rates_come_from_settings(db_session, ledger_user):
    await seed_parties(db_session, ledger_user)

    record, _, _ = await CommissionTransactionService.create(
        db_session, ledger_user, "Ravi Traders", "Mehta Logistics", "2000"
    )

    assert record.client_commission_rate == Decimal("3.0")
    assert record.vendor_commission_rate == Decimal("1.0")
    assert record.client_commission == Decimal("60.00")
    assert record.vendor_commission == Decimal("20.00")


@pytest.mark.asyncio
async def test_create_rejections(db_session, ledger_user):
    await seed_parties(db_session, ledger_user)

    with pytest.raises(ResourceNotFoundError):
        await CommissionTransactionService.create(db_session, ledger_user, "Ghost", "Mehta Logistics", "100")

    with pytest.raises(LedgerValidationError):
        await CommissionTransactionService.create(db_session, ledger_user, "Commission", "Mehta Logistics", "100")

    with pytest.raises(LedgerValidationError):
        await CommissionTransactionService.create(db_session, ledger_user, "Ravi Traders", "ravi traders", "100")

    with pytest.raises(LedgerValidationError):
        await CommissionTransactionService.create(db_session, ledger_user, "Ravi Traders", "Mehta Logistics", "0")

    with pytest.raises(LedgerValidationError):
        await book(db_session, ledger_user, client_rate="150")

    assert await CommissionTransactionService.list_transactions(db_session, ledger_user) == []
    ledger = await LedgerService.get_party_ledger(db_session, ledger_user, "Ravi Traders")
    assert ledger.open_entries == ()


# TEST 3: Cancel
@pytest.mark.asyncio
async def test_cancel_reverses_every_leg(db_session, ledger_user):
    await seed_parties(db_session, ledger_user)
    record, _, _ = await book(db_session, ledger_user)

    cancelled, reversals, _ = await CommissionTransactionService.cancel(
        db_session, ledger_user, record.transaction_id
    )

    assert cancelled.status == CommissionStatus.CANCELLED.value
    assert cancelled.cancelled_at is not None
    assert len(reversals) == 8
    assert {entry.ti for entry in reversals} == {reversal_ti(record.transaction_id)}
    assert all(entry.remarks.startswith("CANCELLED: Commission Transaction") for entry in reversals)

    for name in ("Ravi Traders", "Mehta Logistics", "Commission"):
        assert await closing(db_session, ledger_user, name) == Decimal("0.00")

    report = await trial_balance_service.get_trial_balance(db_session, ledger_user, force_refresh=True)
    assert report.is_balanced
    assert report.difference == Decimal("0.00")

    _, entries = await CommissionTransactionService.get_transaction(db_session, ledger_user, record.transaction_id)
    assert len(entries) == 16

    with pytest.raises(TransactionCancelledError):
        await CommissionTransactionService.cancel(db_session, ledger_user, record.transaction_id)


@pytest.mark.asyncio
async def test_cancel_unknown_transaction(db_session, ledger_user):
    with pytest.raises(ResourceNotFoundError):
        await CommissionTransactionService.cancel(db_session, ledger_user, "CT0000")


# TEST 4: Listing and summary
@pytest.mark.asyncio
async def test_summary_groups_active_deals_by_month(db_session, ledger_user):
    await seed_parties(db_session, ledger_user)
    await book(db_session, ledger_user, "10000", transaction_date=JAN_5)
    await book(db_session, ledger_user, "5000", transaction_date=JAN_20)
    dropped, _, _ = await book(db_session, ledger_user, "2000", transaction_date=FEB_3)
    await CommissionTransactionService.cancel(db_session, ledger_user, dropped.transaction_id)

    summary = await CommissionTransactionService.summary(db_session, ledger_user)

    assert summary.total_transactions == 2
    assert summary.cancelled_transactions == 1
    assert summary.business_volume == Decimal("15000.00")
    assert summary.commission_collected == Decimal("450.00")
    assert summary.commission_paid == Decimal("150.00")
    assert summary.net_profit == Decimal("300.00")
    assert summary.house_balance == Decimal("15300.00")
    assert [period.month for period in summary.months] == ["2024-01"]
    assert summary.months[0].transactions == 2

    january = await CommissionTransactionService.summary(db_session, ledger_user, JAN_20, date(2024, 1, 31))
    assert january.total_transactions == 1
    assert january.business_volume == Decimal("5000.00")

    listed = await CommissionTransactionService.list_transactions(db_session, ledger_user)
    assert [record.transaction_date for record in listed] == [FEB_3, JAN_20, JAN_5]
    active = await CommissionTransactionService.list_transactions(
        db_session, ledger_user, CommissionStatus.ACTIVE
    )
    assert len(active) == 2


# TEST 5: HTTP
@pytest.mark.asyncio
async def test_commission_transactions_over_http(client, auth_headers):
    headers, _ = auth_headers
    for name in ("Ravi Traders", "Mehta Logistics"):
        response = await client.post("/v1/parties", json={"party_name": name}, headers=headers)
        assert response.status_code == 201

    response = await client.post("/v1/commission-transactions", json={
        "client_name": "Ravi Traders",
        "vendor_name": "Mehta Logistics",
        "original_amount": "10000",
        "client_commission_rate": "3",
        "vendor_commission_rate": "1",
        "transaction_date": "2024-01-05",
    }, headers=headers)
    assert response.status_code == 201
    body = response.json()
    transaction_id = body["transaction"]["transaction_id"]
    assert len(body["entries"]) == 8
    assert body["partial_failure"] is False
    assert Decimal(body["transaction"]["net_profit"]) == Decimal("200")

    response = await client.get("/v1/trial-balance", params={"force_refresh": True}, headers=headers)
    assert response.json()["totals"]["is_balanced"] is True

    response = await client.get("/v1/commission-transactions/summary", headers=headers)
    assert response.status_code == 200
    assert response.json()["total_transactions"] == 1
    assert response.json()["months"][0]["month"] == "2024-01"

    response = await client.get(f"/v1/commission-transactions/{transaction_id}", headers=headers)
    assert response.status_code == 200
    assert len(response.json()["entries"]) == 8

    response = await client.post(f"/v1/commission-transactions/{transaction_id}/cancel", headers=headers)
    assert response.status_code == 200
    assert response.json()["transaction"]["status"] == "CANCELLED"

    response = await client.post(f"/v1/commission-transactions/{transaction_id}/cancel", headers=headers)
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_LEDGER_004"

    response = await client.get("/v1/commission-transactions", params={"status": "CANCELLED"}, headers=headers)
    assert [item["transaction_id"] for item in response.json()] == [transaction_id]

    response = await client.get("/v1/commission-transactions/CT404", headers=headers)
    assert response.status_code == 404

    response = await client.post("/v1/commission-transactions", json={
        "client_name": "Ravi Traders",
        "vendor_name": "Ghost",
        "original_amount": "100",
    }, headers=headers)
    assert response.status_code == 404
