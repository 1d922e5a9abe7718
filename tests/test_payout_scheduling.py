import logging
import uuid

import pytest

from app.errors import DeveloperProfileMissing
from app.payouts.model import PayoutStatus
from app.payouts.scheduling import schedule_payout
from tests.fakes import FakeDirectory, FakeSettlementStore


def test_schedules_one_payout_per_purchase(caplog):
    store = FakeSettlementStore()
    dev = uuid.uuid4()
    purchase = uuid.uuid4()
    directory = FakeDirectory({dev: " alice@getalby.com "})
    caplog.set_level(logging.INFO, logger="marketplace.payouts.scheduling")

    payout = schedule_payout(store, directory, purchase_id=purchase, developer_user_id=dev, amount_msat=5_000_000)

    assert payout.status == PayoutStatus.SCHEDULED
    assert payout.destination_address == "alice@getalby.com"
    assert payout.idempotency_key == f"purchase:{purchase}"
    assert store.list_due_payouts(10) == [payout]
    assert "payout_scheduled" in caplog.text
    assert "alice@getalby.com" not in caplog.text


def test_rescheduling_refreshes_while_due():
    store = FakeSettlementStore()
    dev = uuid.uuid4()
    purchase = uuid.uuid4()
    directory = FakeDirectory({dev: "alice@getalby.com"})

    first = schedule_payout(store, directory, purchase_id=purchase, developer_user_id=dev, amount_msat=1000)
    directory.addresses[dev] = "alice@walletofsatoshi.com"
    second = schedule_payout(store, directory, purchase_id=purchase, developer_user_id=dev, amount_msat=2000)

    assert second.id == first.id
    assert second.amount_msat == 2000
    assert second.destination_address == "alice@walletofsatoshi.com"
    assert len(store.list_due_payouts(10)) == 1


def test_rescheduling_does_not_touch_submitted_payout():
    store = FakeSettlementStore()
    dev = uuid.uuid4()
    purchase = uuid.uuid4()
    existing = store.add_payout(
        purchase_id=purchase,
        developer_user_id=dev,
        status=PayoutStatus.SUBMITTED,
        provider="opennode",
        provider_withdrawal_id="wd-1",
    )

    payout = schedule_payout(
        store,
        FakeDirectory({dev: "mallory@example.com"}),
        purchase_id=purchase,
        developer_user_id=dev,
        amount_msat=9000,
    )

    assert payout.id == existing.id
    assert payout.status == PayoutStatus.SUBMITTED
    assert payout.destination_address == existing.destination_address
    assert payout.amount_msat == existing.amount_msat


def test_missing_developer_address_raises():
    store = FakeSettlementStore()
    dev = uuid.uuid4()
    with pytest.raises(DeveloperProfileMissing) as exc:
        schedule_payout(store, FakeDirectory(), purchase_id=uuid.uuid4(), developer_user_id=dev, amount_msat=1000)
    assert exc.value.developer_user_id == dev
    assert store.list_due_payouts(10) == []


def test_non_positive_amount_raises():
    store = FakeSettlementStore()
    dev = uuid.uuid4()
    with pytest.raises(ValueError):
        schedule_payout(
            store,
            FakeDirectory({dev: "alice@getalby.com"}),
            purchase_id=uuid.uuid4(),
            developer_user_id=dev,
            amount_msat=0,
        )
