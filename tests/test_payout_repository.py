import uuid
from datetime import datetime, timezone

from app.payouts import repository as payout_repo
from app.payouts.model import DUE_STATUSES, OpenNodeMeta, Payout, PayoutStatus
from tests.fakes import FakeConn


def _row(**overrides):
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    purchase_id = uuid.uuid4()
    row = {
        "id": uuid.uuid4(),
        "purchase_id": purchase_id,
        "developer_user_id": uuid.uuid4(),
        "destination_address": "alice@example.com",
        "amount_msat": 5_000_000,
        "status": "SUBMITTED",
        "attempt_count": 1,
        "last_error": None,
        "idempotency_key": f"purchase:{purchase_id}",
        "provider": "opennode",
        "provider_withdrawal_id": "wd-1",
        "provider_meta_json": {"provider": "opennode", "withdrawal_id": "wd-1", "fee_sats": 2},
        "submitted_at": now,
        "confirmed_at": None,
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


def test_row_parses_tagged_provider_meta():
    p = Payout.from_row(_row())
    assert p.status == PayoutStatus.SUBMITTED
    assert isinstance(p.provider_meta, OpenNodeMeta)
    assert p.provider_meta.fee_sats == 2


def test_row_parses_mock_meta_and_null_meta():
    p = Payout.from_row(_row(provider="mock", provider_withdrawal_id=None, provider_meta_json={"provider": "mock"}))
    assert p.provider_meta.provider == "mock"

    p = Payout.from_row(_row(status="SCHEDULED", provider=None, provider_meta_json=None))
    assert p.provider_meta is None


def test_list_due_payouts_filters_and_orders_oldest_first():
    conn = FakeConn(rows=[_row(status="SCHEDULED"), _row(status="RETRYING")])
    due = payout_repo.list_due_payouts(conn, limit=7)

    sql, params = conn.executed[0]
    assert "status IN ('SCHEDULED', 'RETRYING')" in sql
    assert "ORDER BY p.created_at ASC" in sql
    assert params == (7,)
    assert [p.status for p in due] == [PayoutStatus.SCHEDULED, PayoutStatus.RETRYING]


def test_reads_take_no_row_lock():
    conn = FakeConn(rows=[_row(), _row()])
    payout_repo.get_payout(conn, uuid.uuid4())
    payout_repo.get_payout_by_withdrawal_id(conn, "wd-1")
    assert all("FOR UPDATE" not in sql for sql, _ in conn.executed)


def test_mark_submitted_never_overwrites_sent():
    conn = FakeConn(rowcount=1)
    ok = payout_repo.mark_submitted(
        conn,
        payout_id=uuid.uuid4(),
        provider="opennode",
        provider_withdrawal_id="wd-1",
        provider_meta=OpenNodeMeta(withdrawal_id="wd-1"),
    )
    assert ok is True
    sql, params = conn.executed[0]
    assert "status <> 'SENT'" in sql
    assert "attempt_count = attempt_count + 1" in sql
    assert params[2].adapted == {"provider": "opennode", "withdrawal_id": "wd-1", "callback_url_configured": False}


def test_mark_retrying_truncates_error():
    conn = FakeConn(rowcount=1)
    payout_repo.mark_retrying(conn, payout_id=uuid.uuid4(), last_error="x" * 900)
    sql, params = conn.executed[0]
    assert "status IN ('SCHEDULED', 'RETRYING')" in sql
    assert len(params[0]) == 500


def test_mark_failed_passes_allowed_source_statuses_as_text():
    conn = FakeConn(rowcount=0)
    ok = payout_repo.mark_failed(conn, payout_id=uuid.uuid4(), last_error="boom", from_statuses=DUE_STATUSES)
    assert ok is False
    sql, params = conn.executed[0]
    assert "status::text = ANY(%s)" in sql
    assert params[1] is None
    assert params[3] == ["SCHEDULED", "RETRYING"]


def test_mark_sent_only_from_submitted():
    conn = FakeConn(rowcount=1)
    assert payout_repo.mark_sent(conn, payout_id=uuid.uuid4()) is True
    sql, _ = conn.executed[0]
    assert "status = 'SUBMITTED'" in sql
