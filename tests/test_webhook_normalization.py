from datetime import datetime, timedelta, timezone

import pytest

from app.webhooks.opennode import (
    address_kind,
    compute_hashed_order,
    normalize_withdrawal_webhook,
    parse_numeric,
    parse_processed_at,
    verify_hashed_order,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
KEY = "k-test"


def _hook(**form):
    base = {"id": "wd-1", "status": "confirmed", "hashed_order": compute_hashed_order(KEY, "wd-1")}
    base.update(form)
    return normalize_withdrawal_webhook(base, now=NOW)


def test_compute_hashed_order_is_hmac_sha256_hex():
    # HMAC-SHA256(key="key", msg="The quick brown fox jumps over the lazy dog")
    assert (
        compute_hashed_order("key", "The quick brown fox jumps over the lazy dog")
        == "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8"
    )


def test_verify_hashed_order_variants():
    digest = compute_hashed_order(KEY, "wd-1")
    assert verify_hashed_order(KEY, "wd-1", digest)
    assert verify_hashed_order(KEY, "wd-1", digest.upper())
    assert verify_hashed_order(KEY, "wd-1", f"sha256={digest}")
    assert verify_hashed_order(KEY, "wd-1", f"  SHA256={digest} ")
    assert not verify_hashed_order(KEY, "wd-2", digest)
    assert not verify_hashed_order("other", "wd-1", digest)
    assert not verify_hashed_order(KEY, "wd-1", "")
    assert not verify_hashed_order(KEY, "wd-1", None)
    assert not verify_hashed_order(KEY, "wd-1", "sha256=")
    assert not verify_hashed_order(KEY, "wd-1", digest[:-1] + "é")


def test_clean_payload_has_no_anomalies():
    hook = _hook(
        type="withdrawal",
        processed_at="2026-03-01T11:00:00Z",
        amount="5000",
        fee="2",
        address="bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq",
    )
    assert hook.anomalies == []
    assert hook.status_kind == "confirmed"
    assert hook.address_kind == "bech32"
    assert hook.type_known is True


def test_status_kinds():
    assert _hook(status="failed").status_kind == "failure"
    assert _hook(status="ERROR").status_kind == "failure"
    assert _hook(status="pending").status_kind == "unknown"
    assert "status_unknown" in _hook(status="pending").anomalies


def test_long_id_is_flagged_but_kept_whole_for_signature():
    long_id = "w" * 200
    hook = _hook(id=long_id)
    assert hook.withdrawal_id == long_id
    assert "id_truncated" in hook.anomalies
    snap = hook.snapshot(received_at=NOW)
    assert len(snap["id"]) == 128


def test_whitespace_and_case_flags():
    hook = _hook(id=" wd-1 ", status="CONFIRMED")
    assert hook.withdrawal_id == "wd-1"
    assert hook.status == "confirmed"
    assert "input_whitespace" in hook.anomalies
    assert "status_case_normalized" in hook.anomalies


def test_malformed_hashed_order_is_flagged():
    assert "hashed_order_malformed" in _hook(hashed_order="not-hex").anomalies
    hook = _hook(hashed_order="sha256=" + compute_hashed_order(KEY, "wd-1"))
    assert hook.hashed_order_prefixed is True
    assert "hashed_order_malformed" not in hook.anomalies


def test_error_and_reference_are_clipped():
    hook = _hook(status="failed", error="e" * 600, reference="r" * 250)
    assert len(hook.error) == 500
    assert len(hook.reference) == 200
    assert "error_truncated" in hook.anomalies
    assert "reference_truncated" in hook.anomalies


def test_error_consistency_flags():
    assert "error_missing_for_failure" in _hook(status="failed").anomalies
    assert "error_present_on_confirmed" in _hook(error="oops").anomalies


@pytest.mark.parametrize(
    "raw,flags",
    [
        ("abc", ["amount_invalid"]),
        ("-5", ["amount_negative"]),
        ("0", ["amount_zero"]),
        ("5e3", ["amount_scientific_notation"]),
        ("+5000", ["amount_leading_plus"]),
        ("0x10", ["amount_non_decimal_radix"]),
        ("12.5", ["amount_fractional"]),
        ("inf", ["amount_invalid"]),
    ],
)
def test_amount_flags(raw, flags):
    hook = _hook(amount=raw)
    for flag in flags:
        assert flag in hook.anomalies


def test_parse_numeric_values():
    assert parse_numeric("5000").number == 5000
    assert parse_numeric("0x10").number == 16
    assert parse_numeric("0b101").number == 5
    assert parse_numeric(" ").raw is None
    assert parse_numeric(None).valid is False
    assert parse_numeric("1.250").decimal_places == 3


def test_radix_literal_too_large_for_float_is_invalid():
    huge = "0x" + "f" * 300
    field = parse_numeric(huge)
    assert field.valid is False
    assert field.number is None
    assert field.non_decimal_radix is True

    hook = _hook(amount=huge, fee=huge)
    assert "amount_invalid" in hook.anomalies
    assert "fee_invalid" in hook.anomalies
    assert hook.snapshot(received_at=NOW)["amount_number"] is None


def test_fee_cross_checks():
    assert "fee_greater_than_amount" in _hook(amount="10", fee="11").anomalies
    assert "fee_equal_amount" in _hook(amount="10", fee="10").anomalies
    assert not any(f.startswith("fee_") for f in _hook(amount="10", fee="1").anomalies)


def test_processed_at_checks():
    assert "processed_at_invalid" in _hook(processed_at="yesterday").anomalies
    future = (NOW + timedelta(hours=1)).isoformat()
    assert "processed_at_in_future" in _hook(processed_at=future).anomalies
    old = str(int((NOW - timedelta(days=31)).timestamp()))
    assert "processed_at_older_than_30d" in _hook(processed_at=old).anomalies
    assert "processed_at_missing_for_final_status" in _hook().anomalies
    assert "processed_at_missing_for_final_status" not in _hook(status="pending").anomalies


def test_parse_processed_at_formats():
    assert parse_processed_at("1700000000") == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert parse_processed_at("2026-03-01T10:00:00") == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_processed_at("2026-03-01T10:00:00+01:00") == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert parse_processed_at("") is None
    assert parse_processed_at("not a date") is None


def test_type_checks():
    hook = _hook(type="invoice")
    assert hook.type_known is False
    assert "type_unknown" in hook.anomalies
    assert "status_type_mismatch" in hook.anomalies
    assert "type_unknown" not in _hook(type="Withdrawal").anomalies


def test_address_kinds():
    assert address_kind(None) is None
    assert address_kind("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx") == "bech32"
    assert address_kind("1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2") == "base58"
    assert address_kind("alice@example.com") == "unknown"
    assert "address_unrecognized" in _hook(address="alice@example.com").anomalies


def test_snapshot_never_contains_signature():
    hook = _hook(amount="5000")
    snap = hook.snapshot(received_at=NOW, extra_anomalies=("amount_mismatch",))
    assert "hashed_order" not in snap
    assert hook.hashed_order not in str(snap)
    assert "amount_mismatch" in snap["anomalies"]
    assert snap["received_at"] == NOW.isoformat()
