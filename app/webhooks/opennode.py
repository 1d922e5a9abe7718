# app/webhooks/opennode.py
"""
OpenNode withdrawal webhooks: authenticity check and a defensive, telemetry-only
normalization of the form payload.

OpenNode signs a withdrawal callback by sending
    hashed_order = hex(HMAC-SHA256(key=api_key, msg=withdrawal_id))
Nothing in the normalized view ever causes a rejection; anomalies are reported
as flag names and logged/counted by the caller.
"""
from __future__ import annotations

import hashlib
import hmac
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

ID_MAX_CHARS = 128
REFERENCE_MAX_CHARS = 200
ERROR_MAX_CHARS = 500
HASHED_ORDER_HEX_LEN = 64
PROCESSED_AT_MAX_AGE = timedelta(days=30)

STATUS_CONFIRMED = "confirmed"
FAILURE_STATUSES = frozenset({"failed", "error"})

_BECH32_RE = re.compile(r"^(bc1|tb1|bcrt1)[ac-hj-np-z02-9]{11,100}$", re.IGNORECASE)
_BASE58_RE = re.compile(r"^[13mn2][a-km-zA-HJ-NP-Z1-9]{25,49}$")
_HEX64_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_DECIMAL_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_RADIX_RE = re.compile(r"^[+-]?0([xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$")
_EPOCH_RE = re.compile(r"^\d+(\.\d+)?$")


# ==========================================================
# Signature
# ==========================================================

def compute_hashed_order(api_key: str, withdrawal_id: str) -> str:
    return hmac.new(api_key.encode("utf-8"), withdrawal_id.encode("utf-8"), hashlib.sha256).hexdigest()


def strip_hashed_order(value: Optional[str]) -> tuple[str, bool]:
    """Returns (digest, had_sha256_prefix)."""
    raw = (value or "").strip()
    if raw.lower().startswith("sha256="):
        return raw[len("sha256="):].strip(), True
    return raw, False


def verify_hashed_order(api_key: str, withdrawal_id: str, received: Optional[str]) -> bool:
    digest, _ = strip_hashed_order(received)
    if not digest:
        return False
    expected = compute_hashed_order(api_key, withdrawal_id)
    return hmac.compare_digest(expected.lower().encode("ascii"), digest.lower().encode("utf-8"))


# ==========================================================
# Normalization
# ==========================================================

@dataclass(frozen=True)
class NumericField:
    raw: Optional[str]
    number: Optional[float]
    valid: bool
    decimal_places: Optional[int] = None
    scientific: bool = False
    leading_plus: bool = False
    non_decimal_radix: bool = False


def parse_numeric(value: Any) -> NumericField:
    raw = str(value if value is not None else "").strip()
    if not raw:
        return NumericField(raw=None, number=None, valid=False)

    leading_plus = raw.startswith("+")

    if _RADIX_RE.match(raw):
        try:
            number = float(int(raw, 0))
        except OverflowError:
            return NumericField(raw=raw, number=None, valid=False, leading_plus=leading_plus, non_decimal_radix=True)
        return NumericField(
            raw=raw,
            number=number,
            valid=True,
            decimal_places=0,
            leading_plus=leading_plus,
            non_decimal_radix=True,
        )

    if not _DECIMAL_RE.match(raw):
        return NumericField(raw=raw, number=None, valid=False, leading_plus=leading_plus)

    number = float(raw)
    if not math.isfinite(number):
        return NumericField(raw=raw, number=None, valid=False, leading_plus=leading_plus)

    frac = re.search(r"\.(\d+)", raw)
    return NumericField(
        raw=raw,
        number=number,
        valid=True,
        decimal_places=len(frac.group(1)) if frac else 0,
        scientific="e" in raw.lower(),
        leading_plus=leading_plus,
    )


def parse_processed_at(value: Any) -> Optional[datetime]:
    raw = str(value if value is not None else "").strip()
    if not raw:
        return None
    if _EPOCH_RE.match(raw):
        try:
            return datetime.fromtimestamp(float(raw), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00").replace("z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def address_kind(address: Optional[str]) -> Optional[str]:
    if not address:
        return None
    if _BECH32_RE.match(address):
        return "bech32"
    if _BASE58_RE.match(address):
        return "base58"
    return "unknown"


def _clip(value: Optional[str], limit: int) -> tuple[Optional[str], bool]:
    if not value:
        return None, False
    if len(value) > limit:
        return value[:limit], True
    return value, False


def _field(form: Mapping[str, Any], name: str) -> str:
    value = form.get(name)
    return "" if value is None else str(value)


@dataclass
class WithdrawalWebhook:
    # full trimmed id: what OpenNode signed and what we stored at submission
    withdrawal_id: str
    status: str
    status_raw: Optional[str]
    hashed_order: str
    hashed_order_prefixed: bool
    error: Optional[str]
    processed_at: Optional[datetime]
    processed_at_raw: Optional[str]
    amount: NumericField
    fee: NumericField
    address: Optional[str]
    address_kind: Optional[str]
    reference: Optional[str]
    type: Optional[str]
    type_known: bool
    anomalies: list[str] = field(default_factory=list)

    @property
    def status_kind(self) -> str:
        if self.status == STATUS_CONFIRMED:
            return "confirmed"
        if self.status in FAILURE_STATUSES:
            return "failure"
        return "unknown"

    @property
    def status_known(self) -> bool:
        return self.status_kind != "unknown"

    def snapshot(self, *, received_at: datetime, extra_anomalies: tuple[str, ...] = ()) -> dict[str, Any]:
        """JSON-safe view persisted under provider_meta.webhook. Never includes the signature."""
        clipped_id, _ = _clip(self.withdrawal_id, ID_MAX_CHARS)
        return {
            "received_at": received_at.isoformat(),
            "id": clipped_id,
            "status": self.status,
            "status_raw": self.status_raw,
            "status_kind": self.status_kind,
            "processed_at": self.processed_at_raw,
            "processed_at_iso": self.processed_at.isoformat() if self.processed_at else None,
            "amount": self.amount.raw,
            "amount_number": self.amount.number,
            "fee": self.fee.raw,
            "fee_number": self.fee.number,
            "address": self.address,
            "address_kind": self.address_kind,
            "reference": self.reference,
            "type": self.type,
            "type_known": self.type_known,
            "error": self.error,
            "hashed_order_prefixed": self.hashed_order_prefixed,
            "anomalies": sorted(set(self.anomalies) | set(extra_anomalies)),
        }


def _numeric_flags(name: str, f: NumericField) -> list[str]:
    if f.raw is None:
        return []
    if not f.valid:
        return [f"{name}_invalid"]
    flags: list[str] = []
    if f.number is not None and f.number < 0:
        flags.append(f"{name}_negative")
    if f.number == 0:
        flags.append(f"{name}_zero")
    if f.scientific:
        flags.append(f"{name}_scientific_notation")
    if f.leading_plus:
        flags.append(f"{name}_leading_plus")
    if f.non_decimal_radix:
        flags.append(f"{name}_non_decimal_radix")
    if f.decimal_places:
        flags.append(f"{name}_fractional")
    return flags


def normalize_withdrawal_webhook(form: Mapping[str, Any], *, now: Optional[datetime] = None) -> WithdrawalWebhook:
    now = now or datetime.now(timezone.utc)
    flags: list[str] = []

    raw_id = _field(form, "id")
    withdrawal_id = raw_id.strip()
    if len(withdrawal_id) > ID_MAX_CHARS:
        flags.append("id_truncated")

    raw_status = _field(form, "status")
    status_raw = raw_status.strip() or None
    status = (status_raw or "").lower()
    if status_raw and status_raw != status:
        flags.append("status_case_normalized")

    raw_hashed = _field(form, "hashed_order")
    hashed_order, prefixed = strip_hashed_order(raw_hashed)
    if hashed_order and not _HEX64_RE.match(hashed_order):
        flags.append("hashed_order_malformed")

    if (raw_id != raw_id.strip()) or (raw_status != raw_status.strip()) or (raw_hashed != raw_hashed.strip()):
        flags.append("input_whitespace")

    error, error_truncated = _clip(_field(form, "error").strip(), ERROR_MAX_CHARS)
    if error_truncated:
        flags.append("error_truncated")

    reference, reference_truncated = _clip(_field(form, "reference").strip(), REFERENCE_MAX_CHARS)
    if reference_truncated:
        flags.append("reference_truncated")

    processed_at_raw = _field(form, "processed_at").strip() or None
    processed_at = parse_processed_at(processed_at_raw)
    if processed_at_raw and processed_at is None:
        flags.append("processed_at_invalid")
    if processed_at is not None:
        if processed_at > now:
            flags.append("processed_at_in_future")
        elif now - processed_at > PROCESSED_AT_MAX_AGE:
            flags.append("processed_at_older_than_30d")

    amount = parse_numeric(form.get("amount"))
    fee = parse_numeric(form.get("fee"))
    flags.extend(_numeric_flags("amount", amount))
    flags.extend(_numeric_flags("fee", fee))
    if amount.valid and fee.valid:
        if fee.number > amount.number:
            flags.append("fee_greater_than_amount")
        elif fee.number == amount.number:
            flags.append("fee_equal_amount")

    address = _field(form, "address").strip() or None
    kind = address_kind(address)
    if kind == "unknown":
        flags.append("address_unrecognized")

    type_raw = _field(form, "type").strip() or None
    type_ = type_raw.lower() if type_raw else None
    type_known = type_ == "withdrawal"

    hook = WithdrawalWebhook(
        withdrawal_id=withdrawal_id,
        status=status,
        status_raw=status_raw,
        hashed_order=hashed_order,
        hashed_order_prefixed=prefixed,
        error=error,
        processed_at=processed_at,
        processed_at_raw=processed_at_raw,
        amount=amount,
        fee=fee,
        address=address,
        address_kind=kind,
        reference=reference,
        type=type_,
        type_known=type_known,
        anomalies=flags,
    )

    if status and not hook.status_known:
        flags.append("status_unknown")
    if type_ and not type_known:
        flags.append("type_unknown")
        if hook.status_known:
            flags.append("status_type_mismatch")
    if hook.status_kind == "failure" and not error:
        flags.append("error_missing_for_failure")
    if hook.status_kind == "confirmed" and error:
        flags.append("error_present_on_confirmed")
    if hook.status_known and processed_at is None:
        flags.append("processed_at_missing_for_final_status")

    return hook
