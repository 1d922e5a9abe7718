from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID


class LedgerEntryType(str, Enum):
    PAYOUT_SUBMITTED = "PAYOUT_SUBMITTED"
    PAYOUT_CONFIRMED = "PAYOUT_CONFIRMED"
    PAYOUT_FAILED = "PAYOUT_FAILED"


class LedgerInsertResult(str, Enum):
    INSERTED = "INSERTED"
    # dedupe_key already taken: the effect was recorded by an earlier/concurrent writer
    CONFLICT = "CONFLICT"


_DEDUPE_PREFIX = {
    LedgerEntryType.PAYOUT_SUBMITTED: "payout_submitted",
    LedgerEntryType.PAYOUT_CONFIRMED: "payout_confirmed",
    LedgerEntryType.PAYOUT_FAILED: "payout_failed",
}


def dedupe_key(entry_type: LedgerEntryType, purchase_id: UUID | str) -> str:
    return f"{_DEDUPE_PREFIX[LedgerEntryType(entry_type)]}:{purchase_id}"


@dataclass(frozen=True)
class LedgerEntry:
    id: UUID
    purchase_id: UUID
    type: LedgerEntryType
    amount_msat: int
    dedupe_key: Optional[str]
    meta: dict[str, Any]
    created_at: datetime
