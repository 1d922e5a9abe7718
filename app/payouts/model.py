from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter
from typing_extensions import Annotated

LAST_ERROR_MAX_CHARS = 500


class PayoutStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    SUBMITTED = "SUBMITTED"
    SENT = "SENT"
    FAILED = "FAILED"
    RETRYING = "RETRYING"
    CANCELED = "CANCELED"


DUE_STATUSES = (PayoutStatus.SCHEDULED, PayoutStatus.RETRYING)


# ---- provider meta (tagged by provider name) ----

class MockMeta(BaseModel):
    provider: Literal["mock"] = "mock"
    webhook: Optional[dict[str, Any]] = None


class OpenNodeMeta(BaseModel):
    provider: Literal["opennode"] = "opennode"
    withdrawal_id: str
    withdrawal_status: Optional[str] = None
    fee_sats: Optional[int] = None
    amount_sats: Optional[int] = None
    callback_url_configured: bool = False
    webhook: Optional[dict[str, Any]] = None


ProviderMeta = Annotated[Union[OpenNodeMeta, MockMeta], Field(discriminator="provider")]

_provider_meta_adapter: TypeAdapter = TypeAdapter(ProviderMeta)


def parse_provider_meta(value: Any) -> Optional[Union[OpenNodeMeta, MockMeta]]:
    if value is None:
        return None
    if isinstance(value, (OpenNodeMeta, MockMeta)):
        return value
    return _provider_meta_adapter.validate_python(value)


def dump_provider_meta(meta: Optional[Union[OpenNodeMeta, MockMeta]]) -> Optional[dict[str, Any]]:
    if meta is None:
        return None
    return meta.model_dump(mode="json", exclude_none=True)


def truncate_error(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return message[:LAST_ERROR_MAX_CHARS]


@dataclass(frozen=True)
class Payout:
    id: UUID
    purchase_id: UUID
    developer_user_id: UUID
    destination_address: str
    amount_msat: int
    status: PayoutStatus
    attempt_count: int
    last_error: Optional[str]
    idempotency_key: str
    provider: Optional[str]
    provider_withdrawal_id: Optional[str]
    provider_meta: Optional[Union[OpenNodeMeta, MockMeta]]
    submitted_at: Optional[datetime]
    confirmed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Payout":
        return cls(
            id=row["id"],
            purchase_id=row["purchase_id"],
            developer_user_id=row["developer_user_id"],
            destination_address=row["destination_address"],
            amount_msat=int(row["amount_msat"]),
            status=PayoutStatus(row["status"]),
            attempt_count=int(row.get("attempt_count") or 0),
            last_error=row.get("last_error"),
            idempotency_key=row["idempotency_key"],
            provider=row.get("provider"),
            provider_withdrawal_id=row.get("provider_withdrawal_id"),
            provider_meta=parse_provider_meta(row.get("provider_meta_json")),
            submitted_at=row.get("submitted_at"),
            confirmed_at=row.get("confirmed_at"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def idempotency_key_for_purchase(purchase_id: UUID | str) -> str:
    return f"purchase:{purchase_id}"
