# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Protocol, Union

from app.payouts.model import MockMeta, OpenNodeMeta, Payout

ProviderName = Literal["opennode", "mock"]


@dataclass(frozen=True)
class WithdrawalResult:
    withdrawal_id: str
    status: Optional[str] = None
    fee_sats: Optional[int] = None
    amount_sats: Optional[int] = None


@dataclass(frozen=True)
class Submission:
    provider: ProviderName
    # None only for the mock provider
    withdrawal_id: Optional[str]
    meta: Union[OpenNodeMeta, MockMeta]


class PayoutProvider(Protocol):
    name: ProviderName

    def submit(self, payout: Payout) -> Submission: ...

    def close(self) -> None: ...


def payout_comment(payout: Payout) -> str:
    return f"marketplace payout {payout.id}"
