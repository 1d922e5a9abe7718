# app/providers/mock.py
from __future__ import annotations

from app.payouts.model import MockMeta, Payout
from app.providers.base import Submission


class MockPayoutProvider:
    """
    Keyless dev/test provider. Nothing leaves the process: the payout is
    recorded as SUBMITTED with no withdrawal id, so no webhook will ever
    finalize it.
    """

    name = "mock"

    def __init__(self):
        self.calls: list[Payout] = []

    def submit(self, payout: Payout) -> Submission:
        self.calls.append(payout)
        return Submission(provider="mock", withdrawal_id=None, meta=MockMeta())

    def close(self) -> None:
        pass
