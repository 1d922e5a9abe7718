# app/payouts/state_machine.py
from __future__ import annotations

from app.errors import InvalidTransition
from app.payouts.model import PayoutStatus

__all__ = ["ALLOWED", "InvalidTransition", "assert_transition", "assert_submitted_invariant"]

ALLOWED = {
    PayoutStatus.SCHEDULED: {PayoutStatus.SUBMITTED, PayoutStatus.RETRYING, PayoutStatus.FAILED},
    PayoutStatus.RETRYING: {PayoutStatus.SUBMITTED, PayoutStatus.RETRYING, PayoutStatus.FAILED},
    # SUBMITTED->SUBMITTED: a second worker run recording the same accepted withdrawal
    PayoutStatus.SUBMITTED: {PayoutStatus.SENT, PayoutStatus.FAILED, PayoutStatus.SUBMITTED},
    PayoutStatus.SENT: set(),
    PayoutStatus.FAILED: set(),
    PayoutStatus.CANCELED: set(),
}


def assert_transition(old: PayoutStatus | str, new: PayoutStatus | str) -> None:
    old_s = PayoutStatus(old)
    new_s = PayoutStatus(new)
    if new_s not in ALLOWED.get(old_s, set()):
        raise InvalidTransition(f"Illegal payout transition: {old_s.value} -> {new_s.value}")


def assert_submitted_invariant(new_status: PayoutStatus | str, provider: str | None) -> None:
    """
    Invariant: a SUBMITTED payout always names the provider that accepted it.
    """
    if PayoutStatus(new_status) == PayoutStatus.SUBMITTED and not provider:
        raise ValueError("Invariant violation: status=SUBMITTED requires provider")
