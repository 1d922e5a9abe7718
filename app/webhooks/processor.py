# app/webhooks/processor.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from app.errors import InvalidTransition
from app.ledger.model import LedgerEntryType, LedgerInsertResult, dedupe_key
from app.payouts.model import OpenNodeMeta, Payout, PayoutStatus, truncate_error
from app.payouts.state_machine import assert_transition
from app.payouts.store import SettlementStore, SettlementTx
from app.webhooks.opennode import WithdrawalWebhook


class WebhookOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_SENT = "already_sent"
    FAILED = "failed"
    ALREADY_FAILED = "already_failed"
    # failure reported for a payout we already hold as SENT; SENT wins
    FAILURE_AFTER_SENT = "failure_after_sent"
    # final status for a payout that is not SUBMITTED (e.g. CANCELED)
    NOT_APPLICABLE = "not_applicable"
    UNKNOWN_STATUS = "unknown_status"
    PAYOUT_NOT_FOUND = "payout_not_found"


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    payout_id: Optional[UUID] = None
    status_before: Optional[PayoutStatus] = None
    status_after: Optional[PayoutStatus] = None
    ledger_conflict: bool = False
    ledger_entry_type: Optional[LedgerEntryType] = None
    anomalies: list[str] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.outcome in (WebhookOutcome.CONFIRMED, WebhookOutcome.FAILED)


def _amount_anomalies(payout: Payout, hook: WithdrawalWebhook) -> list[str]:
    # webhook amount is in sats; advisory only, never blocks SENT
    if not hook.amount.valid or hook.amount.number is None:
        return []
    if payout.amount_msat % 1000 != 0:
        return []
    if hook.amount.number != payout.amount_msat // 1000:
        return ["amount_mismatch"]
    return []


def _merged_meta(payout: Payout, hook: WithdrawalWebhook, snapshot: dict[str, Any]) -> OpenNodeMeta:
    meta = payout.provider_meta
    if isinstance(meta, OpenNodeMeta):
        return meta.model_copy(update={"webhook": snapshot})
    return OpenNodeMeta(
        withdrawal_id=payout.provider_withdrawal_id or hook.withdrawal_id,
        webhook=snapshot,
    )


def _ledger(
    tx: SettlementTx,
    payout: Payout,
    entry_type: LedgerEntryType,
    hook: WithdrawalWebhook,
    result: WebhookResult,
) -> None:
    inserted = tx.insert_ledger_entry(
        purchase_id=payout.purchase_id,
        entry_type=entry_type,
        amount_msat=payout.amount_msat,
        dedupe_key=dedupe_key(entry_type, payout.purchase_id),
        meta={
            "payout_id": str(payout.id),
            "provider": payout.provider,
            "provider_withdrawal_id": payout.provider_withdrawal_id,
            "webhook_status": hook.status,
        },
    )
    result.ledger_entry_type = entry_type
    result.ledger_conflict = inserted == LedgerInsertResult.CONFLICT


def _apply_status(
    tx: SettlementTx,
    payout: Payout,
    hook: WithdrawalWebhook,
    meta: OpenNodeMeta,
    result: WebhookResult,
) -> bool:
    """
    Applies hook to payout as read. Returns False when a status-guarded UPDATE
    matched no row, i.e. the payout moved on after it was read.
    """
    result.status_after = payout.status

    if hook.status_kind == "confirmed":
        if payout.status == PayoutStatus.SENT:
            tx.update_provider_meta(payout.id, provider_meta=meta)
            result.outcome = WebhookOutcome.ALREADY_SENT
            _ledger(tx, payout, LedgerEntryType.PAYOUT_CONFIRMED, hook, result)
        elif payout.status == PayoutStatus.SUBMITTED:
            assert_transition(payout.status, PayoutStatus.SENT)
            if not tx.mark_sent(payout.id, provider_meta=meta):
                return False
            result.outcome = WebhookOutcome.CONFIRMED
            result.status_after = PayoutStatus.SENT
            _ledger(tx, payout, LedgerEntryType.PAYOUT_CONFIRMED, hook, result)
        else:
            tx.update_provider_meta(payout.id, provider_meta=meta)
            result.outcome = WebhookOutcome.NOT_APPLICABLE
        return True

    if hook.status_kind == "failure":
        if payout.status == PayoutStatus.SENT:
            tx.update_provider_meta(payout.id, provider_meta=meta)
            result.outcome = WebhookOutcome.FAILURE_AFTER_SENT
        elif payout.status == PayoutStatus.FAILED:
            tx.update_provider_meta(payout.id, provider_meta=meta)
            result.outcome = WebhookOutcome.ALREADY_FAILED
            _ledger(tx, payout, LedgerEntryType.PAYOUT_FAILED, hook, result)
        elif payout.status == PayoutStatus.SUBMITTED:
            assert_transition(payout.status, PayoutStatus.FAILED)
            last_error = hook.error or f"opennode withdrawal {hook.withdrawal_id} status={hook.status}"
            if not tx.mark_failed(
                payout.id,
                last_error=truncate_error(last_error),
                from_statuses=(PayoutStatus.SUBMITTED,),
                provider_meta=meta,
            ):
                return False
            result.outcome = WebhookOutcome.FAILED
            result.status_after = PayoutStatus.FAILED
            _ledger(tx, payout, LedgerEntryType.PAYOUT_FAILED, hook, result)
        else:
            tx.update_provider_meta(payout.id, provider_meta=meta)
            result.outcome = WebhookOutcome.NOT_APPLICABLE
        return True

    # unknown status: keep the snapshot, change nothing else
    tx.update_provider_meta(payout.id, provider_meta=meta)
    result.outcome = WebhookOutcome.UNKNOWN_STATUS
    return True


def apply_withdrawal_webhook(
    store: SettlementStore,
    hook: WithdrawalWebhook,
    *,
    received_at: Optional[datetime] = None,
) -> WebhookResult:
    """
    Apply an authenticated withdrawal webhook in one transaction. The caller
    has already verified hashed_order.

    No row lock is taken. If a guarded UPDATE loses a race with a concurrent
    delivery, the row is re-read and the hook is applied to what is there now.
    """
    received_at = received_at or datetime.now(timezone.utc)

    with store.transaction() as tx:
        payout = tx.get_payout_by_withdrawal_id(hook.withdrawal_id, provider="opennode")
        if payout is None:
            return WebhookResult(outcome=WebhookOutcome.PAYOUT_NOT_FOUND, anomalies=list(hook.anomalies))

        extra = _amount_anomalies(payout, hook)
        snapshot = hook.snapshot(received_at=received_at, extra_anomalies=tuple(extra))
        meta = _merged_meta(payout, hook, snapshot)
        result = WebhookResult(
            outcome=WebhookOutcome.UNKNOWN_STATUS,
            payout_id=payout.id,
            status_before=payout.status,
            status_after=payout.status,
            anomalies=sorted(set(hook.anomalies) | set(extra)),
        )

        if not _apply_status(tx, payout, hook, meta, result):
            fresh = tx.get_payout(payout.id)
            if fresh is None or not _apply_status(tx, fresh, hook, meta, result):
                raise InvalidTransition(f"payout {payout.id} changed twice while applying webhook")
        return result
