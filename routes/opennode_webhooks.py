# routes/opennode_webhooks.py
from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.payouts.store import SettlementStore
from app.webhooks.opennode import normalize_withdrawal_webhook, verify_hashed_order
from app.webhooks.processor import WebhookOutcome, apply_withdrawal_webhook
from deps.store import get_store
from services.metrics import increment_ledger_conflict, increment_webhook_event, increment_webhook_triage
from services.redaction import redact_text
from settings import opennode_api_key

router = APIRouter(prefix="/webhooks/opennode", tags=["webhooks"])
logger = logging.getLogger("marketplace.payouts.webhooks")

PROVIDER = "opennode"

# outcomes that need a human to look at the payout
_TRIAGE_OUTCOMES = {
    WebhookOutcome.PAYOUT_NOT_FOUND: "lookup_miss",
    WebhookOutcome.UNKNOWN_STATUS: "unknown_status",
    WebhookOutcome.FAILURE_AFTER_SENT: "failure_after_sent",
    WebhookOutcome.NOT_APPLICABLE: "status_not_applicable",
}


def _ok() -> dict[str, Any]:
    return {"ok": True}


def _fail(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


def _parse_body(raw: bytes, content_type: str) -> dict[str, str]:
    """OpenNode posts application/x-www-form-urlencoded; JSON is accepted for manual replays."""
    text = raw.decode("utf-8", errors="replace")
    if "application/json" in (content_type or "").lower():
        try:
            parsed = json.loads(text)
        except ValueError:
            return {}
        if not isinstance(parsed, dict):
            return {}
        return {str(k): "" if v is None else str(v) for k, v in parsed.items()}
    # last value wins for repeated keys
    return dict(parse_qsl(text, keep_blank_values=True))


@router.post("/withdrawals")
async def opennode_withdrawal_webhook(req: Request, store: SettlementStore = Depends(get_store)):
    api_key = opennode_api_key()
    if not api_key:
        logger.warning("opennode_webhook_rejected reason=not_configured")
        increment_webhook_triage(PROVIDER, "not_configured")
        return _fail(503, "opennode webhook misconfigured")

    raw = await req.body()
    form = _parse_body(raw, req.headers.get("content-type", ""))
    hook = normalize_withdrawal_webhook(form)

    if not hook.withdrawal_id or not hook.hashed_order:
        logger.warning(
            "opennode_webhook_rejected reason=missing_id_or_hashed_order withdrawal_id=%s",
            redact_text(hook.withdrawal_id[:128]),
        )
        return _fail(400, "missing id/hashed_order")

    if not hook.status:
        logger.warning("opennode_webhook_rejected reason=missing_status withdrawal_id=%s", hook.withdrawal_id[:128])
        return _fail(400, "missing status")

    if not verify_hashed_order(api_key, hook.withdrawal_id, hook.hashed_order):
        logger.warning(
            "opennode_webhook_rejected reason=hashed_order_mismatch withdrawal_id=%s status=%s prefixed=%s",
            hook.withdrawal_id[:128],
            hook.status,
            hook.hashed_order_prefixed,
        )
        increment_webhook_event(PROVIDER, signature_valid=False, applied=False)
        return _fail(401, "Unauthorized")

    result = await run_in_threadpool(apply_withdrawal_webhook, store, hook)

    if result.anomalies:
        logger.warning(
            "opennode_webhook_anomaly withdrawal_id=%s payout_id=%s status=%s anomalies=%s",
            hook.withdrawal_id[:128],
            result.payout_id,
            hook.status,
            ",".join(result.anomalies),
        )
        for flag in result.anomalies:
            increment_webhook_triage(PROVIDER, flag)

    triage = _TRIAGE_OUTCOMES.get(result.outcome)
    if triage:
        increment_webhook_triage(PROVIDER, triage)
        logger.warning(
            "opennode_webhook_triage reason=%s withdrawal_id=%s payout_id=%s status=%s payout_status=%s",
            triage,
            hook.withdrawal_id[:128],
            result.payout_id,
            hook.status,
            result.status_before.value if result.status_before else None,
        )

    if result.ledger_conflict:
        increment_ledger_conflict(result.ledger_entry_type.value)
        logger.info(
            "opennode_webhook_ledger_duplicate payout_id=%s type=%s outcome=%s",
            result.payout_id,
            result.ledger_entry_type.value,
            result.outcome.value,
        )

    increment_webhook_event(PROVIDER, signature_valid=True, applied=result.applied)
    logger.info(
        "opennode_webhook_processed withdrawal_id=%s payout_id=%s status=%s outcome=%s status_before=%s status_after=%s",
        hook.withdrawal_id[:128],
        result.payout_id,
        hook.status,
        result.outcome.value,
        result.status_before.value if result.status_before else None,
        result.status_after.value if result.status_after else None,
    )
    return _ok()
