from __future__ import annotations

from urllib.parse import urlsplit

from fastapi import APIRouter

from app.providers.factory import resolve_payout_provider
from settings import opennode_callback_url, settings


router = APIRouter(prefix="/ops/payouts", tags=["ops", "payouts"])


def _url_problem(value: str) -> str | None:
    if not value:
        return "missing"
    try:
        parts = urlsplit(value)
    except ValueError:
        return "invalid_url"
    if not parts.scheme or not parts.netloc:
        return "invalid_url"
    if parts.scheme not in ("http", "https"):
        return "invalid_protocol"
    return None


def _url_check(value: str, problem: str | None) -> dict:
    return {
        "configured": bool(value),
        "valid": problem is None,
        "value": value or None,
    }


@router.get("/readiness")
def payout_readiness():
    selection = resolve_payout_provider(settings)
    callback_url = opennode_callback_url()
    # raw value: unset means the OpenNode default and is not a problem
    base_url = (settings.OPENNODE_BASE_URL or "").strip()

    callback_problem = _url_problem(callback_url)
    base_problem = _url_problem(base_url) if base_url else None

    reasons: list[str] = []
    if not selection.api_key:
        reasons.append("OPENNODE_API_KEY missing")
    if callback_problem:
        reasons.append(f"OPENNODE_WITHDRAWAL_CALLBACK_URL {callback_problem}")
    if base_problem:
        reasons.append(f"OPENNODE_BASE_URL {base_problem}")

    return {
        "ok": True,
        "payoutReady": not reasons,
        "providerMode": selection.mode,
        "checks": {
            "hasOpenNodeApiKey": bool(selection.api_key),
            "callbackUrl": _url_check(callback_url, callback_problem),
            "baseUrl": _url_check(base_url, base_problem),
        },
        "reasons": reasons,
    }
