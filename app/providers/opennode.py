# app/providers/opennode.py
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from app.errors import ProviderHTTPError, ProviderResponseError, ProviderValidationError
from app.lightning.ln_address import LightningAddressResolver
from app.payouts.model import OpenNodeMeta, Payout
from app.providers.base import Submission, WithdrawalResult, payout_comment
from app.providers.http import HttpClient

# OpenNode LN withdrawals: POST {base}/v2/withdrawals, amount in sats.
# Async settlement arrives as a form-encoded webhook on callback_url.

logger = logging.getLogger("marketplace.payouts.opennode")

MAX_SAFE_INTEGER = 2**53 - 1


def sats_from_msat(amount_msat: int) -> int:
    amount_msat = int(amount_msat)
    if amount_msat % 1000 != 0:
        raise ProviderValidationError(f"amount_msat must be divisible by 1000 (got {amount_msat})")
    sats = amount_msat // 1000
    if sats > MAX_SAFE_INTEGER:
        raise ProviderValidationError("amount too large")
    if sats <= 0:
        raise ProviderValidationError(f"amount must be positive (got {amount_msat} msat)")
    return sats


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class OpenNodeClient:
    def __init__(self, *, api_key: str, base_url: str, http: HttpClient):
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or "").strip().rstrip("/")
        self.http = http

    def _headers(self, idempotency_key: str) -> dict[str, str]:
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "authorization": self.api_key,
            "x-idempotency-key": idempotency_key,
        }

    def create_withdrawal(
        self,
        *,
        invoice: str,
        amount_msat: int,
        idempotency_key: str,
        callback_url: Optional[str] = None,
    ) -> WithdrawalResult:
        # validates before any network call
        sats = sats_from_msat(amount_msat)

        body: dict[str, Any] = {"type": "ln", "amount": sats, "address": invoice}
        if callback_url:
            body["callback_url"] = callback_url

        try:
            resp = self.http.post(
                f"{self.base_url}/v2/withdrawals",
                headers=self._headers(idempotency_key),
                json_body=body,
            )
        except httpx.HTTPError as e:
            raise ProviderHTTPError(f"OpenNode withdrawal request failed: {e}", http_status=0) from e

        if not resp.ok:
            raise ProviderHTTPError(
                f"OpenNode withdrawal failed ({resp.status_code}): {resp.text[:500]}",
                http_status=resp.status_code,
                body=resp.text[:500],
            )

        payload = resp.json
        if payload is None:
            try:
                payload = json.loads(resp.text)
            except ValueError:
                raise ProviderResponseError(f"OpenNode withdrawal: invalid JSON: {resp.text[:200]}")

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get("id"):
            raise ProviderResponseError("OpenNode withdrawal: missing data.id")

        return WithdrawalResult(
            withdrawal_id=str(data["id"]),
            status=str(data["status"]) if data.get("status") is not None else None,
            fee_sats=_as_int(data.get("fee")),
            amount_sats=_as_int(data.get("amount")),
        )


class OpenNodePayoutProvider:
    name = "opennode"

    def __init__(
        self,
        *,
        client: OpenNodeClient,
        resolver: LightningAddressResolver,
        callback_url: Optional[str] = None,
    ):
        self.client = client
        self.resolver = resolver
        self.callback_url = (callback_url or "").strip() or None

    def submit(self, payout: Payout) -> Submission:
        # msat -> sats must be exact before we ask anyone for an invoice
        sats_from_msat(payout.amount_msat)

        invoice = self.resolver.get_invoice(
            payout.destination_address,
            payout.amount_msat,
            comment=payout_comment(payout),
        )
        result = self.client.create_withdrawal(
            invoice=invoice.bolt11,
            amount_msat=payout.amount_msat,
            idempotency_key=payout.idempotency_key,
            callback_url=self.callback_url,
        )

        logger.info(
            "opennode_withdrawal_created payout_id=%s withdrawal_id=%s status=%s fee_sats=%s",
            payout.id,
            result.withdrawal_id,
            result.status,
            result.fee_sats,
        )

        meta = OpenNodeMeta(
            withdrawal_id=result.withdrawal_id,
            withdrawal_status=result.status,
            fee_sats=result.fee_sats,
            amount_sats=result.amount_sats,
            callback_url_configured=bool(self.callback_url),
        )
        return Submission(provider="opennode", withdrawal_id=result.withdrawal_id, meta=meta)

    def close(self) -> None:
        # resolver shares the same HttpClient
        self.client.http.close()
