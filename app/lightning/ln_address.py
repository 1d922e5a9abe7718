# app/lightning/ln_address.py
"""
Lightning Address -> BOLT11 invoice via LNURL-pay (LUD-06 / LUD-16).

    alice@example.com
      GET https://example.com/.well-known/lnurlp/alice      -> pay params
      GET <callback>?amount=<msat>[&comment=...]            -> {"pr": "<bolt11>"}
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx

from app.errors import LnurlTransportError, LnurlValidationError
from app.providers.http import HttpClient, HttpResponse
from services.redaction import mask_ln_address

logger = logging.getLogger("marketplace.payouts.lnurl")

_LN_ADDRESS_RE = re.compile(r"^([^@\s]+)@([^@\s]+)$")

_ACCEPT_JSON = {"accept": "application/json"}


@dataclass(frozen=True)
class LnurlPayParams:
    callback: str
    min_sendable: int
    max_sendable: int
    comment_allowed: int = 0
    metadata: Optional[str] = None


@dataclass(frozen=True)
class LnInvoice:
    bolt11: str
    callback: str


def parse_ln_address(addr: str) -> tuple[str, str]:
    trimmed = str(addr if addr is not None else "").strip()
    m = _LN_ADDRESS_RE.match(trimmed)
    if not m:
        raise LnurlValidationError(f"Invalid LN address: {addr}")
    return m.group(1).lower(), m.group(2).lower()


def _assert_http_url(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError:
        raise LnurlValidationError(f"Invalid URL: {url}")
    if parts.scheme not in ("http", "https"):
        raise LnurlValidationError(f"Unsupported URL protocol: {parts.scheme}:")
    if not parts.netloc:
        raise LnurlValidationError(f"Invalid URL: {url}")
    return url


def _as_int(value: Any) -> Optional[int]:
    # JSON numbers only; bools and numeric strings are rejected
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return None


def _with_query(url: str, extra: dict[str, str]) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in extra]
    query.extend(extra.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class LightningAddressResolver:
    def __init__(self, http: HttpClient):
        self.http = http

    def _get(self, url: str, *, what: str, ln_address: str) -> HttpResponse:
        try:
            resp = self.http.get(url, headers=_ACCEPT_JSON)
        except httpx.HTTPError as e:
            raise LnurlTransportError(f"{what} request failed for {ln_address}: {e}") from e
        if not resp.ok:
            raise LnurlTransportError(
                f"{what} failed ({resp.status_code}) for {ln_address}",
                http_status=resp.status_code,
            )
        return resp

    def fetch_pay_params(self, ln_address: str) -> LnurlPayParams:
        username, domain = parse_ln_address(ln_address)
        well_known = f"https://{domain}/.well-known/lnurlp/{quote(username, safe='')}"

        resp = self._get(well_known, what="LNURLp fetch", ln_address=ln_address)
        body = resp.json
        if not isinstance(body, dict) or not body.get("callback") or not body.get("tag"):
            raise LnurlValidationError(f"LNURLp invalid response for {ln_address}")
        if body["tag"] != "payRequest":
            raise LnurlValidationError(f"LNURLp tag not payRequest for {ln_address} (got {body['tag']})")

        min_sendable = _as_int(body.get("minSendable"))
        max_sendable = _as_int(body.get("maxSendable"))
        if min_sendable is None or max_sendable is None:
            raise LnurlValidationError(f"LNURLp missing min/max for {ln_address}")
        if min_sendable > max_sendable:
            raise LnurlValidationError(
                f"LNURLp invalid sendable bounds for {ln_address}: min={min_sendable} max={max_sendable}"
            )

        callback = _assert_http_url(str(body["callback"]))
        comment_allowed = _as_int(body.get("commentAllowed")) or 0

        return LnurlPayParams(
            callback=callback,
            min_sendable=min_sendable,
            max_sendable=max_sendable,
            comment_allowed=max(comment_allowed, 0),
            metadata=body.get("metadata") if isinstance(body.get("metadata"), str) else None,
        )

    def get_invoice(self, ln_address: str, amount_msat: int, comment: Optional[str] = None) -> LnInvoice:
        params = self.fetch_pay_params(ln_address)

        amount_msat = int(amount_msat)
        if amount_msat < params.min_sendable or amount_msat > params.max_sendable:
            raise LnurlValidationError(
                f"LNURLp amount out of range for {ln_address}: "
                f"{amount_msat}msat not in [{params.min_sendable}, {params.max_sendable}]"
            )

        query = {"amount": str(amount_msat)}
        if comment and params.comment_allowed and len(comment) <= params.comment_allowed:
            query["comment"] = comment
        callback = _with_query(params.callback, query)

        resp = self._get(callback, what="LNURLp invoice fetch", ln_address=ln_address)
        body = resp.json
        if not isinstance(body, dict):
            raise LnurlValidationError(f"LNURLp invoice invalid response for {ln_address}")

        error = body.get("error")
        err_msg = error.get("message") if isinstance(error, dict) else None
        err_msg = err_msg or body.get("reason")
        if err_msg:
            raise LnurlValidationError(f"LNURLp invoice error for {ln_address}: {err_msg}")

        pr = body.get("pr")
        if not pr or not isinstance(pr, str):
            raise LnurlValidationError(f"LNURLp invoice missing pr for {ln_address}")

        logger.info("lnurl_invoice_resolved address=%s amount_msat=%s", mask_ln_address(ln_address), amount_msat)
        return LnInvoice(bolt11=pr, callback=callback)


def _default_resolver(http: Optional[HttpClient]) -> LightningAddressResolver:
    if http is None:
        from settings import settings

        http = HttpClient(timeout_s=settings.HTTP_TIMEOUT_S)
    return LightningAddressResolver(http)


def fetch_lnurl_pay_params(addr: str, *, http: Optional[HttpClient] = None) -> LnurlPayParams:
    return _default_resolver(http).fetch_pay_params(addr)


def get_invoice_for_ln_address(
    addr: str,
    amount_msat: int,
    comment: Optional[str] = None,
    *,
    http: Optional[HttpClient] = None,
) -> LnInvoice:
    return _default_resolver(http).get_invoice(addr, amount_msat, comment)
