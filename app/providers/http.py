# app/providers/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger("marketplace.payouts.http")

_SECRET_HEADERS = {"authorization", "x-api-key"}


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[Any]
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class HttpClient:
    def __init__(
        self,
        timeout_s: float = 20.0,
        follow_redirects: bool = True,
        transport: httpx.BaseTransport | None = None,
    ):
        # transport is how tests swap in httpx.MockTransport
        self._client = httpx.Client(
            timeout=timeout_s,
            follow_redirects=follow_redirects,
            transport=transport,
        )

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        json_body: dict[str, Any] | None = None,
        debug: bool = False,
    ) -> HttpResponse:
        r = self._client.post(url, headers=headers, json=json_body)
        if debug:
            self._debug_dump("POST", url, headers, r)
        return self._wrap(r)

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        debug: bool = False,
    ) -> HttpResponse:
        r = self._client.get(url, headers=headers or {}, params=params)
        if debug:
            self._debug_dump("GET", url, headers or {}, r)
        return self._wrap(r)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)

    @staticmethod
    def _debug_dump(method: str, url: str, headers: dict[str, str], r: httpx.Response) -> None:
        safe_headers = {
            k: ("REDACTED" if k.lower() in _SECRET_HEADERS else v) for k, v in (headers or {}).items()
        }
        logger.debug(
            "http_debug method=%s url=%s headers=%s status=%s text=%s",
            method,
            url,
            safe_headers,
            r.status_code,
            r.text[:300],
        )


