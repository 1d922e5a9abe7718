from __future__ import annotations

import re


# LN addresses share the email shape: user@domain.tld
_LN_ADDRESS_RE = re.compile(r"\b([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
_BOLT11_RE = re.compile(r"\bln(bc|tb|bcrt)[0-9a-z]{20,}\b", re.IGNORECASE)


def _mask_address(match: re.Match) -> str:
    first = match.group(1)
    domain = match.group(3)
    return f"{first}***{domain}"


def mask_ln_address(value: str | None) -> str | None:
    if value is None:
        return None
    return _LN_ADDRESS_RE.sub(_mask_address, value)


def _mask_invoice(match: re.Match) -> str:
    raw = match.group(0)
    return f"{raw[:12]}…{raw[-4:]}"


def redact_text(value: str) -> str:
    masked = _LN_ADDRESS_RE.sub(_mask_address, value)
    masked = _BOLT11_RE.sub(_mask_invoice, masked)

    if "bearer " in masked.lower():
        return "[REDACTED]"

    return masked

