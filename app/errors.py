# app/errors.py
from __future__ import annotations


class PayoutError(Exception):
    """Root of every error raised by the settlement core."""


# ---- Lightning address / LNURL-pay ----

class LnAddressError(PayoutError):
    pass


class LnurlValidationError(LnAddressError):
    """The address or the LNURL service response is unusable. Retrying will not help."""


class LnurlTransportError(LnAddressError):
    """Network failure or non-2xx from the LNURL service."""

    def __init__(self, message: str, *, http_status: int | None = None):
        super().__init__(message)
        self.http_status = http_status


# ---- withdrawal provider ----

class ProviderError(PayoutError):
    pass


class ProviderValidationError(ProviderError):
    """Raised before any network call when the request cannot be built."""


class ProviderHTTPError(ProviderError):
    def __init__(self, message: str, *, http_status: int, body: str = ""):
        super().__init__(message)
        self.http_status = http_status
        self.body = body


class ProviderResponseError(ProviderError):
    """2xx from the provider but the payload is not what we expect."""


# ---- state / collaborators ----

class InvalidTransition(PayoutError):
    pass


class DeveloperProfileMissing(PayoutError):
    def __init__(self, developer_user_id):
        super().__init__(f"Developer profile missing payout address: {developer_user_id}")
        self.developer_user_id = developer_user_id
