import hashlib
import hmac
from urllib.parse import urlencode


def opennode_hashed_order(api_key: str, withdrawal_id: str) -> str:
    return hmac.new(api_key.encode("utf-8"), withdrawal_id.encode("utf-8"), hashlib.sha256).hexdigest()


def opennode_withdrawal_form(
    api_key: str,
    withdrawal_id: str,
    *,
    status: str = "confirmed",
    extra: dict[str, str] | None = None,
) -> bytes:
    fields = {
        "id": withdrawal_id,
        "status": status,
        "type": "withdrawal",
        "hashed_order": opennode_hashed_order(api_key, withdrawal_id),
    }
    fields.update(extra or {})
    return urlencode(fields).encode("utf-8")
