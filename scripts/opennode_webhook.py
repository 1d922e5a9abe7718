"""
OpenNode withdrawal webhook helper.

    OPENNODE_API_KEY=... python scripts/opennode_webhook.py hash <withdrawal_id>
    OPENNODE_API_KEY=... python scripts/opennode_webhook.py send <api_base_url> <withdrawal_id> [confirmed|failed|error]

The server checks hashed_order = HMAC_SHA256_HEX(OPENNODE_API_KEY, withdrawal_id).
"""
import argparse
import os
import sys
from pathlib import Path

import requests
from dotenv import load_dotenv

try:
    from _webhook_signing import opennode_hashed_order, opennode_withdrawal_form
except ModuleNotFoundError:
    scripts_dir = Path(__file__).resolve().parent
    sys.path.insert(0, str(scripts_dir))
    from _webhook_signing import opennode_hashed_order, opennode_withdrawal_form


def die(message, code=1):
    print(message, file=sys.stderr)
    sys.exit(code)


def _api_key() -> str:
    value = (os.getenv("OPENNODE_API_KEY") or "").strip()
    if not value:
        die("OPENNODE_API_KEY is required")
    return value


def cmd_hash(args) -> int:
    withdrawal_id = args.withdrawal_id.strip()
    if not withdrawal_id:
        die("withdrawal_id is required")
    print(opennode_hashed_order(_api_key(), withdrawal_id))
    return 0


def cmd_send(args) -> int:
    base_url = args.api_base_url.strip().rstrip("/")
    withdrawal_id = args.withdrawal_id.strip()
    if not base_url or not withdrawal_id:
        die("api_base_url and withdrawal_id are required")

    body = opennode_withdrawal_form(_api_key(), withdrawal_id, status=args.status)
    url = f"{base_url}/webhooks/opennode/withdrawals"
    try:
        resp = requests.post(
            url,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=args.timeout,
        )
    except requests.RequestException as exc:
        die(f"Request failed: {exc}")

    print(f"HTTP {resp.status_code}")
    print(resp.text)
    return 0 if 200 <= resp.status_code < 300 else 1


def main(argv=None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="OpenNode withdrawal webhook helper.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_hash = sub.add_parser("hash", help="print the expected hashed_order for a withdrawal id")
    p_hash.add_argument("withdrawal_id")
    p_hash.set_defaults(func=cmd_hash)

    p_send = sub.add_parser("send", help="post a signed form webhook to a running API")
    p_send.add_argument("api_base_url")
    p_send.add_argument("withdrawal_id")
    p_send.add_argument("status", nargs="?", default="confirmed", choices=["confirmed", "failed", "error"])
    p_send.add_argument("--timeout", type=float, default=10.0)
    p_send.set_defaults(func=cmd_send)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
