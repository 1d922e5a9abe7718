# app/ledger/repository.py
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from psycopg2.extensions import connection as PGConn
from psycopg2.extras import Json

from app.ledger.model import LedgerEntryType, LedgerInsertResult


def insert_ledger_entry(
    conn: PGConn,
    *,
    purchase_id: UUID,
    entry_type: LedgerEntryType,
    amount_msat: int,
    dedupe_key: Optional[str],
    meta: Optional[dict[str, Any]] = None,
) -> LedgerInsertResult:
    """
    Append one ledger entry.

    The unique index on dedupe_key is the idempotency boundary: a concurrent or
    repeated insert with the same key waits for the first writer and then does
    nothing, which is reported as CONFLICT instead of an exception.
    NOTE: caller commits.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO ledger.ledger_entries (purchase_id, type, amount_msat, dedupe_key, meta_json)
            VALUES (%s, %s, %s, %s, %s::jsonb)
            ON CONFLICT (dedupe_key) DO NOTHING
            RETURNING id
            """,
            (
                purchase_id,
                LedgerEntryType(entry_type).value,
                int(amount_msat),
                dedupe_key,
                Json(meta or {}),
            ),
        )
        row = cur.fetchone()

    return LedgerInsertResult.INSERTED if row else LedgerInsertResult.CONFLICT

