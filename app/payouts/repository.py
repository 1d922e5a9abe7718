# app/payouts/repository.py
from __future__ import annotations

from typing import Optional, Union
from uuid import UUID

from psycopg2.extensions import connection as PGConn
from psycopg2.extras import Json, RealDictCursor

from app.payouts.model import (
    MockMeta,
    OpenNodeMeta,
    Payout,
    PayoutStatus,
    dump_provider_meta,
    idempotency_key_for_purchase,
    truncate_error,
)

_PAYOUT_COLUMNS = """
  p.id,
  p.purchase_id,
  p.developer_user_id,
  p.destination_address,
  p.amount_msat,
  p.status,
  p.attempt_count,
  p.last_error,
  p.idempotency_key,
  p.provider,
  p.provider_withdrawal_id,
  p.provider_meta_json,
  p.submitted_at,
  p.confirmed_at,
  p.created_at,
  p.updated_at
"""


def _adapt_meta(meta: Optional[Union[OpenNodeMeta, MockMeta]]):
    dumped = dump_provider_meta(meta)
    return Json(dumped) if dumped is not None else None


def _fetch_one(conn: PGConn, sql: str, params: tuple) -> Optional[Payout]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, params)
        row = cur.fetchone()
    return Payout.from_row(dict(row)) if row else None


# ==========================================================
# Reads
# ==========================================================

def list_due_payouts(conn: PGConn, *, limit: int) -> list[Payout]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_PAYOUT_COLUMNS}
            FROM app.payouts p
            WHERE p.status IN ('SCHEDULED', 'RETRYING')
            ORDER BY p.created_at ASC
            LIMIT %s
            """,
            (limit,),
        )
        rows = cur.fetchall()
    return [Payout.from_row(dict(r)) for r in rows]


def get_payout(conn: PGConn, payout_id: UUID) -> Optional[Payout]:
    return _fetch_one(
        conn,
        f"SELECT {_PAYOUT_COLUMNS} FROM app.payouts p WHERE p.id = %s",
        (payout_id,),
    )


def get_payout_by_withdrawal_id(
    conn: PGConn,
    withdrawal_id: str,
    *,
    provider: str = "opennode",
) -> Optional[Payout]:
    return _fetch_one(
        conn,
        f"""
        SELECT {_PAYOUT_COLUMNS}
        FROM app.payouts p
        WHERE p.provider = %s
          AND p.provider_withdrawal_id = %s
        LIMIT 1
        """,
        (provider, withdrawal_id),
    )


# ==========================================================
# Updates (all return True when exactly one row changed)
# ==========================================================

def mark_submitted(
    conn: PGConn,
    *,
    payout_id: UUID,
    provider: str,
    provider_withdrawal_id: Optional[str],
    provider_meta: Union[OpenNodeMeta, MockMeta],
) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.payouts
            SET
              status = 'SUBMITTED',
              provider = %s,
              provider_withdrawal_id = %s,
              provider_meta_json = %s::jsonb,
              submitted_at = now(),
              attempt_count = attempt_count + 1,
              last_error = NULL,
              updated_at = now()
            WHERE id = %s
              AND status <> 'SENT'
            """,
            (provider, provider_withdrawal_id, _adapt_meta(provider_meta), payout_id),
        )
        return cur.rowcount == 1


def mark_retrying(conn: PGConn, *, payout_id: UUID, last_error: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.payouts
            SET
              status = 'RETRYING',
              attempt_count = attempt_count + 1,
              last_error = %s,
              updated_at = now()
            WHERE id = %s
              AND status IN ('SCHEDULED', 'RETRYING')
            """,
            (truncate_error(last_error), payout_id),
        )
        return cur.rowcount == 1


def mark_failed(
    conn: PGConn,
    *,
    payout_id: UUID,
    last_error: str,
    from_statuses: tuple[PayoutStatus, ...],
    provider_meta: Optional[Union[OpenNodeMeta, MockMeta]] = None,
) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.payouts
            SET
              status = 'FAILED',
              last_error = %s,
              provider_meta_json = COALESCE(%s::jsonb, provider_meta_json),
              updated_at = now()
            WHERE id = %s
              AND status::text = ANY(%s)
            """,
            (
                truncate_error(last_error),
                _adapt_meta(provider_meta),
                payout_id,
                [PayoutStatus(s).value for s in from_statuses],
            ),
        )
        return cur.rowcount == 1


def mark_sent(
    conn: PGConn,
    *,
    payout_id: UUID,
    provider_meta: Optional[Union[OpenNodeMeta, MockMeta]] = None,
) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.payouts
            SET
              status = 'SENT',
              confirmed_at = now(),
              last_error = NULL,
              provider_meta_json = COALESCE(%s::jsonb, provider_meta_json),
              updated_at = now()
            WHERE id = %s
              AND status = 'SUBMITTED'
            """,
            (_adapt_meta(provider_meta), payout_id),
        )
        return cur.rowcount == 1


def update_provider_meta(
    conn: PGConn,
    *,
    payout_id: UUID,
    provider_meta: Union[OpenNodeMeta, MockMeta],
) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.payouts
            SET provider_meta_json = %s::jsonb, updated_at = now()
            WHERE id = %s
            """,
            (_adapt_meta(provider_meta), payout_id),
        )
        return cur.rowcount == 1


# ==========================================================
# Scheduling
# ==========================================================

def upsert_scheduled_payout(
    conn: PGConn,
    *,
    purchase_id: UUID,
    developer_user_id: UUID,
    destination_address: str,
    amount_msat: int,
) -> Payout:
    """
    One payout per purchase. Re-scheduling only refreshes destination/amount
    while the payout has not been handed to a provider yet.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO app.payouts (
              purchase_id, developer_user_id, destination_address, amount_msat,
              status, attempt_count, idempotency_key
            )
            VALUES (%s, %s, %s, %s, 'SCHEDULED', 0, %s)
            ON CONFLICT (purchase_id) DO UPDATE
              SET destination_address = EXCLUDED.destination_address,
                  amount_msat = EXCLUDED.amount_msat,
                  updated_at = now()
              WHERE app.payouts.status IN ('SCHEDULED', 'RETRYING')
            RETURNING id
            """,
            (
                purchase_id,
                developer_user_id,
                destination_address,
                int(amount_msat),
                idempotency_key_for_purchase(purchase_id),
            ),
        )
        cur.fetchone()

    payout = _fetch_one(
        conn,
        f"SELECT {_PAYOUT_COLUMNS} FROM app.payouts p WHERE p.purchase_id = %s",
        (purchase_id,),
    )
    assert payout is not None
    return payout
