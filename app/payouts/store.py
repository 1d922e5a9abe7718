# app/payouts/store.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol, Union
from uuid import UUID

from psycopg2.extensions import connection as PGConn

from app.ledger import repository as ledger_repo
from app.ledger.model import LedgerEntryType, LedgerInsertResult
from app.payouts import repository as payout_repo
from app.payouts.model import MockMeta, OpenNodeMeta, Payout, PayoutStatus
from db import PgPool

Meta = Union[OpenNodeMeta, MockMeta]


class SettlementTx(Protocol):
    """
    Operations bound to one open transaction. Reads take no row lock; every
    mark_* re-checks the status in its WHERE clause and returns False when the
    row moved on, and ledger writes dedupe on dedupe_key.
    """

    def get_payout(self, payout_id: UUID) -> Optional[Payout]: ...

    def get_payout_by_withdrawal_id(self, withdrawal_id: str, *, provider: str = "opennode") -> Optional[Payout]: ...

    def mark_submitted(
        self,
        payout_id: UUID,
        *,
        provider: str,
        provider_withdrawal_id: Optional[str],
        provider_meta: Meta,
    ) -> bool: ...

    def mark_retrying(self, payout_id: UUID, *, last_error: str) -> bool: ...

    def mark_failed(
        self,
        payout_id: UUID,
        *,
        last_error: str,
        from_statuses: tuple[PayoutStatus, ...],
        provider_meta: Optional[Meta] = None,
    ) -> bool: ...

    def mark_sent(self, payout_id: UUID, *, provider_meta: Optional[Meta] = None) -> bool: ...

    def update_provider_meta(self, payout_id: UUID, *, provider_meta: Meta) -> bool: ...

    def insert_ledger_entry(
        self,
        *,
        purchase_id: UUID,
        entry_type: LedgerEntryType,
        amount_msat: int,
        dedupe_key: Optional[str],
        meta: Optional[dict[str, Any]] = None,
    ) -> LedgerInsertResult: ...

    def upsert_scheduled_payout(
        self,
        *,
        purchase_id: UUID,
        developer_user_id: UUID,
        destination_address: str,
        amount_msat: int,
    ) -> Payout: ...


class SettlementStore(Protocol):
    def open(self) -> None: ...

    def close(self) -> None: ...

    def ping(self) -> bool: ...

    def list_due_payouts(self, limit: int) -> list[Payout]: ...

    def transaction(self) -> Iterator[SettlementTx]: ...


class PgSettlementTx:
    def __init__(self, conn: PGConn):
        self.conn = conn

    def get_payout(self, payout_id):
        return payout_repo.get_payout(self.conn, payout_id)

    def get_payout_by_withdrawal_id(self, withdrawal_id, *, provider="opennode"):
        return payout_repo.get_payout_by_withdrawal_id(self.conn, withdrawal_id, provider=provider)

    def mark_submitted(self, payout_id, *, provider, provider_withdrawal_id, provider_meta):
        return payout_repo.mark_submitted(
            self.conn,
            payout_id=payout_id,
            provider=provider,
            provider_withdrawal_id=provider_withdrawal_id,
            provider_meta=provider_meta,
        )

    def mark_retrying(self, payout_id, *, last_error):
        return payout_repo.mark_retrying(self.conn, payout_id=payout_id, last_error=last_error)

    def mark_failed(self, payout_id, *, last_error, from_statuses, provider_meta=None):
        return payout_repo.mark_failed(
            self.conn,
            payout_id=payout_id,
            last_error=last_error,
            from_statuses=from_statuses,
            provider_meta=provider_meta,
        )

    def mark_sent(self, payout_id, *, provider_meta=None):
        return payout_repo.mark_sent(self.conn, payout_id=payout_id, provider_meta=provider_meta)

    def update_provider_meta(self, payout_id, *, provider_meta):
        return payout_repo.update_provider_meta(self.conn, payout_id=payout_id, provider_meta=provider_meta)

    def insert_ledger_entry(self, *, purchase_id, entry_type, amount_msat, dedupe_key, meta=None):
        return ledger_repo.insert_ledger_entry(
            self.conn,
            purchase_id=purchase_id,
            entry_type=entry_type,
            amount_msat=amount_msat,
            dedupe_key=dedupe_key,
            meta=meta,
        )

    def upsert_scheduled_payout(self, *, purchase_id, developer_user_id, destination_address, amount_msat):
        return payout_repo.upsert_scheduled_payout(
            self.conn,
            purchase_id=purchase_id,
            developer_user_id=developer_user_id,
            destination_address=destination_address,
            amount_msat=amount_msat,
        )


class PgSettlementStore:
    """
    SettlementStore on PostgreSQL. The hosting process owns open()/close()
    (FastAPI lifespan, worker entry point).
    """

    def __init__(self, dsn: str, *, minconn: int = 1, maxconn: int = 10):
        self.pool = PgPool(dsn, minconn=minconn, maxconn=maxconn)

    def open(self) -> None:
        self.pool.open()

    def close(self) -> None:
        self.pool.close()

    def ping(self) -> bool:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                row = cur.fetchone()
        return bool(row) and row[0] == 1

    def list_due_payouts(self, limit: int) -> list[Payout]:
        with self.pool.connection() as conn:
            return payout_repo.list_due_payouts(conn, limit=limit)

    @contextmanager
    def transaction(self) -> Iterator[PgSettlementTx]:
        # commit on clean exit, rollback on exception (PgPool.connection)
        with self.pool.connection() as conn:
            yield PgSettlementTx(conn)
