"""settlement schema: payouts + ledger entries

Revision ID: 0001_settlement_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_settlement_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")
    op.execute("CREATE SCHEMA IF NOT EXISTS ledger;")

    op.execute(
        """
        DO $$
        BEGIN
          IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'payout_status') THEN
            CREATE TYPE app.payout_status AS ENUM (
              'SCHEDULED', 'SUBMITTED', 'SENT', 'FAILED', 'RETRYING', 'CANCELED'
            );
          END IF;
        END $$;
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payouts (
          id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
          purchase_id uuid NOT NULL,
          developer_user_id uuid NOT NULL,
          destination_address text NOT NULL,
          amount_msat bigint NOT NULL CHECK (amount_msat > 0),
          status app.payout_status NOT NULL DEFAULT 'SCHEDULED',
          attempt_count integer NOT NULL DEFAULT 0 CHECK (attempt_count >= 0),
          last_error varchar(500),
          idempotency_key text NOT NULL,
          provider text,
          provider_withdrawal_id text,
          provider_meta_json jsonb,
          submitted_at timestamptz,
          confirmed_at timestamptz,
          created_at timestamptz NOT NULL DEFAULT now(),
          updated_at timestamptz NOT NULL DEFAULT now(),
          CONSTRAINT payouts_submitted_requires_provider
            CHECK (status <> 'SUBMITTED' OR provider IS NOT NULL)
        );
        """
    )
    op.execute("CREATE UNIQUE INDEX IF NOT EXISTS payouts_purchase_id_key ON app.payouts (purchase_id);")
    op.execute("CREATE UNIQUE INDEX IF NOT EXISTS payouts_idempotency_key_key ON app.payouts (idempotency_key);")
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS payouts_provider_withdrawal_id_key "
        "ON app.payouts (provider_withdrawal_id);"
    )
    op.execute("CREATE INDEX IF NOT EXISTS payouts_status_created_idx ON app.payouts (status, created_at);")
    op.execute("CREATE INDEX IF NOT EXISTS payouts_developer_user_id_idx ON app.payouts (developer_user_id);")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS ledger.ledger_entries (
          id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
          purchase_id uuid NOT NULL,
          type text NOT NULL
            CHECK (type IN ('PAYOUT_SUBMITTED', 'PAYOUT_CONFIRMED', 'PAYOUT_FAILED')),
          amount_msat bigint NOT NULL,
          dedupe_key text,
          meta_json jsonb NOT NULL DEFAULT '{}'::jsonb,
          created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    # plain unique index: NULL keys never collide, and ON CONFLICT (dedupe_key) can target it
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS ledger_entries_dedupe_key_key ON ledger.ledger_entries (dedupe_key);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ledger_entries_purchase_id_idx ON ledger.ledger_entries (purchase_id, created_at);"
    )

    # append-only
    op.execute(
        """
        CREATE OR REPLACE FUNCTION ledger.reject_mutation() RETURNS trigger AS $$
        BEGIN
          RAISE EXCEPTION 'DB_ERROR: LEDGER_APPEND_ONLY';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        DROP TRIGGER IF EXISTS ledger_entries_append_only ON ledger.ledger_entries;
        CREATE TRIGGER ledger_entries_append_only
          BEFORE UPDATE OR DELETE ON ledger.ledger_entries
          FOR EACH ROW EXECUTE FUNCTION ledger.reject_mutation();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS ledger_entries_append_only ON ledger.ledger_entries;")
    op.execute("DROP FUNCTION IF EXISTS ledger.reject_mutation();")
    op.execute("DROP TABLE IF EXISTS ledger.ledger_entries;")
    op.execute("DROP TABLE IF EXISTS app.payouts;")
    op.execute("DROP TYPE IF EXISTS app.payout_status;")
