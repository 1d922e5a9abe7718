# app/workers/payout_worker.py
"""
Outbound payout submission, one batch per invocation.

    python -m app.workers.payout_worker [--limit N] [--dry-run]

run_once() does the work and reports through WorkerSummary; main() owns
logging, the store lifecycle and the exit code.
"""
from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional
from uuid import UUID

from app.errors import InvalidTransition
from app.ledger.model import LedgerEntryType, LedgerInsertResult, dedupe_key
from app.payouts.model import DUE_STATUSES, Payout, PayoutStatus, dump_provider_meta
from app.payouts.state_machine import assert_submitted_invariant, assert_transition
from app.payouts.store import SettlementStore
from app.providers.base import PayoutProvider, Submission
from app.workers.lock import HostLock, acquire_lock

DEFAULT_LIMIT = 25
MAX_LIMIT = 500


@dataclass(frozen=True)
class WorkerConfig:
    lock_path: str
    limit: int = DEFAULT_LIMIT
    dry_run: bool = False
    max_attempts: int = 3
    lock_stale_seconds: int = 600


@dataclass
class WorkerDeps:
    store: SettlementStore
    provider: PayoutProvider
    acquire_lock: Callable[..., Optional[HostLock]] = acquire_lock


@dataclass(frozen=True)
class PlannedPayout:
    payout_id: UUID
    purchase_id: UUID
    amount_msat: int
    # "submit" | "fail_max_attempts"
    action: str


@dataclass(frozen=True)
class PayoutFailure:
    payout_id: UUID
    message: str
    # "submit" | "record_retry" | "fail_max_attempts"
    stage: str = "submit"


@dataclass
class WorkerSummary:
    scanned: int = 0
    sent: int = 0
    skipped_already_sent: int = 0
    errored: int = 0
    retried: int = 0
    failed_max_attempts: int = 0
    ledger_conflicts: int = 0
    dry_run: bool = False
    lock_busy: bool = False
    provider_mode: str = "mock"
    planned: list[PlannedPayout] = field(default_factory=list)
    errors: list[PayoutFailure] = field(default_factory=list)
    # ledger entry type of each dedupe conflict
    conflict_types: list[str] = field(default_factory=list)

    def counters(self) -> dict[str, object]:
        d = asdict(self)
        d.pop("planned")
        d.pop("errors")
        d.pop("conflict_types")
        return d


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _record_submission(store: SettlementStore, payout: Payout, submission: Submission) -> tuple[bool, bool]:
    """
    Returns (applied, ledger_conflict). applied=False means the payout was
    already SENT when re-read.
    """
    with store.transaction() as tx:
        fresh = tx.get_payout(payout.id)
        if fresh is None:
            raise InvalidTransition(f"payout {payout.id} disappeared before submission was recorded")
        if fresh.status == PayoutStatus.SENT:
            return False, False

        assert_transition(fresh.status, PayoutStatus.SUBMITTED)
        assert_submitted_invariant(PayoutStatus.SUBMITTED, submission.provider)

        if not tx.mark_submitted(
            fresh.id,
            provider=submission.provider,
            provider_withdrawal_id=submission.withdrawal_id,
            provider_meta=submission.meta,
        ):
            # SENT landed after the re-read
            return False, False

        result = tx.insert_ledger_entry(
            purchase_id=fresh.purchase_id,
            entry_type=LedgerEntryType.PAYOUT_SUBMITTED,
            amount_msat=fresh.amount_msat,
            dedupe_key=dedupe_key(LedgerEntryType.PAYOUT_SUBMITTED, fresh.purchase_id),
            meta={
                "payout_id": str(fresh.id),
                "payout_idempotency_key": fresh.idempotency_key,
                "destination_address": fresh.destination_address,
                **(dump_provider_meta(submission.meta) or {}),
            },
        )
    return True, result == LedgerInsertResult.CONFLICT


def _fail_max_attempts(store: SettlementStore, payout: Payout, max_attempts: int) -> tuple[bool, bool]:
    message = f"max attempts reached ({payout.attempt_count}/{max_attempts})"
    if payout.last_error:
        message = f"{message}; last error: {payout.last_error}"

    with store.transaction() as tx:
        fresh = tx.get_payout(payout.id)
        if fresh is None or fresh.status not in DUE_STATUSES:
            return False, False

        assert_transition(fresh.status, PayoutStatus.FAILED)
        if not tx.mark_failed(fresh.id, last_error=message, from_statuses=DUE_STATUSES):
            return False, False

        result = tx.insert_ledger_entry(
            purchase_id=fresh.purchase_id,
            entry_type=LedgerEntryType.PAYOUT_FAILED,
            amount_msat=fresh.amount_msat,
            dedupe_key=dedupe_key(LedgerEntryType.PAYOUT_FAILED, fresh.purchase_id),
            meta={
                "payout_id": str(fresh.id),
                "reason": "max_attempts",
                "attempt_count": fresh.attempt_count,
            },
        )
    return True, result == LedgerInsertResult.CONFLICT


def _process_batch(config: WorkerConfig, deps: WorkerDeps, summary: WorkerSummary) -> None:
    store = deps.store
    due = store.list_due_payouts(config.limit)
    summary.scanned = len(due)

    for p in due:
        over_budget = p.attempt_count >= config.max_attempts

        if config.dry_run:
            summary.planned.append(
                PlannedPayout(
                    payout_id=p.id,
                    purchase_id=p.purchase_id,
                    amount_msat=p.amount_msat,
                    action="fail_max_attempts" if over_budget else "submit",
                )
            )
            continue

        if over_budget:
            try:
                applied, conflict = _fail_max_attempts(store, p, config.max_attempts)
            except Exception as e:
                summary.errored += 1
                summary.errors.append(PayoutFailure(p.id, _error_message(e), stage="fail_max_attempts"))
                continue
            if applied:
                summary.failed_max_attempts += 1
            if conflict:
                summary.ledger_conflicts += 1
                summary.conflict_types.append(LedgerEntryType.PAYOUT_FAILED.value)
            continue

        # provider call happens outside any DB transaction
        try:
            submission = deps.provider.submit(p)
            applied, conflict = _record_submission(store, p, submission)
        except Exception as e:
            message = _error_message(e)
            summary.errored += 1
            summary.errors.append(PayoutFailure(p.id, message))
            try:
                with store.transaction() as tx:
                    if tx.mark_retrying(p.id, last_error=message):
                        summary.retried += 1
            except Exception as record_exc:
                summary.errors.append(
                    PayoutFailure(p.id, _error_message(record_exc), stage="record_retry")
                )
            continue

        if applied:
            summary.sent += 1
        else:
            summary.skipped_already_sent += 1
        if conflict:
            summary.ledger_conflicts += 1
            summary.conflict_types.append(LedgerEntryType.PAYOUT_SUBMITTED.value)


def run_once(config: WorkerConfig, deps: WorkerDeps) -> WorkerSummary:
    summary = WorkerSummary(
        dry_run=config.dry_run,
        provider_mode=getattr(deps.provider, "name", "mock"),
    )

    lock = deps.acquire_lock(config.lock_path, stale_seconds=config.lock_stale_seconds)
    if lock is None:
        summary.lock_busy = True
        return summary

    try:
        _process_batch(config, deps, summary)
    finally:
        lock.release()

    return summary


# ==========================================================
# Entry point
# ==========================================================

def _limit(value: str) -> int:
    try:
        n = int(value, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid --limit: {value!r} (integer 1-{MAX_LIMIT})")
    if n < 1 or n > MAX_LIMIT:
        raise argparse.ArgumentTypeError(f"invalid --limit: {value!r} (integer 1-{MAX_LIMIT})")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="payout_worker",
        description="Submit due marketplace payouts once.",
        allow_abbrev=False,
    )
    parser.add_argument("--limit", type=_limit, default=DEFAULT_LIMIT, help=f"max payouts to scan (1-{MAX_LIMIT})")
    parser.add_argument("--dry-run", action="store_true", help="report what would be submitted; change nothing")
    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    from app.payouts.store import PgSettlementStore
    from app.providers.factory import build_provider, resolve_payout_provider
    from services.metrics import increment_ledger_conflict, increment_payout_attempt
    from services.observability import configure_logging
    from settings import max_attempts, settings

    args = parse_args(argv)
    configure_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("marketplace.payouts.worker")

    selection = resolve_payout_provider(settings)
    config = WorkerConfig(
        lock_path=settings.PAYOUT_WORKER_LOCK_PATH,
        limit=args.limit,
        dry_run=args.dry_run,
        max_attempts=max_attempts(),
        lock_stale_seconds=settings.PAYOUT_WORKER_LOCK_STALE_SECONDS,
    )

    store = PgSettlementStore(settings.DATABASE_URL)
    provider = None
    try:
        store.open()
        provider = build_provider(selection)
        summary = run_once(config, WorkerDeps(store=store, provider=provider))
    except Exception:
        logger.exception("payout_worker_crashed limit=%s dry_run=%s", config.limit, config.dry_run)
        return 1
    finally:
        if provider is not None:
            provider.close()
        store.close()

    if summary.lock_busy:
        logger.info("payout_worker_lock_busy lock_path=%s dry_run=%s", config.lock_path, config.dry_run)
        return 0

    for planned in summary.planned:
        logger.info(
            "payout_worker_dry_run payout_id=%s purchase_id=%s amount_msat=%s action=%s provider=%s",
            planned.payout_id,
            planned.purchase_id,
            planned.amount_msat,
            planned.action,
            summary.provider_mode,
        )
    for failure in summary.errors:
        logger.error(
            "payout_worker_error payout_id=%s stage=%s error=%s",
            failure.payout_id,
            failure.stage,
            failure.message,
        )

    for result, count in (
        ("submitted", summary.sent),
        ("skipped_already_sent", summary.skipped_already_sent),
        ("retrying", summary.retried),
        ("failed_max_attempts", summary.failed_max_attempts),
    ):
        if count:
            increment_payout_attempt(summary.provider_mode, result, count)
    for entry_type in summary.conflict_types:
        increment_ledger_conflict(entry_type)

    logger.info(
        "payout_worker_tick %s",
        " ".join(f"{k}={v}" for k, v in summary.counters().items()),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
