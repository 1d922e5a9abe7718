from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Depends

from app.payouts.store import SettlementStore
from deps.store import get_store

router = APIRouter(tags=["health"])
logger = logging.getLogger("marketplace.health")


def _check_store(store: SettlementStore) -> tuple[bool, str | None]:
    try:
        return bool(store.ping()), None
    except Exception as exc:
        logger.warning("healthz_store_ping_failed error=%s", type(exc).__name__)
        return False, f"{type(exc).__name__}: {exc}"


@router.get("/healthz")
def healthz(store: SettlementStore = Depends(get_store)):
    db_ok, db_error = _check_store(store)
    return {
        "ok": True,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "db_ok": db_ok,
        "db_error": db_error,
    }
