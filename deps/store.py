from __future__ import annotations

from fastapi import HTTPException, Request

from app.payouts.store import SettlementStore


def get_store(request: Request) -> SettlementStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Settlement store not configured")
    return store
