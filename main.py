#main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.payouts.store import PgSettlementStore, SettlementStore
from middleware import RequestContextMiddleware
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.opennode_webhooks import router as opennode_webhooks_router
from routes.payout_readiness import router as payout_readiness_router
from services.observability import configure_logging
from settings import settings

logger = logging.getLogger("marketplace.app")


def create_app(store: Optional[SettlementStore] = None) -> FastAPI:
    """
    store=None => PostgreSQL store from DATABASE_URL, opened/closed with the app.
    A passed-in store is owned by the caller.
    """
    owns_store = store is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_store:
            app.state.store = PgSettlementStore(settings.DATABASE_URL)
            app.state.store.open()
        try:
            yield
        finally:
            if owns_store:
                app.state.store.close()

    app = FastAPI(title="Marketplace Payouts", version="1.0.0", lifespan=lifespan)
    app.state.store = store

    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------
    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(payout_readiness_router)
    app.include_router(opennode_webhooks_router)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


configure_logging(settings.LOG_LEVEL)
app = create_app()
