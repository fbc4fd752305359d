"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from sqlalchemy import text

from crm_reconcile.config import get_settings
from crm_reconcile.db.session import SessionLocal
from crm_reconcile.routers import audit, deals, reconciliation, records, security, transactions

logger = logging.getLogger(__name__)


def _warm_backend_state() -> None:
    """Prime the DB connection pool at process start."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Backend warm-up failed; continuing without startup pre-warm.")


@asynccontextmanager
async def lifespan(_: FastAPI):
    _warm_backend_state()
    yield


app = FastAPI(title=get_settings().app_name, version="0.1.0", lifespan=lifespan)

app.include_router(audit.router, tags=["audit"])
app.include_router(reconciliation.router, tags=["reconciliation"])
app.include_router(records.router, tags=["records"])
app.include_router(deals.router, tags=["deals"])
app.include_router(security.router, tags=["security"])
app.include_router(transactions.router, tags=["transactions"])


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}
