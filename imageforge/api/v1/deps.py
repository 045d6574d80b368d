"""Request-scoped access to the components built in the app lifespan."""

from fastapi import HTTPException, Request

from imageforge.jobs.ledger import JobLedger
from imageforge.storage.assets import AssetStore


def get_ledger(request: Request) -> JobLedger:
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        raise HTTPException(status_code=503, detail="Job ledger not initialized")
    return ledger


def get_store(request: Request) -> AssetStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Asset store not initialized")
    return store
