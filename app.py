import io
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware

import qrcode
import uvicorn

from database import Base, engine, SessionLocal
from errors import MutationRejected, RegistryError
from registry import BatchRegistry
from schemas import (
    BatchCreated, BatchDetails, BatchList, ChainVerification, EventRecord,
    RegisterBatch, TransferOwnership, UpdateStatus,
)

# ---------- Config ----------
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# largest value a SQL INTEGER column holds
MAX_SEQ = 2**63 - 1


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    app.state.registry = BatchRegistry(SessionLocal)
    logger.info("batch registry ready (counter=%s)", app.state.registry.counter)
    yield
    engine.dispose()
    logger.info("batch registry shut down")


app = FastAPI(title="Crop Batch Provenance Registry", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Registry ----------
def get_registry(request: Request) -> BatchRegistry:
    return request.app.state.registry


def _http_error(e: RegistryError) -> HTTPException:
    status = 403 if isinstance(e, MutationRejected) else 404
    return HTTPException(status_code=status, detail={"code": e.code, "message": e.message})


# ---------- APIs: one batch ----------
@app.post("/api/batches", response_model=BatchCreated, status_code=201)
def register_batch(body: RegisterBatch, registry: BatchRegistry = Depends(get_registry)):
    try:
        batch_id = registry.register_batch(body.crop_type, body.origin_farm, body.harvest_date)
    except RegistryError as e:
        raise _http_error(e)
    return BatchCreated(batch_id=batch_id)


@app.post("/api/batches/{batch_id}/transfer")
def transfer_ownership(batch_id: int, body: TransferOwnership,
                       registry: BatchRegistry = Depends(get_registry)):
    try:
        registry.transfer_ownership(batch_id, body.new_owner)
    except RegistryError as e:
        raise _http_error(e)
    return {"status": "ok"}


@app.post("/api/batches/{batch_id}/status")
def update_status(batch_id: int, body: UpdateStatus,
                  registry: BatchRegistry = Depends(get_registry)):
    try:
        registry.update_status(batch_id, body.new_status)
    except RegistryError as e:
        raise _http_error(e)
    return {"status": "ok"}


@app.get("/api/batches/{batch_id}", response_model=BatchDetails)
def get_batch_details(batch_id: int, registry: BatchRegistry = Depends(get_registry)):
    try:
        return registry.get_batch_details(batch_id)
    except RegistryError as e:
        raise _http_error(e)


@app.get("/api/batches/{batch_id}/history", response_model=List[EventRecord])
def batch_history(batch_id: int, registry: BatchRegistry = Depends(get_registry)):
    try:
        return registry.history(batch_id)
    except RegistryError as e:
        raise _http_error(e)


@app.get("/api/batches/{batch_id}/qrcode")
def batch_qrcode(batch_id: int, registry: BatchRegistry = Depends(get_registry)):
    try:
        registry.get_batch_details(batch_id)
    except RegistryError as e:
        raise _http_error(e)
    url = f"{BASE_URL}/api/batches/{batch_id}"
    img = qrcode.make(url)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return Response(content=buf.getvalue(), media_type="image/png")


# ---------- Batches listing & search ----------
@app.get("/api/batches", response_model=BatchList)
def list_batches(
    q: Optional[str] = Query(None, description="search crop type, farm, owner or status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    registry: BatchRegistry = Depends(get_registry),
):
    items, total = registry.list_batches(q, page, page_size)
    return BatchList(items=items, total=total, page=page, page_size=page_size)


# ---------- Event log ----------
@app.get("/api/events", response_model=List[EventRecord])
def list_events(
    after: int = Query(0, ge=0, le=MAX_SEQ),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    registry: BatchRegistry = Depends(get_registry),
):
    return registry.events(after=after, limit=limit)


@app.get("/api/events/verify", response_model=ChainVerification)
def verify_events(registry: BatchRegistry = Depends(get_registry)):
    return registry.verify()


# ---------- Demo data ----------
@app.get("/api/seed")
def seed(registry: BatchRegistry = Depends(get_registry)):
    batch_id = registry.register_if_empty("Wheat", "FarmA", 1700000000)
    if batch_id is None:
        return {"status": "exists"}
    registry.transfer_ownership(batch_id, "DistributorB")
    registry.update_status(batch_id, "In Transit")
    return {"status": "seeded", "batch_id": batch_id}


if __name__ == "__main__":
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())
