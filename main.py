import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

import config
from errors import NotFoundError, TransferError
from registry import SessionRegistry, get_registry
from schemas import Health
from share_routes import router as share_router, send_bound_file
from storage import BlobStore, get_blob_store

config.setup_logging()
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
FRONTEND_DIR = os.path.join(BASE_DIR, "frontend")


# ─── Lifespan ─────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_blob_store()
    registry = get_registry()
    registry.scheduler.start()
    logger.info(f"Send to E-Reader ready: storage={store.backend_name}, ttl={registry.ttl}")
    try:
        yield
    finally:
        registry.scheduler.stop()
        removed = registry.close()
        store.close()
        logger.info(f"Shutdown: released {removed} live key(s)")


app = FastAPI(
    title="Send to E-Reader",
    description="Hand a file to an e-reader with a short one-hour key",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Exception handlers ───────────────────────────────────────────────────────

@app.exception_handler(TransferError)
async def transfer_error_handler(request: Request, exc: TransferError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": f"{type(exc).__name__}: {exc}"},
    )


# ─── Routes ───────────────────────────────────────────────────────────────────

app.include_router(share_router)
app.include_router(share_router, prefix="/api")


@app.get("/")
def serve_index():
    index_path = os.path.join(FRONTEND_DIR, "index.html")
    if not os.path.exists(index_path):
        return JSONResponse(status_code=200, content={"message": "Send to E-Reader is running."})
    return FileResponse(index_path)


@app.get("/health", response_model=Health, tags=["System"])
def health(
    registry: SessionRegistry = Depends(get_registry),
    store: BlobStore = Depends(get_blob_store),
):
    return Health(
        status="ok",
        service="send-to-ereader",
        version=VERSION,
        storage=store.backend_name,
        live_keys=len(registry),
        stored_files=len(store),
    )


# Registered last: any other GET path is treated as a file name.
@app.get("/{filename}", tags=["Transfer"])
def download_by_name(
    filename: str,
    key: str = Query(""),
    registry: SessionRegistry = Depends(get_registry),
    store: BlobStore = Depends(get_blob_store),
):
    if not key:
        raise NotFoundError()
    return send_bound_file(key, registry, store)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=config.HOST, port=config.PORT)
