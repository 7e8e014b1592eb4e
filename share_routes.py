# share_routes.py

import io
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Header, UploadFile
from fastapi.responses import PlainTextResponse, StreamingResponse

from errors import NotFoundError, RejectedError
from file_service import UploadValidator, get_validator, transliterate
from keygen import normalize_code
from registry import SessionRegistry, get_registry
from schemas import UploadResult
from storage import BlobStore, get_blob_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Transfer"])


# ─── GENERATE ─────────────────────────────────────────

@router.post("/generate", response_class=PlainTextResponse)
def generate_key(
    user_agent: str = Header(""),
    registry: SessionRegistry = Depends(get_registry),
):
    return registry.allocate(user_agent)


# ─── UPLOAD ─────────────────────────────────────────

@router.post("/upload", response_model=UploadResult)
def upload_file(
    file: Optional[UploadFile] = File(None),
    key: Optional[str] = Form(None),
    key_header: Optional[str] = Header(None, alias="key"),
    registry: SessionRegistry = Depends(get_registry),
    store: BlobStore = Depends(get_blob_store),
    validator: UploadValidator = Depends(get_validator),
):
    code = normalize_code(key or key_header)
    if not code or code not in registry:
        raise NotFoundError("Invalid key")
    if file is None:
        raise RejectedError("No file uploaded")

    name = validator.check_name(file.filename)
    media_type = validator.check_type(name, file.content_type)
    data = validator.read_limited(file.file)

    blob_ref = store.put(data, name, media_type)
    try:
        registry.bind(code, blob_ref)
    except NotFoundError:
        # key expired between the check above and the bind
        store.delete(blob_ref.id)
        raise

    return UploadResult(success=True, message="File uploaded successfully")


# ─── DOWNLOAD ─────────────────────────────────────────

def send_bound_file(code: str, registry: SessionRegistry, store: BlobStore) -> StreamingResponse:
    code = normalize_code(code)
    file_ref = registry.resolve(code).file_ref
    try:
        blob = store.get(file_ref.id)
    except NotFoundError:
        # superseded by a rebind after resolve; read the new file once
        latest = registry.resolve(code).file_ref
        if latest.id == file_ref.id:
            raise
        blob = store.get(latest.id)
    ascii_name = transliterate(blob.ref.name)
    disposition = f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(blob.ref.name)}"
    logger.info(f"Key {code} downloaded {blob.ref.name!r}")
    return StreamingResponse(
        io.BytesIO(blob.data),
        media_type=blob.ref.media_type,
        headers={"Content-Disposition": disposition, "Content-Length": str(blob.ref.size)},
    )


@router.get("/download/{key}")
def download_file(
    key: str,
    registry: SessionRegistry = Depends(get_registry),
    store: BlobStore = Depends(get_blob_store),
):
    return send_bound_file(key, registry, store)
