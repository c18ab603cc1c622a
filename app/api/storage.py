"""Direct access to the object store: upload to temp/, stream back, existence, commit to uploads/, discard."""
import logging

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import StreamingResponse

from app.api.deps import get_current_user_id, get_object_store
from app.api.ingredients import read_upload
from app.core.config import settings
from app.core.errors import NotFoundError, ValidationError
from app.schemas.ingredients import (
    ExistsResponse,
    StorageCommitResponse,
    StorageDeclineResponse,
    StorageKeyRequest,
    UploadData,
    UploadResponse,
)
from app.services.storage import ObjectStore

log = logging.getLogger(__name__)

router = APIRouter(prefix="/storage", tags=["storage"])


@router.post("/upload", response_model=UploadResponse, status_code=201)
def upload(
    file: UploadFile | None = File(None),
    user_id: str = Depends(get_current_user_id),
    store: ObjectStore = Depends(get_object_store),
):
    content = read_upload(file, settings.upload_max_bytes)
    result = store.upload_temp(content, file.content_type or "application/octet-stream", file.filename)
    log.info("storage/upload: user=%s key=%s", user_id, result.temp_key)
    return UploadResponse(data=UploadData(file_key=result.file_key, temp_key=result.temp_key, url=result.url))


@router.get("/retrieve/{file_key}")
def retrieve(file_key: str, store: ObjectStore = Depends(get_object_store)):
    found = store.retrieve(file_key)
    if found is None:
        raise NotFoundError("File not found")
    headers = {"X-Storage-Location": found.namespace}
    if found.content_length:
        headers["Content-Length"] = str(found.content_length)
    return StreamingResponse(found.stream.iter_chunks(), media_type=found.content_type, headers=headers)


@router.get("/exists/{file_key}", response_model=ExistsResponse)
def exists(file_key: str, store: ObjectStore = Depends(get_object_store)):
    found, location = store.exists(file_key)
    return ExistsResponse(exists=found, location=location)


@router.post("/commit", response_model=StorageCommitResponse)
def commit(
    body: StorageKeyRequest,
    user_id: str = Depends(get_current_user_id),
    store: ObjectStore = Depends(get_object_store),
):
    if not body.file_key:
        raise ValidationError("fileKey is required")
    permanent_key = store.commit(body.file_key)
    log.info("storage/commit: user=%s key=%s", user_id, permanent_key)
    return StorageCommitResponse(permanent_key=permanent_key)


@router.post("/decline", response_model=StorageDeclineResponse)
def decline(
    body: StorageKeyRequest,
    user_id: str = Depends(get_current_user_id),
    store: ObjectStore = Depends(get_object_store),
):
    if not body.file_key:
        raise ValidationError("fileKey is required")
    store.delete_temp(body.file_key)
    return StorageDeclineResponse()
