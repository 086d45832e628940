from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from rxflow.api.deps import get_current_client
from rxflow.core.config import settings
from rxflow.core.errors import AuthorizationError, TransientExternalError, ValidationError
from rxflow.db.session import get_db
from rxflow.models.client import Client
from rxflow.services.intake import UploadedFile, submit_upload

router = APIRouter(prefix="/upload", tags=["upload"])

_CHUNK_SIZE = 64 * 1024


class UploadResponse(BaseModel):
    job_id: str
    status: str


async def _read_bounded(f: UploadFile, max_bytes: int) -> bytes:
    """Read the spooled upload chunk by chunk, stopping once it passes max_bytes."""
    buf = bytearray()
    while True:
        chunk = await f.read(_CHUNK_SIZE)
        if not chunk:
            return bytes(buf)
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise HTTPException(status_code=400, detail=f"file exceeds {max_bytes} bytes")


async def _read_payload(request: Request) -> tuple[UploadedFile | None, str | None]:
    """multipart `file` (or form `file_url`) | JSON `{"file_url": ...}`"""
    content_type = (request.headers.get("content-type") or "").lower()
    upload: UploadedFile | None = None
    file_url: str | None = None

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        f = form.get("file")
        if isinstance(f, UploadFile):
            upload = UploadedFile(filename=f.filename or "", content=await _read_bounded(f, settings.max_upload_bytes))
        url_val = form.get("file_url")
        if isinstance(url_val, str):
            file_url = url_val
    elif "json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if isinstance(body, dict) and isinstance(body.get("file_url"), str):
            file_url = body["file_url"]

    return upload, file_url


@router.post("", response_model=UploadResponse)
async def upload_prescription(
    request: Request,
    client: Client = Depends(get_current_client),
    db: Session = Depends(get_db),
) -> UploadResponse:
    if client.is_global:
        raise HTTPException(status_code=403, detail="Global API key is not allowed to upload")

    upload, file_url = await _read_payload(request)

    try:
        result = await run_in_threadpool(submit_upload, db, client, upload=upload, file_url=file_url)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=e.message)
    except TransientExternalError as e:
        raise HTTPException(status_code=503, detail=e.message)

    return UploadResponse(job_id=result.job_id, status=result.status)
