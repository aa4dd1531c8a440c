from __future__ import annotations

import logging
import re
from typing import Dict
from urllib.parse import quote

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from foundry.archive.manager import get_archive_manager
from foundry.archive.tokens import TokenRecord
from foundry.server.routers.auth import signed_request

logger = logging.getLogger(__name__)

router = APIRouter(tags=["artifacts"], dependencies=signed_request)

_UNSAFE_FILENAME_CHARS = re.compile(r'[^A-Za-z0-9._-]')


class DeleteUploadRequest(BaseModel):
    token: str = ""


def content_disposition(filename: str) -> str:
    """
    Attachment header that survives latin-1 header encoding.

    `filename` carries an ASCII rendering, `filename*` the exact UTF-8 name.
    """
    fallback = _UNSAFE_FILENAME_CHARS.sub("_", filename) or "download.zip"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def download_headers(record: TokenRecord) -> Dict[str, str]:
    return {
        "Content-Disposition": content_disposition(record.filename),
        "Content-Length": str(record.size),
        "Cache-Control": "no-store",
    }


@router.get("/download")
async def download_artifact(token: str = Query(default="")):
    """Stream a staged zip once; the token is dead afterwards."""
    manager = get_archive_manager()
    # Headers are settled before the token is spent
    headers = download_headers(manager.resolve(token))
    record, chunks = manager.consume(token)
    headers["Content-Length"] = str(record.size)
    return StreamingResponse(chunks, media_type="application/zip", headers=headers)


@router.post("/upload")
async def upload_artifact(request: Request, filename: str = Query(default="upload.zip")):
    """Stage a raw zip body for a later `foundry install-upload`."""
    data = await request.body()
    return get_archive_manager().store_upload(data, filename)


@router.post("/upload/delete")
async def delete_upload(req: DeleteUploadRequest):
    get_archive_manager().delete_upload(req.token)
    return {"deleted": True, "token": req.token}
