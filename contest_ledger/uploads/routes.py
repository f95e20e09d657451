"""
Upload API Routes.

``POST /uploads`` takes a multipart form with one or more ``files`` parts
and returns the public URLs of the transcoded images. ``GET /media`` serves
objects written by the local filesystem store.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..deps import get_object_store, get_upload_pipeline
from ..errors import ValidationFailed
from .pipeline import IncomingFile, UploadPipeline
from .storage import LocalObjectStore, ObjectStore

router = APIRouter(tags=["uploads"])

FILE_FIELDS = ("files", "file")


def _source_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/uploads")
async def upload_images(
    request: Request,
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
) -> Dict[str, Any]:
    """Validate, transcode and store a batch of images."""
    pipeline.admit(_source_address(request))

    files: List[IncomingFile] = []
    try:
        form = await request.form()
    except StarletteHTTPException as e:
        raise ValidationFailed(str(e.detail), rule="malformed_form") from None

    try:
        uploads = [
            item
            for field in FILE_FIELDS
            for item in form.getlist(field)
            if isinstance(item, UploadFile)
        ]
        pipeline.check_count(len(uploads))
        for item in uploads:
            # one byte past the limit is enough to detect oversize files
            data = await item.read(pipeline.limits.max_bytes + 1)
            files.append(
                IncomingFile(
                    filename=item.filename or "image",
                    content_type=item.content_type,
                    data=data,
                )
            )
    finally:
        await form.close()

    credential = pipeline.resolver.credential_from(request)
    urls = await pipeline.ingest(credential, files)
    return {"urls": urls}


@router.get("/media/{key:path}")
async def get_media(
    key: str,
    store: ObjectStore = Depends(get_object_store),
) -> FileResponse:
    """Serve an object from the local filesystem store."""
    if not isinstance(store, LocalObjectStore):
        raise HTTPException(status_code=404, detail="Not found")

    path = store.path_for(key)
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(path, media_type="image/webp")
