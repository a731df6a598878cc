from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
import urllib.parse

from ...schemas.common import ErrorResponse
from ...schemas.files import FileListResponse, FileMetadataResponse
from ...services.responder import file_list_payload, file_metadata_payload
from ...services.uploads import UploadService
from ..deps import get_upload_service

router = APIRouter(prefix="/api", tags=["files"])


@router.get("/files", response_model=FileListResponse)
def list_files(service: UploadService = Depends(get_upload_service)):
    """
    Most recently uploaded objects first, capped at FILE_LIST_LIMIT.
    """
    objects = service.recent()
    return file_list_payload(objects, service.store.url_for)


@router.get(
    "/file/{key:path}",
    response_model=FileMetadataResponse,
    responses={404: {"model": ErrorResponse}},
)
async def file_metadata(key: str, service: UploadService = Depends(get_upload_service)):
    # keys contain '/', frontend may send them URL-encoded
    decoded_key = urllib.parse.unquote(key, encoding="utf-8", errors="strict")
    info = await run_in_threadpool(service.describe, decoded_key)
    return file_metadata_payload(info)
