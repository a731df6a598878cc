from fastapi import APIRouter, Depends, Request
from ...schemas.common import ErrorResponse
from ...schemas.uploads import UploadResponse
from ...services.responder import upload_payload
from ...services.uploads import UploadService
from ..deps import get_client_id, get_upload_service

router = APIRouter(prefix="/api", tags=["uploads"])

@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={code: {"model": ErrorResponse} for code in (400, 413, 415, 429, 500)},
)
async def upload_file(
    request: Request,
    client_id: str = Depends(get_client_id),
    service: UploadService = Depends(get_upload_service),
):
    """
    Accepts multipart/form-data with a single `file` field.
    The body is read as a stream so oversize files are rejected early.
    """
    stored = await service.process_stream(
        client_id,
        request.headers.get("content-type"),
        request.stream(),
    )
    return upload_payload(stored)
