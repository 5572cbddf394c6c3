"""Management API routes: delete, block and whitelist."""

from fastapi import APIRouter, Depends, Request

from gateway.auth import require_admin
from gateway.dependencies import get_file_service, request_origin
from gateway.schemas.common import ErrorResponse
from gateway.schemas.files import DeleteFileResponse, ListTypeResponse
from gateway.services.file_service import FileService
from gateway.types import Caller

router = APIRouter(
    prefix="/manage",
    tags=["Manage"],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)


@router.delete("/delete/{identifier:path}", response_model=DeleteFileResponse)
async def delete_file(
    identifier: str,
    request: Request,
    caller: Caller = Depends(require_admin),
    service: FileService = Depends(get_file_service)
):
    """
    Delete a file and its metadata record.

    The remote delete is best-effort: the record is removed even when the
    storage service refuses, and the refusal is reported in backendErrors.

    Raises:
        - 401: Missing or invalid credentials
        - 404: No record for the identifier
    """
    result = await service.delete(identifier, origin=request_origin(request))
    return DeleteFileResponse(**result)


@router.post("/block/{identifier:path}", response_model=ListTypeResponse)
async def block_file(
    identifier: str,
    caller: Caller = Depends(require_admin),
    service: FileService = Depends(get_file_service)
):
    """Put a file on the block list."""
    return ListTypeResponse(**service.set_list_type(identifier, "Block"))


@router.post("/white/{identifier:path}", response_model=ListTypeResponse)
async def whitelist_file(
    identifier: str,
    caller: Caller = Depends(require_admin),
    service: FileService = Depends(get_file_service)
):
    """Put a file on the whitelist."""
    return ListTypeResponse(**service.set_list_type(identifier, "White"))
