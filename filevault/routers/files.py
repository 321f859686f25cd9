# filevault/routers/files.py

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_current_claims, get_db, get_file_service
from ..errors import ServiceError
from ..models.schemas import (
    DownloadUrlResponse, FileDeletedResponse, FileItem, FileListResponse, FilesSummary,
    Pagination, UploadResponse,
)
from ..monitoring.metrics import download_urls_issued, files_deleted, upload_bytes, upload_completed
from ..services.files import FileService
from ..services.tokens import TokenClaims

router = APIRouter(tags=["files"])


async def read_body(request: Request, file_service: FileService) -> bytes:
    """Buffer the raw request body, giving up as soon as it passes the size cap"""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > file_service.max_file_size:
        raise file_service.too_large(int(declared))

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > file_service.max_file_size:
            raise file_service.too_large()
    return bytes(body)


@router.post("/upload", response_model=UploadResponse, status_code=201)
async def upload_file(
    request: Request,
    filename: Optional[str] = Query(None),
    content_type: Optional[str] = Query(None, alias="contentType"),
    claims: TokenClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_db),
    file_service: FileService = Depends(get_file_service),
):
    """Upload the raw request body as a new file"""
    try:
        file_service.validate_filename(filename)
        data = await read_body(request, file_service)
        record = await file_service.upload(db, claims.subject, filename, data, content_type)
    except ServiceError as e:
        upload_completed.labels(status=e.code).inc()
        raise
    upload_completed.labels(status="success").inc()
    upload_bytes.observe(record.size)

    return UploadResponse(
        message="File uploaded successfully",
        file_id=str(record.id),
        filename=record.filename,
        size=record.size,
        storage_key=record.storage_key,
        mime_type=record.mime_type,
        uploaded_at=record.uploaded_at,
    )


@router.get("/file/{file_id}", response_model=DownloadUrlResponse)
async def get_download_url(
    file_id: str,
    download: bool = False,
    claims: TokenClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_db),
    file_service: FileService = Depends(get_file_service),
):
    """Issue a short-lived presigned URL for one of the caller's files"""
    link = await file_service.get_download_url(db, file_id, claims.subject, force_download=download)
    download_urls_issued.labels(disposition="attachment" if download else "inline").inc()

    return DownloadUrlResponse(
        download_url=link.url,
        filename=link.file.original_name,
        size=link.file.size,
        mime_type=link.file.mime_type,
        expires_in=link.expires_in,
        expires_at=link.expires_at,
    )


@router.get("/files", response_model=FileListResponse)
async def list_files(
    limit: Optional[int] = None,
    skip: int = 0,
    sort_by: str = Query("uploadedAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    search: Optional[str] = None,
    uploaded_from: Optional[datetime] = Query(None, alias="uploadedFrom"),
    uploaded_to: Optional[datetime] = Query(None, alias="uploadedTo"),
    claims: TokenClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_db),
    file_service: FileService = Depends(get_file_service),
):
    """List the caller's active files, optionally filtered by name and upload date"""
    listing = await file_service.list_files(
        db, claims.subject, limit=limit, skip=skip, sort_by=sort_by, sort_order=sort_order,
        search=search, uploaded_from=uploaded_from, uploaded_to=uploaded_to,
    )
    return FileListResponse(
        files=[FileItem.from_record(f) for f in listing.files],
        pagination=Pagination(
            total=listing.total, limit=listing.limit, skip=listing.skip, has_more=listing.has_more
        ),
        summary=FilesSummary(total_files=listing.total, total_size=listing.total_size),
    )


@router.delete("/file/{file_id}", response_model=FileDeletedResponse)
async def delete_file(
    file_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_db),
    file_service: FileService = Depends(get_file_service),
):
    """Soft delete one of the caller's files"""
    deleted_id = await file_service.delete_file(db, file_id, claims.subject)
    files_deleted.labels(mode="soft").inc()
    return FileDeletedResponse(message="File deleted successfully", file_id=deleted_id)


@router.delete("/file/{file_id}/permanent", response_model=FileDeletedResponse)
async def purge_file(
    file_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_db),
    file_service: FileService = Depends(get_file_service),
):
    """Remove a file and its metadata for good"""
    purged_id = await file_service.purge_file(db, file_id, claims.subject)
    files_deleted.labels(mode="permanent").inc()
    return FileDeletedResponse(message="File permanently deleted", file_id=purged_id)
