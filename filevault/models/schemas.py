# filevault/models/schemas.py

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime


class CamelModel(BaseModel):
    """Responses use camelCase keys on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Auth Schemas
class Credentials(BaseModel):
    # Both optional so that absence is reported as MISSING_FIELDS
    email: Optional[str] = None
    password: Optional[str] = None


class RegisterResponse(CamelModel):
    message: str
    user_id: str
    email: str
    created_at: datetime


class LoginResponse(CamelModel):
    message: str
    token: str
    refresh_token: str
    user_id: str
    email: str


class RefreshResponse(CamelModel):
    message: str
    token: str
    user_id: str


class ProfileResponse(CamelModel):
    user_id: str
    email: str
    created_at: datetime
    updated_at: datetime


# File Schemas
class UploadResponse(CamelModel):
    message: str
    file_id: str
    filename: str
    size: int
    storage_key: str
    mime_type: str
    uploaded_at: datetime


class DownloadUrlResponse(CamelModel):
    download_url: str
    filename: str
    size: int
    mime_type: str
    expires_in: int
    expires_at: datetime


class FileItem(CamelModel):
    file_id: str
    filename: str
    original_name: str
    size: int
    owner_id: str
    storage_key: str
    storage_bucket: str
    mime_type: str
    uploaded_at: datetime
    last_accessed_at: datetime
    download_count: int
    is_active: bool

    @classmethod
    def from_record(cls, record) -> "FileItem":
        return cls(
            file_id=str(record.id),
            filename=record.filename,
            original_name=record.original_name,
            size=record.size,
            owner_id=record.owner_id,
            storage_key=record.storage_key,
            storage_bucket=record.storage_bucket,
            mime_type=record.mime_type,
            uploaded_at=record.uploaded_at,
            last_accessed_at=record.last_accessed_at,
            download_count=record.download_count,
            is_active=record.is_active,
        )


class Pagination(CamelModel):
    total: int
    limit: int
    skip: int
    has_more: bool


class FilesSummary(CamelModel):
    total_files: int
    total_size: int


class FileListResponse(CamelModel):
    files: List[FileItem]
    pagination: Pagination
    summary: FilesSummary


class FileDeletedResponse(CamelModel):
    message: str
    file_id: str


# Health Schemas
class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    environment: str
    checks: dict
