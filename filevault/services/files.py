# filevault/services/files.py
"""
File uploads, presigned downloads, listing and deletion.

Every lookup is scoped to the requesting owner: a file that exists but
belongs to someone else is reported exactly like one that does not exist.
Counters and the active flag are changed with single conditional UPDATE
or DELETE statements and success is read from the affected row count.
"""
import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    DuplicateFile, EmptyFile, FileNotFound, FileNotInStorage, FilenameTooLong, FileTooLarge,
    InvalidDateRange, InvalidPagination, InvalidSortField, LimitTooHigh, MissingFilename,
    StorageError,
)
from ..models.database import MAX_FILENAME_LENGTH, File, sanitize_filename
from ..utils.mime import get_file_extension, get_mime_type
from .storage import ObjectStore

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "uploadedAt": File.uploaded_at,
    "filename": File.filename,
    "size": File.size,
    "lastAccessedAt": File.last_accessed_at,
    "downloadCount": File.download_count,
}


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def as_utc_naive(moment: datetime) -> datetime:
    # Stored timestamps are naive UTC
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class DownloadLink:
    url: str
    file: File
    expires_in: int
    expires_at: datetime


@dataclass
class FileListing:
    files: List[File]
    total: int
    limit: int
    skip: int
    has_more: bool
    total_size: int


def build_storage_key(owner_id: str, filename: str) -> str:
    return f"files/{owner_id}/{uuid.uuid4()}{get_file_extension(filename)}"


class FileService:
    def __init__(self, store: ObjectStore, max_file_size: int = 52428800,
                 default_url_ttl: int = 900, max_page_size: int = 100,
                 default_page_size: int = 50):
        self.store = store
        self.max_file_size = max_file_size
        self.default_url_ttl = default_url_ttl
        self.max_page_size = max_page_size
        self.default_page_size = default_page_size

    @classmethod
    def from_settings(cls, settings, store: ObjectStore) -> "FileService":
        return cls(
            store,
            max_file_size=settings.MAX_FILE_SIZE,
            default_url_ttl=settings.DOWNLOAD_URL_EXPIRES_SECONDS,
            max_page_size=settings.MAX_PAGE_SIZE,
            default_page_size=settings.DEFAULT_PAGE_SIZE,
        )

    def too_large(self, size: Optional[int] = None) -> FileTooLarge:
        limit_mb = self.max_file_size / (1024 * 1024)
        return FileTooLarge(
            f"File size exceeds maximum limit of {limit_mb:g}MB",
            details={"maxSize": self.max_file_size, "size": size},
        )

    # Lookup

    async def get_file(self, db: AsyncSession, file_id, requester_id: str,
                       include_inactive: bool = False) -> File:
        """Owner-scoped lookup; FileNotFound for anything not visible to the requester"""
        try:
            key = uuid.UUID(str(file_id))
        except ValueError:
            raise FileNotFound()

        query = select(File).where(File.id == key, File.owner_id == requester_id)
        if not include_inactive:
            query = query.where(File.is_active.is_(True))
        record = (await db.execute(query)).scalar_one_or_none()
        if record is None:
            raise FileNotFound()
        return record

    # Upload

    @staticmethod
    def validate_filename(filename: Optional[str]):
        if not filename or not filename.strip():
            raise MissingFilename()
        if len(filename) > MAX_FILENAME_LENGTH:
            raise FilenameTooLong()

    async def upload(self, db: AsyncSession, owner_id: str, filename: Optional[str],
                     data: bytes, declared_content_type: Optional[str] = None) -> File:
        self.validate_filename(filename)
        if not data:
            raise EmptyFile()
        if len(data) > self.max_file_size:
            raise self.too_large(len(data))

        stored_name = sanitize_filename(filename)
        mime_type = (declared_content_type or "").strip() or get_mime_type(stored_name)
        storage_key = build_storage_key(owner_id, stored_name)
        content_hash = hashlib.sha256(data).hexdigest()

        # Object first: a failed write leaves no metadata behind
        stored = await self.store.put_object(
            storage_key,
            data,
            mime_type,
            metadata={
                "originalName": filename,
                "uploadedBy": owner_id,
                "uploadedAt": datetime.utcnow().isoformat(),
                "checksum": content_hash,
            },
        )

        record = File(
            filename=stored_name,
            original_name=filename,
            size=len(data),
            owner_id=owner_id,
            storage_key=storage_key,
            storage_bucket=stored.bucket,
            mime_type=mime_type,
            content_hash=content_hash,
        )
        db.add(record)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.error("Storage key collision for %s", storage_key)
            raise DuplicateFile()

        logger.info("File uploaded: %s by user %s (%d bytes)", record.id, owner_id, record.size)
        return record

    # Download

    async def get_download_url(self, db: AsyncSession, file_id, requester_id: str,
                               ttl_seconds: Optional[int] = None,
                               force_download: bool = False) -> DownloadLink:
        record = await self.get_file(db, file_id, requester_id)

        if not await self.store.object_exists(record.storage_key):
            logger.warning("File %s missing from storage at %s", record.id, record.storage_key)
            raise FileNotInStorage()

        ttl = ttl_seconds or self.default_url_ttl
        url = await self.store.generate_presigned_url(
            record.storage_key, ttl, filename=record.original_name, force_download=force_download
        )

        now = datetime.utcnow()
        result = await db.execute(
            update(File)
            .where(File.id == record.id, File.owner_id == requester_id, File.is_active.is_(True))
            .values(download_count=File.download_count + 1, last_accessed_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount == 0:
            # Deleted between lookup and increment
            raise FileNotFound()
        await db.refresh(record)

        logger.info("Download URL generated for file %s by user %s", record.id, requester_id)
        return DownloadLink(url=url, file=record, expires_in=ttl,
                            expires_at=now + timedelta(seconds=ttl))

    # Listing

    async def list_files(self, db: AsyncSession, owner_id: str, limit: Optional[int] = None,
                         skip: int = 0, sort_by: str = "uploadedAt",
                         sort_order: str = "desc", search: Optional[str] = None,
                         uploaded_from: Optional[datetime] = None,
                         uploaded_to: Optional[datetime] = None) -> FileListing:
        """
        One page of the owner's active files plus totals over every match.

        ``search`` is a case-insensitive substring of the stored filename;
        ``uploaded_from`` and ``uploaded_to`` bound ``uploaded_at`` inclusively.
        The same filters apply to the page and to the totals.
        """
        if limit is None:
            limit = self.default_page_size
        if limit > self.max_page_size:
            raise LimitTooHigh(f"Limit cannot exceed {self.max_page_size}")
        if limit < 1 or skip < 0:
            raise InvalidPagination()

        column = SORT_FIELDS.get(sort_by)
        if column is None:
            raise InvalidSortField(details={"allowed": sorted(SORT_FIELDS)})
        order = column.asc() if sort_order == "asc" else column.desc()

        if uploaded_from is not None:
            uploaded_from = as_utc_naive(uploaded_from)
        if uploaded_to is not None:
            uploaded_to = as_utc_naive(uploaded_to)
        if uploaded_from is not None and uploaded_to is not None and uploaded_from > uploaded_to:
            raise InvalidDateRange()

        visible = [File.owner_id == owner_id, File.is_active.is_(True)]
        if search and search.strip():
            visible.append(File.filename.ilike(f"%{escape_like(search.strip())}%", escape="\\"))
        if uploaded_from is not None:
            visible.append(File.uploaded_at >= uploaded_from)
        if uploaded_to is not None:
            visible.append(File.uploaded_at <= uploaded_to)

        rows = await db.execute(
            select(File).where(*visible).order_by(order, File.id).offset(skip).limit(limit)
        )
        files = list(rows.scalars().all())

        totals = await db.execute(
            select(func.count(File.id), func.coalesce(func.sum(File.size), 0)).where(*visible)
        )
        total, total_size = totals.one()

        return FileListing(
            files=files,
            total=total,
            limit=limit,
            skip=skip,
            has_more=skip + len(files) < total,
            total_size=int(total_size),
        )

    # Deletion

    async def _discard_object(self, record: File):
        try:
            await self.store.delete_object(record.storage_key)
        except StorageError as e:
            logger.warning("Could not delete object %s for file %s: %s",
                           record.storage_key, record.id, e.details or e.message)

    async def delete_file(self, db: AsyncSession, file_id, requester_id: str) -> str:
        """Soft delete: hide the row and drop the object"""
        record = await self.get_file(db, file_id, requester_id)
        await self._discard_object(record)

        result = await db.execute(
            update(File)
            .where(File.id == record.id, File.owner_id == requester_id, File.is_active.is_(True))
            .values(is_active=False, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount == 0:
            raise FileNotFound()

        logger.info("File deleted: %s by user %s", record.id, requester_id)
        return str(record.id)

    async def purge_file(self, db: AsyncSession, file_id, requester_id: str) -> str:
        """Hard delete, including rows already soft-deleted"""
        record = await self.get_file(db, file_id, requester_id, include_inactive=True)
        await self._discard_object(record)

        result = await db.execute(
            delete(File)
            .where(File.id == record.id, File.owner_id == requester_id)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount == 0:
            raise FileNotFound()

        logger.info("File purged: %s by user %s", record.id, requester_id)
        return str(record.id)
