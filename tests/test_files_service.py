import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from filevault.errors import (
    DuplicateFile, EmptyFile, FileNotFound, FileTooLarge, InvalidDateRange, MissingFilename,
    StorageError,
)
from filevault.models.database import File
from filevault.services.files import FileService
from filevault.services.storage import LocalObjectStore

OWNER = "owner-1"


class BrokenStore(LocalObjectStore):
    """Writes always fail"""

    async def put_object(self, key, data, content_type, metadata=None):
        raise StorageError(details="disk on fire")


class UndeletableStore(LocalObjectStore):
    """Deletes always fail"""

    async def delete_object(self, key):
        raise StorageError("Failed to delete file from storage")


async def count_rows(database):
    async with database.session() as db:
        return (await db.execute(select(func.count(File.id)))).scalar_one()


@pytest.mark.asyncio
async def test_validation_runs_in_order(database, file_service):
    async with database.session() as db:
        with pytest.raises(MissingFilename):
            await file_service.upload(db, OWNER, "", b"")
        with pytest.raises(EmptyFile):
            await file_service.upload(db, OWNER, "a.txt", b"")
        with pytest.raises(FileTooLarge):
            await file_service.upload(db, OWNER, "a.txt", b"x" * (file_service.max_file_size + 1))
    assert await count_rows(database) == 0


@pytest.mark.asyncio
async def test_upload_records_hash_and_metadata(database, file_service, local_store):
    async with database.session() as db:
        record = await file_service.upload(db, OWNER, "a.txt", b"hello")

    assert record.content_hash == "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
    assert record.download_count == 0
    assert record.is_active is True
    meta = await local_store.read_metadata(record.storage_key)
    assert meta["metadata"]["originalName"] == "a.txt"
    assert meta["metadata"]["uploadedBy"] == OWNER


@pytest.mark.asyncio
async def test_storage_failure_creates_no_row(database, tmp_path):
    service = FileService(BrokenStore(str(tmp_path), "http://testserver", "s"))
    async with database.session() as db:
        with pytest.raises(StorageError):
            await service.upload(db, OWNER, "a.txt", b"hello")
    assert await count_rows(database) == 0


@pytest.mark.asyncio
async def test_storage_key_collision(database, file_service, monkeypatch):
    monkeypatch.setattr("filevault.services.files.build_storage_key",
                        lambda owner_id, filename: f"files/{owner_id}/fixed.txt")
    async with database.session() as db:
        await file_service.upload(db, OWNER, "a.txt", b"one")
    async with database.session() as db:
        with pytest.raises(DuplicateFile):
            await file_service.upload(db, OWNER, "b.txt", b"two")
    assert await count_rows(database) == 1


@pytest.mark.asyncio
async def test_every_download_url_is_counted(database, file_service):
    async with database.session() as db:
        record = await file_service.upload(db, OWNER, "a.txt", b"hello")

    for expected in range(1, 6):
        async with database.session() as db:
            link = await file_service.get_download_url(db, record.id, OWNER)
        assert link.file.download_count == expected
        assert link.expires_in == 900

    async with database.session() as db:
        fresh = await file_service.get_file(db, record.id, OWNER)
        assert fresh.download_count == 5


@pytest.mark.asyncio
async def test_delete_survives_storage_failure(database, tmp_path):
    service = FileService(UndeletableStore(str(tmp_path), "http://testserver", "s"))
    async with database.session() as db:
        record = await service.upload(db, OWNER, "a.txt", b"hello")
    async with database.session() as db:
        assert await service.delete_file(db, record.id, OWNER) == str(record.id)
    async with database.session() as db:
        with pytest.raises(FileNotFound):
            await service.get_file(db, record.id, OWNER)
        inactive = await service.get_file(db, record.id, OWNER, include_inactive=True)
        assert inactive.is_active is False


@pytest.mark.asyncio
async def test_soft_delete_never_reactivates(database, file_service):
    async with database.session() as db:
        record = await file_service.upload(db, OWNER, "a.txt", b"hello")
        await file_service.delete_file(db, record.id, OWNER)
        with pytest.raises(FileNotFound):
            await file_service.get_download_url(db, record.id, OWNER)
        with pytest.raises(FileNotFound):
            await file_service.delete_file(db, record.id, OWNER)


@pytest.mark.asyncio
async def test_purge_is_owner_scoped(database, file_service):
    async with database.session() as db:
        record = await file_service.upload(db, OWNER, "a.txt", b"hello")
        with pytest.raises(FileNotFound):
            await file_service.purge_file(db, record.id, "someone-else")
        await file_service.purge_file(db, record.id, OWNER)
    assert await count_rows(database) == 0


@pytest.mark.asyncio
async def test_listing_summary_ignores_inactive_and_foreign_files(database, file_service):
    async with database.session() as db:
        kept = await file_service.upload(db, OWNER, "a.txt", b"12345")
        dropped = await file_service.upload(db, OWNER, "b.txt", b"123")
        await file_service.upload(db, "owner-2", "c.txt", b"1234567")
        await file_service.delete_file(db, dropped.id, OWNER)

        listing = await file_service.list_files(db, OWNER)
    assert [f.id for f in listing.files] == [kept.id]
    assert listing.total == 1
    assert listing.total_size == 5
    assert listing.limit == 50
    assert listing.has_more is False


@pytest.mark.asyncio
async def test_unknown_id_is_not_found(database, file_service):
    async with database.session() as db:
        with pytest.raises(FileNotFound):
            await file_service.get_file(db, uuid.uuid4(), OWNER)


@pytest.mark.asyncio
async def test_list_filters_by_upload_window(database, file_service):
    async with database.session() as db:
        uploaded = {}
        for day in (1, 2, 3):
            record = await file_service.upload(db, OWNER, f"day{day}.txt", b"x" * day)
            await db.execute(
                update(File).where(File.id == record.id).values(uploaded_at=datetime(2024, 1, day, 12))
            )
            uploaded[day] = record.id
        await db.commit()

        listing = await file_service.list_files(
            db, OWNER, uploaded_from=datetime(2024, 1, 2, 12), uploaded_to=datetime(2024, 1, 3, 12),
            sort_order="asc",
        )
        assert [f.id for f in listing.files] == [uploaded[2], uploaded[3]]
        assert listing.total == 2
        assert listing.total_size == 5

        # Aware bounds are compared in UTC
        since = datetime(2024, 1, 3, 13, tzinfo=timezone(timedelta(hours=2)))
        listing = await file_service.list_files(db, OWNER, uploaded_from=since)
        assert [f.id for f in listing.files] == [uploaded[3]]

        with pytest.raises(InvalidDateRange):
            await file_service.list_files(
                db, OWNER, uploaded_from=datetime(2024, 1, 3), uploaded_to=datetime(2024, 1, 1)
            )


@pytest.mark.asyncio
async def test_list_search_is_literal_and_case_insensitive(database, file_service):
    async with database.session() as db:
        report = await file_service.upload(db, OWNER, "Q1_Report.PDF", b"1234")
        await file_service.upload(db, OWNER, "q1-notes.txt", b"12")
        await file_service.upload(db, "owner-2", "q1_report.pdf", b"1")

        listing = await file_service.list_files(db, OWNER, search="q1_report")
        assert [f.id for f in listing.files] == [report.id]
        assert listing.total == 1
        assert listing.total_size == 4

        assert (await file_service.list_files(db, OWNER, search="Q1")).total == 2
        assert (await file_service.list_files(db, OWNER, search="%")).total == 0
        assert (await file_service.list_files(db, OWNER, search="  ")).total == 2
