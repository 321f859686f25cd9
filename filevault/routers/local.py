# filevault/routers/local.py
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from ..dependencies import get_object_store
from ..errors import FileNotInStorage, InvalidSignature
from ..services.storage import LocalObjectStore

router = APIRouter(tags=["storage"])


@router.get("/local/{storage_key:path}")
async def serve_local_object(
    storage_key: str,
    expires: Optional[int] = None,
    signature: Optional[str] = None,
    download: bool = False,
    store: LocalObjectStore = Depends(get_object_store),
):
    """Serve an object from the local store behind a signed, expiring link"""
    if expires is None or not signature:
        raise InvalidSignature()
    store.verify_signature(storage_key, expires, signature, download)

    if not await store.object_exists(storage_key):
        raise FileNotInStorage()
    meta = await store.read_metadata(storage_key)

    return FileResponse(
        store.path_for(storage_key),
        media_type=meta.get("contentType", "application/octet-stream"),
        filename=meta.get("metadata", {}).get("originalName") if download else None,
    )
