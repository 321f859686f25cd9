# filevault/services/storage.py

import os
import json
import hmac
import time
import hashlib
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Callable, Dict, Optional
from urllib.parse import quote, urlencode

import aiofiles
import aiofiles.os
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import (
    FileNotInStorage, InvalidSignature, StorageError, UrlExpired, UrlGenerationError,
)

logger = logging.getLogger(__name__)

MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}
META_SUFFIX = ".meta"


@dataclass
class StoredObject:
    key: str
    bucket: str
    size: int
    etag: Optional[str] = None


def content_disposition(filename: str) -> str:
    safe = filename.replace('"', "'")
    return f'attachment; filename="{safe}"'


class ObjectStore(ABC):
    """Key/value blob store addressed by storage key"""

    name: str

    @abstractmethod
    async def put_object(self, key: str, data: bytes, content_type: str,
                         metadata: Optional[Dict[str, str]] = None) -> StoredObject:
        ...

    @abstractmethod
    async def object_exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def generate_presigned_url(self, key: str, expires_in: int,
                                     filename: Optional[str] = None,
                                     force_download: bool = False) -> str:
        ...

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        ...


class S3ObjectStore(ObjectStore):
    """S3 or any S3-compatible provider (R2, MinIO) through boto3"""

    def __init__(self, bucket: str, client=None, endpoint_url: Optional[str] = None,
                 region: Optional[str] = None, access_key: Optional[str] = None,
                 secret_key: Optional[str] = None):
        self.name = bucket
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(signature_version="s3v4"),
        )

    @classmethod
    def from_settings(cls, settings) -> "S3ObjectStore":
        return cls(
            bucket=settings.S3_BUCKET_NAME,
            endpoint_url=settings.S3_ENDPOINT_URL,
            region=settings.S3_REGION,
            access_key=settings.AWS_ACCESS_KEY,
            secret_key=settings.AWS_SECRET_KEY,
        )

    async def _call(self, method: str, **kwargs):
        # boto3 is blocking; keep it off the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(getattr(self.client, method), **kwargs))

    async def put_object(self, key, data, content_type, metadata=None):
        # S3 user metadata must be ASCII
        encoded_metadata = {k: quote(str(v)) for k, v in (metadata or {}).items()}
        try:
            response = await self._call(
                "put_object",
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ServerSideEncryption="AES256",
                Metadata=encoded_metadata,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("S3 upload of %s failed: %s", key, e)
            raise StorageError(details=str(e))
        return StoredObject(key=key, bucket=self.bucket, size=len(data), etag=response.get("ETag"))

    async def object_exists(self, key):
        try:
            await self._call("head_object", Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in MISSING_OBJECT_CODES:
                return False
            raise StorageError("Failed to check file in storage", details=str(e))
        except BotoCoreError as e:
            raise StorageError("Failed to check file in storage", details=str(e))
        return True

    async def generate_presigned_url(self, key, expires_in, filename=None, force_download=False):
        params = {"Bucket": self.bucket, "Key": key}
        if force_download and filename:
            params["ResponseContentDisposition"] = content_disposition(filename)
        try:
            return self.client.generate_presigned_url(
                "get_object", Params=params, ExpiresIn=int(expires_in)
            )
        except (ClientError, BotoCoreError) as e:
            raise UrlGenerationError(details=str(e))

    async def delete_object(self, key):
        try:
            await self._call("delete_object", Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError("Failed to delete file from storage", details=str(e))


class LocalObjectStore(ObjectStore):
    """
    Object store on local disk for development and tests.

    Each object is written next to a ``.meta`` JSON sidecar. Download URLs
    point at the file service's ``/local/{key}`` route and carry an expiry
    and an HMAC-SHA256 signature over ``key:expires:download``.
    """

    def __init__(self, root: str, base_url: str, secret: str, name: str = "local",
                 clock: Callable[[], float] = time.time):
        self.root = os.path.realpath(root)
        self.base_url = base_url.rstrip("/")
        self.name = name
        self._secret = secret.encode()
        self._clock = clock

    def path_for(self, key: str) -> str:
        path = os.path.realpath(os.path.join(self.root, key))
        if not path.startswith(self.root + os.sep):
            raise FileNotInStorage()
        return path

    async def put_object(self, key, data, content_type, metadata=None):
        path = self.path_for(key)
        sidecar = {
            "contentType": content_type,
            "size": len(data),
            "metadata": metadata or {},
            "storedAt": datetime.utcnow().isoformat(),
        }
        try:
            await aiofiles.os.makedirs(os.path.dirname(path), exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
            async with aiofiles.open(path + META_SUFFIX, "w") as f:
                await f.write(json.dumps(sidecar))
        except OSError as e:
            logger.error("Local write of %s failed: %s", key, e)
            raise StorageError(details=str(e))
        return StoredObject(key=key, bucket=self.name, size=len(data),
                            etag=hashlib.md5(data).hexdigest())

    async def object_exists(self, key):
        try:
            return await aiofiles.os.path.isfile(self.path_for(key))
        except FileNotInStorage:
            return False

    async def read_metadata(self, key: str) -> Dict:
        try:
            async with aiofiles.open(self.path_for(key) + META_SUFFIX, "r") as f:
                return json.loads(await f.read())
        except (OSError, ValueError):
            return {}

    def _sign(self, key: str, expires: int, download: bool) -> str:
        message = f"{key}:{expires}:{int(download)}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    async def generate_presigned_url(self, key, expires_in, filename=None, force_download=False):
        expires = int(self._clock() + expires_in)
        params = {"expires": expires, "signature": self._sign(key, expires, force_download)}
        if force_download:
            params["download"] = "true"
        return f"{self.base_url}/local/{quote(key)}?{urlencode(params)}"

    def verify_signature(self, key: str, expires: int, signature: str, download: bool = False):
        """Raise InvalidSignature or UrlExpired unless the link is good"""
        expected = self._sign(key, expires, download)
        if not hmac.compare_digest(expected, signature or ""):
            raise InvalidSignature()
        if self._clock() >= expires:
            raise UrlExpired()

    async def delete_object(self, key):
        path = self.path_for(key)
        for target in (path, path + META_SUFFIX):
            try:
                await aiofiles.os.remove(target)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageError("Failed to delete file from storage", details=str(e))


def build_object_store(settings) -> ObjectStore:
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "local":
        return LocalObjectStore(
            root=settings.LOCAL_STORAGE_PATH,
            base_url=settings.PUBLIC_BASE_URL,
            secret=settings.JWT_SECRET,
        )
    if backend == "s3":
        return S3ObjectStore.from_settings(settings)
    raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND}")
