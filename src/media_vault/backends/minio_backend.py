import asyncio
import logging
from functools import partial
from io import BytesIO
from typing import AsyncIterator, Optional

import urllib3
from minio import Minio
from minio.error import MinioException, S3Error, ServerError

from media_vault.backends.base import BlobBackend, BlobObject, ByteRange, StoredBlob
from media_vault.config import MinioConfig
from media_vault.exceptions import (
    BackendError,
    BlobNotFoundError,
    PermanentBackendError,
    TransientBackendError,
)
from media_vault.models import StorageType

logger = logging.getLogger(__name__)
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchObject", "ResourceNotFound"}
_TRANSIENT_CODES = {"SlowDown", "RequestTimeout", "InternalError", "ServiceUnavailable"}


def _translate(e: Exception, what: str) -> BackendError:
    if isinstance(e, S3Error):
        if e.code in _NOT_FOUND_CODES:
            return BlobNotFoundError(f"{what}: object not found")
        if e.code in _TRANSIENT_CODES:
            return TransientBackendError(f"{what}: {e.code}: {e.message}")
        # NoSuchBucket, AccessDenied, InvalidAccessKeyId ... деньгами и ретраями не лечится
        return PermanentBackendError(f"{what}: {e.code}: {e.message}")
    if isinstance(e, ServerError):
        return TransientBackendError(f"{what}: server error {e.status_code}")
    # сетевые ошибки urllib3 и сокетов
    return TransientBackendError(f"{what}: {e}")


_SDK_ERRORS = (MinioException, urllib3.exceptions.HTTPError, OSError)


async def _run_io_bound(func, *args, **kwargs):
    """Блокирующий вызов SDK в пуле потоков, чтобы не стопорить event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


async def _release(response) -> None:
    response.close()
    response.release_conn()


class MinioBackend(BlobBackend):
    """Бакет MinIO/S3: настоящие range-запросы через offset/length."""

    storage_type = StorageType.bucket
    supports_range = True

    def __init__(self, settings: MinioConfig, client: Optional[Minio] = None, block_size: int = 256 * 1024):
        if client is None:
            http_client = None
            if settings.secure:
                http_client = urllib3.PoolManager(
                    cert_reqs='CERT_NONE',
                )
            client = Minio(
                endpoint=settings.endpoint,
                access_key=settings.accesskey,
                secret_key=settings.secretkey,
                secure=settings.secure,
                http_client=http_client,
            )
        self._client = client
        self._bucket = settings.bucket
        self._block_size = block_size
        self._bucket_ready = False

    @property
    def bucket(self) -> str:
        return self._bucket

    async def _ensure_bucket(self):
        if self._bucket_ready:
            return
        exists = await _run_io_bound(self._client.bucket_exists, self._bucket)
        if not exists:
            logger.info(f"Bucket '{self._bucket}' does not exist, creating it...")
            await _run_io_bound(self._client.make_bucket, self._bucket)
        self._bucket_ready = True

    async def check_connection(self):
        """Проверяет соединение с MinIO и наличие бакета."""
        logger.debug(f"Checking MinIO connection and bucket '{self._bucket}' existence...")
        try:
            await self._ensure_bucket()
            logger.debug("MinIO connection and bucket presence confirmed.")
        except _SDK_ERRORS as e:
            logger.error(f"MinIO connection failed: {e}")
            raise _translate(e, f"bucket {self._bucket}") from e

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> StoredBlob:
        try:
            await self._ensure_bucket()
            await _run_io_bound(
                self._client.put_object,
                self._bucket,
                key,
                BytesIO(data),
                len(data),
                content_type=content_type or "application/octet-stream",
            )
        except _SDK_ERRORS as e:
            raise _translate(e, f"put {key}") from e
        return StoredBlob(locator=key, message_id=None, size=len(data))

    async def get(self, locator: str, byte_range: Optional[ByteRange] = None) -> BlobObject:
        try:
            stat = await _run_io_bound(self._client.stat_object, self._bucket, locator)
            if byte_range is None:
                response = await _run_io_bound(self._client.get_object, self._bucket, locator)
            else:
                response = await _run_io_bound(
                    self._client.get_object,
                    self._bucket,
                    locator,
                    offset=byte_range.start,
                    length=byte_range.length,
                )
        except _SDK_ERRORS as e:
            raise _translate(e, f"get {locator}") from e

        total = stat.size
        if byte_range is None:
            length = total
        else:
            length = max(0, min(byte_range.end, total - 1) - byte_range.start + 1)
        return BlobObject(
            content_type=stat.content_type,
            total_length=total,
            length=length,
            body=self._stream(response, locator),
            on_close=lambda: _release(response),
        )

    async def _stream(self, response, locator: str) -> AsyncIterator[bytes]:
        try:
            iterator = response.stream(self._block_size)
            while True:
                block = await _run_io_bound(next, iterator, None)
                if block is None:
                    break
                yield block
        except _SDK_ERRORS as e:
            raise _translate(e, f"read {locator}") from e
        finally:
            await _release(response)

    async def delete(self, locator: str, message_id: Optional[int] = None) -> bool:
        try:
            await _run_io_bound(self._client.remove_object, self._bucket, locator)
        except _SDK_ERRORS as e:
            raise _translate(e, f"delete {locator}") from e
        return True
