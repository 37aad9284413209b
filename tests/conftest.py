from typing import Optional

import pytest
import pytest_asyncio

from media_vault.backends.base import BlobBackend, BlobObject, ByteRange, StoredBlob, iter_bytes
from media_vault.client import MediaClient
from media_vault.config import DatabaseConfig, StorageConfig
from media_vault.db import InMemoryDriver, create_driver
from media_vault.exceptions import BlobNotFoundError, TransientBackendError
from media_vault.models import FileRecord, StorageType
from media_vault.utils.ttl_cache import TTLCache


class FakeBackend(BlobBackend):
    """
    Blob-хранилище в словаре. Для чата локатор отличается от ключа и у
    каждого blob'а есть message_id, как у настоящего Telegram.
    """

    def __init__(self, storage_type: StorageType = StorageType.bucket, supports_range: bool = True,
                 block_size: int = 64 * 1024):
        self.storage_type = storage_type
        self.supports_range = supports_range
        self.block_size = block_size
        self.blobs: dict[str, tuple[bytes, Optional[str]]] = {}
        self.messages: dict[str, Optional[int]] = {}
        self.deleted: list[str] = []
        self.get_calls: list[tuple[str, Optional[ByteRange]]] = []
        self.fail_put: set[str] = set()
        self.fail_get: set[str] = set()
        self._next_message = 100

    def _locator(self, key: str) -> str:
        return f"tg:{key}" if self.storage_type is StorageType.chat else key

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> StoredBlob:
        if key in self.fail_put:
            raise TransientBackendError(f"put {key} failed")
        locator = self._locator(key)
        message_id = None
        if self.storage_type is StorageType.chat:
            self._next_message += 1
            message_id = self._next_message
        self.blobs[locator] = (bytes(data), content_type)
        self.messages[locator] = message_id
        return StoredBlob(locator=locator, message_id=message_id, size=len(data))

    async def get(self, locator: str, byte_range: Optional[ByteRange] = None) -> BlobObject:
        self.get_calls.append((locator, byte_range))
        if locator in self.fail_get:
            raise TransientBackendError(f"get {locator} failed")
        if locator not in self.blobs:
            raise BlobNotFoundError(f"{locator} not found")
        data, content_type = self.blobs[locator]
        if byte_range is not None and self.supports_range:
            data = data[byte_range.start:byte_range.end + 1]
        return BlobObject(
            content_type=content_type,
            total_length=len(self.blobs[locator][0]),
            length=len(data),
            body=iter_bytes(data, self.block_size),
        )

    async def delete(self, locator: str, message_id: Optional[int] = None) -> bool:
        if locator not in self.blobs:
            return False
        del self.blobs[locator]
        self.deleted.append(locator)
        return True


def make_record(**overrides) -> FileRecord:
    values = dict(
        id=1,
        url="https://files.test/1700000000000.mp4",
        file_id="1700000000000.mp4",
        message_id=-1,
        created_at=1700000000000,
        file_name="clip.mp4",
        file_size=0,
        mime_type="video/mp4",
        storage_type=StorageType.bucket,
        category_id=1,
        chat_id="web",
    )
    values.update(overrides)
    return FileRecord(**values)


@pytest.fixture
def memory_driver() -> InMemoryDriver:
    return InMemoryDriver()


@pytest_asyncio.fixture
async def sqlite_driver(tmp_path):
    """Настоящий SQLAlchemy-драйвер поверх файла SQLite."""
    driver = create_driver(DatabaseConfig(dsn=f"sqlite+aiosqlite:///{tmp_path / 'meta.db'}"))
    yield driver
    await driver.close()


@pytest.fixture
def bucket_backend() -> FakeBackend:
    return FakeBackend(StorageType.bucket, supports_range=True)


@pytest.fixture
def chat_backend() -> FakeBackend:
    return FakeBackend(StorageType.chat, supports_range=False)


@pytest.fixture
def storage_config() -> StorageConfig:
    # маленький порог, чтобы резка на куски включалась на коротких payload'ах
    return StorageConfig(domain="files.test", chunk_size=16, fetch_concurrency=2, owner_chat_id="web")


@pytest.fixture
def media_client(memory_driver, storage_config, bucket_backend, chat_backend) -> MediaClient:
    return MediaClient(
        memory_driver,
        storage_config,
        {StorageType.bucket: bucket_backend, StorageType.chat: chat_backend},
        file_cache=TTLCache(ttl=60, maxsize=32),
    )
