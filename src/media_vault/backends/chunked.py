import logging
from typing import Iterable, List, Optional

from media_vault.backends.base import BlobBackend, BlobObject, ByteRange
from media_vault.exceptions import BackendError
from media_vault.models import ChunkDescriptor, StorageType
from media_vault.utils.mime import OCTET_STREAM

logger = logging.getLogger(__name__)


def chunk_key(key: str, index: int) -> str:
    return f"{key}.part{index:04d}"


class ChunkedBackend:
    """
    Режет payload на куски фиксированного размера поверх обычного бэкенда.

    Куски пишутся строго по порядку; если какой-то не записался, уже
    записанные удаляются, а ошибка пробрасывается дальше.
    """

    def __init__(self, inner: BlobBackend, chunk_size: int):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.inner = inner
        self.chunk_size = chunk_size

    @property
    def storage_type(self) -> StorageType:
        return self.inner.storage_type.chunked()

    @property
    def supports_range(self) -> bool:
        return self.inner.supports_range

    def should_split(self, size: int) -> bool:
        return size > self.chunk_size

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> List[ChunkDescriptor]:
        written: List[ChunkDescriptor] = []
        try:
            for index, offset in enumerate(range(0, max(len(data), 1), self.chunk_size)):
                part = data[offset:offset + self.chunk_size]
                # части - это не медиа, а сырые байты
                blob = await self.inner.put(chunk_key(key, index), part, OCTET_STREAM)
                written.append(ChunkDescriptor(
                    chunk_index=index,
                    chunk_size=len(part),
                    locator=blob.locator,
                    message_id=blob.message_id,
                ))
                logger.debug(f"Stored chunk {index} of {key} ({len(part)} bytes)")
        except BackendError:
            logger.error(f"Chunk upload of {key} failed after {len(written)} chunks, rolling back")
            await self.delete(written)
            raise
        return written

    async def get_chunk(self, chunk: ChunkDescriptor, byte_range: Optional[ByteRange] = None) -> BlobObject:
        return await self.inner.get(chunk.locator, byte_range if self.supports_range else None)

    async def delete(self, chunks: Iterable[ChunkDescriptor]) -> int:
        """Удаляет куски по возможности; возвращает сколько удалилось."""
        removed = 0
        for chunk in chunks:
            try:
                if await self.inner.delete(chunk.locator, chunk.message_id):
                    removed += 1
            except BackendError as e:
                logger.warning(f"Failed to delete chunk {chunk.chunk_index} ({chunk.locator}): {e}")
        return removed
