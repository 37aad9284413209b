"""
Смена публичного имени файла (custom suffix).

Для чата меняется только URL. Для бакета байты копируются под новый ключ,
строки БД перенаправляются на новые ключи, и только после этого удаляются
старые объекты. Если скопировать не удалось, меняется только URL: запись
остаётся рабочей и указывает на старые объекты.
"""
import logging
from typing import List, Mapping

from media_vault.backends.base import BlobBackend
from media_vault.backends.chunked import chunk_key
from media_vault.exceptions import BackendError, ConflictError, ManifestError
from media_vault.models import ChunkDescriptor, FileRecord, StorageType
from media_vault.repositories import ChunkRepository, FileRepository
from media_vault.utils.mime import OCTET_STREAM, extension_of

logger = logging.getLogger(__name__)


def public_url(domain: str, key: str) -> str:
    return f"https://{domain}/{key}"


def relocated_name(record: FileRecord, suffix: str) -> str:
    ext = extension_of(record.key) or extension_of(record.file_name)
    return f"{suffix}.{ext}" if ext else suffix


class Relocator:
    def __init__(
        self,
        files: FileRepository,
        chunks: ChunkRepository,
        backends: Mapping[StorageType, BlobBackend],
        domain: str,
    ):
        self._files = files
        self._chunks = chunks
        self._backends = backends
        self._domain = domain

    async def relocate(self, record: FileRecord, new_suffix: str) -> str:
        suffix = (new_suffix or "").strip()
        if not suffix or "/" in suffix:
            raise ValueError("Suffix must be a non-empty name without '/'")

        new_name = relocated_name(record, suffix)
        new_url = public_url(self._domain, new_name)

        # конфликты проверяем до любых изменений
        if await self._files.locator_taken(new_name, record.id):
            raise ConflictError(f"Name '{new_name}' is already used by another file")
        if await self._files.url_taken(new_url, record.id):
            raise ConflictError(f"URL {new_url} is already used by another file")

        logger.info(f"Relocating file {record.id} ({record.url}) -> {new_url}")

        if record.storage_type.base is StorageType.chat:
            await self._files.update_url(record.id, new_url, suffix)
            return new_url

        backend = self._backends.get(StorageType.bucket)
        if backend is None or record.file_id == new_name:
            await self._files.update_url(record.id, new_url, suffix)
            return new_url

        if record.storage_type.is_chunked:
            await self._relocate_chunked(backend, record, new_name, new_url, suffix)
        else:
            await self._relocate_single(backend, record, new_name, new_url, suffix)
        return new_url

    async def _relocate_single(self, backend: BlobBackend, record: FileRecord,
                               new_name: str, new_url: str, suffix: str) -> None:
        old_key = record.file_id
        try:
            blob = await backend.get(old_key)
            data = await blob.read()
            await backend.put(new_name, data, blob.content_type or record.mime_type or OCTET_STREAM)
        except BackendError as e:
            logger.warning(f"Could not copy {old_key} to {new_name} ({e}), updating URL only")
            await self._files.update_url(record.id, new_url, suffix)
            return

        await self._files.update_locator(record.id, new_name, new_url, suffix)
        await self._delete_quietly(backend, old_key)

    async def _relocate_chunked(self, backend: BlobBackend, record: FileRecord,
                                new_name: str, new_url: str, suffix: str) -> None:
        old_chunks = await self._chunks.list(record.id)
        written: List[ChunkDescriptor] = []
        try:
            for chunk in old_chunks:
                blob = await backend.get(chunk.locator)
                data = await blob.read()
                stored = await backend.put(chunk_key(new_name, chunk.chunk_index), data, OCTET_STREAM)
                written.append(chunk.model_copy(update={
                    "locator": stored.locator,
                    "message_id": stored.message_id,
                }))
        except BackendError as e:
            logger.warning(f"Could not copy chunks of file {record.id} ({e}), updating URL only")
            for chunk in written:
                await self._delete_quietly(backend, chunk.locator)
            await self._files.update_url(record.id, new_url, suffix)
            return

        for chunk in written:
            if chunk.id is None:
                raise ManifestError(f"Chunk {chunk.chunk_index} of file {record.id} has no row id")
            await self._chunks.update_locator(chunk.id, chunk.locator, chunk.message_id)
        await self._files.update_locator(record.id, new_name, new_url, suffix)

        for chunk in old_chunks:
            await self._delete_quietly(backend, chunk.locator)

    @staticmethod
    async def _delete_quietly(backend: BlobBackend, locator: str) -> None:
        try:
            await backend.delete(locator)
        except BackendError as e:
            logger.warning(f"Old object {locator} was not deleted: {e}")
