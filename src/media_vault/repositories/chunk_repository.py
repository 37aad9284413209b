from typing import Iterable, List, Optional

from media_vault.db import queries
from media_vault.db.driver import Driver
from media_vault.models import ChunkDescriptor


class ChunkRepository:
    """Строки file_chunks принадлежат родительскому файлу и удаляются вместе с ним."""

    def __init__(self, driver: Driver):
        self._driver = driver

    async def add(self, file_ref: int, chunk: ChunkDescriptor) -> ChunkDescriptor:
        result = await self._driver.prepare(queries.CHUNK_INSERT).bind(
            file_ref, chunk.chunk_index, chunk.chunk_size, chunk.locator, chunk.message_id
        ).run()
        return chunk.model_copy(update={"id": result.last_insert_id, "file_ref": file_ref})

    async def add_many(self, file_ref: int, chunks: Iterable[ChunkDescriptor]) -> List[ChunkDescriptor]:
        return [await self.add(file_ref, chunk) for chunk in chunks]

    async def list(self, file_ref: int) -> List[ChunkDescriptor]:
        result = await self._driver.prepare(queries.CHUNK_LIST).bind(file_ref).all()
        return [ChunkDescriptor.model_validate(r) for r in result.rows]

    async def update_locator(self, chunk_id: int, locator: str, message_id: Optional[int]) -> bool:
        result = await self._driver.prepare(queries.CHUNK_UPDATE_LOCATOR).bind(locator, message_id, chunk_id).run()
        return result.rows_affected > 0

    async def delete_for(self, file_ref: int) -> int:
        result = await self._driver.prepare(queries.CHUNK_DELETE_BY_FILE).bind(file_ref).run()
        return result.rows_affected
