import logging
from typing import List, Optional

from media_vault.db import queries
from media_vault.db.driver import Driver
from media_vault.exceptions import DatabaseError
from media_vault.models import FileCreate, FileRecord

logger = logging.getLogger(__name__)


class FileRepository:
    def __init__(self, driver: Driver):
        self._driver = driver

    async def _one(self, query: str, *params) -> Optional[FileRecord]:
        row = await self._driver.prepare(query).bind(*params).first()
        return FileRecord.model_validate(row) if row else None

    async def _many(self, query: str, *params) -> List[FileRecord]:
        result = await self._driver.prepare(query).bind(*params).all()
        return [FileRecord.model_validate(r) for r in result.rows]

    async def create(self, data: FileCreate) -> FileRecord:
        values = data.model_dump(mode="json")
        result = await self._driver.prepare(queries.FILE_INSERT).bind(
            *(values[column] for column in queries.FILE_COLUMNS)
        ).run()
        if result.last_insert_id is None:
            # драйвер без RETURNING: перечитываем по уникальному URL
            created = await self.get_by_url(data.url)
            if created is None:
                raise DatabaseError(f"File row for {data.url} vanished right after insert")
            return created
        return FileRecord(id=int(result.last_insert_id), **values)

    async def get(self, file_id: int) -> Optional[FileRecord]:
        return await self._one(queries.FILE_BY_ID, file_id)

    async def get_by_url(self, url: str) -> Optional[FileRecord]:
        return await self._one(queries.FILE_BY_URL, url)

    async def get_by_locator(self, locator: str) -> Optional[FileRecord]:
        return await self._one(queries.FILE_BY_LOCATOR, locator)

    async def get_by_name(self, file_name: str) -> Optional[FileRecord]:
        return await self._one(queries.FILE_BY_NAME, file_name)

    async def find_owner_file(self, owner: str, name: str) -> Optional[FileRecord]:
        """Файл владельца по отображаемому имени или по хвосту URL."""
        return await self._one(queries.FILE_BY_NAME_OR_URL_AND_OWNER, name, f"%/{name}", owner)

    async def url_taken(self, url: str, exclude_id: int) -> bool:
        return await self._one(queries.FILE_BY_URL_EXCLUDING, url, exclude_id) is not None

    async def locator_taken(self, locator: str, exclude_id: int) -> bool:
        return await self._one(queries.FILE_BY_LOCATOR_EXCLUDING, locator, exclude_id) is not None

    async def list_by_owner(self, owner: str) -> List[FileRecord]:
        return await self._many(queries.FILE_LIST_BY_OWNER, owner)

    async def list_with_category(self) -> List[FileRecord]:
        return await self._many(queries.FILE_LIST_WITH_CATEGORY)

    async def search_by_name(self, text: str) -> List[FileRecord]:
        return await self._many(queries.FILE_SEARCH_BY_NAME, f"%{text}%")

    async def stats_by_owner(self, owner: str) -> tuple[int, int]:
        row = await self._driver.prepare(queries.FILE_STATS_BY_OWNER).bind(owner).first() or {}
        return int(row.get("file_count") or 0), int(row.get("total_size") or 0)

    async def update_url(self, file_id: int, url: str, custom_suffix: Optional[str]) -> bool:
        result = await self._driver.prepare(queries.FILE_UPDATE_URL).bind(url, custom_suffix, file_id).run()
        return result.rows_affected > 0

    async def update_locator(self, file_id: int, locator: str, url: str, custom_suffix: Optional[str]) -> bool:
        result = await self._driver.prepare(queries.FILE_UPDATE_LOCATOR).bind(
            locator, url, custom_suffix, file_id
        ).run()
        return result.rows_affected > 0

    async def reassign_category(self, old_id: int, new_id: int) -> int:
        result = await self._driver.prepare(queries.FILE_REASSIGN_CATEGORY).bind(new_id, old_id).run()
        return result.rows_affected

    async def delete(self, file_id: int) -> bool:
        result = await self._driver.prepare(queries.FILE_DELETE).bind(file_id).run()
        return result.rows_affected > 0
