import logging
import time
from typing import List, Optional

from media_vault.config import DEFAULT_CATEGORY_NAME
from media_vault.db import queries
from media_vault.db.driver import Driver
from media_vault.exceptions import ConflictError, DatabaseError
from media_vault.models import Category

logger = logging.getLogger(__name__)


class CategoryRepository:
    def __init__(self, driver: Driver):
        self._driver = driver

    async def get_id_by_name(self, name: str) -> Optional[int]:
        row = await self._driver.prepare(queries.CATEGORY_ID_BY_NAME).bind(name).first()
        return int(row["id"]) if row else None

    async def get(self, category_id: int) -> Optional[Category]:
        row = await self._driver.prepare(queries.CATEGORY_BY_ID).bind(category_id).first()
        return Category.model_validate(row) if row else None

    async def is_default(self, category_id: int) -> bool:
        row = await self._driver.prepare(queries.CATEGORY_ID_BY_ID_AND_NAME).bind(
            category_id, DEFAULT_CATEGORY_NAME
        ).first()
        return row is not None

    async def list(self) -> List[Category]:
        result = await self._driver.prepare(queries.CATEGORY_LIST).all()
        return [Category.model_validate(r) for r in result.rows]

    async def create(self, name: str) -> int:
        """Создаёт категорию; повторное имя -> ConflictError."""
        if await self.get_id_by_name(name) is not None:
            raise ConflictError(f"Category '{name}' already exists")
        try:
            result = await self._driver.prepare(queries.CATEGORY_INSERT).bind(
                name, int(time.time() * 1000)
            ).run()
        except DatabaseError as e:
            # гонка двух вставок: проигравший получает конфликт
            if await self.get_id_by_name(name) is not None:
                raise ConflictError(f"Category '{name}' already exists") from e
            raise
        if result.last_insert_id is None:
            new_id = await self.get_id_by_name(name)
            if new_id is None:
                raise DatabaseError(f"Category '{name}' was not created")
            return new_id
        logger.info(f"Category '{name}' created with id {result.last_insert_id}")
        return int(result.last_insert_id)

    async def delete(self, category_id: int) -> bool:
        result = await self._driver.prepare(queries.CATEGORY_DELETE).bind(category_id).run()
        return result.rows_affected > 0
