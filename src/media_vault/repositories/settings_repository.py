import logging
from typing import Optional

from media_vault.db import queries
from media_vault.db.driver import Driver
from media_vault.models import StorageType, UserSetting

logger = logging.getLogger(__name__)


class SettingsRepository:
    def __init__(self, driver: Driver):
        self._driver = driver

    async def get(self, owner: str) -> Optional[UserSetting]:
        row = await self._driver.prepare(queries.SETTING_BY_OWNER).bind(owner).first()
        return UserSetting.model_validate(row) if row else None

    async def get_or_create(
        self, owner: str, storage_type: StorageType, category_id: Optional[int]
    ) -> UserSetting:
        """Настройки создаются лениво при первом обращении владельца."""
        existing = await self.get(owner)
        if existing is not None:
            return existing
        result = await self._driver.prepare(queries.SETTING_INSERT).bind(
            owner, storage_type.value, category_id
        ).run()
        logger.debug(f"Created user settings for {owner}")
        return UserSetting(
            id=int(result.last_insert_id or 0),
            chat_id=owner,
            storage_type=storage_type,
            current_category_id=category_id,
        )

    async def update_preferences(
        self, owner: str, storage_type: StorageType, category_id: Optional[int]
    ) -> bool:
        result = await self._driver.prepare(queries.SETTING_UPDATE_PREFERENCES).bind(
            storage_type.value, category_id, owner
        ).run()
        return result.rows_affected > 0

    async def set_waiting(self, owner: str, waiting_for: str, editing_file_id: Optional[str] = None) -> bool:
        result = await self._driver.prepare(queries.SETTING_SET_WAITING).bind(
            waiting_for, editing_file_id, owner
        ).run()
        return result.rows_affected > 0

    async def clear_waiting(self, owner: str) -> bool:
        result = await self._driver.prepare(queries.SETTING_CLEAR_WAITING).bind(owner).run()
        return result.rows_affected > 0

    async def reassign_category(self, old_id: int, new_id: int) -> int:
        result = await self._driver.prepare(queries.SETTING_REASSIGN_CATEGORY).bind(new_id, old_id).run()
        return result.rows_affected
