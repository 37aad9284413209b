from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .storage import StorageType


class UserSetting(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    chat_id: str
    storage_type: Optional[StorageType] = None
    current_category_id: Optional[int] = None
    waiting_for: Optional[str] = None
    editing_file_id: Optional[str] = None

    @field_validator("storage_type", mode="before")
    @classmethod
    def _legacy_storage(cls, v):
        return StorageType.parse(v) if v else None

    @field_validator("chat_id", "editing_file_id", mode="before")
    @classmethod
    def _as_str(cls, v):
        return str(v) if v is not None else None

    @property
    def is_idle(self) -> bool:
        return self.waiting_for is None and self.editing_file_id is None


class OwnerOverview(BaseModel):
    """Сводка для владельца: текущая категория + сколько файлов и сколько байт."""

    chat_id: str
    category_name: Optional[str] = None
    file_count: int = 0
    total_size: int = 0
