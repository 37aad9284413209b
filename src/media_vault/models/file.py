from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .storage import StorageType


class FileCreate(BaseModel):
    url: str
    file_id: str
    # -1 / 0: у объекта нет сообщения в чате
    message_id: int = -1
    created_at: int
    file_name: str
    file_size: int = 0
    mime_type: Optional[str] = None
    storage_type: StorageType
    category_id: Optional[int] = None
    chat_id: str
    custom_suffix: Optional[str] = None

    @field_validator("storage_type", mode="before")
    @classmethod
    def _legacy_storage(cls, v):
        # старые строки без типа хранились в чате
        return StorageType.parse(v, default=StorageType.chat)

    @field_validator("chat_id", "file_id", mode="before")
    @classmethod
    def _as_str(cls, v):
        return str(v) if v is not None else v


class FileRecord(FileCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    message_id: Optional[int] = -1
    file_size: Optional[int] = 0
    created_at: Optional[int] = 0
    # заполняется только в выборке "все файлы с категорией"
    category_name: Optional[str] = None

    @property
    def key(self) -> str:
        """Последний сегмент публичного URL."""
        return self.url.rstrip("/").rsplit("/", 1)[-1]

    @property
    def extension(self) -> str:
        name = self.file_name or ""
        return name.rsplit(".", 1)[-1].lower() if "." in name else ""

    @property
    def has_message(self) -> bool:
        return bool(self.message_id) and self.message_id > 0


class ChunkDescriptor(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    file_ref: Optional[int] = None
    chunk_index: int = Field(ge=0)
    chunk_size: int = Field(ge=0)
    locator: str
    message_id: Optional[int] = None
