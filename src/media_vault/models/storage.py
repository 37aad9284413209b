from __future__ import annotations

import enum


class StorageType(str, enum.Enum):
    """Где лежат байты файла: чат-транспорт или бакет, целиком или чанками."""

    chat = "chat"
    bucket = "bucket"
    chat_chunked = "chat-chunked"
    bucket_chunked = "bucket-chunked"

    @property
    def is_chunked(self) -> bool:
        return self in (StorageType.chat_chunked, StorageType.bucket_chunked)

    @property
    def base(self) -> "StorageType":
        if self is StorageType.chat_chunked:
            return StorageType.chat
        if self is StorageType.bucket_chunked:
            return StorageType.bucket
        return self

    def chunked(self) -> "StorageType":
        return StorageType.chat_chunked if self.base is StorageType.chat else StorageType.bucket_chunked

    @classmethod
    def parse(cls, value: "str | StorageType | None", default: "StorageType | None" = None) -> "StorageType":
        """Принимает и старые имена хранилищ (telegram, r2)."""
        if isinstance(value, cls):
            return value
        if not value:
            if default is None:
                raise ValueError("storage type is required")
            return default
        key = str(value).strip().lower()
        key = _LEGACY_NAMES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown storage type: {value!r}") from None


_LEGACY_NAMES = {
    "telegram": "chat",
    "r2": "bucket",
    "s3": "bucket",
    "minio": "bucket",
    "telegram-chunked": "chat-chunked",
    "r2-chunked": "bucket-chunked",
}
