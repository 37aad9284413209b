"""
Контракт blob-хранилища.

Бэкенд умеет три вещи: положить байты под ключом, отдать их (целиком или
диапазоном, если умеет) и удалить. Ошибки делятся на временные
(``TransientBackendError``) и постоянные (``PermanentBackendError``).
"""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional

from media_vault.models import StorageType


@dataclass(frozen=True)
class ByteRange:
    """Закрытый диапазон [start, end] в байтах."""

    start: int
    end: int

    def __post_init__(self):
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"Invalid byte range {self.start}-{self.end}")

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class StoredBlob:
    locator: str
    # сообщение в чате, через которое blob можно удалить; None для бакета
    message_id: Optional[int] = None
    size: int = 0


async def _empty() -> AsyncIterator[bytes]:
    return
    yield b""


@dataclass
class BlobObject:
    content_type: Optional[str]
    total_length: Optional[int]
    length: Optional[int]
    body: AsyncIterator[bytes] = field(default_factory=_empty)
    # освобождает соединение бэкенда, даже если тело так и не читали
    on_close: Optional[Callable[[], Awaitable[None]]] = None

    async def read(self) -> bytes:
        try:
            return b"".join([part async for part in self.body])
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        aclose = getattr(self.body, "aclose", None)
        if aclose is not None:
            await aclose()
        if self.on_close is not None:
            on_close, self.on_close = self.on_close, None
            await on_close()


async def iter_bytes(data: bytes, block_size: int = 64 * 1024) -> AsyncIterator[bytes]:
    for offset in range(0, len(data), block_size):
        yield data[offset:offset + block_size]


class BlobBackend(abc.ABC):
    storage_type: StorageType
    supports_range: bool = False

    @abc.abstractmethod
    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> StoredBlob:
        ...

    @abc.abstractmethod
    async def get(self, locator: str, byte_range: Optional[ByteRange] = None) -> BlobObject:
        """
        Без ``supports_range`` параметр ``byte_range`` игнорируется и
        возвращается весь blob; резать его будет вызывающий.
        """

    @abc.abstractmethod
    async def delete(self, locator: str, message_id: Optional[int] = None) -> bool:
        ...

    async def check_connection(self) -> None:
        return None

    async def aclose(self) -> None:
        return None
