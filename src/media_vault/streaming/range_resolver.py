"""
Отдача файла целиком или по HTTP Range.

``resolve`` возвращает ``RangeResponse`` - статус, заголовки и асинхронный
итератор тела. 416 здесь результат, а не исключение. Ошибки бэкенда,
случившиеся до первого байта, пробрасываются как есть, чтобы роутер успел
ответить 5xx; ошибка посреди потока рвёт соединение.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Mapping, Optional

from media_vault.backends.base import BlobBackend, BlobObject, ByteRange
from media_vault.exceptions import ManifestError, PermanentBackendError
from media_vault.models import FileRecord, StorageType
from media_vault.streaming.manifest import ChunkManifest, ChunkSlice
from media_vault.utils.mime import OCTET_STREAM, extension_of, guess_content_type, is_inline

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000"

_RANGE = re.compile(r"\s*bytes\s*=\s*(\d+)\s*-\s*(\d*)\s*", re.IGNORECASE)


class RangeNotSatisfiable(ValueError):
    def __init__(self, total: int):
        super().__init__(f"Range not satisfiable for {total} bytes")
        self.total = total


def parse_range(header: Optional[str], total: int) -> Optional[ByteRange]:
    """
    ``bytes=<start>-[<end>]`` -> ``ByteRange``; всё, что не похоже на эту
    форму (в т.ч. ``bytes=-N`` и несколько диапазонов), значит "без Range".
    Конец за пределами файла обрезается; start за концом -> RangeNotSatisfiable.
    """
    if not header:
        return None
    m = _RANGE.fullmatch(header)
    if not m:
        return None
    start = int(m.group(1))
    end = int(m.group(2)) if m.group(2) else total - 1
    end = min(end, total - 1)
    if start >= total or start > end:
        raise RangeNotSatisfiable(total)
    return ByteRange(start, end)


async def _empty_body() -> AsyncIterator[bytes]:
    return
    yield b""


@dataclass
class RangeResponse:
    status: int
    headers: dict[str, str]
    content_length: int
    body: AsyncIterator[bytes] = field(default_factory=_empty_body)


async def _slice_stream(blob: BlobObject, skip: int, take: int) -> AsyncIterator[bytes]:
    """Пропустить ``skip`` байт тела blob'а и отдать следующие ``take``."""
    try:
        async for block in blob.body:
            if take <= 0:
                break
            if skip >= len(block):
                skip -= len(block)
                continue
            piece = block[skip:skip + take]
            skip = 0
            take -= len(piece)
            yield piece
    finally:
        await blob.aclose()


class RangeResolver:
    def __init__(self, backends: Mapping[StorageType, BlobBackend], fetch_concurrency: int = 4):
        if fetch_concurrency <= 0:
            raise ValueError("fetch_concurrency must be positive")
        # ключ - базовый тип хранилища (chat / bucket)
        self._backends = dict(backends)
        self._concurrency = fetch_concurrency

    def backend_for(self, storage_type: StorageType) -> BlobBackend:
        backend = self._backends.get(storage_type.base)
        if backend is None:
            raise PermanentBackendError(f"Storage '{storage_type.base.value}' is not configured")
        return backend

    @staticmethod
    def _headers(record: FileRecord, blob_content_type: Optional[str] = None) -> dict[str, str]:
        content_type = guess_content_type(record.file_name or record.key, record.mime_type)
        if content_type == OCTET_STREAM and blob_content_type:
            content_type = blob_content_type
        if content_type == OCTET_STREAM and not extension_of(record.file_name):
            content_type = guess_content_type(record.key)
        headers = {
            "Content-Type": content_type,
            "Accept-Ranges": "bytes",
            "Cache-Control": CACHE_CONTROL,
            "Access-Control-Allow-Origin": "*",
        }
        if is_inline(content_type):
            headers["Content-Disposition"] = "inline"
        return headers

    @staticmethod
    def _unsatisfiable(headers: dict[str, str], total: int) -> RangeResponse:
        headers = {**headers, "Content-Range": f"bytes */{total}", "Content-Length": "0"}
        return RangeResponse(status=416, headers=headers, content_length=0)

    @staticmethod
    def _finish(headers: dict[str, str], byte_range: Optional[ByteRange], total: int,
                body: AsyncIterator[bytes]) -> RangeResponse:
        if byte_range is None:
            headers["Content-Length"] = str(total)
            return RangeResponse(status=200, headers=headers, content_length=total, body=body)
        headers["Content-Range"] = f"bytes {byte_range.start}-{byte_range.end}/{total}"
        headers["Content-Length"] = str(byte_range.length)
        return RangeResponse(status=206, headers=headers, content_length=byte_range.length, body=body)

    async def resolve(
        self,
        record: FileRecord,
        range_header: Optional[str] = None,
        manifest: Optional[ChunkManifest] = None,
    ) -> RangeResponse:
        backend = self.backend_for(record.storage_type)
        if record.storage_type.is_chunked:
            if manifest is None:
                raise ManifestError(f"File {record.id} is chunked but no manifest was supplied")
            return await self._resolve_chunked(backend, record, range_header, manifest)
        return await self._resolve_single(backend, record, range_header)

    # --- один blob ---

    async def _resolve_single(self, backend: BlobBackend, record: FileRecord,
                              range_header: Optional[str]) -> RangeResponse:
        total = record.file_size or 0
        blob: Optional[BlobObject] = None
        if total <= 0:
            # размер неизвестен: узнаём его у бэкенда
            blob = await backend.get(record.file_id)
            total = blob.total_length or 0

        headers = self._headers(record, blob.content_type if blob else None)
        try:
            byte_range = parse_range(range_header, total)
        except RangeNotSatisfiable:
            if blob is not None:
                await blob.aclose()
            return self._unsatisfiable(headers, total)

        if byte_range is None:
            if blob is None:
                blob = await backend.get(record.file_id)
                headers = self._headers(record, blob.content_type)
            return self._finish(headers, None, total, _slice_stream(blob, 0, total))

        if blob is None and backend.supports_range:
            blob = await backend.get(record.file_id, byte_range)
            body = _slice_stream(blob, 0, byte_range.length)
        else:
            if blob is None:
                blob = await backend.get(record.file_id)
            body = _slice_stream(blob, byte_range.start, byte_range.length)
        return self._finish(headers, byte_range, total, body)

    # --- куски ---

    async def _fetch_slice(self, backend: BlobBackend, part: ChunkSlice,
                           semaphore: asyncio.Semaphore) -> tuple[int, bytes]:
        async with semaphore:
            if backend.supports_range:
                blob = await backend.get(part.chunk.locator, ByteRange(part.start, part.end))
                data = await blob.read()
            else:
                blob = await backend.get(part.chunk.locator)
                data = (await blob.read())[part.start:part.end + 1]
        if len(data) != part.length:
            raise ManifestError(
                f"Chunk {part.chunk.chunk_index} returned {len(data)} bytes, expected {part.length}"
            )
        return part.chunk.chunk_index, data

    async def _fetch_window(self, backend: BlobBackend, window: List[ChunkSlice],
                            semaphore: asyncio.Semaphore) -> List[bytes]:
        tasks = [asyncio.create_task(self._fetch_slice(backend, part, semaphore)) for part in window]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        # порядок выдачи - строго по индексу куска
        return [data for _, data in sorted(results, key=lambda r: r[0])]

    async def _chunk_stream(self, backend: BlobBackend, windows: List[List[ChunkSlice]],
                            first: List[bytes], semaphore: asyncio.Semaphore,
                            record_id: int) -> AsyncIterator[bytes]:
        for data in first:
            yield data
        for number, window in enumerate(windows[1:], start=1):
            try:
                parts = await self._fetch_window(backend, window, semaphore)
            except Exception as e:
                logger.error(f"Streaming file {record_id} failed at window {number}: {e}")
                raise
            for data in parts:
                yield data

    async def _resolve_chunked(self, backend: BlobBackend, record: FileRecord,
                               range_header: Optional[str], manifest: ChunkManifest) -> RangeResponse:
        total = manifest.total_size
        headers = self._headers(record)
        try:
            byte_range = parse_range(range_header, total)
        except RangeNotSatisfiable:
            return self._unsatisfiable(headers, total)

        if total == 0:
            return self._finish(headers, None, 0, _empty_body())

        start, end = (byte_range.start, byte_range.end) if byte_range else (0, total - 1)
        parts = manifest.select(start, end)
        windows = [parts[i:i + self._concurrency] for i in range(0, len(parts), self._concurrency)]
        semaphore = asyncio.Semaphore(self._concurrency)

        # первое окно качаем до заголовков: ошибка здесь ещё может стать 5xx
        first = await self._fetch_window(backend, windows[0], semaphore)
        body = self._chunk_stream(backend, windows, first, semaphore, record.id)
        return self._finish(headers, byte_range, total, body)
