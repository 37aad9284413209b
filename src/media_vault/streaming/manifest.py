from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Iterable, List, Optional

from media_vault.exceptions import ManifestError
from media_vault.models import ChunkDescriptor


@dataclass(frozen=True)
class ChunkSlice:
    """Кусок, попавший в диапазон, и нужная его часть [start, end] в локальных координатах."""

    chunk: ChunkDescriptor
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def is_whole(self) -> bool:
        return self.start == 0 and self.end == self.chunk.chunk_size - 1


class ChunkManifest:
    """
    Упорядоченный список кусков одного файла.

    Индексы обязаны идти плотно ``0..N-1``; глобальное смещение куска - сумма
    размеров всех предыдущих.
    """

    def __init__(self, chunks: Iterable[ChunkDescriptor], expected_size: Optional[int] = None):
        ordered = sorted(chunks, key=lambda c: c.chunk_index)
        if not ordered:
            raise ManifestError("Chunked file has no chunks")
        indices = [c.chunk_index for c in ordered]
        if indices != list(range(len(ordered))):
            raise ManifestError(f"Chunk indices are not dense: {indices}")

        self._chunks: List[ChunkDescriptor] = ordered
        self._offsets: List[int] = []
        running = 0
        for chunk in ordered:
            self._offsets.append(running)
            running += chunk.chunk_size
        self._total = running

        if expected_size and expected_size != self._total:
            raise ManifestError(
                f"Chunk sizes add up to {self._total} bytes but the file records {expected_size}"
            )

    @property
    def chunks(self) -> List[ChunkDescriptor]:
        return list(self._chunks)

    @property
    def total_size(self) -> int:
        return self._total

    def __len__(self) -> int:
        return len(self._chunks)

    def offset_of(self, index: int) -> int:
        return self._offsets[index]

    def select(self, start: int, end: int) -> List[ChunkSlice]:
        """Куски, покрывающие глобальный диапазон [start, end], в порядке индексов."""
        if start < 0 or end < start or end >= self._total:
            raise ManifestError(f"Range {start}-{end} is outside of 0-{self._total - 1}")
        first = bisect.bisect_right(self._offsets, start) - 1
        slices: List[ChunkSlice] = []
        for i in range(first, len(self._chunks)):
            chunk_start = self._offsets[i]
            if chunk_start > end:
                break
            chunk = self._chunks[i]
            if chunk.chunk_size == 0:
                continue
            chunk_end = chunk_start + chunk.chunk_size - 1
            slices.append(ChunkSlice(
                chunk=chunk,
                start=max(start, chunk_start) - chunk_start,
                end=min(end, chunk_end) - chunk_start,
            ))
        return slices
