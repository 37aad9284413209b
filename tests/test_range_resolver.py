import asyncio

import pytest

from media_vault.backends.base import ByteRange
from media_vault.backends.chunked import chunk_key
from media_vault.exceptions import ManifestError, PermanentBackendError, TransientBackendError
from media_vault.models import ChunkDescriptor, StorageType
from media_vault.streaming import ChunkManifest, RangeNotSatisfiable, RangeResolver, parse_range

from conftest import FakeBackend, make_record

pytestmark = pytest.mark.asyncio

PAYLOAD = bytes(range(100))


async def collect(body) -> bytes:
    return b"".join([part async for part in body])


def store_chunks(backend: FakeBackend, key: str, data: bytes, size: int) -> ChunkManifest:
    chunks = []
    for index, offset in enumerate(range(0, len(data), size)):
        part = data[offset:offset + size]
        locator = chunk_key(key, index)
        backend.blobs[locator] = (part, None)
        chunks.append(ChunkDescriptor(id=index + 1, file_ref=1, chunk_index=index,
                                      chunk_size=len(part), locator=locator))
    return ChunkManifest(chunks, expected_size=len(data))


# --- parse_range ---

@pytest.mark.parametrize("header, expected", [
    (None, None),
    ("", None),
    ("bytes=0-", ByteRange(0, 9)),
    ("bytes=2-5", ByteRange(2, 5)),
    ("bytes=5-100", ByteRange(5, 9)),
    ("bytes=-5", None),
    ("bytes=0-1,3-4", None),
    ("items=0-1", None),
])
async def test_parse_range(header, expected):
    assert parse_range(header, 10) == expected


@pytest.mark.parametrize("header", ["bytes=10-", "bytes=5-3", "bytes=0-0"])
async def test_parse_range_unsatisfiable(header):
    total = 0 if header == "bytes=0-0" else 10
    with pytest.raises(RangeNotSatisfiable) as exc_info:
        parse_range(header, total)
    assert exc_info.value.total == total


# --- manifest ---

async def test_manifest_rejects_gaps_and_size_mismatch():
    a = ChunkDescriptor(chunk_index=0, chunk_size=4, locator="a")
    c = ChunkDescriptor(chunk_index=2, chunk_size=4, locator="c")

    with pytest.raises(ManifestError):
        ChunkManifest([a, c])
    with pytest.raises(ManifestError):
        ChunkManifest([])
    with pytest.raises(ManifestError):
        ChunkManifest([a], expected_size=5)
    # размер 0 в записи означает "неизвестен"
    assert ChunkManifest([a], expected_size=0).total_size == 4


async def test_manifest_select_maps_global_offsets():
    manifest = ChunkManifest([
        ChunkDescriptor(chunk_index=1, chunk_size=10, locator="b"),
        ChunkDescriptor(chunk_index=0, chunk_size=10, locator="a"),
        ChunkDescriptor(chunk_index=2, chunk_size=5, locator="c"),
    ])

    parts = manifest.select(8, 21)

    assert [(p.chunk.locator, p.start, p.end) for p in parts] == [("a", 8, 9), ("b", 0, 9), ("c", 0, 1)]
    assert [p.is_whole for p in parts] == [False, True, False]
    assert manifest.offset_of(2) == 20
    with pytest.raises(ManifestError):
        manifest.select(0, 25)


# --- один blob ---

async def test_single_blob_full_response(bucket_backend):
    bucket_backend.blobs["1700000000000.mp4"] = (PAYLOAD, "video/mp4")
    resolver = RangeResolver({StorageType.bucket: bucket_backend})
    record = make_record(file_size=len(PAYLOAD))

    response = await resolver.resolve(record)

    assert response.status == 200
    assert response.headers["Content-Length"] == "100"
    assert response.headers["Content-Type"] == "video/mp4"
    assert response.headers["Accept-Ranges"] == "bytes"
    assert response.headers["Cache-Control"] == "public, max-age=31536000"
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.headers["Content-Disposition"] == "inline"
    assert await collect(response.body) == PAYLOAD


async def test_single_blob_range_is_pushed_to_backend(bucket_backend):
    bucket_backend.blobs["1700000000000.mp4"] = (PAYLOAD, "video/mp4")
    resolver = RangeResolver({StorageType.bucket: bucket_backend})

    response = await resolver.resolve(make_record(file_size=100), "bytes=10-19")

    assert response.status == 206
    assert response.headers["Content-Range"] == "bytes 10-19/100"
    assert response.headers["Content-Length"] == "10"
    assert await collect(response.body) == PAYLOAD[10:20]
    assert bucket_backend.get_calls == [("1700000000000.mp4", ByteRange(10, 19))]


async def test_range_on_backend_without_range_support_is_sliced_locally():
    backend = FakeBackend(StorageType.chat, supports_range=False, block_size=7)
    backend.blobs["tg:doc"] = (PAYLOAD, None)
    resolver = RangeResolver({StorageType.chat: backend})
    record = make_record(file_id="tg:doc", url="https://files.test/1.zip", file_name="a.zip",
                         mime_type=None, storage_type=StorageType.chat, file_size=100)

    response = await resolver.resolve(record, "bytes=10-29")

    assert response.status == 206
    assert await collect(response.body) == PAYLOAD[10:30]
    assert response.headers["Content-Type"] == "application/zip"
    assert "Content-Disposition" not in response.headers


async def test_unknown_size_is_taken_from_backend(bucket_backend):
    bucket_backend.blobs["1700000000000.mp4"] = (PAYLOAD, "video/mp4")
    resolver = RangeResolver({StorageType.bucket: bucket_backend})

    response = await resolver.resolve(make_record(file_size=0), "bytes=90-")

    assert response.status == 206
    assert response.headers["Content-Range"] == "bytes 90-99/100"
    assert await collect(response.body) == PAYLOAD[90:]


async def test_unsatisfiable_range_returns_416(bucket_backend):
    bucket_backend.blobs["1700000000000.mp4"] = (PAYLOAD, "video/mp4")
    resolver = RangeResolver({StorageType.bucket: bucket_backend})

    response = await resolver.resolve(make_record(file_size=100), "bytes=9999999999-")

    assert response.status == 416
    assert response.headers["Content-Range"] == "bytes */100"
    assert response.content_length == 0
    assert await collect(response.body) == b""
    assert bucket_backend.get_calls == []


async def test_storage_that_is_not_configured(bucket_backend):
    resolver = RangeResolver({StorageType.bucket: bucket_backend})

    with pytest.raises(PermanentBackendError):
        await resolver.resolve(make_record(storage_type=StorageType.chat))


# --- куски ---

async def test_range_across_chunk_boundary():
    """8 MiB в кусках по 5 000 000: диапазон через границу читает хвост первого и начало второго."""
    # --- ARRANGE ---
    data = bytes(range(256)) * 32768
    backend = FakeBackend(StorageType.bucket)
    manifest = store_chunks(backend, "big.mp4", data, 5_000_000)
    resolver = RangeResolver({StorageType.bucket: backend}, fetch_concurrency=2)
    record = make_record(storage_type=StorageType.bucket_chunked, file_size=len(data))

    # --- ACT ---
    response = await resolver.resolve(record, "bytes=4999998-5000002", manifest)
    body = await collect(response.body)

    # --- ASSERT ---
    assert response.status == 206
    assert response.headers["Content-Range"] == "bytes 4999998-5000002/8388608"
    assert response.headers["Content-Length"] == "5"
    assert body == data[4999998:5000003]
    assert [call[1] for call in backend.get_calls] == [ByteRange(4999998, 4999999), ByteRange(0, 2)]


@pytest.mark.parametrize("header, start, end", [
    (None, 0, 99),
    ("bytes=0-0", 0, 0),
    ("bytes=15-16", 15, 16),
    ("bytes=16-31", 16, 31),
    ("bytes=5-94", 5, 94),
    ("bytes=50-", 50, 99),
    ("bytes=99-99", 99, 99),
])
async def test_chunked_ranges_match_source_bytes(header, start, end):
    backend = FakeBackend(StorageType.chat, supports_range=False)
    manifest = store_chunks(backend, "f.bin", PAYLOAD, 16)
    resolver = RangeResolver({StorageType.chat: backend}, fetch_concurrency=2)
    record = make_record(storage_type=StorageType.chat_chunked, file_size=100)

    response = await resolver.resolve(record, header, manifest)

    assert response.status == (200 if header is None else 206)
    assert response.content_length == end - start + 1
    assert await collect(response.body) == PAYLOAD[start:end + 1]


async def test_chunked_416(bucket_backend):
    manifest = store_chunks(bucket_backend, "f.bin", PAYLOAD, 16)
    resolver = RangeResolver({StorageType.bucket: bucket_backend})
    record = make_record(storage_type=StorageType.bucket_chunked, file_size=100)

    response = await resolver.resolve(record, "bytes=100-", manifest)

    assert response.status == 416
    assert response.headers["Content-Range"] == "bytes */100"


async def test_chunked_without_manifest(bucket_backend):
    resolver = RangeResolver({StorageType.bucket: bucket_backend})

    with pytest.raises(ManifestError):
        await resolver.resolve(make_record(storage_type=StorageType.bucket_chunked))


async def test_failure_in_first_window_is_raised_before_headers(bucket_backend):
    manifest = store_chunks(bucket_backend, "f.bin", PAYLOAD, 16)
    bucket_backend.fail_get.add(chunk_key("f.bin", 1))
    resolver = RangeResolver({StorageType.bucket: bucket_backend}, fetch_concurrency=2)
    record = make_record(storage_type=StorageType.bucket_chunked, file_size=100)

    with pytest.raises(TransientBackendError):
        await resolver.resolve(record, None, manifest)


async def test_failure_mid_stream_aborts_body(bucket_backend):
    manifest = store_chunks(bucket_backend, "f.bin", PAYLOAD, 16)
    bucket_backend.fail_get.add(chunk_key("f.bin", 4))
    resolver = RangeResolver({StorageType.bucket: bucket_backend}, fetch_concurrency=2)
    record = make_record(storage_type=StorageType.bucket_chunked, file_size=100)

    response = await resolver.resolve(record, None, manifest)
    received = []
    with pytest.raises(TransientBackendError):
        async for part in response.body:
            received.append(part)

    assert response.status == 200
    # окна по два куска: первые два окна успели уйти клиенту
    assert b"".join(received) == PAYLOAD[:64]


async def test_concurrency_must_be_positive(bucket_backend):
    with pytest.raises(ValueError):
        RangeResolver({StorageType.bucket: bucket_backend}, fetch_concurrency=0)


class ClosingBackend(FakeBackend):
    """Запоминает, какие ответы бэкенда были закрыты."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.closed: list[str] = []

    async def get(self, locator, byte_range=None):
        blob = await super().get(locator, byte_range)

        async def mark_closed():
            self.closed.append(locator)

        blob.on_close = mark_closed
        return blob


async def test_416_after_size_lookup_releases_backend_response():
    backend = ClosingBackend(StorageType.bucket)
    backend.blobs["1700000000000.mp4"] = (PAYLOAD, "video/mp4")
    resolver = RangeResolver({StorageType.bucket: backend})

    response = await resolver.resolve(make_record(file_size=0), "bytes=500-")

    assert response.status == 416
    assert backend.closed == ["1700000000000.mp4"]


async def test_streamed_body_releases_backend_response():
    backend = ClosingBackend(StorageType.chat, supports_range=False, block_size=8)
    backend.blobs["tg:doc"] = (PAYLOAD, None)
    resolver = RangeResolver({StorageType.chat: backend})
    record = make_record(file_id="tg:doc", storage_type=StorageType.chat, file_size=100)

    response = await resolver.resolve(record, "bytes=0-9")

    assert backend.closed == []
    assert await collect(response.body) == PAYLOAD[:10]
    assert backend.closed == ["tg:doc"]


class StallingBackend(FakeBackend):
    """Некоторые локаторы висят, пока их не отменят."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.stalled: set[str] = set()
        self.cancelled: list[str] = []

    async def get(self, locator, byte_range=None):
        if locator in self.stalled:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled.append(locator)
                raise
        return await super().get(locator, byte_range)


async def test_failed_window_waits_for_cancelled_siblings():
    backend = StallingBackend(StorageType.bucket)
    manifest = store_chunks(backend, "f.bin", PAYLOAD, 16)
    backend.stalled.add(chunk_key("f.bin", 0))
    backend.fail_get.add(chunk_key("f.bin", 1))
    resolver = RangeResolver({StorageType.bucket: backend}, fetch_concurrency=2)
    record = make_record(storage_type=StorageType.bucket_chunked, file_size=100)

    with pytest.raises(TransientBackendError):
        await resolver.resolve(record, None, manifest)

    # отмена соседа уже отработала к моменту выхода ошибки
    assert backend.cancelled == [chunk_key("f.bin", 0)]
