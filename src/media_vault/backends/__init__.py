from .base import BlobBackend, BlobObject, ByteRange, StoredBlob, iter_bytes
from .chunked import ChunkedBackend, chunk_key
from .minio_backend import MinioBackend
from .telegram_backend import TelegramBackend

__all__ = [
    "BlobBackend", "BlobObject", "ByteRange", "StoredBlob", "iter_bytes",
    "ChunkedBackend", "chunk_key",
    "MinioBackend", "TelegramBackend",
]
