# Файл: src/media_vault/__init__.py

from typing import Dict, Optional

from .backends import BlobBackend, MinioBackend, TelegramBackend
from .client import MediaClient
from .config import get_settings, MediaClientConfig, DatabaseConfig, MinioConfig, TelegramConfig, StorageConfig
from .db import create_driver
from .models import StorageType
from .utils.ttl_cache import TTLCache

from .exceptions import *


def create_media_client(config: Optional[MediaClientConfig] = None) -> MediaClient:
    """
    Фабричная функция для создания и конфигурации MediaClient.

    :param config: Единый объект с настройками.
                   Если не предоставлен, используются переменные окружения.
    :return: Сконфигурированный экземпляр MediaClient.
    """
    if config is None:
        config = get_settings().to_client_config()

    # Без DSN метаданные живут в памяти процесса
    driver = create_driver(config.database)

    backends: Dict[StorageType, BlobBackend] = {}
    if config.minio.is_bound:
        backends[StorageType.bucket] = MinioBackend(config.minio)
    if config.telegram.is_bound:
        backends[StorageType.chat] = TelegramBackend(config.telegram)

    file_cache = TTLCache(ttl=config.cache.file_ttl, maxsize=config.cache.file_maxsize)
    return MediaClient(driver, config.storage, backends, file_cache=file_cache)


__all__ = [
    "MediaClient", "create_media_client",
    "MediaClientConfig", "DatabaseConfig", "MinioConfig", "TelegramConfig", "StorageConfig",
    "StorageType",
    "MediaVaultError", "InitError", "DatabaseError", "NotFoundError", "ConflictError",
    "CategoryProtectedError", "BackendError", "TransientBackendError", "PermanentBackendError",
]
