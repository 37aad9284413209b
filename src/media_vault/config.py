# Файл: src/media_vault/config.py

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

DEFAULT_CATEGORY_NAME = "默认分类"


# --- 1. Метаданные: реальная БД или эмулятор в памяти ---
class DatabaseConfig(BaseModel):
    # Пустой DSN означает "БД не подключена" -> работаем на эмуляторе в памяти
    dsn: Optional[str] = None
    echo: bool = False

    pool_size: int = 5
    max_overflow: int = 5
    pool_timeout: int = 30
    pool_recycle: int = 1800

    @property
    def is_bound(self) -> bool:
        return bool(self.dsn)


# --- 2. Бакет (MinIO / S3) ---
class MinioConfig(BaseModel):
    endpoint: Optional[str] = None
    accesskey: str = "minioadmin"
    secretkey: str = "minioadmin"
    bucket: str = "media"
    secure: bool = False

    @property
    def is_bound(self) -> bool:
        return bool(self.endpoint)


# --- 3. Telegram как хранилище ---
class TelegramConfig(BaseModel):
    bot_token: Optional[str] = None
    storage_chat_id: Optional[str] = None
    api_base: str = "https://api.telegram.org"
    timeout: float = 60.0
    max_attempts: int = 3

    @property
    def is_bound(self) -> bool:
        return bool(self.bot_token and self.storage_chat_id)


class StorageConfig(BaseModel):
    domain: str = "localhost:8000"
    # payloads above this size are split into chunks of exactly this size
    chunk_size: int = Field(20_000_000, gt=0)
    fetch_concurrency: int = Field(4, gt=0)
    default_storage_type: str = "bucket"
    # owner key used for uploads coming through the HTTP router
    owner_chat_id: str = "web"
    max_size_mb: int = 0


class CacheConfig(BaseModel):
    file_ttl: float = 3600.0
    file_maxsize: int = 1024


class MediaClientConfig(BaseModel):
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    minio: MinioConfig = Field(default_factory=MinioConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    minio: MinioConfig = Field(default_factory=MinioConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    def to_client_config(self) -> MediaClientConfig:
        return MediaClientConfig(
            database=self.database,
            minio=self.minio,
            telegram=self.telegram,
            storage=self.storage,
            cache=self.cache,
        )


_cached_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Возвращает синглтон-экземпляр настроек, создавая его при первом вызове.
    Это предотвращает ошибки валидации при импорте.
    """
    global _cached_settings
    if _cached_settings is None:
        _cached_settings = Settings()
    return _cached_settings


def reset_settings() -> None:
    global _cached_settings
    _cached_settings = None
