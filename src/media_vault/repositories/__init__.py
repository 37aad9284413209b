from .category_repository import CategoryRepository
from .file_repository import FileRepository
from .chunk_repository import ChunkRepository
from .settings_repository import SettingsRepository

__all__ = [
    "CategoryRepository",
    "FileRepository",
    "ChunkRepository",
    "SettingsRepository",
]
