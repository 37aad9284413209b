from .storage import StorageType
from .category import Category
from .file import FileCreate, FileRecord, ChunkDescriptor
from .setting import UserSetting, OwnerOverview

__all__ = [
    "StorageType", "Category",
    "FileCreate", "FileRecord", "ChunkDescriptor",
    "UserSetting", "OwnerOverview",
]
