# media_vault/db/__init__.py

from .base import Base
from .schema import CategoryORM, FileORM, FileChunkORM, UserSettingORM, TABLES, REQUIRED_COLUMNS
from .driver import Driver, Statement, RunResult, QueryResult, ColumnInfo, SqlAlchemyDriver, create_driver
from .memory import InMemoryDriver
from .bootstrap import ensure_ready


__all__ = [
    "Base",
    "CategoryORM",
    "FileORM",
    "FileChunkORM",
    "UserSettingORM",
    "TABLES",
    "REQUIRED_COLUMNS",
    "Driver",
    "Statement",
    "RunResult",
    "QueryResult",
    "ColumnInfo",
    "SqlAlchemyDriver",
    "InMemoryDriver",
    "create_driver",
    "ensure_ready",
]
