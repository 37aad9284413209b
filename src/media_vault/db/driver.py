"""
Metadata-store driver contract.

``prepare(sql) -> Statement``, ``Statement.bind(*params)`` and then one of
``run()`` / ``all()`` / ``first()``. Two implementations exist: the
SQLAlchemy-backed ``SqlAlchemyDriver`` for a real database and
``InMemoryDriver`` (``media_vault.db.memory``) when no DSN is bound.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from media_vault.config import DatabaseConfig
from media_vault.db import schema  # noqa: F401  (tables must be registered on Base.metadata)
from media_vault.db.base import Base
from media_vault.exceptions import DatabaseError

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    last_insert_id: Optional[int] = None
    rows_affected: int = 0


@dataclass
class QueryResult:
    rows: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str


class Statement(Protocol):
    def bind(self, *params: Any) -> "Statement": ...

    async def run(self) -> RunResult: ...

    async def all(self) -> QueryResult: ...

    async def first(self) -> Optional[dict[str, Any]]: ...


class Driver(Protocol):
    is_ephemeral: bool

    def prepare(self, query: str) -> Statement: ...

    async def table_columns(self, table: str) -> Optional[list[ColumnInfo]]:
        """Columns of ``table`` or ``None`` when the table does not exist."""

    async def create_tables(self) -> None: ...

    async def close(self) -> None: ...


_PLACEHOLDER = re.compile(r"\?")


def to_named_params(query: str) -> str:
    """``?`` placeholders -> ``:p0, :p1 ...`` for ``sqlalchemy.text``."""
    counter = iter(range(10_000))
    return _PLACEHOLDER.sub(lambda _: f":p{next(counter)}", query)


class SqlAlchemyStatement:
    def __init__(self, engine: AsyncEngine, query: str):
        self._engine = engine
        self._query = query
        self._sql = text(to_named_params(query))
        self._params: dict[str, Any] = {}

    def bind(self, *params: Any) -> "SqlAlchemyStatement":
        self._params = {f"p{i}": value for i, value in enumerate(params)}
        return self

    async def _execute(self, consume):
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(self._sql, self._params)
                return consume(result)
        except IntegrityError as e:
            raise DatabaseError(f"Constraint violated: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.error(f"Statement failed: {self._query!r}: {e}")
            raise DatabaseError(str(e)) from e

    async def run(self) -> RunResult:
        def consume(result):
            last_id = None
            if result.returns_rows:
                row = result.first()
                last_id = row[0] if row is not None else None
            return RunResult(last_insert_id=last_id, rows_affected=max(result.rowcount or 0, 0))
        return await self._execute(consume)

    async def all(self) -> QueryResult:
        return await self._execute(lambda r: QueryResult(rows=[dict(m) for m in r.mappings().all()]))

    async def first(self) -> Optional[dict[str, Any]]:
        def consume(result):
            row = result.mappings().first()
            return dict(row) if row is not None else None
        return await self._execute(consume)


class SqlAlchemyDriver:
    is_ephemeral = False

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    def prepare(self, query: str) -> SqlAlchemyStatement:
        return SqlAlchemyStatement(self._engine, query)

    async def table_columns(self, table: str) -> Optional[list[ColumnInfo]]:
        def _inspect(sync_conn):
            inspector = inspect(sync_conn)
            if not inspector.has_table(table):
                return None
            return [ColumnInfo(c["name"], str(c["type"])) for c in inspector.get_columns(table)]

        try:
            async with self._engine.connect() as conn:
                return await conn.run_sync(_inspect)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to inspect table {table}: {e}") from e

    async def create_tables(self) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to create tables: {e}") from e

    async def close(self) -> None:
        await self._engine.dispose()


def create_driver(config: DatabaseConfig) -> Driver:
    """Real driver when a DSN is configured, otherwise the in-memory emulator."""
    if not config.is_bound:
        from media_vault.db.memory import InMemoryDriver

        logger.warning("No database DSN configured, falling back to the in-memory metadata store")
        return InMemoryDriver()

    engine_kwargs: dict[str, Any] = {"echo": config.echo, "pool_pre_ping": True}
    if not config.dsn.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
        )
    return SqlAlchemyDriver(create_async_engine(config.dsn, **engine_kwargs))
