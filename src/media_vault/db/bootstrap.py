"""
Idempotent create / verify / repair of the metadata schema.

Nothing here drops or rewrites existing rows: missing tables are created,
missing columns are added, and the default category is guaranteed to exist.
"""
from __future__ import annotations

import logging
import time

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from media_vault.config import DEFAULT_CATEGORY_NAME
from media_vault.db import queries
from media_vault.db.driver import ColumnInfo, Driver
from media_vault.db.schema import REQUIRED_COLUMNS, TABLES
from media_vault.exceptions import DatabaseError, DefaultCategoryMissing, InitError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


def _has_column(columns: list[ColumnInfo], name: str, type_: str | None = None) -> bool:
    for col in columns:
        if col.name.lower() != name.lower():
            continue
        if type_ is None or col.type.upper().startswith(type_.upper()):
            return True
    return False


async def _ensure_column(driver: Driver, table: str, name: str, type_: str) -> None:
    columns = await driver.table_columns(table) or []
    if _has_column(columns, name, type_):
        return
    if _has_column(columns, name):
        # same name, different declared type: leave the data alone
        logger.warning(f"Column {table}.{name} exists with an unexpected type, keeping it as is")
        return

    logger.info(f"Table {table} is missing column {name}, adding it...")
    try:
        await driver.prepare(queries.ADD_COLUMN.format(table=table, column=name, type=type_)).run()
    except DatabaseError as e:
        # a concurrent bootstrap may have added it in the meantime
        if _has_column(await driver.table_columns(table) or [], name):
            logger.info(f"Column {table}.{name} appeared concurrently, continuing")
            return
        raise DatabaseError(f"Failed to add column {table}.{name}: {e}") from e


async def _ensure_default_category(driver: Driver) -> int:
    row = await driver.prepare(queries.CATEGORY_ID_BY_NAME).bind(DEFAULT_CATEGORY_NAME).first()
    if row is None:
        logger.info("Default category is missing, creating it...")
        result = await driver.prepare(queries.CATEGORY_INSERT).bind(
            DEFAULT_CATEGORY_NAME, int(time.time() * 1000)
        ).run()
        new_id = result.last_insert_id
        if new_id is not None:
            files = await driver.prepare(queries.FILE_ADOPT_UNCATEGORIZED).bind(new_id).run()
            settings = await driver.prepare(queries.SETTING_ADOPT_UNCATEGORIZED).bind(new_id).run()
            logger.info(
                f"Default category created with id {new_id}; "
                f"adopted {files.rows_affected} files and {settings.rows_affected} user settings"
            )

    check = await driver.prepare(queries.CATEGORY_ID_BY_NAME).bind(DEFAULT_CATEGORY_NAME).first()
    if check is None:
        raise DefaultCategoryMissing("Default category still does not exist after creating it")
    return int(check["id"])


async def _bootstrap_once(driver: Driver) -> int:
    await driver.prepare(queries.PING).run()

    missing = [table for table in TABLES if await driver.table_columns(table) is None]
    if missing:
        logger.info(f"Tables {missing} do not exist, creating schema...")
        await driver.create_tables()
        still_missing = [table for table in TABLES if await driver.table_columns(table) is None]
        if still_missing:
            raise DatabaseError(f"Tables {still_missing} are still missing after creation")

    for table in TABLES:
        for name, type_ in REQUIRED_COLUMNS[table]:
            await _ensure_column(driver, table, name, type_)

    return await _ensure_default_category(driver)


async def ensure_ready(
    driver: Driver,
    *,
    attempts: int = MAX_ATTEMPTS,
    base_delay: float = 1.0,
    max_delay: float = 5.0,
) -> int:
    """
    Bring the schema to the expected shape and return the default category id.

    Retries with exponential backoff; a default category that cannot be
    created is fatal immediately. Raises ``InitError`` once attempts run out.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, max=max_delay),
        retry=retry_if_not_exception_type(DefaultCategoryMissing),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    try:
        async for attempt in retrying:
            with attempt:
                default_id = await _bootstrap_once(driver)
        logger.info(f"Metadata store ready, default category id {default_id}")
        return default_id
    except RetryError as e:
        cause = e.last_attempt.exception()
        raise InitError(f"Database initialization failed after {attempts} attempts: {cause}") from cause
