import pytest

from media_vault.config import DEFAULT_CATEGORY_NAME
from media_vault.db import InMemoryDriver, ensure_ready, queries
from media_vault.db.driver import RunResult
from media_vault.db.intents import Op
from media_vault.exceptions import DatabaseError, DefaultCategoryMissing, InitError

pytestmark = pytest.mark.asyncio


async def _column_names(driver, table):
    return {c.name.lower() for c in await driver.table_columns(table)}


async def test_ensure_ready_on_memory_driver(memory_driver):
    default_id = await ensure_ready(memory_driver)

    row = await memory_driver.prepare(queries.CATEGORY_BY_ID).bind(default_id).first()
    assert row["name"] == DEFAULT_CATEGORY_NAME


async def test_fresh_sqlite_database_gets_full_schema(sqlite_driver):
    """Пустая БД: создаются все таблицы и категория по умолчанию."""
    # --- ACT ---
    default_id = await ensure_ready(sqlite_driver)

    # --- ASSERT ---
    for table in ("categories", "files", "file_chunks", "user_settings"):
        assert await sqlite_driver.table_columns(table) is not None
    row = await sqlite_driver.prepare(queries.CATEGORY_ID_BY_NAME).bind(DEFAULT_CATEGORY_NAME).first()
    assert row["id"] == default_id


async def test_bootstrap_is_idempotent_and_keeps_data(sqlite_driver):
    first_id = await ensure_ready(sqlite_driver)
    await sqlite_driver.prepare(queries.CATEGORY_INSERT).bind("photos", 1).run()

    second_id = await ensure_ready(sqlite_driver)

    assert first_id == second_id
    listed = await sqlite_driver.prepare(queries.CATEGORY_LIST).all()
    assert [c["name"] for c in listed.rows] == [DEFAULT_CATEGORY_NAME, "photos"]


async def test_missing_columns_are_added_and_orphans_adopted(sqlite_driver):
    """Старая схема без части колонок и без категорий чинится без потери строк."""
    # --- ARRANGE ---
    await sqlite_driver.prepare(
        "CREATE TABLE files (id INTEGER PRIMARY KEY, url TEXT, file_id TEXT, category_id INTEGER)"
    ).run()
    await sqlite_driver.prepare("INSERT INTO files (url, file_id) VALUES (?, ?)").bind(
        "https://old.test/1.png", "1.png"
    ).run()

    # --- ACT ---
    default_id = await ensure_ready(sqlite_driver)

    # --- ASSERT ---
    assert {"custom_suffix", "storage_type", "chat_id", "file_size"} <= await _column_names(sqlite_driver, "files")
    row = await sqlite_driver.prepare(queries.FILE_BY_URL).bind("https://old.test/1.png").first()
    assert row["file_id"] == "1.png"
    assert row["category_id"] == default_id


class _BrokenDriver(InMemoryDriver):
    """Эмулятор, у которого пинг падает первые ``failures`` раз."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.pings = 0

    def execute(self, intent, params):
        if intent.op is Op.PING:
            self.pings += 1
            if self.pings <= self.failures:
                raise DatabaseError("database is locked")
        return super().execute(intent, params)


async def test_transient_failure_is_retried():
    driver = _BrokenDriver(failures=2)

    default_id = await ensure_ready(driver, base_delay=0)

    assert default_id is not None
    assert driver.pings == 3


async def test_exhausted_attempts_raise_init_error():
    driver = _BrokenDriver(failures=10)

    with pytest.raises(InitError) as exc_info:
        await ensure_ready(driver, base_delay=0)

    assert driver.pings == 3
    assert isinstance(exc_info.value.__cause__, DatabaseError)


class _NoCategoryDriver(InMemoryDriver):
    """Вставка категории "проходит", но строка так и не появляется."""

    def __init__(self):
        super().__init__()
        self.attempts = 0
        self._handlers[Op.CATEGORY_ID_BY_NAME] = lambda i, p: []
        self._handlers[Op.CATEGORY_INSERT] = self._swallow_insert

    def _swallow_insert(self, intent, params):
        self.attempts += 1
        return RunResult(last_insert_id=None)


async def test_missing_default_category_is_not_retried():
    driver = _NoCategoryDriver()

    with pytest.raises(DefaultCategoryMissing):
        await ensure_ready(driver, base_delay=0)

    assert driver.attempts == 1
