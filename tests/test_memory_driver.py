import pytest

from media_vault.config import DEFAULT_CATEGORY_NAME
from media_vault.db import queries
from media_vault.exceptions import DatabaseError

pytestmark = pytest.mark.asyncio


def _file_values(url: str, locator: str, *, owner: str = "web", created_at: int = 1, name: str = "a.txt",
                 size: int = 10, category_id=None):
    row = {
        "url": url, "file_id": locator, "message_id": -1, "created_at": created_at,
        "file_name": name, "file_size": size, "mime_type": "text/plain", "storage_type": "bucket",
        "category_id": category_id, "chat_id": owner, "custom_suffix": None,
    }
    return [row[c] for c in queries.FILE_COLUMNS]


async def test_default_category_is_seeded_lazily(memory_driver):
    row = await memory_driver.prepare(queries.CATEGORY_ID_BY_NAME).bind(DEFAULT_CATEGORY_NAME).first()
    assert row is not None and row["id"] is not None


async def test_inserting_default_category_again_is_a_no_op(memory_driver):
    existing = await memory_driver.prepare(queries.CATEGORY_ID_BY_NAME).bind(DEFAULT_CATEGORY_NAME).first()

    result = await memory_driver.prepare(queries.CATEGORY_INSERT).bind(DEFAULT_CATEGORY_NAME, 5).run()

    assert result.last_insert_id == existing["id"]
    listed = await memory_driver.prepare(queries.CATEGORY_LIST).all()
    assert [c["name"] for c in listed.rows] == [DEFAULT_CATEGORY_NAME]


async def test_unknown_statements_return_empty_results(memory_driver):
    stmt = memory_driver.prepare("SELECT something FROM nowhere")

    assert (await stmt.run()).last_insert_id is None
    assert (await stmt.all()).rows == []
    assert await stmt.first() is None


async def test_file_url_and_owner_locator_are_unique(memory_driver):
    await memory_driver.prepare(queries.FILE_INSERT).bind(*_file_values("https://d/1.txt", "1.txt")).run()

    with pytest.raises(DatabaseError):
        await memory_driver.prepare(queries.FILE_INSERT).bind(*_file_values("https://d/1.txt", "other")).run()
    with pytest.raises(DatabaseError):
        await memory_driver.prepare(queries.FILE_INSERT).bind(*_file_values("https://d/2.txt", "1.txt")).run()

    # тот же локатор у другого владельца допустим
    await memory_driver.prepare(queries.FILE_INSERT).bind(
        *_file_values("https://d/3.txt", "1.txt", owner="someone-else")
    ).run()


async def test_update_cannot_steal_another_rows_url(memory_driver):
    await memory_driver.prepare(queries.FILE_INSERT).bind(*_file_values("https://d/1.txt", "1.txt")).run()
    second = await memory_driver.prepare(queries.FILE_INSERT).bind(*_file_values("https://d/2.txt", "2.txt")).run()

    with pytest.raises(DatabaseError):
        await memory_driver.prepare(queries.FILE_UPDATE_URL).bind("https://d/1.txt", None, second.last_insert_id).run()


async def test_listing_orders_by_recency_and_search_ignores_case(memory_driver):
    for i, name in enumerate(["Holiday.JPG", "notes.txt", "holiday-2.png"]):
        await memory_driver.prepare(queries.FILE_INSERT).bind(
            *_file_values(f"https://d/{i}", f"k{i}", created_at=100 + i, name=name)
        ).run()

    listed = await memory_driver.prepare(queries.FILE_LIST_BY_OWNER).bind("web").all()
    found = await memory_driver.prepare(queries.FILE_SEARCH_BY_NAME).bind("%HOLIDAY%").all()

    assert [r["file_name"] for r in listed.rows] == ["holiday-2.png", "notes.txt", "Holiday.JPG"]
    assert [r["file_name"] for r in found.rows] == ["holiday-2.png", "Holiday.JPG"]


async def test_owner_stats_and_category_join(memory_driver):
    default = await memory_driver.prepare(queries.CATEGORY_ID_BY_NAME).bind(DEFAULT_CATEGORY_NAME).first()
    await memory_driver.prepare(queries.FILE_INSERT).bind(
        *_file_values("https://d/1", "k1", size=10, category_id=default["id"])
    ).run()
    await memory_driver.prepare(queries.FILE_INSERT).bind(*_file_values("https://d/2", "k2", size=32)).run()

    stats = await memory_driver.prepare(queries.FILE_STATS_BY_OWNER).bind("web").first()
    joined = await memory_driver.prepare(queries.FILE_LIST_WITH_CATEGORY).all()

    assert stats == {"file_count": 2, "total_size": 42}
    assert {r["url"]: r["category_name"] for r in joined.rows} == {
        "https://d/1": DEFAULT_CATEGORY_NAME,
        "https://d/2": None,
    }


async def test_settings_update_with_literal_null(memory_driver):
    await memory_driver.prepare(queries.SETTING_INSERT).bind("42", "chat", None).run()
    await memory_driver.prepare(queries.SETTING_SET_WAITING).bind("suffix", "7", "42").run()

    await memory_driver.prepare(queries.SETTING_CLEAR_WAITING).bind("42").run()

    row = await memory_driver.prepare(queries.SETTING_BY_OWNER).bind("42").first()
    assert row["waiting_for"] is None and row["editing_file_id"] is None
    assert row["storage_type"] == "chat"
