"""
In-process stand-in for the metadata database.

Used when no DSN is configured (single process, nothing survives a restart)
and throughout the test-suite. Only the statements of ``db.queries`` are
understood; anything else is a no-op that returns an empty result.
"""
from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Optional

from media_vault.config import DEFAULT_CATEGORY_NAME
from media_vault.db.driver import ColumnInfo, QueryResult, RunResult
from media_vault.db.intents import Intent, Op, parse_intent
from media_vault.db.schema import REQUIRED_COLUMNS
from media_vault.exceptions import DatabaseError

logger = logging.getLogger(__name__)

Row = dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _eq(a: Any, b: Any) -> bool:
    # SQL semantics: NULL never equals anything; ids may arrive as str or int
    if a is None or b is None:
        return False
    return a == b or str(a) == str(b)


def _like(value: Optional[str], pattern: Optional[str]) -> bool:
    if value is None or pattern is None:
        return False
    regex = "".join(
        ".*" if ch == "%" else "." if ch == "_" else re.escape(ch)
        for ch in pattern
    )
    return re.fullmatch(regex, value, flags=re.DOTALL) is not None


def _recency_key(row: Row) -> tuple[int, int]:
    return (int(row.get("created_at") or 0), int(row["id"]))


class _MemoryState:
    def __init__(self):
        self.tables: dict[str, list[Row]] = {name: [] for name in REQUIRED_COLUMNS}
        self.ids: dict[str, int] = {name: 1 for name in REQUIRED_COLUMNS}
        self.initialized = False

    def next_id(self, table: str) -> int:
        value = self.ids[table]
        self.ids[table] += 1
        return value

    def blank(self, table: str) -> Row:
        return {name: None for name, _ in REQUIRED_COLUMNS[table]}


class MemoryStatement:
    def __init__(self, driver: "InMemoryDriver", query: str):
        self._driver = driver
        self._intent = parse_intent(query)
        self._params: tuple[Any, ...] = ()

    def bind(self, *params: Any) -> "MemoryStatement":
        self._params = params
        return self

    async def run(self) -> RunResult:
        result = self._driver.execute(self._intent, self._params)
        if isinstance(result, RunResult):
            return result
        return RunResult()

    async def all(self) -> QueryResult:
        result = self._driver.execute(self._intent, self._params)
        if isinstance(result, list):
            return QueryResult(rows=[dict(r) for r in result])
        return QueryResult()

    async def first(self) -> Optional[Row]:
        result = self._driver.execute(self._intent, self._params)
        if isinstance(result, list):
            return dict(result[0]) if result else None
        return None


class InMemoryDriver:
    """Эмулятор реляционного хранилища на списках словарей."""

    is_ephemeral = True

    def __init__(self):
        self._state = _MemoryState()
        self._handlers: dict[Op, Callable[[Intent, tuple], Any]] = {
            Op.PING: lambda i, p: [{"1": 1}],
            Op.DDL: lambda i, p: RunResult(),
            Op.CATEGORY_INSERT: self._category_insert,
            Op.CATEGORY_ID_BY_NAME: self._category_id_by_name,
            Op.CATEGORY_BY_ID: self._category_by_id,
            Op.CATEGORY_ID_BY_ID_AND_NAME: self._category_id_by_id_and_name,
            Op.CATEGORY_LIST: self._category_list,
            Op.CATEGORY_DELETE: self._delete_where("categories", "id"),
            Op.FILE_INSERT: self._insert,
            Op.FILE_BY_COLUMN: self._file_by_column,
            Op.FILE_BY_COLUMN_EXCLUDING: self._file_by_column_excluding,
            Op.FILE_BY_NAME_OR_URL_AND_OWNER: self._file_by_name_or_url_and_owner,
            Op.FILE_LIST_BY_OWNER: self._file_list_by_owner,
            Op.FILE_LIST_WITH_CATEGORY: self._file_list_with_category,
            Op.FILE_SEARCH_BY_NAME: self._file_search_by_name,
            Op.FILE_STATS_BY_OWNER: self._file_stats_by_owner,
            Op.FILE_UPDATE_BY_ID: self._update_by_id,
            Op.FILE_REASSIGN_CATEGORY: self._reassign("files", "category_id"),
            Op.FILE_ADOPT_UNCATEGORIZED: self._adopt("files", "category_id"),
            Op.FILE_DELETE: self._delete_where("files", "id"),
            Op.CHUNK_INSERT: self._insert,
            Op.CHUNK_LIST: self._chunk_list,
            Op.CHUNK_UPDATE_BY_ID: self._update_by_id,
            Op.CHUNK_DELETE_BY_FILE: self._delete_where("file_chunks", "file_ref"),
            Op.SETTING_BY_OWNER: self._setting_by_owner,
            Op.SETTING_INSERT: self._insert,
            Op.SETTING_UPDATE_BY_OWNER: self._setting_update_by_owner,
            Op.SETTING_REASSIGN_CATEGORY: self._reassign("user_settings", "current_category_id"),
            Op.SETTING_ADOPT_UNCATEGORIZED: self._adopt("user_settings", "current_category_id"),
        }

    # --- driver contract ---

    def prepare(self, query: str) -> MemoryStatement:
        return MemoryStatement(self, query)

    async def table_columns(self, table: str) -> Optional[list[ColumnInfo]]:
        columns = REQUIRED_COLUMNS.get(table)
        if columns is None:
            return None
        return [ColumnInfo(name, type_) for name, type_ in columns]

    async def create_tables(self) -> None:
        self._ensure_initialized()

    async def close(self) -> None:
        return None

    # --- dispatch ---

    def execute(self, intent: Intent, params: tuple) -> Any:
        self._ensure_initialized()
        handler = self._handlers.get(intent.op)
        if handler is None:
            logger.debug("In-memory driver ignores unrecognised statement (%s)", intent.op.value)
            return None
        return handler(intent, params)

    def _ensure_initialized(self) -> None:
        if self._state.initialized:
            return
        self._state.initialized = True
        self._insert_row("categories", {"name": DEFAULT_CATEGORY_NAME, "created_at": _now_ms()})

    def _rows(self, table: str) -> list[Row]:
        return self._state.tables[table]

    def _insert_row(self, table: str, values: Row) -> int:
        row = self._state.blank(table)
        row.update(values)
        self._check_unique(table, row)
        row["id"] = self._state.next_id(table)
        self._rows(table).append(row)
        return row["id"]

    def _check_unique(self, table: str, row: Row, others: Optional[list[Row]] = None) -> None:
        keys = {
            "categories": [("name",)],
            "files": [("url",), ("chat_id", "file_id")],
            "file_chunks": [("file_ref", "chunk_index")],
            "user_settings": [("chat_id",)],
        }[table]
        for key in keys:
            if any(row.get(col) is None for col in key):
                continue
            for other in (self._rows(table) if others is None else others):
                if all(_eq(other.get(col), row.get(col)) for col in key):
                    raise DatabaseError(f"UNIQUE constraint failed: {table}.{', '.join(key)}")

    # --- categories ---

    def _category_insert(self, intent: Intent, params: tuple) -> RunResult:
        name, created_at = params
        existing = next((c for c in self._rows("categories") if c["name"] == name), None)
        if existing is not None:
            return RunResult(last_insert_id=existing["id"], rows_affected=0)
        new_id = self._insert_row("categories", {"name": name, "created_at": created_at or _now_ms()})
        return RunResult(last_insert_id=new_id, rows_affected=1)

    def _category_id_by_name(self, intent: Intent, params: tuple) -> list[Row]:
        (name,) = params
        return [{"id": c["id"]} for c in self._rows("categories") if c["name"] == name][:1]

    def _category_by_id(self, intent: Intent, params: tuple) -> list[Row]:
        (cid,) = params
        return [
            {"id": c["id"], "name": c["name"], "created_at": c["created_at"]}
            for c in self._rows("categories") if _eq(c["id"], cid)
        ][:1]

    def _category_id_by_id_and_name(self, intent: Intent, params: tuple) -> list[Row]:
        cid, name = params
        return [{"id": c["id"]} for c in self._rows("categories") if _eq(c["id"], cid) and c["name"] == name][:1]

    def _category_list(self, intent: Intent, params: tuple) -> list[Row]:
        return [
            {"id": c["id"], "name": c["name"], "created_at": c["created_at"]}
            for c in sorted(self._rows("categories"), key=lambda c: c["id"])
        ]

    # --- generic helpers ---

    def _table_for(self, op: Op) -> str:
        if op in (Op.FILE_INSERT, Op.FILE_UPDATE_BY_ID):
            return "files"
        if op in (Op.CHUNK_INSERT, Op.CHUNK_UPDATE_BY_ID):
            return "file_chunks"
        return "user_settings"

    def _insert(self, intent: Intent, params: tuple) -> RunResult:
        if len(intent.columns) != len(params):
            raise DatabaseError(f"{len(intent.columns)} columns but {len(params)} values supplied")
        new_id = self._insert_row(self._table_for(intent.op), dict(zip(intent.columns, params)))
        return RunResult(last_insert_id=new_id, rows_affected=1)

    def _apply_assignments(self, intent: Intent, params: tuple) -> tuple[Row, tuple]:
        values: Row = {}
        remaining = list(params)
        for assignment in intent.assignments:
            values[assignment.column] = remaining.pop(0) if assignment.from_param else None
        return values, tuple(remaining)

    def _update_by_id(self, intent: Intent, params: tuple) -> RunResult:
        values, rest = self._apply_assignments(intent, params)
        (row_id,) = rest
        table = self._table_for(intent.op)
        affected = 0
        for row in self._rows(table):
            if _eq(row["id"], row_id):
                candidate = {**row, **values}
                others = [r for r in self._rows(table) if r is not row]
                self._check_unique(table, candidate, others)
                row.update(values)
                affected += 1
        return RunResult(rows_affected=affected)

    def _reassign(self, table: str, column: str) -> Callable[[Intent, tuple], RunResult]:
        def handler(intent: Intent, params: tuple) -> RunResult:
            new_id, old_id = params
            affected = 0
            for row in self._rows(table):
                if _eq(row.get(column), old_id):
                    row[column] = new_id
                    affected += 1
            return RunResult(rows_affected=affected)
        return handler

    def _adopt(self, table: str, column: str) -> Callable[[Intent, tuple], RunResult]:
        def handler(intent: Intent, params: tuple) -> RunResult:
            (new_id,) = params
            affected = 0
            for row in self._rows(table):
                if row.get(column) is None:
                    row[column] = new_id
                    affected += 1
            return RunResult(rows_affected=affected)
        return handler

    def _delete_where(self, table: str, column: str) -> Callable[[Intent, tuple], RunResult]:
        def handler(intent: Intent, params: tuple) -> RunResult:
            (value,) = params
            rows = self._rows(table)
            kept = [r for r in rows if not _eq(r.get(column), value)]
            removed = len(rows) - len(kept)
            rows[:] = kept
            return RunResult(rows_affected=removed)
        return handler

    # --- files ---

    def _file_by_column(self, intent: Intent, params: tuple) -> list[Row]:
        (column,) = intent.columns
        (value,) = params
        return [f for f in self._rows("files") if _eq(f.get(column), value)][:1]

    def _file_by_column_excluding(self, intent: Intent, params: tuple) -> list[Row]:
        (column,) = intent.columns
        value, excluded_id = params
        return [
            f for f in self._rows("files")
            if _eq(f.get(column), value) and not _eq(f["id"], excluded_id)
        ][:1]

    def _file_by_name_or_url_and_owner(self, intent: Intent, params: tuple) -> list[Row]:
        name, url_pattern, owner = params
        return [
            f for f in self._rows("files")
            if (f.get("file_name") == name or _like(f.get("url"), url_pattern)) and _eq(f.get("chat_id"), owner)
        ][:1]

    def _file_list_by_owner(self, intent: Intent, params: tuple) -> list[Row]:
        (owner,) = params
        rows = [f for f in self._rows("files") if _eq(f.get("chat_id"), owner)]
        return sorted(rows, key=_recency_key, reverse=True)

    def _file_list_with_category(self, intent: Intent, params: tuple) -> list[Row]:
        categories = self._rows("categories")
        rows = sorted(self._rows("files"), key=_recency_key, reverse=True)
        return [
            {**f, "category_name": next((c["name"] for c in categories if _eq(c["id"], f.get("category_id"))), None)}
            for f in rows
        ]

    def _file_search_by_name(self, intent: Intent, params: tuple) -> list[Row]:
        (pattern,) = params
        pattern = (pattern or "").lower()
        rows = [f for f in self._rows("files") if _like((f.get("file_name") or "").lower(), pattern)]
        return sorted(rows, key=_recency_key, reverse=True)

    def _file_stats_by_owner(self, intent: Intent, params: tuple) -> list[Row]:
        (owner,) = params
        rows = [f for f in self._rows("files") if _eq(f.get("chat_id"), owner)]
        return [{"file_count": len(rows), "total_size": sum(int(f.get("file_size") or 0) for f in rows)}]

    # --- file_chunks ---

    def _chunk_list(self, intent: Intent, params: tuple) -> list[Row]:
        (file_ref,) = params
        rows = [c for c in self._rows("file_chunks") if _eq(c.get("file_ref"), file_ref)]
        return sorted(rows, key=lambda c: int(c["chunk_index"]))

    # --- user_settings ---

    def _setting_by_owner(self, intent: Intent, params: tuple) -> list[Row]:
        (owner,) = params
        return [u for u in self._rows("user_settings") if _eq(u.get("chat_id"), owner)][:1]

    def _setting_update_by_owner(self, intent: Intent, params: tuple) -> RunResult:
        values, rest = self._apply_assignments(intent, params)
        (owner,) = rest
        affected = 0
        for row in self._rows("user_settings"):
            if _eq(row.get("chat_id"), owner):
                row.update(values)
                affected += 1
        return RunResult(rows_affected=affected)
