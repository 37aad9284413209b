"""
Query-intent parser for the in-memory emulator.

The metadata layer only ever issues the statements of ``db.queries``. Instead of
interpreting SQL, the emulator turns the normalised text into an ``Intent``: a
tag from the closed ``Op`` set plus the column names the statement mentions.
Anything outside the set parses to ``Op.UNKNOWN``.
"""
from __future__ import annotations

import enum
import re
from functools import lru_cache
from dataclasses import dataclass, field
from typing import Callable


class Op(str, enum.Enum):
    UNKNOWN = "unknown"
    PING = "ping"
    DDL = "ddl"

    CATEGORY_INSERT = "category_insert"
    CATEGORY_ID_BY_NAME = "category_id_by_name"
    CATEGORY_BY_ID = "category_by_id"
    CATEGORY_ID_BY_ID_AND_NAME = "category_id_by_id_and_name"
    CATEGORY_LIST = "category_list"
    CATEGORY_DELETE = "category_delete"

    FILE_INSERT = "file_insert"
    FILE_BY_COLUMN = "file_by_column"
    FILE_BY_COLUMN_EXCLUDING = "file_by_column_excluding"
    FILE_BY_NAME_OR_URL_AND_OWNER = "file_by_name_or_url_and_owner"
    FILE_LIST_BY_OWNER = "file_list_by_owner"
    FILE_LIST_WITH_CATEGORY = "file_list_with_category"
    FILE_SEARCH_BY_NAME = "file_search_by_name"
    FILE_STATS_BY_OWNER = "file_stats_by_owner"
    FILE_UPDATE_BY_ID = "file_update_by_id"
    FILE_REASSIGN_CATEGORY = "file_reassign_category"
    FILE_ADOPT_UNCATEGORIZED = "file_adopt_uncategorized"
    FILE_DELETE = "file_delete"

    CHUNK_INSERT = "chunk_insert"
    CHUNK_LIST = "chunk_list"
    CHUNK_UPDATE_BY_ID = "chunk_update_by_id"
    CHUNK_DELETE_BY_FILE = "chunk_delete_by_file"

    SETTING_BY_OWNER = "setting_by_owner"
    SETTING_INSERT = "setting_insert"
    SETTING_UPDATE_BY_OWNER = "setting_update_by_owner"
    SETTING_REASSIGN_CATEGORY = "setting_reassign_category"
    SETTING_ADOPT_UNCATEGORIZED = "setting_adopt_uncategorized"


@dataclass(frozen=True)
class Assignment:
    column: str
    # False means the literal NULL, True means the next bound parameter
    from_param: bool


@dataclass(frozen=True)
class Intent:
    op: Op
    columns: tuple[str, ...] = ()
    assignments: tuple[Assignment, ...] = field(default_factory=tuple)


_WS = re.compile(r"\s+")


def normalize(query: str) -> str:
    return _WS.sub(" ", query.strip()).lower()


def _split_columns(raw: str) -> tuple[str, ...]:
    return tuple(c.strip().strip("`\"") for c in raw.split(",") if c.strip())


def _parse_assignments(raw: str) -> tuple[Assignment, ...]:
    out = []
    for part in raw.split(","):
        column, _, value = part.partition("=")
        out.append(Assignment(column.strip(), value.strip() == "?"))
    return tuple(out)


_INSERT_OPS = {
    "files": Op.FILE_INSERT,
    "file_chunks": Op.CHUNK_INSERT,
    "user_settings": Op.SETTING_INSERT,
}
_UPDATE_BY_ID_OPS = {
    "files": Op.FILE_UPDATE_BY_ID,
    "file_chunks": Op.CHUNK_UPDATE_BY_ID,
}


def _static(op: Op) -> Callable[[re.Match], Intent]:
    return lambda m: Intent(op)


# (pattern, builder) pairs; patterns are matched in full against normalised text
_RULES: list[tuple[re.Pattern, Callable[[re.Match], Intent]]] = [
    (r"select 1", _static(Op.PING)),
    (r"(create|alter|drop) table .*", _static(Op.DDL)),

    (r"insert into categories \(name, created_at\) values \(\?, \?\)( returning id)?",
     _static(Op.CATEGORY_INSERT)),
    (r"select id from categories where name = \?", _static(Op.CATEGORY_ID_BY_NAME)),
    (r"select id, name, created_at from categories where id = \?", _static(Op.CATEGORY_BY_ID)),
    (r"select id from categories where id = \? and name = \?", _static(Op.CATEGORY_ID_BY_ID_AND_NAME)),
    (r"select id, name, created_at from categories order by id", _static(Op.CATEGORY_LIST)),
    (r"delete from categories where id = \?", _static(Op.CATEGORY_DELETE)),

    (r"insert into (files|file_chunks|user_settings) \(([\w`\", ]+)\) values \(([?, ]+)\)( returning id)?",
     lambda m: Intent(_INSERT_OPS[m.group(1)], _split_columns(m.group(2)))),

    (r"select \* from files where (id|url|file_id|file_name) = \?",
     lambda m: Intent(Op.FILE_BY_COLUMN, (m.group(1),))),
    (r"select \* from files where (url|file_id) = \? and id != \?",
     lambda m: Intent(Op.FILE_BY_COLUMN_EXCLUDING, (m.group(1),))),
    (r"select \* from files where \(file_name = \? or url like \?\) and chat_id = \?",
     _static(Op.FILE_BY_NAME_OR_URL_AND_OWNER)),
    (r"select \* from files where chat_id = \? order by created_at desc, id desc",
     _static(Op.FILE_LIST_BY_OWNER)),
    (r"select f\.\*, c\.name as category_name from files f left join categories c "
     r"on f\.category_id = c\.id order by f\.created_at desc, f\.id desc",
     _static(Op.FILE_LIST_WITH_CATEGORY)),
    (r"select \* from files where lower\(file_name\) like lower\(\?\) order by created_at desc, id desc",
     _static(Op.FILE_SEARCH_BY_NAME)),
    (r"select count\(\*\) as file_count, coalesce\(sum\(file_size\), 0\) as total_size "
     r"from files where chat_id = \?",
     _static(Op.FILE_STATS_BY_OWNER)),
    (r"update files set category_id = \? where category_id = \?", _static(Op.FILE_REASSIGN_CATEGORY)),
    (r"update files set category_id = \? where category_id is null", _static(Op.FILE_ADOPT_UNCATEGORIZED)),
    (r"update (files|file_chunks) set ([\w =?,]+?) where id = \?",
     lambda m: Intent(_UPDATE_BY_ID_OPS[m.group(1)], assignments=_parse_assignments(m.group(2)))),
    (r"delete from files where id = \?", _static(Op.FILE_DELETE)),

    (r"select \* from file_chunks where file_ref = \? order by chunk_index", _static(Op.CHUNK_LIST)),
    (r"delete from file_chunks where file_ref = \?", _static(Op.CHUNK_DELETE_BY_FILE)),

    (r"select \* from user_settings where chat_id = \?", _static(Op.SETTING_BY_OWNER)),
    (r"update user_settings set current_category_id = \? where current_category_id = \?",
     _static(Op.SETTING_REASSIGN_CATEGORY)),
    (r"update user_settings set current_category_id = \? where current_category_id is null",
     _static(Op.SETTING_ADOPT_UNCATEGORIZED)),
    (r"update user_settings set ([\w =?,]+?) where chat_id = \?",
     lambda m: Intent(Op.SETTING_UPDATE_BY_OWNER, assignments=_parse_assignments(m.group(1)))),
]
_COMPILED = [(re.compile(pattern), build) for pattern, build in _RULES]


@lru_cache(maxsize=256)
def parse_intent(query: str) -> Intent:
    text = normalize(query)
    for pattern, build in _COMPILED:
        m = pattern.fullmatch(text)
        if m:
            return build(m)
    return Intent(Op.UNKNOWN)

