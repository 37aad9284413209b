"""
Fixed catalogue of statements issued against the metadata store.

Every statement here must be understood both by a real SQL engine and by the
in-memory emulator (see ``media_vault.db.intents``). Placeholders are ``?``.
"""

PING = "SELECT 1"
ADD_COLUMN = "ALTER TABLE {table} ADD COLUMN {column} {type}"

# --- categories ---
CATEGORY_INSERT = "INSERT INTO categories (name, created_at) VALUES (?, ?) RETURNING id"
CATEGORY_ID_BY_NAME = "SELECT id FROM categories WHERE name = ?"
CATEGORY_BY_ID = "SELECT id, name, created_at FROM categories WHERE id = ?"
CATEGORY_ID_BY_ID_AND_NAME = "SELECT id FROM categories WHERE id = ? AND name = ?"
CATEGORY_LIST = "SELECT id, name, created_at FROM categories ORDER BY id"
CATEGORY_DELETE = "DELETE FROM categories WHERE id = ?"

# --- files ---
FILE_COLUMNS = (
    "url", "file_id", "message_id", "created_at", "file_name", "file_size",
    "mime_type", "storage_type", "category_id", "chat_id", "custom_suffix",
)
FILE_INSERT = (
    f"INSERT INTO files ({', '.join(FILE_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in FILE_COLUMNS)}) RETURNING id"
)
FILE_BY_ID = "SELECT * FROM files WHERE id = ?"
FILE_BY_URL = "SELECT * FROM files WHERE url = ?"
FILE_BY_LOCATOR = "SELECT * FROM files WHERE file_id = ?"
FILE_BY_NAME = "SELECT * FROM files WHERE file_name = ?"
FILE_BY_URL_EXCLUDING = "SELECT * FROM files WHERE url = ? AND id != ?"
FILE_BY_LOCATOR_EXCLUDING = "SELECT * FROM files WHERE file_id = ? AND id != ?"
FILE_BY_NAME_OR_URL_AND_OWNER = "SELECT * FROM files WHERE (file_name = ? OR url LIKE ?) AND chat_id = ?"
FILE_LIST_BY_OWNER = "SELECT * FROM files WHERE chat_id = ? ORDER BY created_at DESC, id DESC"
FILE_LIST_WITH_CATEGORY = (
    "SELECT f.*, c.name AS category_name FROM files f "
    "LEFT JOIN categories c ON f.category_id = c.id "
    "ORDER BY f.created_at DESC, f.id DESC"
)
FILE_SEARCH_BY_NAME = "SELECT * FROM files WHERE LOWER(file_name) LIKE LOWER(?) ORDER BY created_at DESC, id DESC"
FILE_STATS_BY_OWNER = (
    "SELECT COUNT(*) AS file_count, COALESCE(SUM(file_size), 0) AS total_size "
    "FROM files WHERE chat_id = ?"
)
FILE_UPDATE_URL = "UPDATE files SET url = ?, custom_suffix = ? WHERE id = ?"
FILE_UPDATE_LOCATOR = "UPDATE files SET file_id = ?, url = ?, custom_suffix = ? WHERE id = ?"
FILE_REASSIGN_CATEGORY = "UPDATE files SET category_id = ? WHERE category_id = ?"
FILE_ADOPT_UNCATEGORIZED = "UPDATE files SET category_id = ? WHERE category_id IS NULL"
FILE_DELETE = "DELETE FROM files WHERE id = ?"

# --- file_chunks ---
CHUNK_INSERT = (
    "INSERT INTO file_chunks (file_ref, chunk_index, chunk_size, locator, message_id) "
    "VALUES (?, ?, ?, ?, ?) RETURNING id"
)
CHUNK_LIST = "SELECT * FROM file_chunks WHERE file_ref = ? ORDER BY chunk_index"
CHUNK_UPDATE_LOCATOR = "UPDATE file_chunks SET locator = ?, message_id = ? WHERE id = ?"
CHUNK_DELETE_BY_FILE = "DELETE FROM file_chunks WHERE file_ref = ?"

# --- user_settings ---
SETTING_BY_OWNER = "SELECT * FROM user_settings WHERE chat_id = ?"
SETTING_INSERT = (
    "INSERT INTO user_settings (chat_id, storage_type, current_category_id) "
    "VALUES (?, ?, ?) RETURNING id"
)
SETTING_UPDATE_PREFERENCES = "UPDATE user_settings SET storage_type = ?, current_category_id = ? WHERE chat_id = ?"
SETTING_SET_WAITING = "UPDATE user_settings SET waiting_for = ?, editing_file_id = ? WHERE chat_id = ?"
SETTING_CLEAR_WAITING = "UPDATE user_settings SET waiting_for = NULL, editing_file_id = NULL WHERE chat_id = ?"
SETTING_REASSIGN_CATEGORY = "UPDATE user_settings SET current_category_id = ? WHERE current_category_id = ?"
SETTING_ADOPT_UNCATEGORIZED = "UPDATE user_settings SET current_category_id = ? WHERE current_category_id IS NULL"
