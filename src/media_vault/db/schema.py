from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from media_vault.db.base import Base


class CategoryORM(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    created_at: Mapped[Optional[int]] = mapped_column(BigInteger)


class UserSettingORM(Base):
    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    storage_type: Mapped[Optional[str]] = mapped_column(Text, server_default="bucket")
    current_category_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("categories.id"))
    waiting_for: Mapped[Optional[str]] = mapped_column(Text)
    editing_file_id: Mapped[Optional[str]] = mapped_column(Text)


class FileORM(Base):
    __tablename__ = "files"
    __table_args__ = (UniqueConstraint("chat_id", "file_id", name="uq_files_owner_locator"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    file_id: Mapped[Optional[str]] = mapped_column(Text)
    message_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    created_at: Mapped[Optional[int]] = mapped_column(BigInteger)
    file_name: Mapped[Optional[str]] = mapped_column(Text)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger)
    mime_type: Mapped[Optional[str]] = mapped_column(Text)
    storage_type: Mapped[Optional[str]] = mapped_column(Text, server_default="bucket")
    category_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("categories.id"))
    chat_id: Mapped[Optional[str]] = mapped_column(Text)
    custom_suffix: Mapped[Optional[str]] = mapped_column(Text)


class FileChunkORM(Base):
    __tablename__ = "file_chunks"
    __table_args__ = (UniqueConstraint("file_ref", "chunk_index", name="uq_file_chunks_position"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_ref: Mapped[int] = mapped_column(Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    locator: Mapped[str] = mapped_column(Text, nullable=False)
    message_id: Mapped[Optional[int]] = mapped_column(BigInteger)


# Порядок важен: таблицы с внешними ключами идут после тех, на кого ссылаются
TABLES = ("categories", "user_settings", "files", "file_chunks")

# Колонки, которые обязаны существовать; тип сравнивается по префиксу
REQUIRED_COLUMNS: dict[str, list[tuple[str, str]]] = {
    "categories": [
        ("id", "INTEGER"),
        ("name", "TEXT"),
        ("created_at", "BIGINT"),
    ],
    "user_settings": [
        ("id", "INTEGER"),
        ("chat_id", "TEXT"),
        ("storage_type", "TEXT"),
        ("current_category_id", "INTEGER"),
        ("waiting_for", "TEXT"),
        ("editing_file_id", "TEXT"),
    ],
    "files": [
        ("id", "INTEGER"),
        ("url", "TEXT"),
        ("file_id", "TEXT"),
        ("message_id", "BIGINT"),
        ("created_at", "BIGINT"),
        ("file_name", "TEXT"),
        ("file_size", "BIGINT"),
        ("mime_type", "TEXT"),
        ("storage_type", "TEXT"),
        ("category_id", "INTEGER"),
        ("chat_id", "TEXT"),
        ("custom_suffix", "TEXT"),
    ],
    "file_chunks": [
        ("id", "INTEGER"),
        ("file_ref", "INTEGER"),
        ("chunk_index", "INTEGER"),
        ("chunk_size", "BIGINT"),
        ("locator", "TEXT"),
        ("message_id", "BIGINT"),
    ],
}
