import asyncio
import logging
import time
from typing import Dict, List, Optional

from media_vault.backends import BlobBackend, ChunkedBackend
from media_vault.config import StorageConfig
from media_vault.db import Driver, ensure_ready, queries
from media_vault.exceptions import (
    BackendError,
    CategoryProtectedError,
    DatabaseError,
    MediaVaultError,
    NotFoundError,
)
from media_vault.models import (
    Category,
    ChunkDescriptor,
    FileCreate,
    FileRecord,
    OwnerOverview,
    StorageType,
    UserSetting,
)
from media_vault.repositories import (
    CategoryRepository,
    ChunkRepository,
    FileRepository,
    SettingsRepository,
)
from media_vault.services import Relocator, public_url
from media_vault.streaming import ChunkManifest, RangeResolver, RangeResponse
from media_vault.utils.mime import extension_for, extension_of, guess_content_type
from media_vault.utils.ttl_cache import TTLCache

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class MediaClient:
    """
    Единая точка доступа для бизнес-логики: загрузка, поиск, отдача,
    удаление и переименование файлов, категории и настройки владельцев.
    """

    def __init__(
        self,
        driver: Driver,
        storage: StorageConfig,
        backends: Optional[Dict[StorageType, BlobBackend]] = None,
        file_cache: Optional[TTLCache] = None,
    ):
        self.driver = driver
        self.storage = storage
        self.backends: Dict[StorageType, BlobBackend] = dict(backends or {})

        self.categories = CategoryRepository(driver)
        self.files = FileRepository(driver)
        self.chunks = ChunkRepository(driver)
        self.settings = SettingsRepository(driver)

        self.resolver = RangeResolver(self.backends, storage.fetch_concurrency)
        self.relocator = Relocator(self.files, self.chunks, self.backends, storage.domain)

        self._file_cache = file_cache
        self._ready_lock = asyncio.Lock()
        self._default_category_id: Optional[int] = None

    # ――― lifecycle ――― #

    async def ensure_ready(self) -> int:
        """Bootstrap схемы один раз на клиента; возвращает id категории по умолчанию."""
        if self._default_category_id is not None:
            return self._default_category_id
        async with self._ready_lock:
            if self._default_category_id is None:
                self._default_category_id = await ensure_ready(self.driver)
        return self._default_category_id

    async def check_connections(self) -> dict[str, str]:
        """
        Проверяет доступность БД и всех настроенных хранилищ.
        Возвращает словарь со статусами.
        """
        statuses = {}

        try:
            await self.driver.prepare(queries.PING).run()
            statuses["database"] = "ok (in-memory)" if self.driver.is_ephemeral else "ok"
        except DatabaseError as e:
            statuses["database"] = f"failed: {e}"

        for storage_type in (StorageType.bucket, StorageType.chat):
            backend = self.backends.get(storage_type)
            if backend is None:
                statuses[storage_type.value] = "skipped: not configured"
                continue
            try:
                await backend.check_connection()
                statuses[storage_type.value] = "ok"
            except BackendError as e:
                statuses[storage_type.value] = f"failed: {e}"

        return statuses

    async def aclose(self) -> None:
        for backend in self.backends.values():
            await backend.aclose()
        await self.driver.close()

    # ――― files ――― #

    async def _new_key(self, ext: str) -> tuple[str, str]:
        stamp = _now_ms()
        while True:
            key = f"{stamp}.{ext}" if ext else str(stamp)
            url = public_url(self.storage.domain, key)
            if await self.files.get_by_url(url) is None:
                return key, url
            stamp += 1

    async def _resolve_category(self, category_id: Optional[int]) -> int:
        default_id = await self.ensure_ready()
        if category_id is None:
            return default_id
        if await self.categories.get(category_id) is None:
            raise NotFoundError(f"Category {category_id} does not exist")
        return category_id

    async def upload_file(
        self,
        file_name: str,
        content: bytes,
        *,
        owner: Optional[str] = None,
        storage_type: Optional[str] = None,
        category_id: Optional[int] = None,
        content_type: Optional[str] = None,
    ) -> FileRecord:
        """
        Загружает файл в выбранное хранилище и записывает метаданные.

        - ключ ``<epoch ms>.<ext>``, URL ``https://<domain>/<ключ>``;
        - больше ``chunk_size`` -> файл режется на куски (тип ``*-chunked``);
        - без категории файл попадает в категорию по умолчанию;
        - выбор хранилища и категории запоминается в настройках владельца.
        """
        if not file_name:
            raise ValueError("file name is required")
        max_bytes = self.storage.max_size_mb * 1024 * 1024
        if max_bytes and len(content) > max_bytes:
            raise ValueError(f"File exceeds the {self.storage.max_size_mb}MB limit")

        owner = owner or self.storage.owner_chat_id
        requested = StorageType.parse(
            storage_type, default=StorageType.parse(self.storage.default_storage_type)
        )
        final_category = await self._resolve_category(category_id)

        ext = extension_of(file_name) or extension_for(content_type)
        mime_type = guess_content_type(file_name, content_type)
        key, url = await self._new_key(ext)
        backend = self.resolver.backend_for(requested)

        stored_type = requested
        descriptors: List[ChunkDescriptor] = []
        chunked = ChunkedBackend(backend, self.storage.chunk_size)
        logger.info(f"Uploading '{file_name}' ({len(content)} bytes) as {key} to {requested.value}...")
        if requested.is_chunked or chunked.should_split(len(content)):
            stored_type = requested.chunked()
            descriptors = await chunked.put(key, content, mime_type)
            locator, message_id = key, -1
        else:
            blob = await backend.put(key, content, mime_type)
            locator, message_id = blob.locator, blob.message_id or -1

        record: Optional[FileRecord] = None
        try:
            record = await self.files.create(FileCreate(
                url=url,
                file_id=locator,
                message_id=message_id,
                created_at=_now_ms(),
                file_name=file_name,
                file_size=len(content),
                mime_type=mime_type,
                storage_type=stored_type,
                category_id=final_category,
                chat_id=owner,
            ))
            if descriptors:
                await self.chunks.add_many(record.id, descriptors)
        except DatabaseError:
            logger.error(f"Metadata write for {key} failed, removing uploaded blobs")
            if record is not None:
                # строка уже есть, но манифест неполный: убираем и её
                await self._discard_rows(record.id)
            await self._discard_blobs(backend, stored_type, locator, message_id, descriptors)
            raise

        await self.update_preferences(owner, requested.base, final_category)
        logger.info(f"File {record.id} stored at {record.url} ({stored_type.value}, {len(descriptors)} chunks)")
        return record

    async def _discard_rows(self, file_id: int) -> None:
        try:
            await self.chunks.delete_for(file_id)
            await self.files.delete(file_id)
        except DatabaseError as e:
            logger.error(f"Could not remove partial metadata of file {file_id}: {e}")

    async def _discard_blobs(self, backend: BlobBackend, storage_type: StorageType, locator: str,
                             message_id: Optional[int], chunks: List[ChunkDescriptor]) -> None:
        if storage_type.is_chunked:
            await ChunkedBackend(backend, self.storage.chunk_size).delete(chunks)
            return
        try:
            await backend.delete(locator, message_id)
        except BackendError as e:
            logger.warning(f"Blob {locator} could not be deleted: {e}")

    async def find_file(self, path: str) -> Optional[FileRecord]:
        """Путь запроса -> запись: сначала по URL, потом по локатору, потом по имени."""
        path = (path or "").lstrip("/")
        if not path:
            return None
        if self._file_cache is not None:
            cached = self._file_cache.get(path)
            if cached is not None:
                return cached

        await self.ensure_ready()
        record = (
            await self.files.get_by_url(public_url(self.storage.domain, path))
            or await self.files.get_by_locator(path)
            or await self.files.get_by_name(path.rsplit("/", 1)[-1])
        )
        if record is not None and self._file_cache is not None:
            self._file_cache.set(path, record)
        return record

    async def get_manifest(self, record: FileRecord) -> Optional[ChunkManifest]:
        if not record.storage_type.is_chunked:
            return None
        return ChunkManifest(await self.chunks.list(record.id), record.file_size)

    async def open_file(self, path: str, range_header: Optional[str] = None) -> Optional[RangeResponse]:
        """None, если запись не найдена (роутер отвечает 404)."""
        record = await self.find_file(path)
        if record is None:
            return None
        manifest = await self.get_manifest(record)
        return await self.resolver.resolve(record, range_header, manifest)

    async def lookup(self, identifier: str) -> Optional[FileRecord]:
        """URL, числовой id записи или локатор."""
        await self.ensure_ready()
        identifier = str(identifier).strip()
        if identifier.startswith("http"):
            return (
                await self.files.get_by_url(identifier)
                or await self.files.get_by_locator(identifier.rstrip("/").rsplit("/", 1)[-1])
            )
        if identifier.isdigit():
            record = await self.files.get(int(identifier))
            if record is not None:
                return record
        return await self.files.get_by_locator(identifier)

    def _forget(self, record: FileRecord) -> None:
        if self._file_cache is not None:
            self._file_cache.invalidate_where(lambda cached: cached.id == record.id)

    async def delete_file(self, record: FileRecord) -> None:
        """
        Удаление blob'а - по возможности (ошибка только логируется),
        строки files и file_chunks удаляются всегда.
        """
        backend = self.backends.get(record.storage_type.base)
        if backend is None:
            logger.warning(f"Storage '{record.storage_type.base.value}' is not configured, "
                           f"blob of file {record.id} is left in place")
        elif record.storage_type.is_chunked:
            chunks = await self.chunks.list(record.id)
            removed = await ChunkedBackend(backend, self.storage.chunk_size).delete(chunks)
            logger.debug(f"Removed {removed}/{len(chunks)} chunks of file {record.id}")
        else:
            try:
                await backend.delete(record.file_id, record.message_id)
            except BackendError as e:
                logger.error(f"Failed to delete blob of file {record.id} ({record.file_id}): {e}")

        await self.chunks.delete_for(record.id)
        await self.files.delete(record.id)
        self._forget(record)
        logger.info(f"File {record.id} ({record.url}) deleted")

    async def delete_files(self, urls: List[str]) -> dict:
        results: dict = {"success": [], "failed": []}
        for url in urls:
            try:
                record = await self.lookup(url)
                if record is None:
                    results["failed"].append({"url": url, "reason": "file not found"})
                    continue
                await self.delete_file(record)
                results["success"].append(url)
            except MediaVaultError as e:
                logger.error(f"Failed to delete {url}: {e}")
                results["failed"].append({"url": url, "reason": str(e)})
        return results

    async def relocate(self, url: str, new_suffix: str) -> str:
        record = await self.lookup(url)
        if record is None:
            raise NotFoundError(f"No file for {url}")
        new_url = await self.relocator.relocate(record, new_suffix)
        self._forget(record)
        return new_url

    async def list_files(self, owner: str) -> List[FileRecord]:
        await self.ensure_ready()
        return await self.files.list_by_owner(owner)

    async def list_all_files(self) -> List[FileRecord]:
        await self.ensure_ready()
        return await self.files.list_with_category()

    async def search_files(self, text: str) -> List[FileRecord]:
        await self.ensure_ready()
        return await self.files.search_by_name(text or "")

    async def find_owner_file(self, owner: str, name: str) -> Optional[FileRecord]:
        await self.ensure_ready()
        return await self.files.find_owner_file(owner, name)

    # ――― categories ――― #

    async def list_categories(self) -> List[Category]:
        await self.ensure_ready()
        return await self.categories.list()

    async def create_category(self, name: str) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValueError("Category name must not be empty")
        await self.ensure_ready()
        new_id = await self.categories.create(name)
        return await self.categories.get(new_id) or Category(id=new_id, name=name)

    async def delete_category(self, category_id: int) -> Category:
        """Файлы и настройки удаляемой категории переезжают в категорию по умолчанию."""
        default_id = await self.ensure_ready()
        if await self.categories.is_default(category_id):
            raise CategoryProtectedError("The default category cannot be deleted")
        category = await self.categories.get(category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} does not exist")

        moved_files = await self.files.reassign_category(category_id, default_id)
        moved_settings = await self.settings.reassign_category(category_id, default_id)
        await self.categories.delete(category_id)
        if self._file_cache is not None:
            self._file_cache.invalidate_where(lambda cached: cached.category_id == category_id)
        logger.info(f"Category '{category.name}' deleted; {moved_files} files and "
                    f"{moved_settings} settings moved to the default category")
        return category

    # ――― user settings ――― #

    async def get_user_setting(self, owner: str) -> UserSetting:
        default_id = await self.ensure_ready()
        return await self.settings.get_or_create(
            owner, StorageType.parse(self.storage.default_storage_type), default_id
        )

    async def update_preferences(self, owner: str, storage_type: StorageType,
                                 category_id: Optional[int]) -> UserSetting:
        await self.get_user_setting(owner)
        await self.settings.update_preferences(owner, storage_type, category_id)
        return await self.settings.get(owner)

    async def set_waiting(self, owner: str, waiting_for: str, editing_file_id: Optional[str] = None) -> None:
        await self.get_user_setting(owner)
        await self.settings.set_waiting(owner, waiting_for, editing_file_id)

    async def clear_waiting(self, owner: str) -> None:
        await self.get_user_setting(owner)
        await self.settings.clear_waiting(owner)

    async def owner_overview(self, owner: str) -> OwnerOverview:
        setting = await self.get_user_setting(owner)

        async def _category_name() -> Optional[str]:
            if setting.current_category_id is None:
                return None
            category = await self.categories.get(setting.current_category_id)
            return category.name if category else None

        # независимые чтения - параллельно
        category_name, (file_count, total_size) = await asyncio.gather(
            _category_name(), self.files.stats_by_owner(owner)
        )
        return OwnerOverview(
            chat_id=owner,
            category_name=category_name,
            file_count=file_count,
            total_size=total_size,
        )
