"""
Telegram Bot API как blob-хранилище.

Файлы отправляются в служебный чат; локатор = ``file_id`` вложения, а
``message_id`` сохраняется, чтобы потом удалить сообщение. Диапазоны API не
умеет, поэтому ``supports_range = False``.
"""
import logging
from typing import Any, AsyncIterator, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from media_vault.backends.base import BlobBackend, BlobObject, ByteRange, StoredBlob
from media_vault.config import TelegramConfig
from media_vault.exceptions import (
    BlobNotFoundError,
    PermanentBackendError,
    RateLimitedError,
    TransientBackendError,
)
from media_vault.models import StorageType
from media_vault.utils.mime import OCTET_STREAM, format_size

logger = logging.getLogger(__name__)

# svg и иконки Telegram как фото не принимает
_NOT_PHOTO_SUBTYPES = {"svg+xml", "x-icon"}


def upload_method_for(content_type: Optional[str]) -> tuple[str, str]:
    """MIME -> (метод Bot API, имя поля multipart)."""
    main, _, sub = (content_type or "").lower().partition("/")
    if main == "image" and sub not in _NOT_PHOTO_SUBTYPES:
        return "sendPhoto", "photo"
    if main == "video":
        return "sendVideo", "video"
    if main == "audio":
        return "sendAudio", "audio"
    return "sendDocument", "document"


def _wait_retry_after(retry_state) -> float:
    exc = retry_state.outcome.exception()
    delay = getattr(exc, "retry_after", None)
    return float(delay) if delay is not None else 1.0


def _extract_file_id(result: dict, field: str) -> Optional[str]:
    if field == "photo":
        photos = result.get("photo") or []
        # последний размер - самый крупный
        return photos[-1].get("file_id") if photos else None
    for key in (field, "document", "animation"):
        attachment = result.get(key)
        if isinstance(attachment, dict) and attachment.get("file_id"):
            return attachment["file_id"]
    return None


class TelegramBackend(BlobBackend):
    storage_type = StorageType.chat
    supports_range = False

    def __init__(self, settings: TelegramConfig, client: Optional[httpx.AsyncClient] = None):
        if not settings.is_bound:
            raise ValueError("Telegram backend needs both bot_token and storage_chat_id")
        base = settings.api_base.rstrip("/")
        self._api = f"{base}/bot{settings.bot_token}"
        self._file_api = f"{base}/file/bot{settings.bot_token}"
        self._chat_id = settings.storage_chat_id
        self._max_attempts = settings.max_attempts
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.timeout)

    async def _call_once(self, method: str, **kwargs) -> Any:
        try:
            response = await self._client.post(f"{self._api}/{method}", **kwargs)
        except httpx.HTTPError as e:
            raise TransientBackendError(f"Telegram {method}: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code == 429 or payload.get("error_code") == 429:
            retry_after = (payload.get("parameters") or {}).get("retry_after")
            logger.warning(f"Telegram {method} rate limited, retry after {retry_after}s")
            raise RateLimitedError(f"Telegram {method}: too many requests", retry_after=retry_after)
        if response.status_code >= 500:
            raise TransientBackendError(f"Telegram {method}: HTTP {response.status_code}")
        if response.status_code >= 400 or not payload.get("ok"):
            description = payload.get("description") or response.text
            raise PermanentBackendError(f"Telegram {method}: {description}")
        return payload.get("result")

    async def _call(self, method: str, **kwargs) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type(RateLimitedError),
            wait=_wait_retry_after,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._call_once(method, **kwargs)

    async def _send(self, method: str, field: str, key: str, data: bytes, content_type: str) -> StoredBlob:
        form = {"chat_id": self._chat_id}
        if field != "photo":
            form["caption"] = f"File: {key}\nType: {content_type}\nSize: {format_size(len(data))}"
        result = await self._call(method, data=form, files={field: (key, data, content_type)})
        file_id = _extract_file_id(result or {}, field)
        message_id = (result or {}).get("message_id")
        if not file_id or not message_id:
            raise PermanentBackendError(f"Telegram {method} returned no file_id/message_id for {key}")
        return StoredBlob(locator=file_id, message_id=int(message_id), size=len(data))

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> StoredBlob:
        content_type = content_type or OCTET_STREAM
        method, field = upload_method_for(content_type)
        try:
            return await self._send(method, field, key, data, content_type)
        except PermanentBackendError as e:
            # метод отверг сам контент; сетевые сбои и лимиты так не лечатся
            if method == "sendDocument":
                raise
            logger.warning(f"Telegram {method} failed for {key} ({e}), retrying once as document")
        return await self._send("sendDocument", "document", key, data, content_type)

    async def _file_path(self, locator: str) -> tuple[str, Optional[int]]:
        result = await self._call("getFile", data={"file_id": locator}) or {}
        file_path = result.get("file_path")
        if not file_path:
            raise BlobNotFoundError(f"Telegram has no file path for {locator}")
        return file_path, result.get("file_size")

    async def get(self, locator: str, byte_range: Optional[ByteRange] = None) -> BlobObject:
        file_path, file_size = await self._file_path(locator)
        request = self._client.build_request("GET", f"{self._file_api}/{file_path}")
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise TransientBackendError(f"Telegram download {locator}: {e}") from e

        if response.status_code != 200:
            await response.aclose()
            if response.status_code == 404:
                raise BlobNotFoundError(f"Telegram file {locator} is gone")
            error_cls = TransientBackendError if response.status_code >= 500 else PermanentBackendError
            raise error_cls(f"Telegram download {locator}: HTTP {response.status_code}")

        header_length = response.headers.get("content-length")
        total = int(header_length) if header_length else file_size
        return BlobObject(
            content_type=response.headers.get("content-type"),
            total_length=total,
            length=total,
            body=self._stream(response, locator),
            on_close=response.aclose,
        )

    async def _stream(self, response: httpx.Response, locator: str) -> AsyncIterator[bytes]:
        try:
            async for block in response.aiter_bytes():
                yield block
        except httpx.HTTPError as e:
            raise TransientBackendError(f"Telegram download {locator} interrupted: {e}") from e
        finally:
            await response.aclose()

    async def delete(self, locator: str, message_id: Optional[int] = None) -> bool:
        if not message_id or message_id <= 0:
            logger.debug(f"No message to delete for {locator}")
            return False
        result = await self._call("deleteMessage", json={"chat_id": self._chat_id, "message_id": message_id})
        return bool(result)

    async def check_connection(self) -> None:
        await self._call("getMe")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
