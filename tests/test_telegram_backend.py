import json

import httpx
import pytest

from media_vault.backends.telegram_backend import TelegramBackend, upload_method_for
from media_vault.config import TelegramConfig
from media_vault.exceptions import (
    BlobNotFoundError,
    PermanentBackendError,
    RateLimitedError,
    TransientBackendError,
)

pytestmark = pytest.mark.asyncio

SETTINGS = TelegramConfig(bot_token="123:abc", storage_chat_id="-100", max_attempts=3)


class BotApi:
    """Минимальный Bot API: ответы задаются по имени метода."""

    def __init__(self):
        self.calls: list[tuple[str, httpx.Request]] = []
        self.replies: dict[str, list[httpx.Response]] = {}

    def reply(self, method: str, *responses: httpx.Response):
        self.replies.setdefault(method, []).extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        if "/file/" in request.url.path:
            method = "download"
        self.calls.append((method, request))
        queue = self.replies.get(method) or []
        if not queue:
            return httpx.Response(404, json={"ok": False, "description": "Not Found"})
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]


def ok(result) -> httpx.Response:
    return httpx.Response(200, json={"ok": True, "result": result})


@pytest.fixture
def api():
    return BotApi()


@pytest.fixture
def backend(api):
    client = httpx.AsyncClient(transport=httpx.MockTransport(api.handler))
    return TelegramBackend(SETTINGS, client=client)


@pytest.mark.parametrize("content_type, expected", [
    ("image/png", ("sendPhoto", "photo")),
    ("image/svg+xml", ("sendDocument", "document")),
    ("video/mp4", ("sendVideo", "video")),
    ("audio/mpeg", ("sendAudio", "audio")),
    ("application/pdf", ("sendDocument", "document")),
    (None, ("sendDocument", "document")),
])
async def test_upload_method_for(content_type, expected):
    assert upload_method_for(content_type) == expected


async def test_unbound_settings_are_rejected():
    with pytest.raises(ValueError):
        TelegramBackend(TelegramConfig(bot_token="123:abc"))


async def test_put_photo_uses_largest_size(api, backend):
    api.reply("sendPhoto", ok({"message_id": 7, "photo": [{"file_id": "small"}, {"file_id": "large"}]}))

    stored = await backend.put("1.png", b"png-bytes", "image/png")

    assert (stored.locator, stored.message_id, stored.size) == ("large", 7, 9)
    request = api.calls[0][1]
    assert request.url.path == "/bot123:abc/sendPhoto"
    assert b"caption" not in request.content


async def test_put_document_sends_caption(api, backend):
    api.reply("sendDocument", ok({"message_id": 8, "document": {"file_id": "doc-1"}}))

    stored = await backend.put("1.pdf", b"%PDF", "application/pdf")

    assert stored.locator == "doc-1"
    assert b"File: 1.pdf" in api.calls[0][1].content


async def test_rejected_media_falls_back_to_document(api, backend):
    api.reply("sendPhoto", httpx.Response(400, json={"ok": False, "description": "PHOTO_INVALID_DIMENSIONS"}))
    api.reply("sendDocument", ok({"message_id": 9, "document": {"file_id": "doc-2"}}))

    stored = await backend.put("wide.png", b"png", "image/png")

    assert stored.locator == "doc-2"
    assert api.methods() == ["sendPhoto", "sendDocument"]


@pytest.mark.parametrize("failure, error", [
    (httpx.Response(429, json={"ok": False, "parameters": {"retry_after": 0}}), RateLimitedError),
    (httpx.Response(502, text="Bad Gateway"), TransientBackendError),
])
async def test_transient_media_failure_is_not_resent_as_document(api, backend, failure, error):
    api.reply("sendPhoto", failure)
    api.reply("sendDocument", ok({"message_id": 9, "document": {"file_id": "doc-2"}}))

    with pytest.raises(error):
        await backend.put("1.png", b"png", "image/png")

    assert "sendDocument" not in api.methods()


async def test_rate_limit_is_retried(api, backend):
    api.reply(
        "getMe",
        httpx.Response(429, json={"ok": False, "error_code": 429, "parameters": {"retry_after": 0}}),
        ok({"id": 1}),
    )

    await backend.check_connection()

    assert api.methods() == ["getMe", "getMe"]


async def test_rate_limit_gives_up_after_max_attempts(api, backend):
    api.reply("getMe", httpx.Response(429, json={"ok": False, "parameters": {"retry_after": 0}}))

    with pytest.raises(RateLimitedError):
        await backend.check_connection()

    assert len(api.calls) == 3


async def test_server_error_is_transient_and_not_retried(api, backend):
    api.reply("getMe", httpx.Response(502, text="Bad Gateway"))

    with pytest.raises(TransientBackendError):
        await backend.check_connection()

    assert len(api.calls) == 1


async def test_api_error_is_permanent(api, backend):
    api.reply("getMe", httpx.Response(401, json={"ok": False, "description": "Unauthorized"}))

    with pytest.raises(PermanentBackendError, match="Unauthorized"):
        await backend.check_connection()


async def test_get_downloads_whole_file(api, backend):
    api.reply("getFile", ok({"file_id": "doc-1", "file_path": "documents/file_1.pdf", "file_size": 4}))
    api.reply("download", httpx.Response(200, content=b"%PDF", headers={"content-type": "application/pdf"}))

    blob = await backend.get("doc-1")

    assert blob.total_length == 4
    assert blob.content_type == "application/pdf"
    assert await blob.read() == b"%PDF"
    assert api.calls[1][1].url.path == "/file/bot123:abc/documents/file_1.pdf"


async def test_get_missing_download(api, backend):
    api.reply("getFile", ok({"file_id": "doc-1", "file_path": "documents/file_1.pdf"}))
    api.reply("download", httpx.Response(404))

    with pytest.raises(BlobNotFoundError):
        await backend.get("doc-1")


async def test_get_without_file_path(api, backend):
    api.reply("getFile", ok({"file_id": "doc-1"}))

    with pytest.raises(BlobNotFoundError):
        await backend.get("doc-1")


async def test_delete_message(api, backend):
    api.reply("deleteMessage", ok(True))

    assert await backend.delete("doc-1", 42) is True
    assert await backend.delete("doc-1", -1) is False

    assert json.loads(api.calls[0][1].content) == {"chat_id": "-100", "message_id": 42}
    assert api.methods() == ["deleteMessage"]
