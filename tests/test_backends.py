"""Tests for storage backends and the retrying transport."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from fakes import FakeS3Client
from gateway.backends import BackendRegistry, ObjectStorageBackend, R2Backend
from gateway.backends import http as http_module
from gateway.backends.discord import DiscordBackend
from gateway.backends.http import retry_after_seconds, send_with_retry
from gateway.backends.huggingface import HuggingFaceBackend
from gateway.backends.telegram import TelegramBackend, choose_upload_method, pick_file_id
from gateway.config import Settings
from gateway.exceptions import BackendFailureError, BackendUnconfiguredError, RangeNotSatisfiableError
from gateway.range_proxy import RangeStreamProxy
from gateway.types import BackendType, DiscordLocator, HuggingFaceLocator, R2Locator, TelegramLocator


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def no_sleep(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr(http_module.asyncio, "sleep", sleep)
    return sleep


class TestSendWithRetry:
    """Test transient failure handling."""

    @pytest.mark.asyncio
    async def test_connect_errors_back_off_then_fail(self, no_sleep):
        attempts = []

        def handler(request):
            attempts.append(request.url)
            raise httpx.ConnectError("refused", request=request)

        client = mock_client(handler)
        with pytest.raises(BackendFailureError):
            await send_with_retry(client, lambda: client.build_request("GET", "https://remote.test/x"))

        assert len(attempts) == 4
        assert [call.args[0] for call in no_sleep.await_args_list] == [1, 2, 4]

    @pytest.mark.asyncio
    async def test_rate_limit_waits_for_server_delay(self, no_sleep):
        responses = [
            httpx.Response(429, json={"ok": False, "parameters": {"retry_after": 7}}),
            httpx.Response(200, json={"ok": True}),
        ]
        client = mock_client(lambda request: responses.pop(0))

        response = await send_with_retry(client, lambda: client.build_request("GET", "https://remote.test/x"))

        assert response.status_code == 200
        no_sleep.assert_awaited_once_with(7.0)

    @pytest.mark.asyncio
    async def test_other_errors_are_returned_without_retry(self, no_sleep):
        client = mock_client(lambda request: httpx.Response(500))

        response = await send_with_retry(client, lambda: client.build_request("GET", "https://remote.test/x"))

        assert response.status_code == 500
        no_sleep.assert_not_awaited()

    def test_retry_after_sources(self):
        assert retry_after_seconds(httpx.Response(429, json={"retry_after": 1.5})) == 1.5
        assert retry_after_seconds(httpx.Response(429, headers={"Retry-After": "3"})) == 3.0
        assert retry_after_seconds(httpx.Response(429, text="slow down")) == 5.0


class TestTelegramBackend:
    """Test the relay backend against a mocked Bot API."""

    @pytest.fixture
    def settings(self):
        return Settings(tg_bot_token="123:abc", tg_chat_id="-100")

    def test_upload_method_selection(self):
        assert choose_upload_method("image/png") == ("sendPhoto", "photo")
        assert choose_upload_method("audio/mpeg") == ("sendAudio", "audio")
        assert choose_upload_method("video/mp4") == ("sendVideo", "video")
        assert choose_upload_method("application/zip") == ("sendDocument", "document")

    def test_largest_photo_wins(self):
        message = {"photo": [{"file_id": "small", "file_size": 10}, {"file_id": "big", "file_size": 900}]}
        assert pick_file_id(message) == "big"
        assert pick_file_id({"document": {"file_id": "doc"}}) == "doc"
        assert pick_file_id({}) is None

    @pytest.mark.asyncio
    async def test_rejected_photo_falls_back_to_document(self, settings):
        methods = []

        def handler(request):
            method = request.url.path.rsplit("/", 1)[-1]
            methods.append(method)
            if method == "sendPhoto":
                return httpx.Response(400, json={"ok": False, "description": "PHOTO_INVALID_DIMENSIONS"})
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 9, "document": {"file_id": "DOC1"}}})

        backend = TelegramBackend(settings, mock_client(handler))
        locator = await backend.put(b"img", "pic.png", "image/png")

        assert methods == ["sendPhoto", "sendDocument"]
        assert locator == TelegramLocator(file_id="DOC1", message_id=9)

    @pytest.mark.asyncio
    async def test_too_large(self, settings):
        backend = TelegramBackend(settings, mock_client(lambda request: httpx.Response(413)))
        with pytest.raises(BackendFailureError, match="20MB"):
            await backend.put(b"x", "a.zip", "application/zip")

    @pytest.mark.asyncio
    async def test_download_forwards_range(self, settings):
        seen = {}

        def handler(request):
            if request.url.path.endswith("/getFile"):
                return httpx.Response(200, json={"ok": True, "result": {"file_path": "documents/file_1.bin"}})
            seen["path"] = request.url.path
            seen["range"] = request.headers.get("range")
            return httpx.Response(206, content=b"abc", headers={"Content-Range": "bytes 0-2/10"})

        backend = TelegramBackend(settings, mock_client(handler))
        obj = await backend.get(TelegramLocator(file_id="F"), "bytes=0-2")

        assert seen == {"path": "/file/bot123:abc/documents/file_1.bin", "range": "bytes=0-2"}
        assert obj.status == 206
        assert obj.content_range == "bytes 0-2/10"
        assert await obj.read_all() == b"abc"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", ["bytes=-0", "bytes=1000000-2000000"])
    async def test_rejected_range_becomes_unsatisfiable_response(self, settings, header):
        def handler(request):
            if request.url.path.endswith("/getFile"):
                return httpx.Response(200, json={"ok": True, "result": {"file_path": "documents/file_1.bin"}})
            assert request.headers["range"] == header
            return httpx.Response(416, headers={"Content-Range": "bytes */100"})

        backend = TelegramBackend(settings, mock_client(handler))

        with pytest.raises(RangeNotSatisfiableError) as excinfo:
            await backend.get(TelegramLocator(file_id="F"), header)
        assert excinfo.value.total == 100

        proxied = await RangeStreamProxy(backend).serve(TelegramLocator(file_id="F"), "f.bin", header)
        assert proxied.status == 416
        assert proxied.headers["Content-Range"] == "bytes */100"

    @pytest.mark.asyncio
    async def test_rejected_range_without_size(self, settings):
        def handler(request):
            if request.url.path.endswith("/getFile"):
                return httpx.Response(200, json={"ok": True, "result": {"file_path": "documents/file_1.bin"}})
            return httpx.Response(416)

        backend = TelegramBackend(settings, mock_client(handler))
        proxied = await RangeStreamProxy(backend).serve(TelegramLocator(file_id="F"), "f.bin", "bytes=500-")

        assert proxied.status == 416
        assert "Content-Range" not in proxied.headers

    @pytest.mark.asyncio
    async def test_unknown_file_id(self, settings):
        backend = TelegramBackend(settings, mock_client(lambda request: httpx.Response(400, json={"ok": False})))
        assert await backend.get(TelegramLocator(file_id="gone")) is None

    @pytest.mark.asyncio
    async def test_delete_needs_message_id(self, settings):
        backend = TelegramBackend(settings, mock_client(lambda request: httpx.Response(200, json={"ok": True})))
        assert await backend.delete(TelegramLocator(file_id="F")) is False
        assert await backend.delete(TelegramLocator(file_id="F", message_id=3)) is True


class TestObjectStorageBackend:
    """Test the boto3-based backends against an in-memory client."""

    @pytest.fixture
    def backend(self):
        settings = Settings(r2_endpoint="https://r2.test", r2_access_key_id="k", r2_secret_access_key="s", r2_bucket="b")
        return R2Backend.from_settings(settings, client=FakeS3Client())

    @pytest.mark.asyncio
    async def test_put_generates_prefixed_key(self, backend):
        locator = await backend.put(b"data", "Photo.JPG", "image/jpeg")

        assert locator.r2_key.startswith("r2_")
        assert locator.r2_key.endswith(".jpg")
        assert await backend.stat(locator) == 4

    @pytest.mark.asyncio
    async def test_missing_objects(self, backend):
        assert await backend.stat(R2Locator("nope")) is None
        assert await backend.get(R2Locator("nope")) is None
        assert await backend.get_object_bytes("nope") is None

    @pytest.mark.asyncio
    async def test_ranged_get(self, backend):
        await backend.put_object("k", b"0123456789")

        obj = await backend.get(R2Locator("k"), "bytes=2-4")

        assert obj.status == 206
        assert obj.content_range == "bytes 2-4/10"
        assert await obj.read_all() == b"234"

    def test_bucket_base_needs_a_locator_type(self):
        with pytest.raises(TypeError):
            ObjectStorageBackend("b", "https://r2.test", "k", "s", "auto", client=FakeS3Client())

    @pytest.mark.asyncio
    async def test_delete_failure_is_wrapped(self, backend):
        backend.client.fail_deletes = True
        with pytest.raises(BackendFailureError):
            await backend.delete(R2Locator("k"))


class TestDiscordBackend:
    """Test the chat-attachment backend."""

    @pytest.mark.asyncio
    async def test_webhook_upload_and_fresh_url_download(self):
        settings = Settings(discord_webhook_url="https://discord.test/api/webhooks/1/tok")

        def handler(request):
            if request.method == "POST":
                assert request.url.params["wait"] == "true"
                return httpx.Response(200, json={
                    "id": "55",
                    "channel_id": "77",
                    "attachments": [{"id": "900", "url": "https://cdn.test/old"}],
                })
            if request.url.path.endswith("/messages/55"):
                return httpx.Response(200, json={"attachments": [{"id": "900", "url": "https://cdn.test/fresh"}]})
            assert str(request.url) == "https://cdn.test/fresh"
            return httpx.Response(200, content=b"payload")

        backend = DiscordBackend(settings, mock_client(handler))
        locator = await backend.put(b"payload", "a.bin", "application/octet-stream")

        assert locator == DiscordLocator(
            channel_id="77", message_id="55", attachment_id="900", upload_mode="webhook", source_url="https://cdn.test/old"
        )
        obj = await backend.get(locator)
        assert await obj.read_all() == b"payload"

    @pytest.mark.asyncio
    async def test_bot_mode_uses_channel_endpoint(self):
        settings = Settings(discord_bot_token="bot-token", discord_channel_id="77")
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"id": "1", "attachments": [{"id": "2", "url": "https://cdn.test/a"}]})

        backend = DiscordBackend(settings, mock_client(handler))
        locator = await backend.put(b"x", "a.bin", "")

        assert seen == {"url": "https://discord.com/api/v10/channels/77/messages", "auth": "Bot bot-token"}
        assert locator.upload_mode == "bot"
        assert locator.channel_id == "77"


class TestHuggingFaceBackend:
    """Test the dataset repository backend."""

    @pytest.mark.asyncio
    async def test_upload_commits_base64_file(self):
        settings = Settings(hf_token="hf_tok", hf_repo="me/files")
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["lines"] = [json.loads(line) for line in request.content.decode().splitlines()]
            return httpx.Response(200, json={"commitOid": "abc"})

        backend = HuggingFaceBackend(settings, mock_client(handler))
        locator = await backend.put(b"hello", "a.txt", "text/plain")

        assert captured["url"] == "https://huggingface.co/api/datasets/me/files/commit/main"
        header, file_line = captured["lines"]
        assert header["key"] == "header"
        assert file_line["value"]["content"] == "aGVsbG8="
        assert file_line["value"]["path"] == locator.hf_path
        assert locator.hf_path.startswith("uploads/hf_") and locator.hf_path.endswith(".txt")

    @pytest.mark.asyncio
    async def test_missing_file(self):
        settings = Settings(hf_token="hf_tok", hf_repo="me/files")
        backend = HuggingFaceBackend(settings, mock_client(lambda request: httpx.Response(404)))
        assert await backend.get(HuggingFaceLocator("uploads/none.bin")) is None


class TestBackendRegistry:
    """Test backend selection from settings."""

    def test_unconfigured_backend_is_rejected(self):
        registry = BackendRegistry(Settings(), mock_client(lambda request: httpx.Response(200)))

        for backend_type in BackendType:
            assert registry.is_configured(backend_type) is False
            with pytest.raises(BackendUnconfiguredError):
                registry.get(backend_type)
        assert registry.object_staging() is None

    def test_instances_are_reused(self):
        settings = Settings(tg_bot_token="1:a", tg_chat_id="2")
        registry = BackendRegistry(settings, mock_client(lambda request: httpx.Response(200)))

        assert registry.get(BackendType.TELEGRAM) is registry.get(BackendType.TELEGRAM)
        assert isinstance(registry.get(BackendType.TELEGRAM), TelegramBackend)
