"""Unit tests for the object storage boundary."""

import pytest

from imgrouter.core.models import GenerationRequest, GenerationResult
from imgrouter.core.storage import InMemoryStorage, persist_result, storage_key
from imgrouter.utils.exceptions import ValidationError


def _result(**overrides) -> GenerationResult:
    fields = {"success": True, "provider": "pollinations", "model": "kontext"}
    fields.update(overrides)
    return GenerationResult(**fields)


REQUEST = GenerationRequest(source_url="", style="pixel", session_id="sess-1")


@pytest.mark.unit
class TestStorageKey:
    def test_joins_session_and_filename(self):
        assert storage_key("sess-1", "generated.png") == "sess-1/generated.png"

    def test_replaces_path_separators(self):
        assert storage_key("../etc", "a/b c.png") == ".._etc/a_b_c.png"

    def test_empty_parts_rejected(self):
        with pytest.raises(ValidationError):
            storage_key("", "a.png")
        with pytest.raises(ValidationError):
            storage_key("s", "")


@pytest.mark.unit
@pytest.mark.asyncio
class TestInMemoryStorage:
    async def test_upload_and_read(self):
        storage = InMemoryStorage(base_url="https://cdn.example.com/")
        key = await storage.upload_bytes("s1", "x.png", b"data", "image/png")
        assert await storage.exists(key) is True
        assert storage.read(key) == (b"data", "image/png")
        assert await storage.get_public_url(key) == "https://cdn.example.com/s1/x.png"
        assert len(storage) == 1

    async def test_missing_key(self):
        storage = InMemoryStorage()
        assert await storage.exists("nope") is False
        assert storage.read("nope") is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestPersistResult:
    async def test_uploads_bytes_and_sets_url(self, png_bytes):
        storage = InMemoryStorage()
        result = _result(image_data=png_bytes, content_type="image/png")
        out = await persist_result(storage, REQUEST, result)
        assert out is result
        assert out.image_url.startswith("memory://imgrouter/sess-1/generated_pixel_")
        assert out.image_url.endswith(".png")
        key = out.image_url.removeprefix("memory://imgrouter/")
        assert storage.read(key) == (png_bytes, "image/png")

    async def test_each_upload_gets_its_own_key(self, png_bytes):
        storage = InMemoryStorage()
        first = _result(image_data=png_bytes, content_type="image/png")
        second = _result(image_data=png_bytes, content_type="image/png")
        await persist_result(storage, GenerationRequest("", "ghibli", "s1"), first)
        await persist_result(storage, GenerationRequest("", "ghibli", "s1"), second)
        assert first.image_url != second.image_url
        assert "/s1/generated_ghibli_" in first.image_url
        assert len(storage) == 2

    async def test_jpeg_extension(self, jpeg_bytes):
        storage = InMemoryStorage()
        result = _result(image_data=jpeg_bytes, content_type="image/jpeg")
        await persist_result(storage, REQUEST, result)
        assert result.image_url.endswith(".jpg")

    async def test_failed_result_untouched(self):
        storage = InMemoryStorage()
        result = _result(success=False, error="boom")
        await persist_result(storage, REQUEST, result)
        assert result.image_url is None
        assert len(storage) == 0

    async def test_url_only_result_untouched(self):
        storage = InMemoryStorage()
        result = _result(image_url="https://replicate.delivery/x.png")
        await persist_result(storage, REQUEST, result)
        assert result.image_url == "https://replicate.delivery/x.png"
        assert len(storage) == 0
