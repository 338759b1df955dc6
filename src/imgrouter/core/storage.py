"""
Object storage boundary.

The orchestration core does not own durable storage. It consumes an
ObjectStorage implementation to persist generated bytes and to publish
source images by URL. InMemoryStorage is a process-local implementation for
tests and the CLI.
"""

import mimetypes
import re
import time
import uuid
from typing import Protocol

from imgrouter.core.models import GenerationRequest, GenerationResult
from imgrouter.logging_config import get_logger
from imgrouter.utils.exceptions import ValidationError

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class ObjectStorage(Protocol):
    """Session-scoped blob store."""

    async def upload_bytes(
        self, session_id: str, filename: str, data: bytes, content_type: str
    ) -> str:
        """Store data and return its storage key."""
        ...

    async def get_public_url(self, key: str) -> str:
        """Return a URL a remote provider can fetch key from."""
        ...

    async def exists(self, key: str) -> bool: ...


def storage_key(session_id: str, filename: str) -> str:
    """Build ``<session>/<filename>`` with path separators and odd characters replaced."""
    if not session_id or not filename:
        raise ValidationError("Session ID and filename are required", field="session_id")
    return f"{_UNSAFE_CHARS.sub('_', session_id)}/{_UNSAFE_CHARS.sub('_', filename)}"


class InMemoryStorage:
    """ObjectStorage kept in a dict; URLs are built from base_url."""

    def __init__(self, base_url: str = "memory://imgrouter") -> None:
        self.base_url = base_url.rstrip("/")
        self._objects: dict[str, tuple[bytes, str]] = {}

    async def upload_bytes(
        self, session_id: str, filename: str, data: bytes, content_type: str
    ) -> str:
        key = storage_key(session_id, filename)
        self._objects[key] = (data, content_type)
        logger.debug("Stored key=%s bytes=%d content_type=%s", key, len(data), content_type)
        return key

    async def get_public_url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    async def exists(self, key: str) -> bool:
        return key in self._objects

    def read(self, key: str) -> tuple[bytes, str] | None:
        """Return (data, content_type) for key, or None."""
        return self._objects.get(key)

    def __len__(self) -> int:
        return len(self._objects)


async def persist_result(
    storage: ObjectStorage,
    request: GenerationRequest,
    result: GenerationResult,
    basename: str = "generated",
) -> GenerationResult:
    """
    Upload a successful result's image bytes and record the public URL on it.

    Results without bytes (already URL-only) and failed results pass through
    unchanged.

    Returns:
        The same result object, with image_url set when bytes were uploaded
    """
    if not result.success or result.image_data is None:
        return result
    content_type = result.content_type or "image/jpeg"
    extension = mimetypes.guess_extension(content_type) or ".bin"
    if extension == ".jpe":
        extension = ".jpg"
    # Unique per upload so later generations in a session never overwrite earlier ones.
    stamp = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
    filename = f"{basename}_{request.style}_{stamp}{extension}"
    key = await storage.upload_bytes(request.session_id, filename, result.image_data, content_type)
    result.image_url = await storage.get_public_url(key)
    return result
