"""
Image payload inspection.

Providers hand back raw bytes; these helpers confirm the bytes decode as an
image before a result is reported as successful.
"""

import base64
import binascii
import io

from PIL import Image, UnidentifiedImageError

from imgrouter.utils.exceptions import InvalidPayloadError

# PIL format name -> MIME type for the formats providers return
_MIME_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


def inspect_image(data: bytes, provider: str = "") -> str:
    """
    Verify that data is a decodable image and return its MIME type.

    Args:
        data: Raw image bytes
        provider: Provider name for error context

    Returns:
        MIME type such as "image/png"

    Raises:
        InvalidPayloadError: If data is empty or not a recognizable image
    """
    if not data:
        raise InvalidPayloadError("Provider returned an empty image", provider=provider)
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            fmt = (img.format or "").upper()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidPayloadError(
            f"Provider returned data that is not a valid image: {e}", provider=provider
        ) from e
    return _MIME_TYPES.get(fmt, f"image/{fmt.lower()}" if fmt else "application/octet-stream")


def decode_base64_image(encoded: str, provider: str = "") -> bytes:
    """
    Decode a base64 image, accepting an optional data URL prefix.

    Raises:
        InvalidPayloadError: If the string is empty or not valid base64
    """
    if not encoded:
        raise InvalidPayloadError("Provider returned an empty image", provider=provider)
    if encoded.startswith("data:") and "," in encoded:
        encoded = encoded.split(",", 1)[1]
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidPayloadError(
            f"Provider returned invalid base64 image data: {e}", provider=provider
        ) from e
