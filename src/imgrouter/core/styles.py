"""
Style catalogue and prompt assembly.

Styles are defined in src/imgrouter/styles.yaml and loaded once per process.
Add new styles there; every provider built on the default catalogue picks
them up. build_prompt() and build_flux_prompt() are pure functions of the
catalogue and their arguments.
"""

import dataclasses
import importlib.resources
import re
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from imgrouter.core.models import CUSTOM_STYLE, GenerationRequest
from imgrouter.utils.exceptions import ConfigurationError, ValidationError

MAX_PROMPT_LENGTH = 500

# Module-level cache for the parsed catalogue
_catalogue: "StylesSchema | None" = None


class StyleEntry(BaseModel):
    """Schema for one style in styles.yaml."""

    name: str = Field(..., min_length=1, description="Display name")
    description: str = ""
    prompt: str = Field(..., min_length=1, description="Base style descriptor")
    flux_prompt: str | None = Field(
        default=None, description="Richer descriptor for FLUX models; falls back to prompt"
    )


class QualitySettings(BaseModel):
    suffix: str = "high quality, detailed"
    flux_suffix: str = "high quality, detailed, professional, trending on artstation"
    fallback_style: str = "artistic style transformation"
    custom_fallback_image: str = "artistic style transformation, high quality, detailed"
    custom_fallback_text: str = "high quality, detailed artwork"


class StylesSchema(BaseModel):
    """Schema for styles.yaml."""

    model_config = {"extra": "allow"}

    styles: dict[str, StyleEntry] = Field(..., min_length=1)
    quality: QualitySettings = Field(default_factory=QualitySettings)


def _load_styles() -> StylesSchema:
    """Load and validate styles.yaml from the package. Cached after first call.

    Raises:
        ConfigurationError: If the YAML is missing, malformed, or fails validation.
    """
    global _catalogue
    if _catalogue is not None:
        return _catalogue

    try:
        with (
            importlib.resources.files("imgrouter").joinpath("styles.yaml").open(encoding="utf-8") as f
        ):
            raw = f.read()
    except FileNotFoundError as e:
        raise ConfigurationError(
            "styles.yaml not found. This file is required and should be bundled with the package."
        ) from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse styles.yaml: {e}.") from e

    if data is None:
        raise ConfigurationError("styles.yaml is empty. Expected a 'styles' section.")

    try:
        catalogue = StylesSchema(**data)
    except PydanticValidationError as e:
        errors = "\n".join(
            f"  - {'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid styles.yaml structure:\n{errors}") from e

    if CUSTOM_STYLE in catalogue.styles:
        raise ConfigurationError(f"styles.yaml must not define the reserved style {CUSTOM_STYLE!r}.")

    _catalogue = catalogue
    return _catalogue


def known_styles() -> tuple[str, ...]:
    """Enumerated style ids in catalogue order (excludes "custom")."""
    return tuple(_load_styles().styles)


def get_style(style_id: str) -> StyleEntry | None:
    return _load_styles().styles.get(style_id)


def is_valid_style(style_id: str) -> bool:
    return style_id == CUSTOM_STYLE or style_id in _load_styles().styles


def build_prompt(style: str, custom_prompt: str | None = None, text_to_image: bool = False) -> str:
    """
    Assemble the generation prompt for a style.

    For "custom" the override is the entire prompt. Otherwise the style's base
    prompt is prefixed by the override when given, or wrapped with quality
    suffixes when not.

    Args:
        style: Style id or "custom"
        custom_prompt: Optional free-text override
        text_to_image: True when there is no source image

    Returns:
        The prompt string
    """
    quality = _load_styles().quality
    if style == CUSTOM_STYLE:
        if custom_prompt:
            return custom_prompt
        return quality.custom_fallback_text if text_to_image else quality.custom_fallback_image

    entry = get_style(style)
    base = entry.prompt if entry else quality.fallback_style
    if custom_prompt:
        return f"{custom_prompt}, {base}"
    if text_to_image:
        return f"{base}, {quality.suffix}"
    return f"Transform this image {base}, {quality.suffix}"


def build_flux_prompt(style: str, custom_prompt: str | None = None) -> str:
    """Prompt variant for FLUX models, which respond better to denser descriptors."""
    quality = _load_styles().quality
    if style == CUSTOM_STYLE:
        return custom_prompt or quality.custom_fallback_image
    entry = get_style(style)
    descriptor = (entry.flux_prompt or entry.prompt) if entry else style
    if custom_prompt:
        return f"{custom_prompt}, {descriptor}, {quality.flux_suffix}"
    return f"Transform into {descriptor}, {quality.flux_suffix}"


_HTML_CHARS = re.compile(r"[<>]")
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)


def sanitize_prompt(prompt: str | None) -> str:
    """Strip markup and script fragments from a user prompt and cap its length."""
    if not prompt:
        return ""
    cleaned = _HTML_CHARS.sub("", prompt)
    cleaned = _JS_SCHEME.sub("", cleaned)
    cleaned = _EVENT_HANDLER.sub("", cleaned)
    return cleaned.strip()[:MAX_PROMPT_LENGTH]


def validate_request(request: GenerationRequest) -> GenerationRequest:
    """
    Validate a generation request before any provider is touched.

    Returns:
        The request with its custom prompt sanitized

    Raises:
        ValidationError: If the session id, style, custom prompt or source URL is invalid
    """
    if not request.session_id or not request.session_id.strip():
        raise ValidationError("Session ID is required", field="session_id")

    if not request.style or not is_valid_style(request.style):
        raise ValidationError(
            f"Unknown style: {request.style!r}. "
            f"Must be one of: {', '.join(known_styles() + (CUSTOM_STYLE,))}.",
            field="style",
        )

    if request.custom_prompt is not None and len(request.custom_prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"Custom prompt exceeds {MAX_PROMPT_LENGTH} characters", field="custom_prompt"
        )
    custom_prompt = sanitize_prompt(request.custom_prompt) or None

    if request.is_custom and not custom_prompt:
        raise ValidationError(
            "Custom style requires a custom prompt describing the style", field="custom_prompt"
        )

    if request.source_url:
        parsed = urlparse(request.source_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(
                f"Source URL must be an absolute http(s) URL, got {request.source_url!r}",
                field="source_url",
            )

    if custom_prompt == request.custom_prompt:
        return request
    return dataclasses.replace(request, custom_prompt=custom_prompt)
