"""Unit tests for the style catalogue, prompt assembly and request validation."""

from unittest.mock import mock_open, patch

import pytest
import yaml

import imgrouter.core.styles as styles_module
from imgrouter.core.models import GenerationRequest
from imgrouter.core.styles import (
    MAX_PROMPT_LENGTH,
    _load_styles,
    build_flux_prompt,
    build_prompt,
    get_style,
    is_valid_style,
    known_styles,
    sanitize_prompt,
    validate_request,
)
from imgrouter.utils.exceptions import ConfigurationError, ValidationError


def _request(**overrides) -> GenerationRequest:
    fields = {
        "source_url": "https://example.com/cat.jpg",
        "style": "ghibli",
        "session_id": "s1",
        "custom_prompt": None,
    }
    fields.update(overrides)
    return GenerationRequest(**fields)


@pytest.mark.unit
class TestCatalogue:
    def test_known_styles_in_file_order(self):
        assert known_styles() == ("ghibli", "dragonball", "pixel", "oil", "cartoon")

    def test_custom_is_valid_but_not_enumerated(self):
        assert is_valid_style("custom") is True
        assert "custom" not in known_styles()

    def test_unknown_style_invalid(self):
        assert is_valid_style("watercolor") is False
        assert get_style("watercolor") is None

    def test_get_style_fields(self):
        entry = get_style("pixel")
        assert entry.name == "Pixel Art"
        assert "16-bit" in entry.prompt
        assert entry.flux_prompt.startswith(entry.prompt)


@pytest.mark.unit
class TestStylesYAMLValidation:
    """Test styles.yaml validation with the Pydantic schema."""

    def setup_method(self):
        styles_module._catalogue = None

    def teardown_method(self):
        styles_module._catalogue = None

    def _patched(self, text):
        patcher = patch("importlib.resources.files")
        mock_files = patcher.start()
        mock_files.return_value.joinpath.return_value.open.return_value = mock_open(
            read_data=text
        )()
        return patcher

    def test_malformed_yaml_raises(self):
        patcher = self._patched("styles:\n  a: [unclosed\n")
        try:
            with pytest.raises(ConfigurationError, match="Failed to parse styles.yaml"):
                _load_styles()
        finally:
            patcher.stop()

    def test_empty_yaml_raises(self):
        patcher = self._patched("")
        try:
            with pytest.raises(ConfigurationError, match="empty"):
                _load_styles()
        finally:
            patcher.stop()

    def test_missing_prompt_raises(self):
        patcher = self._patched(yaml.dump({"styles": {"noir": {"name": "Noir"}}}))
        try:
            with pytest.raises(ConfigurationError) as exc_info:
                _load_styles()
            assert "Invalid styles.yaml structure" in str(exc_info.value)
            assert "noir" in str(exc_info.value)
        finally:
            patcher.stop()

    def test_reserved_custom_style_raises(self):
        data = {"styles": {"custom": {"name": "Custom", "prompt": "anything"}}}
        patcher = self._patched(yaml.dump(data))
        try:
            with pytest.raises(ConfigurationError, match="reserved"):
                _load_styles()
        finally:
            patcher.stop()

    def test_file_not_found_raises(self):
        with patch("importlib.resources.files") as mock_files:
            mock_files.return_value.joinpath.return_value.open.side_effect = FileNotFoundError
            with pytest.raises(ConfigurationError, match="styles.yaml not found"):
                _load_styles()

    def test_cached_after_first_load(self):
        first = _load_styles()
        assert _load_styles() is first


@pytest.mark.unit
class TestBuildPrompt:
    def test_image_to_image_wraps_base(self):
        base = get_style("oil").prompt
        assert build_prompt("oil") == f"Transform this image {base}, high quality, detailed"

    def test_text_to_image_drops_transform(self):
        base = get_style("oil").prompt
        assert build_prompt("oil", text_to_image=True) == f"{base}, high quality, detailed"

    def test_override_prefixes_base(self):
        base = get_style("ghibli").prompt
        assert build_prompt("ghibli", "a cat on a roof") == f"a cat on a roof, {base}"

    def test_custom_uses_override_verbatim(self):
        assert build_prompt("custom", "neon noir city") == "neon noir city"

    def test_custom_without_override_falls_back(self):
        assert build_prompt("custom") == "artistic style transformation, high quality, detailed"
        assert build_prompt("custom", text_to_image=True) == "high quality, detailed artwork"

    def test_unknown_style_uses_generic_descriptor(self):
        assert "artistic style transformation" in build_prompt("watercolor")

    def test_deterministic(self):
        assert build_prompt("pixel", "x") == build_prompt("pixel", "x")


@pytest.mark.unit
class TestBuildFluxPrompt:
    def test_uses_flux_descriptor(self):
        flux = get_style("cartoon").flux_prompt
        assert build_flux_prompt("cartoon") == (
            f"Transform into {flux}, high quality, detailed, professional, trending on artstation"
        )

    def test_override_leads(self):
        assert build_flux_prompt("cartoon", "a dog").startswith("a dog, cartoon illustration")

    def test_custom(self):
        assert build_flux_prompt("custom", "my style") == "my style"


@pytest.mark.unit
class TestSanitizePrompt:
    def test_strips_markup_and_script(self):
        cleaned = sanitize_prompt('  <b>cat</b> javascript:alert(1) onclick="x" ')
        assert "<" not in cleaned and ">" not in cleaned
        assert "javascript:" not in cleaned.lower()
        assert "onclick=" not in cleaned
        assert not cleaned.startswith(" ")

    def test_none_and_empty(self):
        assert sanitize_prompt(None) == ""
        assert sanitize_prompt("") == ""

    def test_caps_length(self):
        assert len(sanitize_prompt("a" * 2000)) == MAX_PROMPT_LENGTH


@pytest.mark.unit
class TestValidateRequest:
    def test_valid_request_returned_unchanged(self):
        req = _request()
        assert validate_request(req) is req

    def test_text_to_image_allowed(self):
        assert validate_request(_request(source_url="")).is_text_to_image

    def test_missing_session(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_request(_request(session_id="  "))
        assert exc_info.value.field == "session_id"

    def test_unknown_style(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_request(_request(style="watercolor"))
        assert exc_info.value.field == "style"
        assert "ghibli" in str(exc_info.value)

    def test_custom_requires_prompt(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_request(_request(style="custom"))
        assert exc_info.value.field == "custom_prompt"

    def test_custom_prompt_of_only_markup_rejected(self):
        with pytest.raises(ValidationError):
            validate_request(_request(style="custom", custom_prompt="<>"))

    def test_overlong_prompt_rejected(self):
        with pytest.raises(ValidationError, match="500"):
            validate_request(_request(custom_prompt="x" * (MAX_PROMPT_LENGTH + 1)))

    @pytest.mark.parametrize("url", ["ftp://example.com/a.png", "/tmp/a.png", "https://"])
    def test_bad_source_url(self, url):
        with pytest.raises(ValidationError) as exc_info:
            validate_request(_request(source_url=url))
        assert exc_info.value.field == "source_url"

    def test_prompt_is_sanitized(self):
        req = validate_request(_request(custom_prompt=" <i>a fox</i> "))
        assert req.custom_prompt == "ia fox/i"
