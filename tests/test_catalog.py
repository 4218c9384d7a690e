"""
Tests for the model catalog.
"""
from ai_quota_gate.core.catalog import (
    get_fallback_model,
    get_model_spec,
    get_optimal_model,
    supports_image_generation,
    validate_image_payload,
)

MB = 1024 * 1024


class TestModelCatalog:
    """Test catalog lookups."""

    def test_known_model(self):
        spec = get_model_spec("gemini-2.5-flash")
        assert spec.display_name == "Gemini 2.5 Flash"
        assert spec.limits.max_images == 0

    def test_unknown_model_uses_image_default(self):
        assert get_model_spec("no-such-model").name == "gemini-2.5-flash-image-preview"

    def test_fallback_chain(self):
        assert get_fallback_model("gemini-2.5-flash-image-preview") == "gemini-2.5-flash"
        assert get_fallback_model("gemini-2.5-flash") == "gemini-1.5-flash"
        assert get_fallback_model("gemini-1.5-flash") is None
        assert get_fallback_model("no-such-model") is None

    def test_image_generation_support(self):
        assert supports_image_generation("gemini-2.5-flash-image-preview")
        assert not supports_image_generation("gemini-2.5-flash")
        assert not supports_image_generation("no-such-model")

    def test_optimal_model_per_task(self):
        assert get_optimal_model("image") == "gemini-2.5-flash-image-preview"
        assert get_optimal_model("text") == "gemini-2.5-flash"
        assert get_optimal_model("translation") == "gemini-2.5-flash"
        assert get_optimal_model("video") == "gemini-2.5-flash-image-preview"


class TestImageValidation:
    """Test image payload checks."""

    def test_valid_png(self):
        assert validate_image_payload(2 * MB, "image/png", "gemini-2.5-flash-image-preview") is None

    def test_too_large(self):
        problem = validate_image_payload(5 * MB, "image/png", "gemini-2.5-flash-image-preview")
        assert "cannot exceed 4MB" in problem

    def test_unsupported_type(self):
        problem = validate_image_payload(MB, "image/tiff", "gemini-2.5-flash-image-preview")
        assert "Supported image formats" in problem
