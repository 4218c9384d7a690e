"""
Model catalog and payload limits.

Fixed table of the provider models the gateway knows about, their input
limits and the model to fall back to when one is unavailable.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

IMAGE_GENERATION = "image_generation"
IMAGE_EDITING = "image_editing"
TEXT_GENERATION = "text_generation"
TRANSLATION = "translation"

SUPPORTED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/gif"})

_MB = 1024 * 1024


@dataclass(frozen=True)
class ModelLimits:
    """Input limits for a single model."""
    max_tokens: int
    max_images: int
    max_image_size_mb: int


@dataclass(frozen=True)
class ModelSpec:
    """Catalog entry for a provider model."""
    name: str
    display_name: str
    capabilities: FrozenSet[str]
    limits: ModelLimits
    fallback: Optional[str] = None


@dataclass(frozen=True)
class ModelCatalog:
    """Fixed catalog of supported models."""
    models: Dict[str, ModelSpec]
    default_model: str

    def get(self, model: str) -> ModelSpec:
        """Spec for `model`, or the default image model when unknown."""
        return self.models.get(model, self.models[self.default_model])


# Fixed catalog - no dynamic fetching
MODEL_CATALOG = ModelCatalog(
    models={
        "gemini-2.5-flash-image-preview": ModelSpec(
            name="gemini-2.5-flash-image-preview",
            display_name="Gemini 2.5 Flash (Image)",
            capabilities=frozenset({IMAGE_GENERATION, IMAGE_EDITING}),
            limits=ModelLimits(max_tokens=1_000_000, max_images=8, max_image_size_mb=4),
            fallback="gemini-2.5-flash",
        ),
        "gemini-2.5-flash": ModelSpec(
            name="gemini-2.5-flash",
            display_name="Gemini 2.5 Flash",
            capabilities=frozenset({TEXT_GENERATION, TRANSLATION}),
            limits=ModelLimits(max_tokens=1_000_000, max_images=0, max_image_size_mb=0),
            fallback="gemini-1.5-flash",
        ),
        "gemini-1.5-flash": ModelSpec(
            name="gemini-1.5-flash",
            display_name="Gemini 1.5 Flash",
            capabilities=frozenset({TEXT_GENERATION, TRANSLATION}),
            limits=ModelLimits(max_tokens=1_000_000, max_images=4, max_image_size_mb=4),
        ),
    },
    default_model="gemini-2.5-flash-image-preview",
)

# Default model per task
TASK_MODELS = {
    "image": "gemini-2.5-flash-image-preview",
    "text": "gemini-2.5-flash",
    "translation": "gemini-2.5-flash",
}


def get_model_spec(model: str) -> ModelSpec:
    return MODEL_CATALOG.get(model)


def get_fallback_model(model: str) -> Optional[str]:
    """Model to try when `model` fails, if the catalog names one."""
    spec = MODEL_CATALOG.models.get(model)
    return spec.fallback if spec else None


def supports_image_generation(model: str) -> bool:
    spec = MODEL_CATALOG.models.get(model)
    return spec is not None and IMAGE_GENERATION in spec.capabilities


def get_optimal_model(task: str) -> str:
    """Default model for a task ("image", "text" or "translation")."""
    return TASK_MODELS.get(task, MODEL_CATALOG.default_model)


def validate_image_payload(size_bytes: int, mime_type: str, model: str) -> Optional[str]:
    """Check an image payload against a model's limits.

    Args:
        size_bytes: Encoded image size
        mime_type: Content type of the image
        model: Target model name

    Returns:
        None when valid, otherwise a human-readable reason
    """
    limits = get_model_spec(model).limits

    size_mb = size_bytes / _MB
    if size_mb > limits.max_image_size_mb:
        return (
            f"Image size cannot exceed {limits.max_image_size_mb}MB "
            f"(got {size_mb:.1f}MB)"
        )

    if mime_type not in SUPPORTED_IMAGE_TYPES:
        return "Supported image formats: JPEG, PNG, WebP, GIF"

    return None
