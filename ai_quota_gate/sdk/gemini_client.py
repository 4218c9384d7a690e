"""
Guarded client for the generative image/text API.

Builds provider calls and sends every one of them through a RequestQueue,
so spacing, quota bookkeeping and retries apply to all callers alike.
"""

import base64
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from ..core.catalog import get_model_spec, get_optimal_model, validate_image_payload
from ..core.errors import POLICY_FINISH_REASONS, UpstreamFailure
from ..core.request_queue import RequestQueue

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
API_KEY_ENV = "GEMINI_API_KEY"


@dataclass(frozen=True)
class ImagePayload:
    """Encoded image bytes with their content type."""
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class GenerationResult:
    """Decoded provider response handed back to the caller."""
    text: str
    finish_reason: Optional[str]
    request_id: Optional[str]
    response: Any


class GuardedGeminiClient:
    """Provider client whose calls are queued, throttled and classified.

    Uses the provider's OpenAI-compatible endpoint through the OpenAI SDK.
    Failures reach the caller as GatewayError, never as SDK exceptions.
    """

    def __init__(
        self,
        queue: RequestQueue,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: str = GEMINI_OPENAI_BASE_URL,
    ):
        """Initialize guarded client.

        Args:
            queue: Request queue every call is submitted through
            model: Model name (defaults to the catalog's image model)
            api_key: Provider API key (defaults to $GEMINI_API_KEY)
            base_url: OpenAI-compatible endpoint of the provider

        Raises:
            ValueError: If model is empty or no API key is available
        """
        if model is not None and not model.strip():
            raise ValueError("model cannot be empty")
        api_key = api_key or os.environ.get(API_KEY_ENV)
        if not api_key:
            raise ValueError(f"api_key is required (or set {API_KEY_ENV})")

        self.queue = queue
        self.model = model or get_optimal_model("image")
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    def build_messages(
        self, prompt: str, images: Sequence[ImagePayload] = ()
    ) -> List[Dict[str, Any]]:
        """Chat messages carrying the images first, then the prompt text."""
        content: List[Dict[str, Any]] = []
        for image in images:
            encoded = base64.b64encode(image.data).decode("ascii")
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:{image.mime_type};base64,{encoded}"},
            })
        content.append({"type": "text", "text": prompt})
        return [{"role": "user", "content": content}]

    async def generate(
        self,
        prompt: str,
        images: Sequence[ImagePayload] = (),
        priority: int = 0,
        **kwargs: Any
    ) -> GenerationResult:
        """Queue a generation call and wait for its result.

        Args:
            prompt: Prompt text (required)
            images: Zero or more input images
            priority: Queue priority; higher is served first
            **kwargs: Additional chat completion parameters

        Returns:
            GenerationResult for the call

        Raises:
            ValueError: If the prompt or images are invalid
            GatewayError: If the call fails terminally
            QueueCancelledError: If the queue is cancelled first
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt is required and cannot be empty")

        limits = get_model_spec(self.model).limits
        if len(images) > limits.max_images:
            raise ValueError(
                f"{self.model} accepts at most {limits.max_images} image(s), got {len(images)}"
            )
        for image in images:
            problem = validate_image_payload(len(image.data), image.mime_type, self.model)
            if problem:
                raise ValueError(problem)

        messages = self.build_messages(prompt, images)

        async def invoke() -> GenerationResult:
            return await self._call(messages, **kwargs)

        return await self.queue.submit(invoke, priority)

    async def _call(self, messages: List[Dict[str, Any]], **kwargs: Any) -> GenerationResult:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **kwargs
            )
        except openai.APIStatusError as e:
            raise UpstreamFailure(e.status_code, e.message) from e
        except openai.APIConnectionError as e:
            raise UpstreamFailure(503, str(e)) from e

        return inspect_response(response)


def inspect_response(response: Any) -> GenerationResult:
    """Turn a completion into a result, or raise why there is none.

    Raises:
        UpstreamFailure: If the provider returned no usable content
    """
    choices = getattr(response, "choices", None) or []
    if not choices:
        raise UpstreamFailure(0, "Provider returned no candidates")

    choice = choices[0]
    finish_reason = getattr(choice, "finish_reason", None)
    if finish_reason and finish_reason.upper() in POLICY_FINISH_REASONS:
        raise UpstreamFailure(
            0, f"Generation stopped: {finish_reason}", finish_reason=finish_reason
        )

    message = getattr(choice, "message", None)
    text = getattr(message, "content", None)
    if not text:
        raise UpstreamFailure(
            0, "Provider returned an empty response", finish_reason=finish_reason
        )

    return GenerationResult(
        text=text,
        finish_reason=finish_reason,
        request_id=getattr(response, "id", None),
        response=response,
    )
