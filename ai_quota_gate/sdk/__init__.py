"""
SDK for AI Quota Gate.

Provides a provider client whose calls go through the request queue.
"""

from .gemini_client import GenerationResult, GuardedGeminiClient, ImagePayload

__all__ = ["GenerationResult", "GuardedGeminiClient", "ImagePayload"]
