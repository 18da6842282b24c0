"""
Inference package: multi-backend chat completion layer.

Provides adapters for OpenAI-compatible servers and Ollama, and a router
that maps model keys to the correct backend based on profile configuration.

Quick start:
    from inference import get_router
    router = get_router()
    result = await router.call_llm("agent", messages=[...])
"""

from inference.base import InferenceBackend, LLMProviderError
from inference.openai_compat import OpenAICompatBackend
from inference.ollama import OllamaBackend
from inference.router import InferenceRouter, get_router

__all__ = [
    "InferenceBackend",
    "LLMProviderError",
    "OpenAICompatBackend",
    "OllamaBackend",
    "InferenceRouter",
    "get_router",
]
