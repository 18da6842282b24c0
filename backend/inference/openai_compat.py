"""
OpenAI-compatible inference backend adapter.

Covers any server that implements the OpenAI API contract:
  - OpenAI and Azure-style gateways
  - vLLM
  - LM Studio
  - Any other /v1/chat/completions server
"""

import logging

from inference.base import InferenceBackend

logger = logging.getLogger(__name__)


class OpenAICompatBackend(InferenceBackend):
    """Backend adapter for OpenAI-compatible inference servers."""

    def __init__(self, base_url: str = "http://localhost:1234", api_key: str = "",
                 default_timeout: float = 120, transport=None):
        super().__init__(base_url, api_key, default_timeout, transport)

    async def call_llm(
        self,
        model_id: str,
        messages: list[dict],
        tools: list[dict] = None,
        max_tokens: int = 2048,
        temperature: float = 0.3,
        tool_choice: str = None,
        timeout: float = None,
    ) -> dict:
        """Non-streaming chat completion via /v1/chat/completions."""
        payload = {
            "model": model_id,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = tool_choice or "auto"

        logger.debug("Calling LLM model=%s messages=%d tools=%d",
                     model_id, len(messages), len(tools or []))
        return await self._post("/v1/chat/completions", payload, timeout=timeout)
