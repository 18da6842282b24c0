"""
Abstract base class for all inference backend adapters.

Every backend adapter (OpenAI-compatible, Ollama) must implement this
interface so the InferenceRouter can treat them interchangeably. Adapters
always return OpenAI-shaped chat completion dicts.
"""

import logging
from abc import ABC, abstractmethod

import httpx

logger = logging.getLogger(__name__)


class LLMProviderError(Exception):
    """The model provider answered with a non-success status or was unreachable.

    This is the only failure the assistant treats as turn-ending; planner,
    summarizer and tool failures all degrade instead.
    """

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class InferenceBackend(ABC):
    """Abstract inference backend interface.

    Concrete adapters implement the HTTP-specific details for their server
    type while exposing a uniform chat completion call.
    """

    def __init__(self, base_url: str, api_key: str = "", default_timeout: float = 120,
                 transport: httpx.AsyncBaseTransport = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.default_timeout = default_timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, path: str, payload: dict, timeout: float = None) -> dict:
        """POST a JSON payload and return the decoded body.

        Non-2xx answers and transport errors are raised as LLMProviderError.
        """
        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.default_timeout, transport=self._transport,
            ) as client:
                resp = await client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers=self._headers(),
                )
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as e:
            logger.error("LLM API error %s: %s", e.response.status_code,
                         e.response.text[:500])
            raise LLMProviderError(
                f"AI service returned error: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("LLM API unreachable at %s: %s", self.base_url, e)
            raise LLMProviderError(f"AI service unreachable: {e}") from e

    # ── Chat Completion ──

    @abstractmethod
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
        """Non-streaming chat completion.

        Args:
            model_id: Model identifier as known by the backend.
            messages: OpenAI-format message list.
            tools: Optional tool definitions (OpenAI function-calling schema).
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            tool_choice: How to select tools ('auto', 'none', or a tool name).
            timeout: Per-request timeout override.

        Returns:
            OpenAI-compatible response dict with 'choices', 'usage', etc.
        """
        ...
