"""
Ollama inference backend adapter.

Wraps Ollama's native /api/chat endpoint and normalizes requests and
responses to/from OpenAI format (including tool calls) so the agents can
use a uniform interface.
"""

import json
import logging
import time
import uuid

from inference.base import InferenceBackend

logger = logging.getLogger(__name__)


def _openai_messages_to_ollama(messages: list[dict]) -> list[dict]:
    """Convert OpenAI-format messages to Ollama format.

    Ollama expects tool call arguments as objects rather than JSON strings
    and has no tool_call_id on tool results.
    """
    converted = []
    for msg in messages:
        entry = {"role": msg["role"], "content": msg.get("content") or ""}
        if msg.get("tool_calls"):
            calls = []
            for tc in msg["tool_calls"]:
                fn = tc.get("function", {})
                args = fn.get("arguments", "{}")
                if isinstance(args, str):
                    try:
                        args = json.loads(args or "{}")
                    except json.JSONDecodeError:
                        args = {}
                calls.append({"function": {"name": fn.get("name", ""), "arguments": args}})
            entry["tool_calls"] = calls
        converted.append(entry)
    return converted


def _ollama_response_to_openai(ollama_resp: dict, model_id: str) -> dict:
    """Convert Ollama's /api/chat response to OpenAI-compatible format."""
    message = ollama_resp.get("message", {})
    out_message = {
        "role": message.get("role", "assistant"),
        "content": message.get("content", ""),
    }

    tool_calls = []
    for tc in message.get("tool_calls") or []:
        fn = tc.get("function", {})
        tool_calls.append({
            "id": f"call_{uuid.uuid4().hex[:12]}",
            "type": "function",
            "function": {
                "name": fn.get("name", ""),
                "arguments": json.dumps(fn.get("arguments", {})),
            },
        })
    if tool_calls:
        out_message["tool_calls"] = tool_calls

    prompt_tokens = ollama_resp.get("prompt_eval_count", 0)
    completion_tokens = ollama_resp.get("eval_count", 0)

    return {
        "id": f"ollama-{int(time.time() * 1000)}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model_id,
        "choices": [
            {
                "index": 0,
                "message": out_message,
                "finish_reason": "tool_calls" if tool_calls else (
                    "stop" if ollama_resp.get("done") else "length"),
            }
        ],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


class OllamaBackend(InferenceBackend):
    """Backend adapter for Ollama inference server."""

    def __init__(self, base_url: str = "http://localhost:11434", api_key: str = "",
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
        """Non-streaming chat completion via /api/chat."""
        payload = {
            "model": model_id,
            "messages": _openai_messages_to_ollama(messages),
            "stream": False,
            "options": {
                "num_predict": max_tokens,
                "temperature": temperature,
            },
        }
        # Ollama supports tools natively since v0.3+
        if tools:
            payload["tools"] = tools

        ollama_resp = await self._post("/api/chat", payload, timeout=timeout)
        return _ollama_response_to_openai(ollama_resp, model_id)
