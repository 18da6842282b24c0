"""
Tests for the inference layer: backend adapters and model-key routing.
"""

import json

import httpx
import pytest
from unittest.mock import AsyncMock


def _capture(responder):
    seen = []

    def handler(request):
        seen.append(request)
        return responder(request)

    return seen, httpx.MockTransport(handler)


class TestOpenAICompatBackend:

    @pytest.mark.asyncio
    async def test_payload_and_auth(self):
        from inference.openai_compat import OpenAICompatBackend
        seen, transport = _capture(lambda r: httpx.Response(200, json={"choices": []}))
        backend = OpenAICompatBackend("http://llm.test/", api_key="sk-1", transport=transport)

        tools = [{"type": "function", "function": {"name": "list_files"}}]
        await backend.call_llm("gpt-x", [{"role": "user", "content": "hi"}], tools=tools,
                               max_tokens=100, temperature=0.0)

        request = seen[0]
        assert str(request.url) == "http://llm.test/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-1"
        body = json.loads(request.content)
        assert body["model"] == "gpt-x"
        assert body["max_tokens"] == 100
        assert body["tools"] == tools
        assert body["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_no_tools_no_tool_choice(self):
        from inference.openai_compat import OpenAICompatBackend
        seen, transport = _capture(lambda r: httpx.Response(200, json={"choices": []}))
        await OpenAICompatBackend("http://llm.test", transport=transport).call_llm("m", [])
        body = json.loads(seen[0].content)
        assert "tools" not in body and "tool_choice" not in body
        assert "authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_error_status_raises_provider_error(self):
        from inference.base import LLMProviderError
        from inference.openai_compat import OpenAICompatBackend
        _, transport = _capture(lambda r: httpx.Response(502, text="bad gateway"))
        backend = OpenAICompatBackend("http://llm.test", transport=transport)
        with pytest.raises(LLMProviderError) as exc:
            await backend.call_llm("m", [])
        assert exc.value.status_code == 502

    @pytest.mark.asyncio
    async def test_unreachable_raises_provider_error(self):
        from inference.base import LLMProviderError
        from inference.openai_compat import OpenAICompatBackend

        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        backend = OpenAICompatBackend("http://llm.test", transport=httpx.MockTransport(refuse))
        with pytest.raises(LLMProviderError) as exc:
            await backend.call_llm("m", [])
        assert exc.value.status_code is None


class TestOllamaBackend:

    @pytest.mark.asyncio
    async def test_tool_calls_normalised(self):
        from inference.ollama import OllamaBackend
        reply = {
            "message": {"role": "assistant", "content": "", "tool_calls": [
                {"function": {"name": "search_files", "arguments": {"query": "budget"}}},
            ]},
            "done": True, "prompt_eval_count": 7, "eval_count": 3,
        }
        seen, transport = _capture(lambda r: httpx.Response(200, json=reply))
        backend = OllamaBackend("http://ollama.test", transport=transport)

        history = [
            {"role": "user", "content": "find budget"},
            {"role": "assistant", "content": None, "tool_calls": [
                {"id": "call_0", "function": {"name": "list_files", "arguments": '{"limit": 2}'}},
            ]},
        ]
        result = await backend.call_llm("llama3", history, max_tokens=50)

        sent = json.loads(seen[0].content)
        assert str(seen[0].url) == "http://ollama.test/api/chat"
        assert sent["stream"] is False
        assert sent["options"]["num_predict"] == 50
        assert sent["messages"][1]["content"] == ""
        assert sent["messages"][1]["tool_calls"][0]["function"]["arguments"] == {"limit": 2}

        choice = result["choices"][0]
        assert choice["finish_reason"] == "tool_calls"
        call = choice["message"]["tool_calls"][0]
        assert call["function"]["name"] == "search_files"
        assert json.loads(call["function"]["arguments"]) == {"query": "budget"}
        assert result["usage"]["total_tokens"] == 10


class TestInferenceRouter:

    def _config(self, **models):
        from profile import InferenceBackendConfig, InferenceConfig, ModelConfig, ModelsConfig
        config = InferenceConfig(backends=[InferenceBackendConfig(name="default")], models=ModelsConfig())
        for key, model in models.items():
            setattr(config.models, key, ModelConfig(**model))
        return config

    def test_builds_backends_from_config(self):
        from inference.ollama import OllamaBackend
        from inference.router import InferenceRouter
        from profile import InferenceBackendConfig, InferenceConfig
        config = InferenceConfig(backends=[
            InferenceBackendConfig(name="local", type="ollama", endpoint="http://o"),
            InferenceBackendConfig(name="off", enabled=False),
            InferenceBackendConfig(name="weird", type="carrier-pigeon"),
        ])
        router = InferenceRouter(config)
        assert list(router.backends) == ["local"]
        assert isinstance(router.backends["local"], OllamaBackend)
        assert router.default_backend == "local"

    def test_unknown_backend_falls_back_to_default(self):
        from inference.router import InferenceRouter
        config = self._config(planner={"model_id": "small", "backend": "missing"})
        default = AsyncMock()
        router = InferenceRouter(config, backends={"default": default})
        assert router.routes == {"planner": ("default", "small")}

    @pytest.mark.asyncio
    async def test_key_resolves_with_profile_defaults(self):
        from inference.router import InferenceRouter
        config = self._config(agent={"model_id": "big", "max_tokens": 999, "temperature": 0.7})
        default = AsyncMock()
        router = InferenceRouter(config, backends={"default": default})

        await router.call_llm("agent", [{"role": "user", "content": "x"}])
        kwargs = default.call_llm.call_args.kwargs
        assert kwargs["model_id"] == "big"
        assert kwargs["max_tokens"] == 999
        assert kwargs["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_caller_values_win(self):
        from inference.router import InferenceRouter
        config = self._config(agent={"model_id": "big", "max_tokens": 999})
        default = AsyncMock()
        router = InferenceRouter(config, backends={"default": default})
        await router.call_llm("agent", [], max_tokens=10, temperature=0.0)
        kwargs = default.call_llm.call_args.kwargs
        assert (kwargs["max_tokens"], kwargs["temperature"]) == (10, 0.0)

    @pytest.mark.asyncio
    async def test_raw_model_id_goes_to_default(self):
        from inference.router import InferenceRouter
        default = AsyncMock()
        router = InferenceRouter(self._config(), backends={"default": default})
        await router.call_llm("some-model-v2", [])
        assert default.call_llm.call_args.kwargs["model_id"] == "some-model-v2"
        assert default.call_llm.call_args.kwargs["max_tokens"] == 2048

    def test_no_backends(self):
        from inference.router import InferenceRouter
        router = InferenceRouter(self._config(agent={"model_id": "big"}), backends={})
        assert router.routes == {}
        with pytest.raises(ValueError):
            router.resolve("agent")
