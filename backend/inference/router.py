"""
InferenceRouter: maps model keys (agent, planner, summarizer) to backends.

Backends and model assignments come from `profile.inference`. A name that is
not a configured key is treated as a raw model id on the default backend.
"""

import logging
from typing import Optional

from profile import MODEL_KEYS, InferenceConfig, get_profile

from inference.base import InferenceBackend
from inference.openai_compat import OpenAICompatBackend
from inference.ollama import OllamaBackend

logger = logging.getLogger(__name__)

_BACKEND_CLASSES: dict[str, type[InferenceBackend]] = {
    "openai": OpenAICompatBackend,
    "ollama": OllamaBackend,
}

# Used when neither the caller nor the profile sets them
_FALLBACK_MAX_TOKENS = 2048
_FALLBACK_TEMPERATURE = 0.3


class InferenceRouter:
    def __init__(self, config: InferenceConfig, backends: dict[str, InferenceBackend] = None):
        self._config = config
        self.backends = backends if backends is not None else self._build_backends(config)
        if "default" in self.backends:
            self.default_backend: Optional[str] = "default"
        else:
            self.default_backend = next(iter(self.backends), None)
        if self.default_backend is None:
            logger.warning("No inference backends configured or enabled")
        self.routes = self._map_models(config)

    @staticmethod
    def _build_backends(config: InferenceConfig) -> dict[str, InferenceBackend]:
        backends = {}
        for cfg in config.backends:
            if not cfg.enabled:
                logger.info("Skipping disabled backend: %s", cfg.name)
                continue
            adapter_cls = _BACKEND_CLASSES.get(cfg.type.lower())
            if adapter_cls is None:
                logger.error("Unknown backend type '%s' for '%s' (supported: %s)",
                             cfg.type, cfg.name, ", ".join(_BACKEND_CLASSES))
                continue
            backends[cfg.name] = adapter_cls(base_url=cfg.endpoint, api_key=cfg.api_key)
            logger.info("Registered backend '%s' (%s) at %s", cfg.name, cfg.type, cfg.endpoint)
        return backends

    def _map_models(self, config: InferenceConfig) -> dict[str, tuple[str, str]]:
        """model key -> (backend name, model id) for every key with a model id."""
        routes = {}
        for key in MODEL_KEYS:
            model = getattr(config.models, key)
            if not model.model_id:
                continue
            backend = model.backend or "default"
            if backend not in self.backends:
                if self.default_backend is None:
                    logger.error("No backend for model key '%s'", key)
                    continue
                logger.warning("Backend '%s' for '%s' not found, using '%s'",
                               backend, key, self.default_backend)
                backend = self.default_backend
            routes[key] = (backend, model.model_id)
            logger.info("Model key '%s' -> %s on %s", key, model.model_id, backend)
        return routes

    def resolve(self, model_key_or_id: str) -> tuple[InferenceBackend, str]:
        if model_key_or_id in self.routes:
            backend, model_id = self.routes[model_key_or_id]
            return self.backends[backend], model_id
        if self.default_backend is None:
            raise ValueError(f"Cannot resolve model '{model_key_or_id}': no default backend")
        return self.backends[self.default_backend], model_key_or_id

    async def call_llm(self, model_key_or_id: str, messages: list[dict], tools: list[dict] = None,
                       max_tokens: int = None, temperature: float = None,
                       tool_choice: str = None, timeout: float = None) -> dict:
        """Chat completion on the backend serving this key.

        Unset max_tokens and temperature come from the key's profile entry.

        Raises:
            LLMProviderError: The backend failed or was unreachable.
        """
        backend, model_id = self.resolve(model_key_or_id)
        model = getattr(self._config.models, model_key_or_id, None) if model_key_or_id in MODEL_KEYS else None
        if max_tokens is None:
            max_tokens = model.max_tokens if model else _FALLBACK_MAX_TOKENS
        if temperature is None:
            temperature = model.temperature if model else _FALLBACK_TEMPERATURE
        return await backend.call_llm(
            model_id=model_id, messages=messages, tools=tools,
            max_tokens=max_tokens, temperature=temperature,
            tool_choice=tool_choice, timeout=timeout,
        )


# ── Singleton ──

_router: Optional[InferenceRouter] = None


def get_router() -> InferenceRouter:
    """Return the process-wide router, built from the profile on first call."""
    global _router
    if _router is None:
        _router = InferenceRouter(get_profile().inference)
    return _router
