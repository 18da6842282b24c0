"""
Profile system: loads profile.yaml and provides validated configuration.

The profile is the single source of truth for deployment settings:
service name, CORS origins, the shared Redis store, the storage service
the agents call into, inference backends and model assignments, and the
numeric limits of the assistant engine (retries, rate window, approval
TTL, memory window, worker pool).

Usage:
    from profile import get_profile
    profile = get_profile()
    print(profile.limits.max_tool_retries)
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

# ── Profile Path Resolution ──
_PROFILE_PATH_ENV = os.environ.get("PROFILE_PATH")
_PROJECT_ROOT = Path(__file__).parent.parent
_DEFAULT_PROFILE_PATH = _PROJECT_ROOT / "profile.yaml"


# ── Dataclasses ──

@dataclass
class SystemConfig:
    name: str = "Drive Assistant"
    description: str = ""


@dataclass
class WebConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8000",
        "http://127.0.0.1:8000",
    ])


@dataclass
class RedisConfig:
    url: str = "redis://localhost:6379/0"  # overridden by DRIVE_REDIS_URL


@dataclass
class StorageConfig:
    endpoint: str = "http://localhost:5000"
    timeout: float = 30.0
    db_path: str = ""  # conversation store; empty = backend/assistant.db


@dataclass
class InferenceBackendConfig:
    name: str = "default"
    type: str = "openai"  # openai | ollama
    endpoint: str = "http://localhost:1234"
    api_key: str = ""  # loaded from DRIVE_LLM_API_KEY env var
    enabled: bool = True


@dataclass
class ModelConfig:
    model_id: str = ""
    backend: str = "default"
    max_tokens: int = 4096
    temperature: float = 0.3


# Model roles the engine calls; each maps to a backend and model id
MODEL_KEYS = ("agent", "planner", "summarizer")


@dataclass
class ModelsConfig:
    agent: ModelConfig = field(default_factory=ModelConfig)
    planner: ModelConfig = field(default_factory=lambda: ModelConfig(
        max_tokens=800, temperature=0.1))
    summarizer: ModelConfig = field(default_factory=lambda: ModelConfig(
        max_tokens=500, temperature=0.2))


@dataclass
class InferenceConfig:
    backends: list[InferenceBackendConfig] = field(default_factory=lambda: [InferenceBackendConfig()])
    models: ModelsConfig = field(default_factory=ModelsConfig)


@dataclass
class LimitsConfig:
    max_tool_retries: int = 2
    rate_window_seconds: int = 60
    max_ops_per_window: int = 50
    approval_ttl_seconds: int = 300
    approval_sweep_interval: int = 60
    memory_sliding_window: int = 10
    memory_summary_threshold: int = 16
    task_complexity_threshold: int = 2
    max_tool_calls_per_turn: int = 15
    max_context_tokens: int = 120_000
    max_tool_result_chars: int = 20_000
    worker_concurrency: int = 3
    task_result_ttl: int = 300
    lock_ttl: int = 30
    lock_retries: int = 3
    lock_retry_delay: float = 0.2


@dataclass
class Profile:
    system: SystemConfig = field(default_factory=SystemConfig)
    web: WebConfig = field(default_factory=WebConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)


# ── Parsing ──

# Flat sections: YAML key -> dataclass
_SECTIONS = {
    "system": SystemConfig,
    "web": WebConfig,
    "redis": RedisConfig,
    "storage": StorageConfig,
    "limits": LimitsConfig,
}


def _parse_dict(data: dict, cls, base=None):
    """Build a dataclass from a dict, ignoring unknown keys.

    Missing keys keep the values of `base` (or the class defaults).
    """
    known = {f.name for f in dataclasses.fields(cls)}
    values = dataclasses.asdict(base) if base is not None else {}
    values.update({k: v for k, v in data.items() if k in known})
    return cls(**values)


def _parse_inference(raw: dict) -> InferenceConfig:
    backends = []
    for entry in raw.get("backends") or []:
        if not isinstance(entry, dict):
            continue
        data = dict(entry)
        data.setdefault("api_key", os.environ.get("DRIVE_LLM_API_KEY", ""))
        backends.append(_parse_dict(data, InferenceBackendConfig))

    models = ModelsConfig()
    models_raw = raw.get("models")
    if isinstance(models_raw, dict):
        for key in MODEL_KEYS:
            if isinstance(models_raw.get(key), dict):
                # Per-key defaults (planner runs cooler and shorter) survive partial overrides
                setattr(models, key, _parse_dict(models_raw[key], ModelConfig, getattr(models, key)))

    return InferenceConfig(backends=backends or [InferenceBackendConfig()], models=models)


def load_profile_from_dict(raw: dict) -> Profile:
    """Parse a raw YAML mapping into a Profile. Malformed sections keep their defaults."""
    profile = Profile()
    for name, cls in _SECTIONS.items():
        if isinstance(raw.get(name), dict):
            setattr(profile, name, _parse_dict(raw[name], cls))
    if isinstance(raw.get("inference"), dict):
        profile.inference = _parse_inference(raw["inference"])
    return profile


def _load_profile() -> Profile:
    """Load profile from YAML file. Falls back to defaults if missing."""
    profile_path = Path(_PROFILE_PATH_ENV) if _PROFILE_PATH_ENV else _DEFAULT_PROFILE_PATH

    if not profile_path.exists():
        logger.info("No profile.yaml found at %s, using defaults", profile_path)
        return Profile()

    try:
        raw = yaml.safe_load(profile_path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load %s: %s, using defaults", profile_path, e)
        return Profile()
    if not isinstance(raw, dict):
        logger.warning("%s is not a YAML mapping, using defaults", profile_path)
        return Profile()

    profile = load_profile_from_dict(raw)
    logger.info("Profile loaded: system=%s, backends=%s",
                profile.system.name, [b.name for b in profile.inference.backends])
    return profile


# ── Singleton ──

_profile: Optional[Profile] = None


def get_profile() -> Profile:
    """Return the validated profile singleton. Loads on first call."""
    global _profile
    if _profile is None:
        _profile = _load_profile()
    return _profile
