# src/llmbridge/config/models.py
"""
Pydantic models for LLMBridge service configuration.

`ServiceConfig` is the validated form of the merged configuration layers
(packaged defaults, user TOML file, environment variables, explicit
overrides). Instances are immutable snapshots: runtime updates produce a new
instance instead of mutating the one a request may currently be reading.
"""

import json
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models import ModelConfig, Provider

# ==============================================================================
# Provider defaults
# ==============================================================================

DEFAULT_BASE_URLS: Dict[Provider, Optional[str]] = {
    Provider.OPENAI: "https://api.openai.com/v1",
    Provider.ANTHROPIC: "https://api.anthropic.com/v1",
    Provider.DEEPSEEK: "https://api.deepseek.com/v1",
    Provider.GEMINI: "https://generativelanguage.googleapis.com/v1beta",
    Provider.QWEN: "https://dashscope.aliyuncs.com/api/v1",
    Provider.GROQ: "https://api.groq.com/openai/v1",
    Provider.OLLAMA: "http://localhost:11434/api",
    Provider.CUSTOM: None,
}

BUNDLED_MODELS: Dict[Provider, Tuple[Tuple[str, str], ...]] = {
    Provider.OPENAI: (
        ("gpt-3.5-turbo", "GPT-3.5 Turbo"),
        ("gpt-4", "GPT-4"),
        ("gpt-4-turbo", "GPT-4 Turbo"),
    ),
    Provider.ANTHROPIC: (
        ("claude-3-opus-20240229", "Claude 3 Opus"),
        ("claude-3-sonnet-20240229", "Claude 3 Sonnet"),
        ("claude-3-haiku-20240307", "Claude 3 Haiku"),
    ),
    Provider.DEEPSEEK: (
        ("deepseek-chat", "DeepSeek Chat"),
        ("deepseek-coder", "DeepSeek Coder"),
    ),
    Provider.GEMINI: (
        ("gemini-pro", "Gemini Pro"),
        ("gemini-ultra", "Gemini Ultra"),
    ),
    Provider.QWEN: (
        ("qwen-turbo", "Qwen Turbo"),
        ("qwen-plus", "Qwen Plus"),
    ),
    Provider.GROQ: (
        ("llama2-70b-4096", "Llama 2 70B"),
        ("mixtral-8x7b-32768", "Mixtral 8x7B"),
    ),
    Provider.OLLAMA: (
        ("qwen2.5:7b", "Qwen 2.5 7B"),
    ),
    Provider.CUSTOM: (),
}

# Conventional environment variables holding vendor API keys.
VENDOR_KEY_ENV_VARS: Dict[Provider, str] = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.DEEPSEEK: "DEEPSEEK_API_KEY",
    Provider.GEMINI: "GEMINI_API_KEY",
    Provider.QWEN: "DASHSCOPE_API_KEY",
    Provider.GROQ: "GROQ_API_KEY",
}


def bundled_models(provider: Provider) -> Tuple[ModelConfig, ...]:
    """Returns the model list shipped for `provider`."""
    return tuple(
        ModelConfig(id=model_id, name=name, provider=provider)
        for model_id, name in BUNDLED_MODELS.get(provider, ())
    )


# ==============================================================================
# Configuration Models
# ==============================================================================


class ProviderConfig(BaseModel):
    """Per-provider connection settings and selectable models."""
    model_config = ConfigDict(frozen=True)

    api_key: Optional[str] = Field(default=None, description="API key sent to the provider or forwarded to the proxy.")
    base_url: Optional[str] = Field(default=None, description="Provider API root, e.g. https://api.openai.com/v1")
    models: Tuple[ModelConfig, ...] = Field(default=(), description="Models offered for this provider.")


class RetrySettings(BaseModel):
    """Settings for the local model server retry orchestrator."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(True, description="Route local model requests through the retry orchestrator.")
    max_retries: int = Field(2, ge=0, description="Retries per strategy; attempts per strategy is max_retries + 1.")
    initial_backoff: float = Field(0.8, ge=0, description="Seconds to wait before the first retry; doubles per attempt.")
    probe_before_retry: bool = Field(True, description="Probe the local server once before the first strategy.")


def _default_providers() -> Dict[Provider, ProviderConfig]:
    return {
        provider: ProviderConfig(base_url=DEFAULT_BASE_URLS.get(provider), models=bundled_models(provider))
        for provider in Provider
    }


class ServiceConfig(BaseModel):
    """
    Process-wide client settings.

    Provider tables given in the input are merged over the shipped defaults, so
    a partial configuration (for example only an API key) keeps the default
    base URL and model list of that provider.
    """
    model_config = ConfigDict(frozen=True)

    providers: Dict[Provider, ProviderConfig] = Field(default_factory=_default_providers)
    default_provider: Provider = Field(Provider.OLLAMA)
    proxy_url: str = Field("http://localhost:7070", description="Cloud provider proxy base URL.")
    use_proxy: bool = Field(True, description="Route cloud provider calls through the proxy.")
    local_model_enabled: bool = Field(True, description="Discover and use the local model server.")
    local_model_url: str = Field("http://localhost:11434", description="Local model server root URL.")
    local_model_proxy_url: Optional[str] = Field(
        None, description="Reverse proxy base for the local server; exposes /chat, /generate and /tags."
    )
    default_local_model: str = Field("qwen2.5:7b")
    request_timeout: float = Field(120.0, gt=0, description="Per HTTP call timeout in seconds.")
    probe_timeout: float = Field(5.0, gt=0)
    discovery_timeout: float = Field(10.0, gt=0)
    log_raw_payloads: bool = Field(False)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    @model_validator(mode="before")
    @classmethod
    def merge_provider_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        given = data.get("providers")
        if given is None:
            return data
        merged: Dict[Provider, Any] = dict(_default_providers())
        for key, value in dict(given).items():
            provider = Provider(key)
            if isinstance(value, ProviderConfig):
                merged[provider] = value
                continue
            base = merged[provider].model_dump()
            entry = dict(value or {})
            if "models" in entry:
                entry["models"] = [
                    {**m, "provider": m.get("provider", provider)} if isinstance(m, dict) else m
                    for m in entry["models"] or []
                ]
            base.update(entry)
            merged[provider] = base
        return {**data, "providers": merged}

    def provider_config(self, provider: Provider) -> ProviderConfig:
        """Returns the settings of `provider`, or empty settings if it is not configured."""
        return self.providers.get(Provider(provider), ProviderConfig())

    def to_json(self) -> str:
        """Serializes this configuration to a JSON blob."""
        return self.model_dump_json(indent=2)

    @classmethod
    def from_json(cls, blob: str) -> "ServiceConfig":
        """Restores a configuration written by `to_json()`."""
        return cls.model_validate(json.loads(blob))
