# src/llmbridge/providers/catalog.py
"""
Provider catalog: the current `ServiceConfig` plus model listing.

The configuration is held as an immutable snapshot behind a lock. Updates
build a new snapshot and swap it in, so a request that already read the
previous snapshot keeps a consistent view of it.
"""

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from ..config.models import ProviderConfig, ServiceConfig
from ..exceptions import ConfigError, LLMBridgeError
from ..models import ModelConfig, Provider
from .local import LocalModelServer

logger = logging.getLogger(__name__)

# Used when a provider has no configured models.
DEFAULT_MODEL_IDS: Dict[Provider, str] = {
    Provider.OPENAI: "gpt-3.5-turbo",
    Provider.ANTHROPIC: "claude-3-haiku-20240307",
    Provider.DEEPSEEK: "deepseek-chat",
    Provider.GEMINI: "gemini-pro",
    Provider.QWEN: "qwen-turbo",
    Provider.GROQ: "llama2-70b-4096",
    Provider.OLLAMA: "qwen2.5:7b",
}


class ProviderCatalog:
    """Thread-safe holder of the service configuration."""

    def __init__(self, config: Optional[ServiceConfig] = None, local_server: Optional[LocalModelServer] = None):
        self._lock = threading.Lock()
        self._config = config or ServiceConfig()
        self.local_server = local_server

    def snapshot(self) -> ServiceConfig:
        """The current configuration. Never mutated after it is returned."""
        with self._lock:
            return self._config

    def replace(self, config: ServiceConfig) -> None:
        with self._lock:
            self._config = config

    def update_config(self, partial: Optional[Mapping[str, Any]] = None, **changes: Any) -> ServiceConfig:
        """
        Shallow-merges `partial` (and keyword changes) into the top level of the
        configuration and returns the new snapshot.
        """
        update = {**(partial or {}), **changes}
        with self._lock:
            data = self._config.model_dump()
            data.update(update)
            try:
                self._config = ServiceConfig.model_validate(data)
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration update: {e}")
            new_config = self._config
        logger.info(f"Service configuration updated: {sorted(update)}")
        return new_config

    def update_provider_config(
        self,
        provider: Provider,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        models: Optional[Sequence[ModelConfig]] = None,
    ) -> ServiceConfig:
        """Merges the given values into one provider's settings, creating them if absent."""
        provider = Provider(provider)
        with self._lock:
            current = self._config.providers.get(provider, ProviderConfig())
            changes: Dict[str, Any] = {}
            if api_key is not None:
                changes["api_key"] = api_key
            if base_url is not None:
                changes["base_url"] = base_url
            if models is not None:
                changes["models"] = tuple(models)
            providers = dict(self._config.providers)
            providers[provider] = current.model_copy(update=changes)
            self._config = self._config.model_copy(update={"providers": providers})
            new_config = self._config
        logger.info(f"Provider configuration updated for '{provider.value}': {sorted(changes)}")
        return new_config

    def default_model_for(self, provider: Provider) -> str:
        """First configured model of `provider`, else its well-known default."""
        provider = Provider(provider)
        config = self.snapshot()
        models = config.provider_config(provider).models
        if models:
            return models[0].id
        if provider.is_local:
            return config.default_local_model
        return DEFAULT_MODEL_IDS.get(provider, "")

    def configured_models(self, config: Optional[ServiceConfig] = None) -> List[ModelConfig]:
        """Models from the configuration. Local models are left to discovery when it is enabled."""
        config = config or self.snapshot()
        models: List[ModelConfig] = []
        for provider, provider_config in config.providers.items():
            if provider.is_local and config.local_model_enabled:
                continue
            models.extend(provider_config.models)
        return models

    async def list_available_models(self) -> List[ModelConfig]:
        """
        Configured cloud models followed by models discovered on the local
        server. Discovery failure is logged and replaced by the default local model.
        """
        config = self.snapshot()
        models = self.configured_models(config)
        if not config.local_model_enabled:
            return models
        if self.local_server is None:
            models.append(LocalModelServer.default_model(config))
            return models
        try:
            models.extend(await self.local_server.list_models(config))
        except LLMBridgeError as e:
            logger.warning(f"Failed to fetch local models, using default local model: {e}")
            models.append(LocalModelServer.default_model(config))
        return models
