# src/llmbridge/config/__init__.py
"""
Configuration package for the LLMBridge library.

Sources are read with pydantic-settings (see `loader.LLMBridgeSettings`).

Configuration files:
    - default_config.toml: Packaged defaults
    - User config: ~/.config/llmbridge/config.toml
    - Custom config: Specified via LLMBridge.create(config_file_path=...)

Environment variables:
    - Prefix: LLMBRIDGE_
    - Nested keys use double underscores: LLMBRIDGE_PROVIDERS__OPENAI__API_KEY
    - Vendor key variables (OPENAI_API_KEY, DASHSCOPE_API_KEY, ...) fill missing API keys
"""

from .loader import (LLMBridgeSettings, load_default_config, load_service_config,
                     load_settings)
from .models import (BUNDLED_MODELS, DEFAULT_BASE_URLS, VENDOR_KEY_ENV_VARS,
                     ProviderConfig, RetrySettings, ServiceConfig,
                     bundled_models)

__all__ = [
    "BUNDLED_MODELS",
    "DEFAULT_BASE_URLS",
    "LLMBridgeSettings",
    "VENDOR_KEY_ENV_VARS",
    "ProviderConfig",
    "RetrySettings",
    "ServiceConfig",
    "bundled_models",
    "load_default_config",
    "load_service_config",
    "load_settings",
]
