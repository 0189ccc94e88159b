# src/llmbridge/__init__.py
"""
LLMBridge - a provider-agnostic LLM client.

One request/response contract over cloud APIs (OpenAI-compatible, Anthropic,
Gemini, Qwen, Groq, DeepSeek), an optional cloud proxy, and a locally hosted
Ollama server, with per-family prompt formatting, tolerant response parsing,
multi-strategy retries for local calls, and request cancellation.
"""

from importlib.metadata import PackageNotFoundError, version

from .api import LLMBridge
from .chat import ChatThread, ChatThreadManager
from .config import ProviderConfig, RetrySettings, ServiceConfig
from .exceptions import (
    AttemptRecord,
    ConfigError,
    EmptyResponseError,
    ErrorKind,
    LLMBridgeError,
    ModelNotFoundError,
    ProviderError,
    RequestCancelledError,
    RetryExhaustedError,
    ThreadNotFoundError,
    TransportError,
    is_retryable,
)
from .models import (
    AIRequestParams,
    AIResponse,
    Message,
    ModelConfig,
    ParsedResponse,
    Provider,
    RequestResult,
    Role,
    UsageStats,
)
from .providers.local import LocalConnectionReport

try:
    __version__ = version("llmbridge")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = [
    "LLMBridge",
    "ChatThread",
    "ChatThreadManager",
    "ProviderConfig",
    "RetrySettings",
    "ServiceConfig",
    "AttemptRecord",
    "ConfigError",
    "EmptyResponseError",
    "ErrorKind",
    "LLMBridgeError",
    "ModelNotFoundError",
    "ProviderError",
    "RequestCancelledError",
    "RetryExhaustedError",
    "ThreadNotFoundError",
    "TransportError",
    "is_retryable",
    "AIRequestParams",
    "AIResponse",
    "Message",
    "ModelConfig",
    "ParsedResponse",
    "Provider",
    "RequestResult",
    "Role",
    "UsageStats",
    "LocalConnectionReport",
    "__version__",
]
