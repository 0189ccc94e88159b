# src/llmbridge/providers/requests.py
"""
Construction of transport-level requests.

`RequestBuilder` turns caller-facing `AIRequestParams` plus a `ServiceConfig`
snapshot into a `TransportRequest` (method, URL, headers, JSON body). Three
routes exist:

* the local model server, choosing the chat or generate endpoint;
* the cloud provider proxy at `{proxy_url}/{provider}` when `use_proxy` is on;
* vendor-native direct calls (OpenAI-compatible chat completions, Anthropic messages).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config.models import ServiceConfig
from ..exceptions import ConfigError
from ..lifecycle import CancellationToken
from ..models import AIRequestParams, Message, Provider, Role
from .formatting import PromptFormatter
from .routing import LocalEndpoint, select_local_endpoint

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_LOCAL_NUM_PREDICT = 2048
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_DEFAULT_MAX_TOKENS = 1024

# Providers whose direct API follows the OpenAI chat completions format.
OPENAI_COMPATIBLE_PROVIDERS = frozenset({
    Provider.OPENAI, Provider.GROQ, Provider.DEEPSEEK, Provider.CUSTOM,
})


@dataclass
class TransportRequest:
    """One HTTP call, fully described. `endpoint` is set for local model server calls."""
    method: str
    url: str
    provider: Provider
    model: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None
    timeout: float = 120.0
    endpoint: Optional[LocalEndpoint] = None
    cancel_token: Optional[CancellationToken] = None


def local_api_url(config: ServiceConfig, path: str, base_url: Optional[str] = None) -> str:
    """
    URL of a local model server route (`chat`, `generate`, `tags`).

    Uses the reverse proxy when one is configured, else the server's native
    `/api/<path>`. An explicit `base_url` is treated as the native API root.
    """
    if base_url:
        return f"{base_url.rstrip('/')}/{path}"
    if config.local_model_proxy_url:
        return f"{config.local_model_proxy_url.rstrip('/')}/{path}"
    return f"{config.local_model_url.rstrip('/')}/api/{path}"


class RequestBuilder:
    """Builds `TransportRequest`s. Stateless apart from its prompt formatter."""

    def __init__(self, formatter: Optional[PromptFormatter] = None):
        self.formatter = formatter or PromptFormatter()

    def build(
        self,
        params: AIRequestParams,
        config: ServiceConfig,
        request_id: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TransportRequest:
        """
        Builds the request for `params` following the routing rules above.

        Raises:
            ConfigError: Unsupported provider/mode combination or missing base URL.
        """
        provider = Provider(params.provider)
        if provider.is_local:
            return self.build_local(params, config, cancel_token=cancel_token)
        if config.use_proxy:
            return self.build_proxy(params, config, request_id, cancel_token)
        return self.build_direct(params, config, cancel_token)

    def build_local(
        self,
        params: AIRequestParams,
        config: ServiceConfig,
        endpoint: Optional[LocalEndpoint] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TransportRequest:
        """
        Builds a local model server request. `endpoint` forces chat or generate;
        otherwise the routing heuristic decides. Streaming is always disabled.
        """
        if endpoint is None:
            endpoint = select_local_endpoint(params.messages, params.model)
        logger.debug(f"Using local '{endpoint.value}' endpoint for model '{params.model}'.")

        body: Dict[str, Any] = {"model": params.model}
        if endpoint == LocalEndpoint.CHAT:
            body["messages"] = [{"role": m.role.value, "content": m.content} for m in params.messages]
        else:
            body["prompt"] = self.formatter.format(params.messages, params.model)
        body["options"] = {
            "temperature": DEFAULT_TEMPERATURE if params.temperature is None else params.temperature,
            "num_predict": params.max_tokens or DEFAULT_LOCAL_NUM_PREDICT,
        }
        body["stream"] = False

        return TransportRequest(
            method="POST",
            url=local_api_url(config, endpoint.value, params.base_url),
            provider=Provider.OLLAMA,
            model=params.model,
            headers={"Content-Type": "application/json"},
            body=body,
            timeout=config.request_timeout,
            endpoint=endpoint,
            cancel_token=cancel_token,
        )

    def build_proxy(
        self,
        params: AIRequestParams,
        config: ServiceConfig,
        request_id: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TransportRequest:
        provider = Provider(params.provider)
        provider_config = config.provider_config(provider)
        body: Dict[str, Any] = {
            "model": params.model,
            "messages": [m.to_wire() for m in params.messages],
            "temperature": DEFAULT_TEMPERATURE if params.temperature is None else params.temperature,
            "max_tokens": params.max_tokens,
            "stream": params.stream,
            "requestId": request_id,
            "apiKey": params.api_key or provider_config.api_key,
            "apiEndpoint": params.base_url or provider_config.base_url,
        }
        return TransportRequest(
            method="POST",
            url=f"{config.proxy_url.rstrip('/')}/{provider.value}",
            provider=provider,
            model=params.model,
            headers={"Content-Type": "application/json"},
            body={k: v for k, v in body.items() if v is not None},
            timeout=config.request_timeout,
            cancel_token=cancel_token,
        )

    def build_direct(
        self,
        params: AIRequestParams,
        config: ServiceConfig,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TransportRequest:
        provider = Provider(params.provider)
        provider_config = config.provider_config(provider)
        api_key = params.api_key or provider_config.api_key
        base_url = params.base_url or provider_config.base_url
        temperature = DEFAULT_TEMPERATURE if params.temperature is None else params.temperature

        if provider in OPENAI_COMPATIBLE_PROVIDERS:
            if not base_url:
                raise ConfigError(f"No base URL configured for provider '{provider.value}'.")
            headers = {"Content-Type": "application/json"}
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            body: Dict[str, Any] = {
                "model": params.model,
                "messages": [m.to_wire() for m in params.messages],
                "temperature": temperature,
                "stream": False,
            }
            if params.max_tokens is not None:
                body["max_tokens"] = params.max_tokens
            url = f"{base_url.rstrip('/')}/chat/completions"
        elif provider == Provider.ANTHROPIC:
            if not base_url:
                raise ConfigError("No base URL configured for provider 'anthropic'.")
            headers = {
                "Content-Type": "application/json",
                "anthropic-version": ANTHROPIC_VERSION,
            }
            if api_key:
                headers["x-api-key"] = api_key
            body = {
                "model": params.model,
                "messages": _anthropic_messages(params.messages),
                "temperature": temperature,
                "max_tokens": params.max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS,
                "stream": False,
            }
            system = "\n\n".join(m.content for m in params.messages if m.role == Role.SYSTEM)
            if system:
                body["system"] = system
            url = f"{base_url.rstrip('/')}/messages"
        else:
            raise ConfigError(
                f"Direct API call not supported for provider: {provider.value}. Enable the proxy to use it."
            )

        return TransportRequest(
            method="POST",
            url=url,
            provider=provider,
            model=params.model,
            headers=headers,
            body=body,
            timeout=config.request_timeout,
            cancel_token=cancel_token,
        )


def _anthropic_messages(messages: Sequence[Message]) -> List[Dict[str, str]]:
    converted = []
    for message in messages:
        if message.role == Role.SYSTEM:
            continue
        if message.role == Role.FUNCTION:
            converted.append({"role": "user", "content": f"Function {message.name}: {message.content}"})
        else:
            converted.append({"role": message.role.value, "content": message.content})
    return converted
