# src/llmbridge/api.py
"""
Core API Facade for the LLMBridge library.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from .config.loader import load_settings
from .config.models import ServiceConfig
from .exceptions import ConfigError, LLMBridgeError
from .lifecycle import CancellationToken, RequestLifecycleManager
from .models import (AIRequestParams, AIResponse, Message, ModelConfig,
                     ParsedResponse, Provider, RequestResult, Role)
from .providers.catalog import ProviderCatalog
from .providers.formatting import PromptFormatter
from .providers.local import LocalConnectionReport, LocalModelServer
from .providers.parsing import ResponseParser
from .providers.requests import RequestBuilder, TransportRequest
from .providers.routing import LocalEndpoint, prefers_chat_endpoint
from .providers.transport import HttpTransport, Transport
from .retry import (RetryOrchestrator, RetryPolicy, SleepFunc, Strategy,
                    order_strategies)

logger = logging.getLogger(__name__)

RequestInput = Union[AIRequestParams, Mapping[str, Any]]

CONNECTION_TEST_MESSAGE = "Hello"
CONNECTION_TEST_MAX_TOKENS = 10

_REDACTED_HEADERS = {"authorization", "x-api-key"}


def _redacted(request: TransportRequest) -> Dict[str, Any]:
    headers = {k: ("***" if k.lower() in _REDACTED_HEADERS else v) for k, v in request.headers.items()}
    body = dict(request.body or {})
    if body.get("apiKey"):
        body["apiKey"] = "***"
    return {"method": request.method, "url": request.url, "headers": headers, "body": body}


class LLMBridge:
    """
    Provider-agnostic client for cloud LLM APIs and the local model server.

    Construct it directly with a `ServiceConfig`, or use `LLMBridge.create()`
    to load the layered configuration. Every request is tracked by id so it
    can be cancelled with `cancel_request()`.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        transport: Optional[Transport] = None,
        formatter: Optional[PromptFormatter] = None,
        parser: Optional[ResponseParser] = None,
        lifecycle: Optional[RequestLifecycleManager] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._transport: Transport = transport or HttpTransport()
        self._builder = RequestBuilder(formatter)
        self._parser = parser or ResponseParser()
        self._local_server = LocalModelServer(self._transport, self._parser)
        self._catalog = ProviderCatalog(config, self._local_server)
        self._lifecycle = lifecycle or RequestLifecycleManager()
        self._sleep = sleep

    @classmethod
    async def create(
        cls,
        config_overrides: Optional[Dict[str, Any]] = None,
        config_file_path: Optional[str] = None,
        env_prefix: Optional[str] = "LLMBRIDGE",
        **kwargs: Any,
    ) -> "LLMBridge":
        """
        Creates an instance from the packaged defaults, user config file,
        environment variables and `config_overrides`. Extra keyword arguments
        go to the constructor (e.g. `transport=`).
        """
        logger.info("Initializing LLMBridge from configuration...")
        settings = load_settings(config_file_path, config_overrides, env_prefix)
        level = settings.logging.get("components", {}).get("llmbridge")
        if isinstance(level, str) and isinstance(logging.getLevelName(level.upper()), int):
            logging.getLogger("llmbridge").setLevel(level.upper())
            logger.debug(f"LLMBridge logger level set to: {level.upper()}")
        instance = cls(settings.to_service_config(), **kwargs)
        logger.info("LLMBridge initialization complete.")
        return instance

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> ServiceConfig:
        return self._catalog.snapshot()

    @property
    def catalog(self) -> ProviderCatalog:
        return self._catalog

    @property
    def lifecycle(self) -> RequestLifecycleManager:
        return self._lifecycle

    def update_config(self, partial: Optional[Mapping[str, Any]] = None, **changes: Any) -> ServiceConfig:
        """Shallow-merges top-level settings; see `ProviderCatalog.update_config()`."""
        return self._catalog.update_config(partial, **changes)

    def update_provider_config(
        self, provider: Union[Provider, str], api_key: Optional[str] = None, base_url: Optional[str] = None
    ) -> ServiceConfig:
        return self._catalog.update_provider_config(Provider(provider), api_key=api_key, base_url=base_url)

    async def get_available_models(self) -> List[ModelConfig]:
        """Configured cloud models plus discovered local models. Never fails on discovery errors."""
        return await self._catalog.list_available_models()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_params(params: RequestInput) -> AIRequestParams:
        if isinstance(params, AIRequestParams):
            return params
        try:
            return AIRequestParams.model_validate(params)
        except ValidationError as e:
            raise ConfigError(f"Invalid request parameters: {e}")

    async def _execute(
        self,
        params: AIRequestParams,
        config: ServiceConfig,
        request_id: str,
        token: Optional[CancellationToken],
        endpoint: Optional[LocalEndpoint] = None,
    ) -> ParsedResponse:
        """Builds, sends and parses one request."""
        if endpoint is not None:
            request = self._builder.build_local(params, config, endpoint=endpoint, cancel_token=token)
        else:
            request = self._builder.build(params, config, request_id, token)

        logger.debug(f"Sending request {request_id} to {request.url} (provider: {request.provider.value}, model: {params.model})")
        if config.log_raw_payloads and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"RAW LLM REQUEST ({request_id}): {json.dumps(_redacted(request), indent=2, default=str)}")

        response = await self._transport.send(request)

        if config.log_raw_payloads and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"RAW LLM RESPONSE ({request_id}, status {response.status}): {response.text}")
        return self._parser.parse(response.body, request.provider)

    async def _execute_local_with_retry(
        self,
        params: AIRequestParams,
        config: ServiceConfig,
        request_id: str,
        token: Optional[CancellationToken],
    ) -> ParsedResponse:
        def attempt(endpoint: Optional[LocalEndpoint]):
            return lambda: self._execute(params, config, request_id, token, endpoint)

        strategies = order_strategies(
            chat=Strategy("chat API", attempt(LocalEndpoint.CHAT)),
            generate=Strategy("generate API", attempt(LocalEndpoint.GENERATE)),
            generic=Strategy("direct call", attempt(None)),
            prefer_chat=prefers_chat_endpoint(params.messages, params.model),
        )
        probe = None
        if config.retry.probe_before_retry:
            async def probe():
                return await self._local_server.probe(config, params.model, include_model_test=False)
        orchestrator = RetryOrchestrator(RetryPolicy.from_settings(config.retry), sleep=self._sleep, probe=probe)
        return await orchestrator.run(strategies, params.model)

    async def send_request(self, params: RequestInput) -> AIResponse:
        """
        Sends a request and returns the normalized response.

        Local model server requests go through the retry orchestrator when
        `retry.enabled` is set; cloud requests fail on the first error.

        Raises:
            ConfigError: Invalid parameters or unsupported provider/mode combination.
            TransportError: Connection, timeout or HTTP status failure
                (`ModelNotFoundError`, `EmptyResponseError` and
                `RequestCancelledError` are subclasses).
            RetryExhaustedError: Every local retry attempt failed.
        """
        params = self._coerce_params(params)
        config = self._catalog.snapshot()
        provider = Provider(params.provider)

        with self._lifecycle.track() as (request_id, token):
            logger.info(f"Request {request_id}: provider '{provider.value}', model '{params.model}'.")
            if provider.is_local and config.retry.enabled:
                work = self._execute_local_with_retry(params, config, request_id, token)
            else:
                work = self._execute(params, config, request_id, token)
            try:
                parsed = await token.run(work, provider.value)
            except LLMBridgeError as e:
                logger.error(f"Request {request_id} failed: {e}")
                raise
        return AIResponse(text=parsed.text, request_id=request_id, usage=parsed.usage)

    async def try_send_request(self, params: RequestInput) -> RequestResult:
        """Like `send_request()`, but returns failures as a `RequestResult` instead of raising."""
        try:
            return RequestResult(response=await self.send_request(params))
        except LLMBridgeError as e:
            return RequestResult(error=e)

    async def send_local_request_with_retry(
        self,
        model: str,
        messages: Sequence[Union[Message, Mapping[str, Any]]],
        temperature: float = 0.7,
    ) -> AIResponse:
        """Sends a local model server request through the retry orchestrator regardless of `retry.enabled`."""
        params = self._coerce_params({
            "model": model,
            "messages": list(messages),
            "temperature": temperature,
            "provider": Provider.OLLAMA,
        })
        config = self._catalog.snapshot()
        with self._lifecycle.track() as (request_id, token):
            parsed = await token.run(
                self._execute_local_with_retry(params, config, request_id, token), Provider.OLLAMA.value
            )
        return AIResponse(text=parsed.text, request_id=request_id, usage=parsed.usage)

    def cancel_request(self, request_id: str) -> bool:
        """Cancels an in-flight request. Returns False if `request_id` is not in flight."""
        return self._lifecycle.cancel(request_id)

    # ------------------------------------------------------------------
    # Connection tests
    # ------------------------------------------------------------------

    async def test_connection(
        self,
        provider: Union[Provider, str],
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> bool:
        """
        Sends a minimal probe message and reports whether non-empty text came back.
        The local model server gets a single call without the retry sequence.
        """
        provider = Provider(provider)
        params = AIRequestParams(
            model=self._catalog.default_model_for(provider),
            messages=[Message(role=Role.USER, content=CONNECTION_TEST_MESSAGE)],
            max_tokens=CONNECTION_TEST_MAX_TOKENS,
            provider=provider,
            api_key=api_key,
            base_url=base_url,
        )
        config = self._catalog.snapshot()
        try:
            with self._lifecycle.track() as (request_id, token):
                parsed = await token.run(self._execute(params, config, request_id, token), provider.value)
        except LLMBridgeError as e:
            logger.warning(f"Connection test for provider '{provider.value}' failed: {e}")
            return False
        ok = bool(parsed.text.strip())
        logger.info(f"Connection test for provider '{provider.value}': {'ok' if ok else 'empty response'}")
        return ok

    async def test_local_connection(
        self, model: Optional[str] = None, include_model_test: bool = True
    ) -> LocalConnectionReport:
        """
        Probes the local model server; see `LocalModelServer.probe()`.

        Raises:
            TransportError: The server could not be reached on any route.
        """
        return await self._local_server.probe(self._catalog.snapshot(), model, include_model_test)

    # ------------------------------------------------------------------
    # Resource management
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Cancels in-flight requests and closes the transport."""
        for request_id in self._lifecycle.active_ids():
            self._lifecycle.cancel(request_id)
        await self._transport.close()
        logger.info("LLMBridge closed.")

    async def __aenter__(self) -> "LLMBridge":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
