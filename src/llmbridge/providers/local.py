# src/llmbridge/providers/local.py
"""
Helpers for the locally hosted model server (Ollama): model discovery and the
connectivity probe.
"""

import logging
import time
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from ..config.models import ServiceConfig
from ..exceptions import LLMBridgeError, ModelNotFoundError, TransportError
from ..models import ModelConfig, Provider
from .parsing import ResponseParser
from .requests import TransportRequest
from .transport import Transport

logger = logging.getLogger(__name__)

CONNECTION_REMEDIATION = (
    "Could not connect to the local model server. Make sure that:\n"
    "1. Ollama is installed and running (run 'ollama serve')\n"
    "2. The default port 11434 is not blocked or used by another process\n"
    "3. OLLAMA_HOST is set when the server runs on another machine\n"
    "4. No firewall or proxy setting blocks the connection"
)

MODEL_TEST_PROMPT = "Hello, this is a connection test."


class ModelTestResult(BaseModel):
    """Outcome of the optional model call made by the connectivity probe."""
    ok: bool
    detail: str = ""
    status_code: Optional[int] = None


class LocalConnectionReport(BaseModel):
    """Result of a successful connectivity probe against the local model server."""
    method: str = Field(description="Route that answered: 'proxy' or 'direct'.")
    url: str = Field(description="Model listing URL that answered.")
    response_time: float = Field(description="Seconds from the start of the probe until a route answered.")
    models: List[str] = Field(default_factory=list, description="Model names the server reported.")
    has_requested_model: bool = False
    model_test: Optional[ModelTestResult] = None


def _model_names(body: object) -> List[str]:
    if not isinstance(body, dict):
        return []
    names = []
    for entry in body.get("models") or []:
        if isinstance(entry, dict) and isinstance(entry.get("name"), str):
            names.append(entry["name"])
    return names


class LocalModelServer:
    """Discovery and probing of the local model server over a `Transport`."""

    def __init__(self, transport: Transport, parser: Optional[ResponseParser] = None):
        self.transport = transport
        self.parser = parser or ResponseParser()

    def _routes(self, config: ServiceConfig) -> List[Tuple[str, str]]:
        routes = []
        if config.local_model_proxy_url:
            routes.append(("proxy", config.local_model_proxy_url.rstrip("/")))
        routes.append(("direct", f"{config.local_model_url.rstrip('/')}/api"))
        return routes

    async def list_models(self, config: ServiceConfig) -> List[ModelConfig]:
        """
        Lists the models installed on the server. The configured default local
        model is always part of the result.

        Raises:
            TransportError: The server could not be reached.
        """
        api_root = f"{config.local_model_url.rstrip('/')}/api"
        request = TransportRequest(
            method="GET",
            url=f"{api_root}/tags",
            provider=Provider.OLLAMA,
            model="",
            headers={"Accept": "application/json"},
            timeout=config.discovery_timeout,
        )
        response = await self.transport.send(request)
        models = [
            ModelConfig(id=name, name=name, provider=Provider.OLLAMA, local_path=api_root)
            for name in _model_names(response.body)
        ]
        if not any(m.id == config.default_local_model for m in models):
            models.append(self.default_model(config))
        logger.debug(f"Discovered {len(models)} local models.")
        return models

    @staticmethod
    def default_model(config: ServiceConfig) -> ModelConfig:
        """Entry for the configured default local model."""
        name = config.default_local_model
        for bundled in config.provider_config(Provider.OLLAMA).models:
            if bundled.id == name:
                name = bundled.name
                break
        return ModelConfig(
            id=config.default_local_model,
            name=name,
            provider=Provider.OLLAMA,
            local_path=f"{config.local_model_url.rstrip('/')}/api",
        )

    async def probe(
        self,
        config: ServiceConfig,
        model: Optional[str] = None,
        include_model_test: bool = True,
    ) -> LocalConnectionReport:
        """
        Tries the proxy route (when configured) and then the direct route to the
        server's model listing, and optionally makes a tiny chat call.

        A failed model test only annotates the report.

        Raises:
            TransportError: No route answered.
        """
        model = model or config.default_local_model
        start = time.monotonic()
        report: Optional[LocalConnectionReport] = None
        api_root = ""

        for method, root in self._routes(config):
            url = f"{root}/tags"
            request = TransportRequest(
                method="GET",
                url=url,
                provider=Provider.OLLAMA,
                model=model,
                headers={"Accept": "application/json"},
                timeout=config.probe_timeout,
            )
            try:
                response = await self.transport.send(request)
            except LLMBridgeError as e:
                logger.warning(f"Local model server probe via {method} route ({url}) failed: {e}")
                continue
            names = _model_names(response.body)
            report = LocalConnectionReport(
                method=method,
                url=url,
                response_time=time.monotonic() - start,
                models=names,
                has_requested_model=any(n.lower() == model.lower() for n in names),
            )
            api_root = root
            logger.info(f"Local model server reachable via {method} route; {len(names)} models listed.")
            break

        if report is None:
            raise TransportError(Provider.OLLAMA.value, CONNECTION_REMEDIATION)

        if include_model_test:
            if not report.has_requested_model:
                logger.warning(f"Model '{model}' is not in the server's model list; the model test may fail.")
            report.model_test = await self._test_model(config, api_root, model)
        return report

    async def _test_model(self, config: ServiceConfig, api_root: str, model: str) -> ModelTestResult:
        request = TransportRequest(
            method="POST",
            url=f"{api_root}/chat",
            provider=Provider.OLLAMA,
            model=model,
            headers={"Content-Type": "application/json"},
            body={
                "model": model,
                "messages": [{"role": "user", "content": MODEL_TEST_PROMPT}],
                "stream": False,
                "options": {"temperature": 0.01, "num_predict": 10},
            },
            timeout=config.discovery_timeout,
        )
        try:
            response = await self.transport.send(request)
        except ModelNotFoundError:
            detail = f"Model '{model}' is probably not installed; run 'ollama pull {model}'."
            logger.warning(detail)
            return ModelTestResult(ok=False, detail=detail, status_code=404)
        except TransportError as e:
            if e.status_code == 400:
                detail = f"Model request parameters may be invalid: {e}"
            else:
                detail = f"Model test failed: {e}"
            logger.warning(detail)
            return ModelTestResult(ok=False, detail=detail, status_code=e.status_code)

        text = self.parser.parse_local(response.body).text if response.body is not None else ""
        if not text:
            logger.warning("Model test returned no content although the status was successful.")
            return ModelTestResult(ok=True, detail="Empty model response.", status_code=response.status)
        return ModelTestResult(ok=True, detail=text[:50], status_code=response.status)
