# tests/conftest.py
"""
Shared fixtures for LLMBridge tests.

Network access is replaced by `FakeTransport`, which answers requests from
per-URL scripted responses and records every request it receives.
"""

import json
from typing import Any, Callable, Dict, List, Optional

import pytest

from llmbridge.api import LLMBridge
from llmbridge.config.models import RetrySettings, ServiceConfig
from llmbridge.exceptions import TransportError
from llmbridge.providers.requests import TransportRequest
from llmbridge.providers.transport import TransportResponse, raise_for_status

# =============================================================================
# FAKE TRANSPORT
# =============================================================================


def make_response(body: Any, status: int = 200, url: str = "") -> TransportResponse:
    """Build a TransportResponse the way HttpTransport would decode it."""
    if body is None:
        text = ""
    elif isinstance(body, str):
        text = body
    else:
        text = json.dumps(body)
    return TransportResponse(status=status, body=body, text=text, url=url)


class _Route:
    def __init__(self, url_part: str, outcomes: List[Any]):
        self.url_part = url_part
        self.outcomes = outcomes
        self.calls = 0

    def next_outcome(self) -> Any:
        index = min(self.calls, len(self.outcomes) - 1)
        self.calls += 1
        return self.outcomes[index]


class FakeTransport:
    """
    Scripted transport.

    `on(url_part, *outcomes)` registers outcomes for URLs containing `url_part`.
    Outcomes are consumed in order and the last one repeats. An outcome can be
    an exception (raised), a TransportResponse, an async callable taking the
    request, or a plain body returned with status 200. Unmatched URLs fail
    like a refused connection.
    """

    def __init__(self):
        self.requests: List[TransportRequest] = []
        self.routes: List[_Route] = []
        self.closed = False

    def on(self, url_part: str, *outcomes: Any) -> "FakeTransport":
        self.routes.insert(0, _Route(url_part, list(outcomes)))
        return self

    def urls(self) -> List[str]:
        return [r.url for r in self.requests]

    def requests_to(self, url_part: str) -> List[TransportRequest]:
        return [r for r in self.requests if url_part in r.url]

    async def send(self, request: TransportRequest) -> TransportResponse:
        if request.cancel_token is not None:
            return await request.cancel_token.run(self._send(request), request.provider.value)
        return await self._send(request)

    async def _send(self, request: TransportRequest) -> TransportResponse:
        self.requests.append(request)
        for route in self.routes:
            if route.url_part in request.url:
                outcome = route.next_outcome()
                break
        else:
            raise TransportError(request.provider.value, f"Could not connect to {request.url}: Connection refused", url=request.url)

        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = await outcome(request)
        response = outcome if isinstance(outcome, TransportResponse) else make_response(outcome, url=request.url)
        raise_for_status(request, response)
        return response

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def service_config() -> ServiceConfig:
    """Defaults with the pre-retry probe disabled so request lists stay predictable."""
    return ServiceConfig(retry=RetrySettings(probe_before_retry=False))


@pytest.fixture
def make_client(fake_transport, recording_sleep) -> Callable[..., LLMBridge]:
    def factory(config: Optional[ServiceConfig] = None, **changes: Dict[str, Any]) -> LLMBridge:
        config = config or ServiceConfig(retry=RetrySettings(probe_before_retry=False))
        if changes:
            config = config.model_copy(update=changes)
        return LLMBridge(config, transport=fake_transport, sleep=recording_sleep)

    return factory


@pytest.fixture
def client(make_client) -> LLMBridge:
    return make_client()
