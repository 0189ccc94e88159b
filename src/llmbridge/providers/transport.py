# src/llmbridge/providers/transport.py
"""
HTTP transport built on aiohttp.

`HttpTransport.send()` performs one `TransportRequest` and returns the status
and decoded body. Failures are mapped onto the LLMBridge exception hierarchy:
connection problems and timeouts become `TransportError`, HTTP 404 becomes
`ModelNotFoundError`, and other non-success statuses become `TransportError`
carrying the status code. Timeouts apply to this one call only.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import aiohttp

from ..exceptions import ModelNotFoundError, TransportError
from ..models import Provider
from .requests import TransportRequest

logger = logging.getLogger(__name__)

MAX_ERROR_DETAIL = 500


@dataclass
class TransportResponse:
    """Status, decoded body (JSON value, raw text, or None when empty) and raw text."""
    status: int
    body: Any
    text: str
    url: str = ""


class Transport(Protocol):
    async def send(self, request: TransportRequest) -> TransportResponse: ...

    async def close(self) -> None: ...


def decode_body(text: str) -> Any:
    """JSON value of `text`, `text` itself if it is not one JSON document, None if blank."""
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _error_detail(body: Any, text: str) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            error = error.get("message") or json.dumps(error)
        if error:
            return str(error)[:MAX_ERROR_DETAIL]
    return (text or "").strip()[:MAX_ERROR_DETAIL] or "no details"


def raise_for_status(request: TransportRequest, response: TransportResponse) -> None:
    """Raises the mapped exception for a non-success response."""
    status = response.status
    if status < 400:
        return
    provider = Provider(request.provider)
    detail = _error_detail(response.body, response.text)
    local = provider.is_local

    if status == 404:
        hint = (
            f"Install it with 'ollama pull {request.model}' and check the server URL."
            if local else
            "Check that the model id is correct and available to your account."
        )
        raise ModelNotFoundError(provider.value, request.model, hint=hint, url=request.url)
    if status == 400:
        message = f"Bad request (400): {detail}"
    elif status == 500:
        restart = "restarting the local model server ('ollama serve')" if local else "again later"
        message = f"Server error (500): {detail}. Try {restart}."
    else:
        message = f"HTTP {status}: {detail}"
    raise TransportError(provider.value, message, status_code=status, url=request.url)


class HttpTransport:
    """
    aiohttp based transport. One `ClientSession` is created lazily and reused
    for every call; `close()` releases it.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Gets or creates the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
            logger.debug("Created new aiohttp.ClientSession for HttpTransport.")
        return self._session

    async def send(self, request: TransportRequest) -> TransportResponse:
        """
        Performs `request`, honouring its cancellation token.

        Raises:
            TransportError: Connection failure, timeout, or non-success status.
            ModelNotFoundError: HTTP 404.
            RequestCancelledError: The request's token was cancelled.
        """
        if request.cancel_token is not None:
            return await request.cancel_token.run(self._send(request), Provider(request.provider).value)
        return await self._send(request)

    async def _send(self, request: TransportRequest) -> TransportResponse:
        provider_name = Provider(request.provider).value
        session = await self._get_session()
        try:
            async with session.request(
                request.method,
                request.url,
                json=request.body,
                headers=request.headers or None,
                timeout=aiohttp.ClientTimeout(total=request.timeout),
            ) as resp:
                text = await resp.text(errors="replace")
                response = TransportResponse(status=resp.status, body=decode_body(text), text=text, url=request.url)
        except asyncio.TimeoutError:
            logger.error(f"Request to {request.url} timed out after {request.timeout} seconds.")
            raise TransportError(
                provider_name, f"Request to {request.url} timed out after {request.timeout}s.", url=request.url
            )
        except aiohttp.ClientConnectionError as e:
            logger.error(f"Could not connect to {request.url}: {e}")
            raise TransportError(provider_name, f"Could not connect to {request.url}: {e}", url=request.url)
        except aiohttp.ClientError as e:
            logger.error(f"HTTP client error for {request.url}: {e}", exc_info=True)
            raise TransportError(provider_name, f"HTTP client error: {e}", url=request.url)
        except (UnicodeError, LookupError) as e:
            logger.error(f"Could not decode response from {request.url}: {e}")
            raise TransportError(provider_name, f"Could not decode response from {request.url}: {e}", url=request.url)

        if response.status >= 400:
            logger.error(f"{request.method} {request.url} failed with status {response.status}.")
        raise_for_status(request, response)
        return response

    async def close(self) -> None:
        if self._session is not None and not self._session.closed and self._owns_session:
            await self._session.close()
            logger.debug("HttpTransport session closed.")
        self._session = None
