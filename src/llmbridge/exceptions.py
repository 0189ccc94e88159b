# src/llmbridge/exceptions.py
"""
Custom exceptions for the LLMBridge library.

Every exception carries an `ErrorKind` so that callers (the UI layer in
particular) can decide on a recovery policy by inspecting `error.kind`
instead of matching on message strings.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Broad classification of a failed client call."""
    CONFIGURATION = "configuration"
    TRANSPORT = "transport"
    EMPTY_RESPONSE = "empty_response"
    MODEL_NOT_FOUND = "model_not_found"
    CANCELLED = "cancelled"
    RETRY_EXHAUSTED = "retry_exhausted"


class LLMBridgeError(Exception):
    """Base class for all LLMBridge specific errors."""
    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str = "An unspecified error occurred in LLMBridge."):
        super().__init__(message)


class ConfigError(LLMBridgeError):
    """Raised for unsupported provider/mode combinations and missing settings. Never retried."""
    kind = ErrorKind.CONFIGURATION

    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)


class ProviderError(LLMBridgeError):
    """Raised for errors originating from an LLM provider (API errors, bad responses)."""

    def __init__(self, provider_name: str = "Unknown", message: str = "Provider error."):
        self.provider_name = provider_name
        super().__init__(f"Error with provider '{provider_name}': {message}")


class TransportError(ProviderError):
    """
    Raised when the HTTP exchange itself failed: connection refused, DNS failure,
    timeout, or a non-success status code.
    """
    kind = ErrorKind.TRANSPORT

    def __init__(
        self,
        provider_name: str = "Unknown",
        message: str = "Transport error.",
        status_code: Optional[int] = None,
        url: Optional[str] = None,
    ):
        self.status_code = status_code
        self.url = url
        super().__init__(provider_name, message)


class RequestCancelledError(TransportError):
    """Raised in the awaiting caller when its request was cancelled."""
    kind = ErrorKind.CANCELLED

    def __init__(self, request_id: Optional[str] = None, provider_name: str = "Unknown"):
        self.request_id = request_id
        label = f" '{request_id}'" if request_id else ""
        super().__init__(provider_name, f"Request{label} was cancelled.")


class EmptyResponseError(TransportError):
    """Raised when a provider answered without a body. Treated like a transport failure."""
    kind = ErrorKind.EMPTY_RESPONSE

    def __init__(self, provider_name: str = "Unknown", message: str = "Empty response received."):
        super().__init__(provider_name, message)


class ModelNotFoundError(TransportError):
    """Raised on HTTP 404 from a model endpoint, with a human readable remediation hint."""
    kind = ErrorKind.MODEL_NOT_FOUND

    def __init__(self, provider_name: str = "Unknown", model_name: str = "Unknown", hint: Optional[str] = None, url: Optional[str] = None):
        self.model_name = model_name
        self.hint = hint or "Check that the model id is correct and available to your account."
        super().__init__(provider_name, f"Model '{model_name}' not found. {self.hint}", status_code=404, url=url)


class ThreadNotFoundError(LLMBridgeError):
    """Raised when a chat thread id is unknown."""
    kind = ErrorKind.CONFIGURATION

    def __init__(self, thread_id: str = "Unknown"):
        self.thread_id = thread_id
        super().__init__(f"Chat thread '{thread_id}' not found.")


class AttemptRecord(BaseModel):
    """One failed attempt inside the retry orchestrator."""
    strategy: str = Field(description="Name of the strategy that was attempted.")
    attempt: int = Field(description="1-based attempt number within the strategy.")
    error: str = Field(description="Message of the error raised by the attempt.")
    kind: ErrorKind = Field(default=ErrorKind.TRANSPORT, description="Kind of the error raised by the attempt.")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RetryExhaustedError(LLMBridgeError):
    """Raised when every attempt of every strategy against the local model server failed."""
    kind = ErrorKind.RETRY_EXHAUSTED

    def __init__(self, attempts: List[AttemptRecord], model_name: str = "Unknown"):
        self.attempts = list(attempts)
        self.model_name = model_name
        lines = [f"[{a.strategy} #{a.attempt}] {a.error}" for a in self.attempts]
        message = (
            f"Could not complete local model request for '{model_name}' after {len(self.attempts)} attempts. "
            "Make sure the local model server is running and the model is installed."
        )
        if lines:
            message += " Attempts: " + "; ".join(lines)
        super().__init__(message)

    @property
    def last_error(self) -> Optional[str]:
        return self.attempts[-1].error if self.attempts else None


def is_retryable(error: BaseException) -> bool:
    """Whether the retry orchestrator may try again after `error`."""
    if isinstance(error, (ConfigError, RequestCancelledError)):
        return False
    return True
