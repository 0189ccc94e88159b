# src/llmbridge/models.py
"""
Core data models for the LLMBridge library.

This module defines the Pydantic models shared by every layer of the client:
conversation messages and roles, provider and model descriptions, the
caller-facing request parameters, and the normalized response types that all
providers are reduced to.
"""

from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .exceptions import ErrorKind, LLMBridgeError


class Role(str, Enum):
    """
    Enumeration of possible roles in a conversation.
    These roles define the origin or type of a message.
    """
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"

    @classmethod
    def _missing_(cls, value: object):  # type: ignore[misc]
        """
        Handles case-insensitive matching and common aliases for roles.
        For example, "Agent" or "AGENT" will be mapped to Role.ASSISTANT.
        """
        if isinstance(value, str):
            lower_value = value.lower()
            if lower_value == "agent":
                return cls.ASSISTANT
            for member in cls:
                if member.value == lower_value:
                    return member
        return None


class Provider(str, Enum):
    """LLM vendors and local runtimes the client can talk to."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    DEEPSEEK = "deepseek"
    GEMINI = "gemini"
    QWEN = "qwen"
    GROQ = "groq"
    OLLAMA = "ollama"
    CUSTOM = "custom"

    @classmethod
    def _missing_(cls, value: object):  # type: ignore[misc]
        if isinstance(value, str):
            lower_value = value.lower()
            for member in cls:
                if member.value == lower_value:
                    return member
        return None

    @property
    def is_local(self) -> bool:
        """True for the locally hosted model server."""
        return self is Provider.OLLAMA


class Message(BaseModel):
    """
    A single message of a conversation. Order within a conversation is chronological.

    Attributes:
        role: The role of the entity that produced the message.
        content: The textual content of the message.
        name: Function name, only meaningful for `function` messages.
    """
    model_config = ConfigDict(frozen=True)

    role: Role = Field(description="The role of the message sender.")
    content: str = Field(description="The textual content of the message.")
    name: Optional[str] = Field(default=None, description="Function name for function messages.")

    def to_wire(self) -> dict:
        """Dictionary form sent to chat-style endpoints."""
        data = {"role": self.role.value, "content": self.content}
        if self.name is not None:
            data["name"] = self.name
        return data


class ModelConfig(BaseModel):
    """
    Describes a selectable model. `id` is unique within one provider's list,
    not globally.
    """
    id: str = Field(description="Model identifier sent to the provider.")
    name: str = Field(description="Human readable model name.")
    provider: Provider = Field(description="Provider that serves this model.")
    api_key: Optional[str] = Field(default=None)
    base_url: Optional[str] = Field(default=None)
    context_window: Optional[int] = Field(default=None, description="Maximum context length in tokens.")
    max_output_tokens: Optional[int] = Field(default=None)
    local_path: Optional[str] = Field(default=None, description="API root of the local model server serving this model.")


class AIRequestParams(BaseModel):
    """
    Caller-facing request. Immutable once constructed.
    """
    model_config = ConfigDict(frozen=True)

    model: str
    messages: Tuple[Message, ...]
    provider: Provider
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: bool = False
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    @field_validator("messages", mode="before")
    @classmethod
    def coerce_messages(cls, value: Any) -> Any:
        """Accept any iterable of messages or message dicts."""
        if isinstance(value, (list, tuple)):
            return tuple(value)
        return value


class UsageStats(BaseModel):
    """Token accounting. Serializes with camelCase keys (`promptTokens`, ...)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt_tokens: Optional[int], completion_tokens: Optional[int]) -> "UsageStats":
        prompt = int(prompt_tokens or 0)
        completion = int(completion_tokens or 0)
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


class ParsedResponse(BaseModel):
    """
    Provider-independent result of parsing a raw response.
    `text` is always a string, even for malformed payloads.
    """
    text: str
    usage: Optional[UsageStats] = None


class AIResponse(BaseModel):
    """Result returned to callers of `LLMBridge.send_request()`."""
    text: str
    request_id: str
    usage: Optional[UsageStats] = None


class RequestResult(BaseModel):
    """
    Outcome of `LLMBridge.try_send_request()`: exactly one of `response` and
    `error` is set.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    response: Optional[AIResponse] = None
    error: Optional[LLMBridgeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None
