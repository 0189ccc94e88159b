# src/llmbridge/providers/routing.py
"""
Chat-vs-generate endpoint selection for the local model server.

Three independent signals select the chat endpoint and any one of them is
enough: a multi-turn history containing an assistant turn, a model id from a
chat-tuned family, or the presence of a system message. Everything else goes
to the generate endpoint with a flattened prompt.
"""

from enum import Enum
from typing import Optional, Sequence, Tuple

from ..models import Message, Role

# Model families that follow chat templates better through the chat endpoint.
CHAT_PREFERRED_FAMILIES: Tuple[str, ...] = (
    "qwen", "llama", "mistral", "gemma", "phi", "stablelm", "neural-chat",
    "vicuna", "falcon", "orca", "yi", "solar", "cohere",
)


class LocalEndpoint(str, Enum):
    """Endpoints of the local model server."""
    CHAT = "chat"
    GENERATE = "generate"


def is_chat_preferred_model(model_id: Optional[str], families: Sequence[str] = CHAT_PREFERRED_FAMILIES) -> bool:
    lowered = (model_id or "").lower()
    return any(family in lowered for family in families)


def prefers_chat_endpoint(
    messages: Sequence[Message],
    model_id: Optional[str],
    families: Sequence[str] = CHAT_PREFERRED_FAMILIES,
) -> bool:
    """True when the chat endpoint should be used for this conversation and model."""
    if len(messages) >= 2 and any(m.role == Role.ASSISTANT for m in messages):
        return True
    if is_chat_preferred_model(model_id, families):
        return True
    return any(m.role == Role.SYSTEM for m in messages)


def select_local_endpoint(messages: Sequence[Message], model_id: Optional[str]) -> LocalEndpoint:
    return LocalEndpoint.CHAT if prefers_chat_endpoint(messages, model_id) else LocalEndpoint.GENERATE
