# src/llmbridge/chat.py
"""
In-memory chat threads on top of `LLMBridge`.

A thread keeps the model selection and the message history of one
conversation; `send_message()` appends the user turn, sends the whole history
and appends the reply.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .api import LLMBridge
from .exceptions import ThreadNotFoundError
from .lifecycle import generate_request_id
from .models import AIRequestParams, AIResponse, Message, Provider, Role

logger = logging.getLogger(__name__)


class ChatThread(BaseModel):
    """One conversation and its model settings."""
    id: str
    model: str
    provider: Provider
    temperature: Optional[float] = 0.7
    max_tokens: Optional[int] = None
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChatThreadManager:
    """Creates, updates and runs chat threads. Threads are not persisted."""

    def __init__(self, client: LLMBridge):
        self._client = client
        self._threads: Dict[str, ChatThread] = {}

    def create_thread(
        self,
        thread_id: Optional[str] = None,
        model: Optional[str] = None,
        provider: Optional[Union[Provider, str]] = None,
        temperature: Optional[float] = 0.7,
        system_prompt: Optional[str] = None,
    ) -> ChatThread:
        """
        Creates a thread. Provider and model default to the client's default
        provider and that provider's default model.
        """
        provider = Provider(provider) if provider is not None else self._client.config.default_provider
        thread = ChatThread(
            id=thread_id or generate_request_id().replace("req_", "chat_", 1),
            model=model or self._client.catalog.default_model_for(provider),
            provider=provider,
            temperature=temperature,
        )
        if system_prompt:
            thread.messages.append(Message(role=Role.SYSTEM, content=system_prompt))
        self._threads[thread.id] = thread
        logger.debug(f"Created chat thread {thread.id} ({thread.provider.value}/{thread.model}).")
        return thread

    def get_thread(self, thread_id: str) -> Optional[ChatThread]:
        return self._threads.get(thread_id)

    def list_threads(self) -> List[ChatThread]:
        return list(self._threads.values())

    def update_thread(self, thread_id: str, **updates: Any) -> Optional[ChatThread]:
        """Applies field updates (model, provider, temperature, ...). Returns None for unknown ids."""
        thread = self._threads.get(thread_id)
        if thread is None:
            return None
        updates.pop("id", None)
        data = thread.model_dump()
        data.update(updates)
        data["updated_at"] = datetime.now(timezone.utc)
        updated = ChatThread.model_validate(data)
        self._threads[thread_id] = updated
        return updated

    def delete_thread(self, thread_id: str) -> bool:
        return self._threads.pop(thread_id, None) is not None

    def clear_history(self, thread_id: str) -> None:
        thread = self._threads.get(thread_id)
        if thread is not None:
            thread.messages.clear()
            thread.updated_at = datetime.now(timezone.utc)

    async def send_message(self, thread_id: str, content: str) -> AIResponse:
        """
        Sends `content` as the next user turn of the thread.

        Raises:
            ThreadNotFoundError: Unknown `thread_id`.
            LLMBridgeError: The request failed; the user turn is removed again.
        """
        thread = self._threads.get(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)

        user_message = Message(role=Role.USER, content=content)
        thread.messages.append(user_message)
        params = AIRequestParams(
            model=thread.model,
            messages=thread.messages,
            temperature=thread.temperature,
            max_tokens=thread.max_tokens,
            provider=thread.provider,
        )
        try:
            response = await self._client.send_request(params)
        except Exception:
            if thread.messages and thread.messages[-1] is user_message:
                thread.messages.pop()
            raise

        thread.messages.append(Message(role=Role.ASSISTANT, content=response.text))
        thread.updated_at = datetime.now(timezone.utc)
        return response
