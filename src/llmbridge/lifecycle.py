# src/llmbridge/lifecycle.py
"""
In-flight request tracking and cooperative cancellation.

Every request registers a `CancellationToken` under a fresh request id when it
starts and removes it when it reaches a terminal state. An id present in the
manager therefore always denotes a request that is still networking and can
be cancelled.
"""

import asyncio
import logging
import random
import string
import threading
import time
from contextlib import contextmanager
from typing import (Any, Awaitable, Callable, Dict, Iterator, List, Optional,
                    Set, Tuple, TypeVar)

from .exceptions import RequestCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_request_id() -> str:
    """Returns an id of the form `req_<epoch ms>_<7 random base36 chars>`."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=7))
    return f"req_{int(time.time() * 1000)}_{suffix}"


class CancellationToken:
    """
    Cancellation signal shared by every transport call of one request.

    `cancel()` may be called from any thread. Work wrapped with `run()` is
    executed in its own task so that cancelling the token only aborts that
    work, and the awaiting caller receives a `RequestCancelledError`.
    """

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id
        self._lock = threading.Lock()
        self._cancelled = False
        self._tasks: Set["asyncio.Task[Any]"] = set()

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            tasks = list(self._tasks)
        for task in tasks:
            loop = task.get_loop()
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(task.cancel)

    def raise_if_cancelled(self, provider_name: str = "Unknown") -> None:
        if self.cancelled:
            raise RequestCancelledError(self.request_id, provider_name)

    async def run(self, awaitable: Awaitable[T], provider_name: str = "Unknown") -> T:
        """
        Awaits `awaitable` and aborts it when the token is cancelled.

        Raises:
            RequestCancelledError: The token was cancelled before or during the call.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RequestCancelledError(self.request_id, provider_name)

        task = asyncio.ensure_future(awaitable)
        # Flag check and registration share one lock acquisition.
        with self._lock:
            cancelled = self._cancelled
            if not cancelled:
                self._tasks.add(task)
        if cancelled:
            task.cancel()
            raise RequestCancelledError(self.request_id, provider_name)
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self.cancelled:
                raise RequestCancelledError(self.request_id, provider_name) from None
            raise
        finally:
            with self._lock:
                self._tasks.discard(task)


class RequestLifecycleManager:
    """Thread-safe registry of in-flight requests keyed by request id."""

    def __init__(self, id_factory: Callable[[], str] = generate_request_id):
        self._id_factory = id_factory
        self._lock = threading.Lock()
        self._active: Dict[str, CancellationToken] = {}

    def begin(self) -> Tuple[str, CancellationToken]:
        """Registers a new request and returns its id and cancellation token."""
        with self._lock:
            request_id = self._id_factory()
            while request_id in self._active:
                request_id = self._id_factory()
            token = CancellationToken(request_id)
            self._active[request_id] = token
        logger.debug(f"Request {request_id} started.")
        return request_id, token

    def cancel(self, request_id: str) -> bool:
        """Cancels and removes `request_id`. Returns False if it is not in flight."""
        with self._lock:
            token = self._active.pop(request_id, None)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Request {request_id} cancelled.")
        return True

    def end(self, request_id: str) -> None:
        """Removes `request_id`; a no-op if it was already removed by `cancel()`."""
        with self._lock:
            removed = self._active.pop(request_id, None)
        if removed is not None:
            logger.debug(f"Request {request_id} finished.")

    @contextmanager
    def track(self) -> Iterator[Tuple[str, CancellationToken]]:
        """`begin()` on entry and `end()` on exit, including when the body raises."""
        request_id, token = self.begin()
        try:
            yield request_id, token
        finally:
            self.end(request_id)

    def active_ids(self) -> List[str]:
        with self._lock:
            return list(self._active)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)
