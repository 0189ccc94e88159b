# src/llmbridge/retry.py
"""
Multi-strategy retry orchestration for local model server requests.

A request is fulfilled by trying an ordered list of strategies (chat endpoint,
generate endpoint, generic request path). Each strategy gets
`max_retries + 1` attempts with exponential backoff between them; the
attempt counter resets for every strategy. The first success wins. When
everything fails, a `RetryExhaustedError` lists each attempt.

The orchestrator keeps its progress in a plain `RetryState` and waits through
an injected `sleep` callable, so tests can drive it without real timers.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import (Any, Awaitable, Callable, Generic, List, Optional,
                    Sequence, TypeVar)

from .config.models import RetrySettings
from .exceptions import (AttemptRecord, ErrorKind, LLMBridgeError,
                         RetryExhaustedError, is_retryable)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]
ProbeFunc = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    initial_backoff: float = 0.8

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(max_retries=settings.max_retries, initial_backoff=settings.initial_backoff)

    @property
    def attempts_per_strategy(self) -> int:
        return self.max_retries + 1

    def backoff(self, attempt: int) -> float:
        """Delay after the failed `attempt` (1-based): initial_backoff * 2^(attempt-1)."""
        return self.initial_backoff * (2 ** (attempt - 1))


@dataclass(frozen=True)
class Strategy(Generic[T]):
    """One complete way of fulfilling a request."""
    name: str
    run: Callable[[], Awaitable[T]]


@dataclass
class RetryState:
    """Progress of one orchestrated call."""
    strategy_index: int = 0
    attempt: int = 0
    records: List[AttemptRecord] = field(default_factory=list)

    @property
    def total_attempts(self) -> int:
        return len(self.records)


def order_strategies(chat: Strategy, generate: Strategy, generic: Strategy, prefer_chat: bool) -> List[Strategy]:
    """The preferred endpoint strategy first, the generic strategy always last."""
    if prefer_chat:
        return [chat, generate, generic]
    return [generate, chat, generic]


class RetryOrchestrator:
    """Runs strategies with per-strategy bounded retries and exponential backoff."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
        probe: Optional[ProbeFunc] = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._probe = probe

    async def _run_probe(self) -> None:
        if self._probe is None:
            return
        try:
            await self._probe()
        except LLMBridgeError as e:
            logger.warning(f"Local model server probe failed, still attempting the request: {e}")

    async def run(self, strategies: Sequence[Strategy[T]], model_name: str = "Unknown") -> T:
        """
        Returns the first successful strategy result.

        Raises:
            RetryExhaustedError: Every attempt of every strategy failed.
            ConfigError, RequestCancelledError: Raised by an attempt; never retried.
        """
        await self._run_probe()
        state = RetryState()
        attempts = self.policy.attempts_per_strategy

        for index, strategy in enumerate(strategies):
            state.strategy_index = index
            for attempt in range(1, attempts + 1):
                state.attempt = attempt
                logger.debug(f"Trying strategy '{strategy.name}' (attempt {attempt}/{attempts}) for '{model_name}'.")
                try:
                    result = await strategy.run()
                except Exception as e:
                    if not is_retryable(e):
                        raise
                    kind = e.kind if isinstance(e, LLMBridgeError) else ErrorKind.TRANSPORT
                    state.records.append(
                        AttemptRecord(strategy=strategy.name, attempt=attempt, error=str(e), kind=kind)
                    )
                    logger.warning(f"Strategy '{strategy.name}' attempt {attempt} failed: {e}")
                    if attempt <= self.policy.max_retries:
                        await self._sleep(self.policy.backoff(attempt))
                    continue
                if state.total_attempts:
                    logger.info(
                        f"Strategy '{strategy.name}' succeeded for '{model_name}' "
                        f"after {state.total_attempts} failed attempts."
                    )
                return result

        logger.error(f"All {state.total_attempts} attempts failed for local model '{model_name}'.")
        raise RetryExhaustedError(state.records, model_name)
