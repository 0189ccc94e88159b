# tests/test_retry.py
"""
Tests for the multi-strategy retry orchestrator. Delays are recorded by an
injected sleep, so nothing waits for real.
"""

import pytest

from llmbridge.config.models import RetrySettings
from llmbridge.exceptions import (ConfigError, RequestCancelledError,
                                  RetryExhaustedError, TransportError)
from llmbridge.retry import (RetryOrchestrator, RetryPolicy, Strategy,
                             order_strategies)


class ScriptedStrategy:
    """Strategy body failing a given number of times before succeeding."""

    def __init__(self, name, failures=0, result="ok", error=None):
        self.name = name
        self.failures = failures
        self.result = result
        self.error = error or TransportError("ollama", f"{name} refused")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result

    def strategy(self):
        return Strategy(self.name, self)


class TestRetryPolicy:

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.attempts_per_strategy == 3
        assert policy.backoff(1) == pytest.approx(0.8)
        assert policy.backoff(2) == pytest.approx(1.6)

    def test_from_settings(self):
        policy = RetryPolicy.from_settings(RetrySettings(max_retries=4, initial_backoff=0.1))
        assert policy.attempts_per_strategy == 5
        assert policy.backoff(3) == pytest.approx(0.4)


class TestOrderStrategies:

    def test_chat_first(self):
        chat, generate, generic = Strategy("chat", None), Strategy("generate", None), Strategy("generic", None)
        assert [s.name for s in order_strategies(chat, generate, generic, True)] == ["chat", "generate", "generic"]

    def test_generate_first_generic_last(self):
        chat, generate, generic = Strategy("chat", None), Strategy("generate", None), Strategy("generic", None)
        assert [s.name for s in order_strategies(chat, generate, generic, False)] == ["generate", "chat", "generic"]


class TestRetryOrchestrator:

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, recording_sleep):
        first = ScriptedStrategy("chat API")
        second = ScriptedStrategy("generate API")
        orchestrator = RetryOrchestrator(sleep=recording_sleep)

        assert await orchestrator.run([first.strategy(), second.strategy()]) == "ok"
        assert first.calls == 1
        assert second.calls == 0
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_within_strategy_with_doubling_backoff(self, recording_sleep):
        flaky = ScriptedStrategy("chat API", failures=2)
        orchestrator = RetryOrchestrator(RetryPolicy(max_retries=2, initial_backoff=0.8), sleep=recording_sleep)

        assert await orchestrator.run([flaky.strategy()]) == "ok"
        assert flaky.calls == 3
        assert recording_sleep.delays == pytest.approx([0.8, 1.6])

    @pytest.mark.asyncio
    async def test_falls_through_to_next_strategy(self, recording_sleep):
        broken = ScriptedStrategy("chat API", failures=99)
        working = ScriptedStrategy("generate API", result="from generate")
        orchestrator = RetryOrchestrator(sleep=recording_sleep)

        assert await orchestrator.run([broken.strategy(), working.strategy()]) == "from generate"
        assert broken.calls == 3
        assert working.calls == 1

    @pytest.mark.asyncio
    async def test_exhaustion_is_bounded_and_aggregated(self, recording_sleep):
        strategies = [ScriptedStrategy(name, failures=99) for name in ("chat API", "generate API", "direct call")]
        orchestrator = RetryOrchestrator(RetryPolicy(max_retries=2, initial_backoff=0.5), sleep=recording_sleep)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await orchestrator.run([s.strategy() for s in strategies], model_name="qwen2.5:7b")

        error = exc_info.value
        assert sum(s.calls for s in strategies) == 9
        assert len(error.attempts) == 9
        assert [(a.strategy, a.attempt) for a in error.attempts[:3]] == [
            ("chat API", 1), ("chat API", 2), ("chat API", 3)
        ]
        assert "[direct call #3] direct call refused" in str(error)
        # The counter resets per strategy: two waits per strategy, doubling each time.
        assert recording_sleep.delays == pytest.approx([0.5, 1.0] * 3)

    @pytest.mark.asyncio
    async def test_zero_retries(self, recording_sleep):
        strategies = [ScriptedStrategy(n, failures=99) for n in ("a", "b")]
        orchestrator = RetryOrchestrator(RetryPolicy(max_retries=0), sleep=recording_sleep)
        with pytest.raises(RetryExhaustedError) as exc_info:
            await orchestrator.run([s.strategy() for s in strategies])
        assert len(exc_info.value.attempts) == 2
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_config_error_aborts(self, recording_sleep):
        misconfigured = ScriptedStrategy("chat API", failures=99, error=ConfigError("no base url"))
        other = ScriptedStrategy("generate API")
        orchestrator = RetryOrchestrator(sleep=recording_sleep)

        with pytest.raises(ConfigError):
            await orchestrator.run([misconfigured.strategy(), other.strategy()])
        assert misconfigured.calls == 1
        assert other.calls == 0

    @pytest.mark.asyncio
    async def test_cancellation_aborts(self, recording_sleep):
        cancelled = ScriptedStrategy("chat API", failures=99, error=RequestCancelledError("req_1"))
        orchestrator = RetryOrchestrator(sleep=recording_sleep)

        with pytest.raises(RequestCancelledError):
            await orchestrator.run([cancelled.strategy()])
        assert cancelled.calls == 1

    @pytest.mark.asyncio
    async def test_probe_runs_once_and_failure_does_not_block(self, recording_sleep):
        probe_calls = []

        async def probe():
            probe_calls.append(1)
            raise TransportError("ollama", "probe refused")

        working = ScriptedStrategy("chat API")
        orchestrator = RetryOrchestrator(sleep=recording_sleep, probe=probe)

        assert await orchestrator.run([working.strategy()]) == "ok"
        assert probe_calls == [1]
