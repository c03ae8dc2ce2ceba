"""Retry policy, per-provider circuit breakers and the narration fallback chain.

ProviderChain.call() runs rounds over the configured providers:

    round 0:  A → B → C          (first success wins)
    backoff   base_delay * multiplier**0, capped at max_delay
    round 1:  A → B → C
    ...       until max_retries extra rounds are spent

Within a round providers are tried strictly in configured order. A provider
whose breaker is open is skipped without a call. Every call is bounded by
asyncio.wait_for(call_timeout).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from gm_director.llm import LLM, ProviderError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]
BreakerState = Literal["closed", "open", "half_open"]


class CircuitOpenError(RuntimeError):
    """Every provider was skipped because its breaker is open."""

    def __init__(self, providers: tuple[str, ...]) -> None:
        super().__init__(f"Circuit open for providers: {', '.join(providers) or '-'}")
        self.providers = providers


class ProvidersExhausted(ProviderError):
    """All providers failed in every round."""

    def __init__(
        self,
        failures: dict[str, str],
        attempted: tuple[str, ...],
        skipped: tuple[str, ...],
    ) -> None:
        detail = ", ".join(f"{name}: {reason}" for name, reason in failures.items())
        super().__init__(
            f"All narration providers failed ({detail or 'none configured'})",
            reason="exhausted",
        )
        self.failures = failures
        self.attempted = attempted
        self.skipped = skipped


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    max_retries: int = Field(default=2, ge=0)
    base_delay: float = Field(default=0.5, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=8.0, ge=0)
    call_timeout: float = Field(default=30.0, gt=0)
    failure_threshold: int = Field(default=3, ge=1)
    failure_window: float = Field(default=60.0, gt=0)
    cooldown: float = Field(default=30.0, ge=0)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> RetryPolicy:
        return cls.model_validate(config.get("resilience", {}))

    def delay(self, retry: int) -> float:
        """Backoff before retry round `retry` (0-based)."""
        return min(self.base_delay * self.multiplier ** retry, self.max_delay)


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------

class CircuitBreaker:
    """Guards one provider.

    `threshold` consecutive failures inside `window` seconds open the breaker.
    After `cooldown` seconds it turns half-open and lets exactly one trial
    call through; the trial's outcome closes or re-opens it.
    """

    def __init__(
        self,
        name: str,
        threshold: int = 3,
        window: float = 60.0,
        cooldown: float = 30.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.name = name
        self._threshold = threshold
        self._window = window
        self._cooldown = cooldown
        self._clock = clock
        self._failures: deque[float] = deque()
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        if self._opened_at is None:
            return "closed"
        if self._clock() - self._opened_at >= self._cooldown:
            return "half_open"
        return "open"

    def allow(self) -> bool:
        state = self.state
        if state == "closed":
            return True
        if state == "open" or self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def release(self) -> None:
        """Give back a half-open trial that ended without an outcome."""
        self._trial_in_flight = False

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info("circuit closed provider=%s", self.name)
        self._failures.clear()
        self._opened_at = None
        self._trial_in_flight = False

    def record_failure(self) -> None:
        now = self._clock()
        if self._opened_at is not None:
            self._opened_at = now
            self._trial_in_flight = False
            logger.warning("circuit re-opened provider=%s", self.name)
            return
        self._failures.append(now)
        while self._failures and now - self._failures[0] > self._window:
            self._failures.popleft()
        if len(self._failures) >= self._threshold:
            self._opened_at = now
            self._failures.clear()
            logger.warning(
                "circuit opened provider=%s cooldown=%.1fs", self.name, self._cooldown
            )

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state,
            "recentFailures": len(self._failures),
        }


# ---------------------------------------------------------------------------
# Fallback chain
# ---------------------------------------------------------------------------

class ChainOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    usage: dict[str, Any] = Field(default_factory=dict)
    model: str = ""
    provider: str
    attempted: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    failures: dict[str, str] = Field(default_factory=dict)


class ProviderChain:
    """Calls narration providers in fallback order under one RetryPolicy.

    `attempted` lists providers that failed at least once, in order of first
    failure; the provider that finally succeeded is reported separately.
    """

    def __init__(
        self,
        providers: Mapping[str, LLM],
        policy: RetryPolicy | None = None,
        breakers: dict[str, CircuitBreaker] | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._providers = dict(providers)
        self._policy = policy or RetryPolicy()
        self._breakers = breakers if breakers is not None else {}
        self._clock = clock
        self._sleep = sleep

    @property
    def provider_names(self) -> tuple[str, ...]:
        return tuple(self._providers)

    def breaker(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name,
                threshold=self._policy.failure_threshold,
                window=self._policy.failure_window,
                cooldown=self._policy.cooldown,
                clock=self._clock,
            )
            self._breakers[name] = breaker
        return breaker

    def breaker_states(self) -> list[dict[str, Any]]:
        return [self.breaker(name).snapshot() for name in self._providers]

    async def call(self, stage: str, prompt: str) -> ChainOutcome:
        attempted: list[str] = []
        skipped: list[str] = []
        failures: dict[str, str] = {}
        if not self._providers:
            raise ProvidersExhausted(failures, (), ())

        for round_index in range(self._policy.max_retries + 1):
            if round_index:
                delay = self._policy.delay(round_index - 1)
                logger.info("narration retry round=%d delay=%.2fs", round_index, delay)
                await self._sleep(delay)

            called_any = False
            for name, provider in self._providers.items():
                breaker = self.breaker(name)
                if not breaker.allow():
                    if name not in skipped:
                        skipped.append(name)
                    logger.info("provider skipped, circuit open provider=%s", name)
                    continue
                called_any = True
                try:
                    narration = await asyncio.wait_for(
                        provider(stage, prompt), timeout=self._policy.call_timeout
                    )
                    if not narration.text.strip():
                        raise ProviderError("Provider returned an empty completion", reason="malformed")
                except asyncio.TimeoutError:
                    reason = "timeout"
                except ProviderError as e:
                    reason = e.reason
                except asyncio.CancelledError:
                    breaker.release()
                    raise
                except Exception:
                    # A provider that breaks its contract still counts as a failure.
                    logger.warning("provider raised unexpectedly provider=%s", name, exc_info=True)
                    reason = "unexpected"
                else:
                    breaker.record_success()
                    return ChainOutcome(
                        text=narration.text,
                        usage=narration.usage,
                        model=narration.model,
                        provider=name,
                        attempted=tuple(attempted),
                        skipped=tuple(s for s in skipped if s != name),
                        failures=failures,
                    )

                breaker.record_failure()
                failures[name] = reason
                if name not in attempted:
                    attempted.append(name)
                logger.warning("provider failed provider=%s reason=%s", name, reason)

            if not called_any:
                break

        if not attempted:
            raise CircuitOpenError(tuple(skipped))
        raise ProvidersExhausted(failures, tuple(attempted), tuple(skipped))
