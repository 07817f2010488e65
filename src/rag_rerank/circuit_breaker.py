from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(slots=True)
class CircuitBreakerState:
    failures: int = 0
    last_failure_time: float = 0.0
    state: CircuitState = CircuitState.CLOSED
    success_count: int = 0


class CircuitBreaker:
    """Per-provider failure gate shared by every request in the process.

    A provider opens after ``failure_threshold`` failures, moves to half-open
    once ``cooldown_seconds`` have passed since its last failure (evaluated on
    every check), and closes again after ``success_threshold`` successes while
    half-open. Only a closed provider opens on failure; a failure while
    half-open is counted without reopening. A freshly half-open provider with
    no recorded success is still reported as open.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        success_threshold: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.success_threshold = success_threshold
        self._clock = clock
        self._states: dict[str, CircuitBreakerState] = {}
        self._lock = threading.Lock()

    def _state_for(self, provider: str) -> CircuitBreakerState:
        state = self._states.get(provider)
        if state is None:
            state = CircuitBreakerState()
            self._states[provider] = state
        return state

    def _maybe_half_open(self, provider: str, state: CircuitBreakerState) -> None:
        if (
            state.state is CircuitState.OPEN
            and self._clock() - state.last_failure_time >= self.cooldown_seconds
        ):
            state.state = CircuitState.HALF_OPEN
            state.success_count = 0
            logger.info("Circuit breaker for %s is now HALF_OPEN", provider)

    def record_success(self, provider: str) -> None:
        with self._lock:
            state = self._state_for(provider)
            state.failures = 0
            if state.state is CircuitState.HALF_OPEN:
                state.success_count += 1
                if state.success_count >= self.success_threshold:
                    state.state = CircuitState.CLOSED
                    state.success_count = 0
                    logger.info("Circuit breaker for %s is now CLOSED", provider)

    def record_failure(self, provider: str) -> None:
        with self._lock:
            state = self._state_for(provider)
            state.failures += 1
            state.last_failure_time = self._clock()
            if state.state is CircuitState.CLOSED and state.failures >= self.failure_threshold:
                state.state = CircuitState.OPEN
                state.success_count = 0
                logger.warning(
                    "Circuit breaker for %s is now OPEN due to %d failures", provider, state.failures
                )
            else:
                self._maybe_half_open(provider, state)

    def is_open(self, provider: str) -> bool:
        with self._lock:
            state = self._state_for(provider)
            self._maybe_half_open(provider, state)
            return state.state is CircuitState.OPEN or (
                state.state is CircuitState.HALF_OPEN and state.success_count == 0
            )

    def state_of(self, provider: str) -> CircuitBreakerState:
        """Return a copy of the provider's current state."""
        with self._lock:
            state = self._state_for(provider)
            return CircuitBreakerState(
                failures=state.failures,
                last_failure_time=state.last_failure_time,
                state=state.state,
                success_count=state.success_count,
            )

    def snapshot(self) -> dict[str, CircuitBreakerState]:
        with self._lock:
            providers = list(self._states)
        return {provider: self.state_of(provider) for provider in providers}

    def reset(self) -> None:
        with self._lock:
            self._states.clear()
