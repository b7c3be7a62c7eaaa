import inspect
from datetime import datetime
from enum import Enum
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, Optional

import structlog

from beatgen.core.errors import CircuitOpenError
from beatgen.core.typing import utc_now

# Type alias for notification callback - return value is ignored
StateChangeCallback = Callable[[str, str, str], Any]  # (name, old_state, new_state)


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    name: str
    state: CircuitState
    consecutive_failures: int
    last_failure_at: Optional[datetime]


@dataclass
class CircuitBreaker:
    """
    Per-service fault isolator.

    Wrap calls with ``await breaker.call(operation)``; compose with the retry
    executor by nesting at the call site:

        await breaker.call(lambda: with_retry(submit, config, context="music"))

    State is in-memory only and lives as long as the breaker object.
    """

    name: str
    failure_threshold: int = 5
    reset_timeout: float = 30.0  # seconds
    half_open_max_calls: int = 1
    on_state_change: Optional[StateChangeCallback] = field(default=None, repr=False)
    clock: Callable[[], datetime] = field(default=utc_now, repr=False)
    logger: Any = field(default=None, repr=False)

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_time: datetime | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.logger is None:
            self.logger = structlog.get_logger(__name__)

    @property
    def state(self) -> CircuitState:
        """Return current state. Use allow_request() for state transitions."""
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failure_count

    @property
    def last_failure_at(self) -> Optional[datetime]:
        return self._last_failure_time

    def snapshot(self) -> CircuitBreakerSnapshot:
        with self._lock:
            return CircuitBreakerSnapshot(
                name=self.name,
                state=self._state,
                consecutive_failures=self._failure_count,
                last_failure_at=self._last_failure_time,
            )

    def _transition(self, new_state: CircuitState, reason: str) -> None:
        """Must be called while holding self._lock."""
        old_state = self._state
        self._state = new_state
        log = self.logger.warning if new_state == CircuitState.OPEN else self.logger.info
        log(
            f"Circuit {self.name}: {old_state.name} -> {new_state.name}",
            circuit=self.name,
            reason=reason,
            failure_count=self._failure_count,
        )
        if self.on_state_change:
            try:
                self.on_state_change(self.name, old_state.value, new_state.value)
            except Exception as e:
                self.logger.error("Circuit breaker notification failed", circuit=self.name, error=str(e))

    def _check_recovery_transition(self) -> None:
        """Move OPEN -> HALF_OPEN once reset_timeout has elapsed.

        Must be called while holding self._lock.
        """
        if self._state == CircuitState.OPEN and self._last_failure_time:
            elapsed = (self.clock() - self._last_failure_time).total_seconds()
            if elapsed >= self.reset_timeout:
                self._half_open_calls = 0
                self._transition(CircuitState.HALF_OPEN, "reset timeout elapsed")

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls = 0
                self._transition(CircuitState.CLOSED, "trial call succeeded")

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self.clock()

            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls = 0
                self._transition(CircuitState.OPEN, "failure during recovery")
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._transition(CircuitState.OPEN, "threshold reached")

    def allow_request(self) -> bool:
        with self._lock:
            self._check_recovery_transition()

            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                return False
            # HALF_OPEN: only the trial call(s) get through
            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True
            return False

    async def call(self, operation: Callable[[], Any]) -> Any:
        """
        Run ``operation`` through the breaker.

        Raises:
            CircuitOpenError: the circuit is open; ``operation`` was not invoked
        """
        if not self.allow_request():
            raise CircuitOpenError(self.name)

        try:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def reset(self) -> None:
        """Force the breaker back to CLOSED with cleared counters."""
        with self._lock:
            self._failure_count = 0
            self._last_failure_time = None
            self._half_open_calls = 0
            if self._state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED, "manual reset")


class CircuitBreakerRegistry:
    """One breaker per service name, shared by every caller holding this registry."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        on_state_change: Optional[StateChangeCallback] = None,
        logger: Any = None,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.on_state_change = on_state_change
        self.logger = logger
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    def get(self, name: str, **kwargs) -> CircuitBreaker:
        with self._lock:
            if name not in self._breakers:
                kwargs.setdefault("failure_threshold", self.failure_threshold)
                kwargs.setdefault("reset_timeout", self.reset_timeout)
                kwargs.setdefault("on_state_change", self.on_state_change)
                kwargs.setdefault("logger", self.logger)
                self._breakers[name] = CircuitBreaker(name=name, **kwargs)
            return self._breakers[name]

    def get_all_states(self) -> Dict[str, str]:
        return {name: cb.state.value for name, cb in self._breakers.items()}

    def reset_all(self) -> None:
        for cb in self._breakers.values():
            cb.reset()

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def __bool__(self) -> bool:
        # An empty registry is still a usable registry
        return True
