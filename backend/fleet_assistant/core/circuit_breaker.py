"""
Circuit breaker guarding calls to external services.

Used in front of the completion service and Redis. The breaker opens when the
failure rate inside a rolling window crosses a threshold, rejects calls for
`open_duration_seconds`, then lets a limited number of probe calls through
(half-open). Enough successful probes close it again; any failed probe
reopens it.
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from fleet_assistant.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised instead of calling the protected service while the circuit is open."""


class CircuitBreaker:
    """
    Failure-rate circuit breaker.

    Args:
        name: Label used in logs and metrics
        failure_threshold: Failure ratio (0-1) that opens the circuit
        time_window_seconds: Length of the rolling outcome window
        open_duration_seconds: How long to reject calls before probing
        half_open_max_probes: Concurrent probe calls allowed while half-open
        half_open_successes_to_close: Successful probes needed to close
        min_requests_for_threshold: Outcomes required before the ratio is trusted
    """

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: int = 60,
        open_duration_seconds: int = 30,
        half_open_max_probes: int = 1,
        half_open_successes_to_close: int = 2,
        min_requests_for_threshold: int = 10,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.half_open_max_probes = half_open_max_probes
        self.half_open_successes_to_close = half_open_successes_to_close
        self.min_requests_for_threshold = min_requests_for_threshold

        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._outcomes: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._probes_in_flight = 0
        self._probe_successes = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(time.monotonic())
            return self._state

    def _refresh(self, now: float) -> None:
        cutoff = now - self.time_window_seconds
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()

        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and now - self._opened_at >= self.open_duration_seconds
        ):
            self._state = CircuitState.HALF_OPEN
            self._probes_in_flight = 0
            self._probe_successes = 0
            logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

    def _open(self, now: float, **details: Any) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._outcomes.clear()
        logger.warning("circuit_breaker_opened", circuit_breaker=self.name, **details)

    def _admit(self) -> Tuple[bool, bool]:
        """Return (admitted, is_probe); reserves a probe slot when half-open."""
        with self._lock:
            self._refresh(time.monotonic())
            if self._state == CircuitState.CLOSED:
                return True, False
            if self._state == CircuitState.HALF_OPEN and self._probes_in_flight < self.half_open_max_probes:
                self._probes_in_flight += 1
                return True, True
            return False, False

    def _record(self, success: bool, probe: bool) -> None:
        now = time.monotonic()
        with self._lock:
            if probe:
                self._probes_in_flight = max(0, self._probes_in_flight - 1)
                if self._state != CircuitState.HALF_OPEN:
                    return
                if not success:
                    self._open(now, reason="probe_failed")
                    return
                self._probe_successes += 1
                if self._probe_successes >= self.half_open_successes_to_close:
                    self._state = CircuitState.CLOSED
                    self._opened_at = None
                    logger.info("circuit_breaker_closed", circuit_breaker=self.name)
                return

            self._outcomes.append((now, success))
            total = len(self._outcomes)
            if total < self.min_requests_for_threshold:
                return
            failures = sum(1 for _, ok in self._outcomes if not ok)
            error_rate = failures / total
            if error_rate >= self.failure_threshold:
                self._open(now, error_rate=error_rate, failures=failures, total=total)

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Await `func(*args, **kwargs)` under breaker protection.

        Raises:
            CircuitBreakerOpenError: when the call is rejected without being made
        """
        admitted, probe = self._admit()
        if not admitted:
            raise CircuitBreakerOpenError(f"Circuit breaker {self.name} is open")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record(False, probe)
            raise
        self._record(True, probe)
        return result

    def get_metrics(self) -> dict:
        with self._lock:
            self._refresh(time.monotonic())
            total = len(self._outcomes)
            failures = sum(1 for _, ok in self._outcomes if not ok)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total else 0.0,
                "probe_successes": self._probe_successes,
            }
