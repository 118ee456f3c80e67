"""
Circuit Breaker for the Shared Cache.

This module implements the in-process circuit breaker that decides, for
every cache call, whether Redis should be tried at all.

MECHANISM OF ACTION:
-------------------
1.  **Per-Process State**:
    Unlike a breaker guarding a remote provider, this one guards the very
    store a distributed breaker would live in. Its state is therefore kept
    in process memory; each instance discovers a Redis outage on its own.

2.  **State Transitions**:
    - **CLOSED**: Redis is healthy. Requests are allowed.
      - On Failure: The failure timestamp joins a sliding window.
      - Threshold Reached: ``failure_threshold`` failures inside
        ``failure_window`` seconds -> OPEN.

    - **OPEN**: Redis is considered down. ``allow_request()`` returns False
      so the caller goes straight to the fallback store.
      - Recovery: After the current cool-down the state lazily becomes HALF_OPEN.

    - **HALF_OPEN**: Probing mode.
      - Exactly ONE caller is admitted as the probe; everyone else stays on
        the fallback store.
      - On Success: CLOSED, failure window and cool-down reset.
      - On Failure: OPEN again with the cool-down doubled (BackoffPolicy),
        up to its cap.

3.  **Event-Loop Atomicity**:
    Every method is synchronous and never awaits, so state transitions are
    atomic with respect to other coroutines on the same loop without a lock.
"""

import time
from collections import deque
from collections.abc import Callable

from authguard.core.config.constants import CircuitState
from authguard.core.logging.logger import get_logger
from authguard.core.resilience.backoff import BackoffPolicy

logger = get_logger(__name__)

StateListener = Callable[[CircuitState, CircuitState], None]


class CircuitBreaker:
    """
    Sliding-window circuit breaker with a doubling cool-down.

    Args:
        name: Breaker name used in logs and metrics
        failure_threshold: Failures inside the window that open the circuit
        failure_window: Sliding window length in seconds
        cooldown: Policy giving the open-state duration for the n-th consecutive reopen
        clock: Monotonic time source (injectable for tests)
        on_state_change: Optional callback ``(old, new)`` invoked on every transition
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int,
        failure_window: float,
        cooldown: BackoffPolicy,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: StateListener | None = None,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if failure_window <= 0:
            raise ValueError("failure_window must be > 0")

        self.name = name
        self._failure_threshold = failure_threshold
        self._failure_window = failure_window
        self._cooldown = cooldown
        self._clock = clock
        self._on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: float | None = None
        self._reopen_count = 0
        self._probe_in_flight = False

        self._total_opens = 0
        self._last_failure_reason: str | None = None

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        """Current state, promoting OPEN to HALF_OPEN once the cool-down elapsed."""
        if self._state == CircuitState.OPEN and self._cooldown_elapsed():
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    @property
    def current_cooldown(self) -> float:
        """Open-state duration that applies to the current (or next) opening."""
        return self._cooldown.delay_for(self._reopen_count)

    def _cooldown_elapsed(self) -> bool:
        if self._opened_at is None:
            return True
        return self._clock() - self._opened_at >= self.current_cooldown

    def _prune(self, now: float) -> None:
        horizon = now - self._failure_window
        while self._failures and self._failures[0] <= horizon:
            self._failures.popleft()

    # ------------------------------------------------------------------
    # Request gating
    # ------------------------------------------------------------------

    def allow_request(self) -> bool:
        """
        Decide whether the next call may go to the primary backend.

        In HALF_OPEN the first caller claims the probe slot and every other
        caller is refused until the probe reports back.
        """
        state = self.state

        if state == CircuitState.CLOSED:
            return True

        if state == CircuitState.HALF_OPEN and not self._probe_in_flight:
            self._probe_in_flight = True
            logger.info("Circuit probe admitted", stage="CB.3", circuit=self.name)
            return True

        return False

    def record_success(self) -> None:
        """Report a successful primary call."""
        if self._state == CircuitState.HALF_OPEN:
            self._failures.clear()
            self._reopen_count = 0
            self._opened_at = None
            self._probe_in_flight = False
            self._transition(CircuitState.CLOSED)

    def record_failure(self, reason: str = "error") -> None:
        """
        Report a failed primary call (error, unavailability or timeout).

        Failures reported while already OPEN come from calls admitted before
        the circuit opened; they carry no new information and are ignored.
        """
        now = self._clock()
        self._last_failure_reason = reason

        if self._state == CircuitState.HALF_OPEN:
            self._reopen_count += 1
            self._probe_in_flight = False
            self._open(now, reason)
            return

        if self._state == CircuitState.CLOSED:
            self._failures.append(now)
            self._prune(now)
            if len(self._failures) >= self._failure_threshold:
                self._reopen_count = 0
                self._open(now, reason)

    def release_probe(self) -> None:
        """Give the probe slot back when the probe call ended without a verdict (e.g. cancelled)."""
        if self._state == CircuitState.HALF_OPEN:
            self._probe_in_flight = False

    def reset(self) -> None:
        """Manually force the circuit CLOSED (operator action / tests)."""
        self._failures.clear()
        self._reopen_count = 0
        self._opened_at = None
        self._probe_in_flight = False
        if self._state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _open(self, now: float, reason: str) -> None:
        self._opened_at = now
        self._failures.clear()
        self._total_opens += 1
        logger.warning(
            "Circuit opened",
            stage="CB.2",
            circuit=self.name,
            reason=reason,
            cooldown_seconds=self.current_cooldown,
            consecutive_reopens=self._reopen_count,
        )
        self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.info(
            "Circuit state changed",
            stage="CB.1",
            circuit=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
        )
        if self._on_state_change is not None:
            self._on_state_change(old_state, new_state)

    def get_status(self) -> dict:
        """Get current circuit breaker status for monitoring."""
        now = self._clock()
        self._prune(now)
        state = self.state
        return {
            "name": self.name,
            "state": state.value,
            "recent_failures": len(self._failures),
            "failure_threshold": self._failure_threshold,
            "failure_window_seconds": self._failure_window,
            "cooldown_seconds": self.current_cooldown,
            "consecutive_reopens": self._reopen_count,
            "total_opens": self._total_opens,
            "probe_in_flight": self._probe_in_flight,
            "last_failure_reason": self._last_failure_reason,
        }
