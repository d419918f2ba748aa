"""
Per-provider circuit breaker for AI generation backends.

Each provider name gets an independent state machine:
- CLOSED: calls are attempted; consecutive failures are counted and the
  circuit opens once they reach failure_threshold.
- OPEN: calls are rejected until recovery_timeout_seconds have elapsed
  since the last failure, then the circuit moves to HALF_OPEN.
- HALF_OPEN: at most half_open_max_calls trial calls are admitted. Any
  failure reopens the circuit (restarting the recovery timer); a success
  closes it and resets the failure counter.

All operations are safe to call from concurrent requests: every provider
has its own lock, and locks are never held across an await.
"""
import time
from enum import Enum
from threading import Lock
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel

from persona_ai.core.logging import get_logger
from persona_ai.core.metrics import set_circuit_state

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, bypass provider
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreakerState(BaseModel):
    """Point-in-time snapshot of one provider's circuit."""

    state: str
    consecutive_failures: int = 0
    last_failure: Optional[float] = None
    next_retry_time: Optional[float] = None


class _ProviderCircuit:
    """Mutable state for a single provider. Guarded by its own lock."""

    def __init__(self, now: float):
        self.lock = Lock()
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.last_failure: Optional[float] = None
        self.last_success: Optional[float] = None
        self.transition_time = now
        self.next_retry_time: Optional[float] = None
        self.half_open_calls = 0
        self.half_open_successes = 0
        self.last_error: Optional[dict] = None


class CircuitBreaker:
    """
    Circuit breaker keyed by provider name.

    Configuration:
    - failure_threshold: consecutive failures before opening (default 3)
    - recovery_timeout_seconds: time in OPEN before trial calls (default 30)
    - half_open_max_calls: trial calls admitted while HALF_OPEN (default 2)
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout_seconds: float = 30.0,
        half_open_max_calls: int = 2,
        clock: Callable[[], float] = time.time,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if half_open_max_calls < 1:
            raise ValueError("half_open_max_calls must be at least 1")

        self.failure_threshold = failure_threshold
        self.recovery_timeout_seconds = recovery_timeout_seconds
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._circuits: Dict[str, _ProviderCircuit] = {}
        self._registry_lock = Lock()

    def _circuit(self, provider: str) -> _ProviderCircuit:
        circuit = self._circuits.get(provider)
        if circuit is None:
            with self._registry_lock:
                circuit = self._circuits.get(provider)
                if circuit is None:
                    circuit = _ProviderCircuit(self._clock())
                    self._circuits[provider] = circuit
        return circuit

    # ------------------------------------------------------------------
    # State transitions (caller holds circuit.lock)
    # ------------------------------------------------------------------

    def _transition(self, provider: str, circuit: _ProviderCircuit, new_state: CircuitState) -> None:
        previous = circuit.state
        now = self._clock()
        circuit.state = new_state
        circuit.transition_time = now
        circuit.half_open_calls = 0
        circuit.half_open_successes = 0

        if new_state == CircuitState.OPEN:
            circuit.next_retry_time = (circuit.last_failure or now) + self.recovery_timeout_seconds
            logger.warning(
                "circuit_breaker_opened",
                circuit_breaker=provider,
                previous_state=previous.value,
                consecutive_failures=circuit.consecutive_failures,
                next_retry_time=circuit.next_retry_time,
            )
        elif new_state == CircuitState.HALF_OPEN:
            logger.info(
                "circuit_breaker_half_open",
                circuit_breaker=provider,
                previous_state=previous.value,
            )
        else:
            circuit.consecutive_failures = 0
            circuit.next_retry_time = None
            logger.info(
                "circuit_breaker_closed",
                circuit_breaker=provider,
                previous_state=previous.value,
            )

        set_circuit_state(provider, new_state.value)

    def _refresh(self, provider: str, circuit: _ProviderCircuit) -> None:
        """Move OPEN to HALF_OPEN once the recovery window has elapsed."""
        if circuit.state != CircuitState.OPEN:
            return
        last_failure = circuit.last_failure or circuit.transition_time
        if self._clock() - last_failure >= self.recovery_timeout_seconds:
            self._transition(provider, circuit, CircuitState.HALF_OPEN)

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    def can_execute(self, provider: str) -> bool:
        """
        Whether a call to the provider may be attempted right now.

        True in CLOSED, or in HALF_OPEN while a trial slot is still free.
        Does not reserve the slot; use try_acquire() before attempting.
        """
        circuit = self._circuit(provider)
        with circuit.lock:
            self._refresh(provider, circuit)
            if circuit.state == CircuitState.CLOSED:
                return True
            if circuit.state == CircuitState.HALF_OPEN:
                return circuit.half_open_calls < self.half_open_max_calls
            return False

    def try_acquire(self, provider: str) -> bool:
        """
        Atomically admit one call.

        In HALF_OPEN this consumes a trial slot, so concurrent requests can
        never be admitted beyond half_open_max_calls.
        """
        circuit = self._circuit(provider)
        with circuit.lock:
            self._refresh(provider, circuit)
            if circuit.state == CircuitState.CLOSED:
                return True
            if circuit.state == CircuitState.HALF_OPEN:
                if circuit.half_open_calls < self.half_open_max_calls:
                    circuit.half_open_calls += 1
                    return True
            return False

    def release(self, provider: str) -> None:
        """Return an admitted HALF_OPEN slot whose call produced no outcome."""
        circuit = self._circuit(provider)
        with circuit.lock:
            if circuit.state == CircuitState.HALF_OPEN and circuit.half_open_calls > 0:
                circuit.half_open_calls -= 1

    def record_success(self, provider: str) -> None:
        circuit = self._circuit(provider)
        with circuit.lock:
            circuit.last_success = self._clock()

            if circuit.state == CircuitState.CLOSED:
                circuit.consecutive_failures = 0
            elif circuit.state == CircuitState.HALF_OPEN:
                circuit.half_open_successes += 1
                self._transition(provider, circuit, CircuitState.CLOSED)
            else:
                # Late result from a call admitted before the circuit opened.
                logger.warning("circuit_breaker_success_while_open", circuit_breaker=provider)

    def record_failure(self, provider: str, error: Optional[BaseException] = None) -> None:
        circuit = self._circuit(provider)
        with circuit.lock:
            now = self._clock()
            circuit.consecutive_failures += 1
            circuit.last_failure = now

            if error is not None:
                circuit.last_error = {
                    "message": str(error),
                    "type": type(error).__name__,
                    "timestamp": now,
                }

            if circuit.state == CircuitState.CLOSED:
                if circuit.consecutive_failures >= self.failure_threshold:
                    self._transition(provider, circuit, CircuitState.OPEN)
            elif circuit.state == CircuitState.HALF_OPEN:
                self._transition(provider, circuit, CircuitState.OPEN)
            else:
                circuit.next_retry_time = now + self.recovery_timeout_seconds

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_state(self, provider: str) -> CircuitBreakerState:
        circuit = self._circuit(provider)
        with circuit.lock:
            self._refresh(provider, circuit)
            return CircuitBreakerState(
                state=circuit.state.value,
                consecutive_failures=circuit.consecutive_failures,
                last_failure=circuit.last_failure,
                next_retry_time=circuit.next_retry_time if circuit.state == CircuitState.OPEN else None,
            )

    def get_all_states(self) -> Dict[str, CircuitBreakerState]:
        return {name: self.get_state(name) for name in list(self._circuits)}

    def get_metrics(self, provider: str) -> dict:
        """Get circuit breaker metrics for monitoring."""
        circuit = self._circuit(provider)
        with circuit.lock:
            self._refresh(provider, circuit)
            now = self._clock()
            return {
                "name": provider,
                "state": circuit.state.value,
                "consecutive_failures": circuit.consecutive_failures,
                "last_failure": circuit.last_failure,
                "last_success": circuit.last_success,
                "time_in_state_seconds": now - circuit.transition_time,
                "half_open_calls": circuit.half_open_calls,
                "half_open_successes": circuit.half_open_successes,
                "next_retry_time": circuit.next_retry_time,
                "last_error": circuit.last_error,
            }

    def get_all_metrics(self) -> List[dict]:
        return [self.get_metrics(name) for name in list(self._circuits)]

    def get_health_summary(self) -> dict:
        states = [m["state"] for m in self.get_all_metrics()]
        closed = states.count(CircuitState.CLOSED.value)
        return {
            "total_providers": len(states),
            "healthy_providers": closed,
            "failed_providers": states.count(CircuitState.OPEN.value),
            "recovering_providers": states.count(CircuitState.HALF_OPEN.value),
            "overall_health": closed / len(states) if states else 1.0,
        }

    def is_recovering(self, provider: str) -> bool:
        return self.get_state(provider).state == CircuitState.HALF_OPEN.value

    def get_time_until_retry(self, provider: str) -> float:
        """Seconds until an OPEN circuit admits trial calls (0 otherwise)."""
        snapshot = self.get_state(provider)
        if snapshot.state != CircuitState.OPEN.value or snapshot.next_retry_time is None:
            return 0.0
        return max(0.0, snapshot.next_retry_time - self._clock())

    # ------------------------------------------------------------------
    # Manual control
    # ------------------------------------------------------------------

    def reset_provider(self, provider: str) -> None:
        if provider not in self._circuits:
            return
        circuit = self._circuits[provider]
        with circuit.lock:
            self._transition(provider, circuit, CircuitState.CLOSED)
        logger.info("circuit_breaker_reset", circuit_breaker=provider)

    def reset_all(self) -> None:
        for provider in list(self._circuits):
            self.reset_provider(provider)
