"""
Provider health monitoring.

Owns one ProviderHealth per registered provider and keeps it current from
two sources:
- probes: check_provider() / check_all(), run on demand or periodically by
  the background task started with start()
- call outcomes: record_call_outcome(), reported by the orchestrator after
  every generation attempt

Probes never raise; a probe that raises or times out counts as unhealthy.
The monitor reads circuit breaker state for reports but never changes it.

All mutation happens on the event loop thread without awaiting in between,
so no lock is needed.
"""
import asyncio
import statistics
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Sequence

from pydantic import BaseModel

from persona_ai.core.circuit_breaker import CircuitBreaker
from persona_ai.core.logging import get_logger
from persona_ai.core.metrics import set_provider_health
from persona_ai.services.ai.providers.base import BaseProvider
from persona_ai.services.ai.schema import (
    HealthStatus,
    LastResponseInfo,
    ProviderHealth,
    ProviderHealthReport,
    utc_now,
)

logger = get_logger(__name__)

DEFAULT_CHECK_INTERVAL_SECONDS = 30.0
DEFAULT_MAX_HISTORY_ENTRIES = 120
DEFAULT_PERFORMANCE_WINDOW_SECONDS = 15 * 60
CALL_OUTCOME_WINDOW = 10


class AlertThresholds(BaseModel):
    response_time_ms: float = 5000.0
    error_rate: float = 0.5
    consecutive_failures: int = 3


class HealthAlert(BaseModel):
    provider: str
    alert_type: str  # "response_time" | "error_rate" | "consecutive_failures" | "unhealthy"
    severity: str  # "warning" | "critical"
    message: str
    value: float
    threshold: float


class ProviderPerformanceMetrics(BaseModel):
    provider: str
    window_seconds: float
    average_response_time_ms: float = 0.0
    median_response_time_ms: float = 0.0
    p95_response_time_ms: float = 0.0
    total_checks: int = 0
    successful_checks: int = 0
    failed_checks: int = 0
    uptime_percentage: float = 0.0


@dataclass
class HealthHistoryEntry:
    timestamp: float
    is_healthy: bool
    response_time_ms: float
    error_rate: float
    consecutive_failures: int


class HealthMonitor:
    """
    Health state and background probing for a fixed set of providers.

    Args:
        providers: Providers to monitor
        circuit_breaker: Read for the circuit snapshot in reports
        check_interval_seconds: Background probe interval
        max_history_entries: Probe results kept per provider
        alert_thresholds: Limits that raise health_alert log events
    """

    def __init__(
        self,
        providers: Sequence[BaseProvider],
        circuit_breaker: CircuitBreaker,
        check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
        max_history_entries: int = DEFAULT_MAX_HISTORY_ENTRIES,
        alert_thresholds: Optional[AlertThresholds] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._providers: Dict[str, BaseProvider] = {p.name: p for p in providers}
        self.circuit_breaker = circuit_breaker
        self.check_interval_seconds = check_interval_seconds
        self.alert_thresholds = alert_thresholds or AlertThresholds()
        self._clock = clock

        self._health: Dict[str, ProviderHealth] = {
            name: ProviderHealth(name=name) for name in self._providers
        }
        self._history: Dict[str, Deque[HealthHistoryEntry]] = {
            name: deque(maxlen=max_history_entries) for name in self._providers
        }
        self._call_outcomes: Dict[str, Deque[bool]] = {
            name: deque(maxlen=CALL_OUTCOME_WINDOW) for name in self._providers
        }
        self._last_response: Dict[str, LastResponseInfo] = {}
        self._alerts: Deque[HealthAlert] = deque(maxlen=100)

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    async def check_provider(self, name: str) -> Optional[HealthStatus]:
        """Probe one provider now. Returns None for an unknown name."""
        provider = self._providers.get(name)
        if provider is None:
            return None

        start = time.perf_counter()
        try:
            status = await asyncio.wait_for(provider.check_health(), timeout=provider.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("health_check_timeout", provider=name, timeout_seconds=provider.timeout_seconds)
            status = self._failed_status(start)
        except Exception as e:
            logger.warning(
                "health_check_failed",
                provider=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            status = self._failed_status(start)

        self._apply_probe(name, status)
        return status

    async def check_all(self) -> Dict[str, HealthStatus]:
        """Probe every provider concurrently."""
        names = list(self._providers)
        results = await asyncio.gather(*(self.check_provider(name) for name in names))
        return {name: status for name, status in zip(names, results) if status is not None}

    @staticmethod
    def _failed_status(start: float) -> HealthStatus:
        return HealthStatus(
            is_healthy=False,
            response_time_ms=(time.perf_counter() - start) * 1000.0,
            error_rate=1.0,
        )

    def _apply_probe(self, name: str, status: HealthStatus) -> None:
        health = self._health[name]
        if status.is_healthy:
            health.consecutive_failures = 0
        else:
            health.consecutive_failures += 1
        health.is_healthy = status.is_healthy
        health.response_time_ms = status.response_time_ms
        health.error_rate = status.error_rate
        health.last_checked = status.last_checked

        self._history[name].append(
            HealthHistoryEntry(
                timestamp=self._clock(),
                is_healthy=status.is_healthy,
                response_time_ms=status.response_time_ms,
                error_rate=status.error_rate,
                consecutive_failures=health.consecutive_failures,
            )
        )
        self._last_response[name] = LastResponseInfo(
            timestamp=status.last_checked,
            response_time_ms=status.response_time_ms,
            success=status.is_healthy,
        )
        set_provider_health(name, status.is_healthy)
        self._evaluate_alerts(name, health)

    # ------------------------------------------------------------------
    # Call outcomes
    # ------------------------------------------------------------------

    def record_call_outcome(self, name: str, success: bool, response_time_ms: float) -> None:
        """Fold the result of a real generation attempt into the provider's health."""
        health = self._health.get(name)
        if health is None:
            return

        outcomes = self._call_outcomes[name]
        outcomes.append(success)

        if success:
            health.consecutive_failures = 0
            health.is_healthy = True
        else:
            health.consecutive_failures += 1
            if health.consecutive_failures >= self.alert_thresholds.consecutive_failures:
                health.is_healthy = False

        health.error_rate = outcomes.count(False) / len(outcomes)
        health.response_time_ms = response_time_ms
        health.last_checked = utc_now()

        self._last_response[name] = LastResponseInfo(
            timestamp=health.last_checked,
            response_time_ms=response_time_ms,
            success=success,
        )
        set_provider_health(name, health.is_healthy)
        if not success:
            self._evaluate_alerts(name, health)

    # ------------------------------------------------------------------
    # Background task
    # ------------------------------------------------------------------

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start periodic probing. Calling it while already running is a no-op."""
        if self.is_monitoring:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))
        logger.info("health_monitoring_started", interval_seconds=self.check_interval_seconds)

    async def stop(self) -> None:
        """Stop periodic probing and wait for the task to finish. Idempotent."""
        if self._task is None:
            return
        task, stop_event = self._task, self._stop_event
        self._task = None
        self._stop_event = None

        if stop_event is not None:
            stop_event.set()
        await task
        logger.info("health_monitoring_stopped")

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.check_all()
            except Exception as e:
                logger.error(
                    "health_check_cycle_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.check_interval_seconds)
            except asyncio.TimeoutError:
                continue

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def _evaluate_alerts(self, name: str, health: ProviderHealth) -> List[HealthAlert]:
        thresholds = self.alert_thresholds
        alerts: List[HealthAlert] = []

        if health.response_time_ms > thresholds.response_time_ms:
            alerts.append(HealthAlert(
                provider=name,
                alert_type="response_time",
                severity="warning",
                message=f"Response time {health.response_time_ms:.0f}ms exceeds {thresholds.response_time_ms:.0f}ms",
                value=health.response_time_ms,
                threshold=thresholds.response_time_ms,
            ))

        if health.error_rate > thresholds.error_rate:
            alerts.append(HealthAlert(
                provider=name,
                alert_type="error_rate",
                severity="critical",
                message=f"Error rate {health.error_rate:.0%} exceeds {thresholds.error_rate:.0%}",
                value=health.error_rate,
                threshold=thresholds.error_rate,
            ))

        if health.consecutive_failures >= thresholds.consecutive_failures:
            alerts.append(HealthAlert(
                provider=name,
                alert_type="consecutive_failures",
                severity="critical",
                message=f"{health.consecutive_failures} consecutive failures",
                value=health.consecutive_failures,
                threshold=thresholds.consecutive_failures,
            ))

        if not health.is_healthy:
            alerts.append(HealthAlert(
                provider=name,
                alert_type="unhealthy",
                severity="critical",
                message="Provider is unhealthy",
                value=0,
                threshold=1,
            ))

        for alert in alerts:
            self._alerts.append(alert)
            logger.warning(
                "health_alert",
                provider=alert.provider,
                alert_type=alert.alert_type,
                severity=alert.severity,
                message=alert.message,
                value=alert.value,
                threshold=alert.threshold,
            )
        return alerts

    def get_recent_alerts(self, limit: int = 20) -> List[HealthAlert]:
        return list(self._alerts)[-limit:]

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_provider_health(self, name: str) -> Optional[ProviderHealth]:
        health = self._health.get(name)
        return health.model_copy() if health is not None else None

    def get_health_history(self, name: str, window_seconds: Optional[float] = None) -> List[HealthHistoryEntry]:
        history = list(self._history.get(name, ()))
        if window_seconds is None:
            return history
        cutoff = self._clock() - window_seconds
        return [entry for entry in history if entry.timestamp > cutoff]

    def get_provider_health_reports(self) -> List[ProviderHealthReport]:
        """Last known health of every provider merged with circuit state and capabilities, by priority."""
        reports = []
        for name, provider in self._providers.items():
            health = self._health[name]
            reports.append(
                ProviderHealthReport(
                    name=name,
                    priority=provider.priority,
                    health=HealthStatus(
                        is_healthy=health.is_healthy,
                        response_time_ms=health.response_time_ms,
                        error_rate=health.error_rate,
                        last_checked=health.last_checked or utc_now(),
                        consecutive_failures=health.consecutive_failures,
                    ),
                    circuit_breaker_state=self.circuit_breaker.get_state(name),
                    capabilities=provider.get_capabilities(),
                    is_fallback=provider.is_fallback,
                    last_response=self._last_response.get(name),
                )
            )
        return sorted(reports, key=lambda report: report.priority)

    def get_performance_metrics(
        self,
        name: str,
        window_seconds: float = DEFAULT_PERFORMANCE_WINDOW_SECONDS,
    ) -> ProviderPerformanceMetrics:
        history = self.get_health_history(name, window_seconds)
        metrics = ProviderPerformanceMetrics(provider=name, window_seconds=window_seconds)
        if not history:
            return metrics

        response_times = sorted(entry.response_time_ms for entry in history)
        successful = sum(1 for entry in history if entry.is_healthy)
        p95_index = min(int(len(response_times) * 0.95), len(response_times) - 1)

        metrics.average_response_time_ms = sum(response_times) / len(response_times)
        metrics.median_response_time_ms = statistics.median(response_times)
        metrics.p95_response_time_ms = response_times[p95_index]
        metrics.total_checks = len(history)
        metrics.successful_checks = successful
        metrics.failed_checks = len(history) - successful
        metrics.uptime_percentage = successful / len(history) * 100
        return metrics

    def get_overall_system_health(self) -> dict:
        providers = sorted(self._providers.values(), key=lambda p: p.priority)
        healthy = [p.name for p in providers if self._health[p.name].is_healthy]
        total = len(providers)
        response_times = [self._health[p.name].response_time_ms for p in providers]

        return {
            "total_providers": total,
            "healthy_providers": len(healthy),
            "unhealthy_providers": total - len(healthy),
            "overall_health_percentage": len(healthy) / total * 100 if total else 100.0,
            "primary_provider_healthy": bool(providers) and providers[0].name in healthy,
            "average_response_time_ms": sum(response_times) / total if total else 0.0,
        }

    def reset_history(self) -> None:
        for history in self._history.values():
            history.clear()
        self._alerts.clear()
