"""
AI provider orchestration.

Responsibilities:
- Serve repeated requests from the response cache
- Route each request to the most preferred provider whose circuit admits it
- Fall through to the next provider on failure or timeout, ending with the
  local fallback provider
- Feed every attempt outcome to the circuit breaker, health monitor,
  per-provider metrics and Prometheus

NON-responsibilities:
- Does NOT validate or route HTTP requests
- Does NOT persist generated content
- Does NOT implement moderation beyond the providers' safety hook

Only OrchestrationError subclasses reach callers; individual provider
errors are logged and recovered here.
"""
import asyncio
import time
from threading import Lock
from typing import Dict, List, Optional, Sequence

from persona_ai.core.circuit_breaker import CircuitBreaker, CircuitState
from persona_ai.core.config import AIConfig, load_config_from_env, validate_config
from persona_ai.core.logging import (
    generate_request_id,
    get_logger,
    get_request_id,
    reset_persona_id,
    set_persona_id,
)
from persona_ai.core.metrics import (
    record_all_providers_failed,
    record_fallback_response,
    record_provider_failure,
    record_provider_success,
    record_tokens_and_cost,
)
from persona_ai.services.ai.cache import ResponseCache, generate_cache_key
from persona_ai.services.ai.errors import (
    AllProvidersFailedError,
    NoHealthyProvidersError,
    ServiceUnavailableError,
    error_kind_of,
)
from persona_ai.services.ai.health_monitor import HealthMonitor
from persona_ai.services.ai.providers.base import BaseProvider
from persona_ai.services.ai.providers.claude import ClaudeProvider
from persona_ai.services.ai.providers.demo import DemoProvider
from persona_ai.services.ai.providers.gemini import GeminiProvider
from persona_ai.services.ai.providers.openai import OpenAIProvider
from persona_ai.services.ai.schema import (
    GenerationRequest,
    GenerationResponse,
    OrchestratorMetrics,
    ProviderHealthReport,
    ProviderMetrics,
    SystemHealthSummary,
    utc_now,
)

logger = get_logger(__name__)

DEADLINE_EXCEEDED = "deadline_exceeded"


class _ProviderStats:
    """Per-provider counters, guarded by their own lock."""

    def __init__(self, name: str):
        self.lock = Lock()
        self.metrics = ProviderMetrics(provider=name)
        self.success_time_ms_total = 0.0

    def record(self, success: bool, duration_ms: float, tokens: int = 0, cost: float = 0.0) -> None:
        with self.lock:
            metrics = self.metrics
            metrics.total_requests += 1
            metrics.last_used = utc_now()
            if success:
                metrics.successful_requests += 1
                self.success_time_ms_total += duration_ms
                metrics.average_response_time_ms = self.success_time_ms_total / metrics.successful_requests
                metrics.total_tokens_used += tokens
                metrics.estimated_cost += cost
            else:
                metrics.failed_requests += 1

    def snapshot(self) -> ProviderMetrics:
        with self.lock:
            return self.metrics.model_copy()


def summarize_system_health(reports: Sequence[ProviderHealthReport]) -> SystemHealthSummary:
    """
    Overall status from provider reports.

    A provider counts as available when its last health is good and its
    circuit is not open. With remote providers registered, being left with
    only the fallback is "degraded", not "healthy".
    """
    available = [
        r for r in reports
        if r.health.is_healthy and r.circuit_breaker_state.state != CircuitState.OPEN.value
    ]
    remote = [r for r in reports if not r.is_fallback]
    available_remote = [r for r in available if not r.is_fallback]

    if not available:
        return SystemHealthSummary(
            status="unhealthy",
            summary="No AI providers available",
            details=[f"{r.name}: unavailable" for r in reports],
        )

    details = [
        f"{r.name}: {'available' if r in available else 'unavailable'} (circuit {r.circuit_breaker_state.state})"
        for r in reports
    ]

    if remote and not available_remote:
        return SystemHealthSummary(
            status="degraded",
            summary="Only the fallback provider is available",
            details=details,
        )

    if len(available_remote) < len(remote):
        return SystemHealthSummary(
            status="degraded",
            summary=f"{len(available_remote)} of {len(remote)} remote providers available",
            details=details,
        )

    return SystemHealthSummary(
        status="healthy",
        summary=f"All {len(reports)} providers available",
        details=details,
    )


class AIOrchestrator:
    """
    Routes generation requests across providers with caching and circuit breaking.

    Collaborators are injectable; anything not supplied is built with
    defaults. Providers are kept sorted by ascending priority.
    """

    def __init__(
        self,
        providers: Sequence[BaseProvider],
        circuit_breaker: Optional[CircuitBreaker] = None,
        cache: Optional[ResponseCache] = None,
        health_monitor: Optional[HealthMonitor] = None,
    ):
        names = [p.name for p in providers]
        if len(set(names)) != len(names):
            raise ValueError(f"Provider names must be unique: {names}")

        self.providers: List[BaseProvider] = sorted(providers, key=lambda p: p.priority)
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.cache = cache or ResponseCache()
        self.health_monitor = health_monitor or HealthMonitor(self.providers, self.circuit_breaker)

        self._stats: Dict[str, _ProviderStats] = {p.name: _ProviderStats(p.name) for p in self.providers}
        self._totals_lock = Lock()
        self._total_requests = 0
        self._served_requests = 0
        self._served_time_ms_total = 0.0
        self._fallback_responses = 0
        self._started_at = time.time()

        if not any(p.is_fallback for p in self.providers):
            logger.warning("ai_orchestrator_no_fallback_provider", providers=names)

        logger.info(
            "ai_orchestrator_initialized",
            providers=[p.name for p in self.providers],
            cache_enabled=self.cache.enabled,
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_response(
        self,
        request: GenerationRequest,
        deadline_seconds: Optional[float] = None,
    ) -> GenerationResponse:
        """
        Produce a response for the request.

        Args:
            request: Immutable generation request
            deadline_seconds: Optional overall budget. Once spent, remaining
                remote providers are skipped and the fallback answers.

        Raises:
            NoHealthyProvidersError: no registered provider may be attempted
            AllProvidersFailedError: every candidate, fallback included, failed
        """
        persona_token = set_persona_id(request.persona.id)
        try:
            return await self._generate(request, deadline_seconds)
        finally:
            reset_persona_id(persona_token)

    async def _generate(
        self,
        request: GenerationRequest,
        deadline_seconds: Optional[float],
    ) -> GenerationResponse:
        start = time.perf_counter()
        request_id = get_request_id() or generate_request_id()
        with self._totals_lock:
            self._total_requests += 1

        cache_key = generate_cache_key(request)
        cached = self.cache.get(cache_key)
        if cached is not None:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self._record_served(elapsed_ms)
            logger.info(
                "ai_generation_cache_hit",
                request_id=request_id,
                persona_id=request.persona.id,
                provider=cached.provider,
            )
            return cached.model_copy(update={"processing_time_ms": elapsed_ms, "cached": True})

        candidates = self._candidates()
        if not candidates:
            logger.error("ai_no_healthy_providers", request_id=request_id)
            raise NoHealthyProvidersError()

        deadline = start + deadline_seconds if deadline_seconds is not None else None
        attempted: List[str] = []
        last_error: Optional[BaseException] = None

        for provider in candidates:
            remaining = deadline - time.perf_counter() if deadline is not None else None

            if not provider.is_fallback and remaining is not None and remaining <= 0:
                logger.info("ai_provider_skipped_deadline", request_id=request_id, provider=provider.name)
                continue

            if not provider.is_fallback and not self.circuit_breaker.try_acquire(provider.name):
                # Another request took the last half-open slot, or the circuit just opened.
                logger.debug("ai_provider_not_admitted", request_id=request_id, provider=provider.name)
                continue

            timeout = provider.timeout_seconds
            deadline_bound = False
            if not provider.is_fallback and remaining is not None and remaining < timeout:
                timeout = remaining
                deadline_bound = True

            attempted.append(provider.name)
            attempt_start = time.perf_counter()
            try:
                response = await asyncio.wait_for(provider.generate(request), timeout=timeout)
            except asyncio.CancelledError:
                self.circuit_breaker.release(provider.name)
                raise
            except asyncio.TimeoutError:
                if deadline_bound:
                    # The caller's budget ran out, not the provider's own timeout.
                    self.circuit_breaker.release(provider.name)
                    self._record_deadline_exceeded(provider, attempt_start, request_id)
                    continue
                last_error = ServiceUnavailableError(
                    provider.name, f"Timed out after {provider.timeout_seconds:.1f}s"
                )
                self._record_failure(provider, last_error, attempt_start, request_id)
                continue
            except Exception as e:
                last_error = e
                self._record_failure(provider, e, attempt_start, request_id)
                continue

            self._record_success(provider, response, attempt_start, request_id)
            self.cache.set(cache_key, response)

            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self._record_served(elapsed_ms)
            return response

        record_all_providers_failed()
        logger.error(
            "ai_all_providers_failed",
            request_id=request_id,
            attempted=attempted,
            error=str(last_error) if last_error else None,
            error_kind=error_kind_of(last_error) if last_error else None,
        )
        raise AllProvidersFailedError(attempted, last_error) from last_error

    def _candidates(self) -> List[BaseProvider]:
        """Providers that may be attempted now, most preferred first. The fallback is never excluded."""
        return [
            p for p in self.providers
            if p.is_fallback or self.circuit_breaker.can_execute(p.name)
        ]

    def _record_success(
        self,
        provider: BaseProvider,
        response: GenerationResponse,
        attempt_start: float,
        request_id: str,
    ) -> None:
        duration = time.perf_counter() - attempt_start
        duration_ms = duration * 1000.0
        tokens = response.tokens.total if response.tokens else 0
        cost = tokens * provider.get_capabilities().cost_per_token

        self.circuit_breaker.record_success(provider.name)
        self.health_monitor.record_call_outcome(provider.name, True, duration_ms)
        self._stats[provider.name].record(True, duration_ms, tokens=tokens, cost=cost)

        record_provider_success(provider.name, duration)
        if response.tokens:
            record_tokens_and_cost(provider.name, response.tokens.input, response.tokens.output, cost)
        if provider.is_fallback:
            with self._totals_lock:
                self._fallback_responses += 1
            record_fallback_response()

        logger.info(
            "ai_generation_completed",
            request_id=request_id,
            provider=provider.name,
            model=response.model,
            is_fallback=provider.is_fallback,
            duration_ms=round(duration_ms, 2),
            tokens=tokens,
        )

    def _record_failure(
        self,
        provider: BaseProvider,
        error: BaseException,
        attempt_start: float,
        request_id: str,
    ) -> None:
        duration = time.perf_counter() - attempt_start
        duration_ms = duration * 1000.0
        kind = error_kind_of(error)

        self.circuit_breaker.record_failure(provider.name, error)
        self.health_monitor.record_call_outcome(provider.name, False, duration_ms)
        self._stats[provider.name].record(False, duration_ms)
        record_provider_failure(provider.name, kind, duration)

        logger.warning(
            "ai_provider_attempt_failed",
            request_id=request_id,
            provider=provider.name,
            error=str(error),
            error_kind=kind,
            error_type=type(error).__name__,
            duration_ms=round(duration_ms, 2),
        )

    def _record_deadline_exceeded(self, provider: BaseProvider, attempt_start: float, request_id: str) -> None:
        """Counted in provider metrics only; breaker and health state are left alone."""
        duration = time.perf_counter() - attempt_start
        duration_ms = duration * 1000.0

        self._stats[provider.name].record(False, duration_ms)
        record_provider_failure(provider.name, DEADLINE_EXCEEDED, duration)

        logger.info(
            "ai_provider_deadline_exceeded",
            request_id=request_id,
            provider=provider.name,
            duration_ms=round(duration_ms, 2),
        )

    def _record_served(self, elapsed_ms: float) -> None:
        with self._totals_lock:
            self._served_requests += 1
            self._served_time_ms_total += elapsed_ms

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_metrics(self) -> OrchestratorMetrics:
        providers = [self._stats[p.name].snapshot() for p in self.providers]
        with self._totals_lock:
            total_requests = self._total_requests
            served = self._served_requests
            served_time = self._served_time_ms_total
            fallback_responses = self._fallback_responses

        return OrchestratorMetrics(
            providers=providers,
            total_requests=total_requests,
            cache_hit_rate=self.cache.hit_rate,
            average_response_time_ms=served_time / served if served else 0.0,
            total_cost=sum(m.estimated_cost for m in providers),
            fallback_responses=fallback_responses,
            degraded=self.get_system_health().status != "healthy",
        )

    def get_provider_health_reports(self) -> List[ProviderHealthReport]:
        return self.health_monitor.get_provider_health_reports()

    def get_system_health(self) -> SystemHealthSummary:
        return summarize_system_health(self.get_provider_health_reports())

    def get_status(self) -> dict:
        health = self.get_system_health()
        return {
            "status": health.status,
            "summary": health.summary,
            "providers": [p.name for p in self.providers],
            "health_monitoring": self.health_monitor.is_monitoring,
            "uptime_seconds": time.time() - self._started_at,
            "cache": self.cache.get_stats(),
            "circuit_breakers": self.circuit_breaker.get_health_summary(),
        }

    def get_provider_by_name(self, name: str) -> Optional[BaseProvider]:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    # ------------------------------------------------------------------
    # Health monitoring
    # ------------------------------------------------------------------

    def start_health_monitoring(self) -> None:
        self.health_monitor.start()

    async def stop_health_monitoring(self) -> None:
        await self.health_monitor.stop()

    async def perform_health_check(self) -> Dict[str, bool]:
        """Probe every provider now; returns name -> healthy."""
        results = await self.health_monitor.check_all()
        return {name: status.is_healthy for name, status in results.items()}

    # ------------------------------------------------------------------
    # Cache & breaker management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self.cache.clear()

    def invalidate_cache_for_provider(self, provider_name: str) -> int:
        return self.cache.invalidate_by_provider(provider_name)

    def get_cache_stats(self) -> dict:
        return self.cache.get_stats()

    def reset_circuit_breakers(self) -> None:
        self.circuit_breaker.reset_all()

    async def shutdown(self) -> None:
        await self.stop_health_monitoring()
        self.cache.clear()
        logger.info("ai_orchestrator_shutdown")


def build_providers(config: AIConfig, **provider_kwargs) -> List[BaseProvider]:
    """
    Instantiate providers from configuration.

    Remote providers without credentials are omitted; the fallback is always
    registered. provider_kwargs (e.g. transport) are passed to remote adapters.
    """
    providers: List[BaseProvider] = []
    if config.claude:
        providers.append(ClaudeProvider(config.claude, **provider_kwargs))
    if config.openai:
        providers.append(OpenAIProvider(config.openai, **provider_kwargs))
    if config.google:
        providers.append(GeminiProvider(config.google, **provider_kwargs))
    providers.append(DemoProvider())
    return providers


def create_orchestrator(config: Optional[AIConfig] = None, **provider_kwargs) -> AIOrchestrator:
    """Build a fully wired orchestrator; reads the environment when config is None."""
    config = config or load_config_from_env()

    for warning in validate_config(config):
        logger.warning("ai_config_warning", warning=warning)

    providers = build_providers(config, **provider_kwargs)
    circuit_breaker = CircuitBreaker(
        failure_threshold=config.circuit_failure_threshold,
        recovery_timeout_seconds=config.circuit_recovery_timeout_seconds,
        half_open_max_calls=config.circuit_half_open_max_calls,
    )
    cache = ResponseCache(
        default_ttl_seconds=config.cache_ttl_seconds,
        max_entries=config.cache_max_entries,
        enabled=config.cache_enabled,
    )
    health_monitor = HealthMonitor(
        providers,
        circuit_breaker,
        check_interval_seconds=config.health_check_interval_seconds,
    )
    return AIOrchestrator(
        providers,
        circuit_breaker=circuit_breaker,
        cache=cache,
        health_monitor=health_monitor,
    )
