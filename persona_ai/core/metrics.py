"""
Prometheus metrics collection module.

Metrics Categories:
- Provider RED metrics: requests, errors, latency per AI provider
- Usage metrics: tokens and estimated cost per provider
- Cache metrics: response cache hits/misses
- Resilience metrics: circuit breaker state, provider health, fallback usage

Naming follows Prometheus conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for durations
- Gauges: no special suffix
"""
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

from persona_ai.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# PROVIDER RED METRICS
# ============================================================================

ai_provider_requests_total = Counter(
    "ai_provider_requests_total",
    "Total number of generation attempts per provider",
    ["provider", "outcome"],  # outcome: "success" | "failure"
    registry=registry,
)

ai_provider_errors_total = Counter(
    "ai_provider_errors_total",
    "Total number of provider errors by kind",
    ["provider", "error_kind"],
    registry=registry,
)

ai_provider_latency_seconds = Histogram(
    "ai_provider_latency_seconds",
    "Provider generation latency in seconds",
    ["provider"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# USAGE METRICS
# ============================================================================

ai_tokens_total = Counter(
    "ai_tokens_total",
    "Total number of tokens consumed per provider",
    ["provider", "direction"],  # direction: "input" | "output"
    registry=registry,
)

ai_cost_usd_total = Counter(
    "ai_cost_usd_total",
    "Estimated cost in USD per provider",
    ["provider"],
    registry=registry,
)

# ============================================================================
# CACHE METRICS
# ============================================================================

cache_hits_total = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],
    registry=registry,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
    registry=registry,
)

# ============================================================================
# RESILIENCE METRICS
# ============================================================================

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state per provider (0 = closed, 1 = half_open, 2 = open)",
    ["provider"],
    registry=registry,
)

ai_provider_healthy = Gauge(
    "ai_provider_healthy",
    "Whether the provider's last health probe succeeded (1 = healthy, 0 = unhealthy)",
    ["provider"],
    registry=registry,
)

ai_fallback_responses_total = Counter(
    "ai_fallback_responses_total",
    "Total number of responses served by the local fallback provider",
    registry=registry,
)

ai_all_providers_failed_total = Counter(
    "ai_all_providers_failed_total",
    "Total number of requests for which every provider failed",
    registry=registry,
)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_provider_success(provider: str, duration_seconds: float) -> None:
    """Record a successful generation attempt."""
    ai_provider_requests_total.labels(provider=provider, outcome="success").inc()
    ai_provider_latency_seconds.labels(provider=provider).observe(duration_seconds)


def record_provider_failure(provider: str, error_kind: str, duration_seconds: float) -> None:
    """
    Record a failed generation attempt.

    Args:
        provider: Provider name
        error_kind: ProviderErrorKind value (e.g. "rate_limited", "unavailable"),
            or "deadline_exceeded" when the caller's budget cut the call short
        duration_seconds: Time spent on the failed attempt
    """
    ai_provider_requests_total.labels(provider=provider, outcome="failure").inc()
    ai_provider_errors_total.labels(provider=provider, error_kind=error_kind).inc()
    ai_provider_latency_seconds.labels(provider=provider).observe(duration_seconds)


def record_tokens_and_cost(
    provider: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float,
) -> None:
    """Record token usage and estimated cost for a provider."""
    if input_tokens > 0:
        ai_tokens_total.labels(provider=provider, direction="input").inc(input_tokens)
    if output_tokens > 0:
        ai_tokens_total.labels(provider=provider, direction="output").inc(output_tokens)
    if cost_usd > 0:
        ai_cost_usd_total.labels(provider=provider).inc(cost_usd)


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def set_circuit_state(provider: str, state: str) -> None:
    """
    Update the circuit breaker state gauge.

    Args:
        provider: Provider name
        state: "closed", "half_open" or "open"
    """
    circuit_breaker_state.labels(provider=provider).set(_CIRCUIT_STATE_VALUES.get(state, 0))


def set_provider_health(provider: str, is_healthy: bool) -> None:
    ai_provider_healthy.labels(provider=provider).set(1 if is_healthy else 0)


def record_fallback_response() -> None:
    ai_fallback_responses_total.inc()


def record_all_providers_failed() -> None:
    ai_all_providers_failed_total.inc()


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """Content type for the metrics endpoint."""
    return CONTENT_TYPE_LATEST
