"""
Unit tests for AIOrchestrator.

These tests use in-memory stub providers only and do NOT perform real HTTP calls.
"""
import asyncio

import pytest
from prometheus_client import REGISTRY
from pydantic import ValidationError

from persona_ai.core.circuit_breaker import CircuitBreaker
from persona_ai.core.config import AIConfig, ProviderSettings
from persona_ai.core.logging import get_persona_id, reset_persona_id, set_persona_id
from persona_ai.services.ai.cache import ResponseCache
from persona_ai.services.ai.errors import (
    AllProvidersFailedError,
    NoHealthyProvidersError,
    RateLimitError,
)
from persona_ai.services.ai.orchestration import (
    AIOrchestrator,
    build_providers,
    create_orchestrator,
    summarize_system_health,
)
from persona_ai.services.ai.providers.demo import DemoProvider
from persona_ai.services.ai.schema import ResponseConstraints

from conftest import StubProvider, make_request


def provider_metric(name: str, outcome: str) -> float:
    return REGISTRY.get_sample_value(
        "ai_provider_requests_total", {"provider": name, "outcome": outcome}
    ) or 0.0


def make_orchestrator(providers, clock=None, **breaker_kwargs):
    breaker = CircuitBreaker(clock=clock, **breaker_kwargs) if clock else CircuitBreaker(**breaker_kwargs)
    return AIOrchestrator(providers, circuit_breaker=breaker, cache=ResponseCache())


# ============================================================================
# Cache short-circuit
# ============================================================================

@pytest.mark.asyncio
async def test_identical_request_served_from_cache_without_provider_call():
    provider = StubProvider("Claude", 1, content="Cached take on transit.")
    orchestrator = make_orchestrator([provider, DemoProvider()])

    first = await orchestrator.generate_response(make_request())
    second = await orchestrator.generate_response(make_request())

    assert provider.calls == 1
    assert second.content == first.content
    assert second.provider == "Claude"
    assert second.cached is True
    assert first.cached is False


@pytest.mark.asyncio
async def test_cache_hit_stamps_fresh_processing_time():
    provider = StubProvider("Claude", 1, delay=0.05)
    orchestrator = make_orchestrator([provider, DemoProvider()])

    first = await orchestrator.generate_response(make_request())
    second = await orchestrator.generate_response(make_request())

    assert first.processing_time_ms >= 50
    assert second.processing_time_ms < first.processing_time_ms


@pytest.mark.asyncio
async def test_disabled_cache_always_calls_provider():
    provider = StubProvider("Claude", 1)
    orchestrator = AIOrchestrator([provider], cache=ResponseCache(enabled=False))

    await orchestrator.generate_response(make_request())
    await orchestrator.generate_response(make_request())

    assert provider.calls == 2


# ============================================================================
# Candidate ordering and fall-through
# ============================================================================

@pytest.mark.asyncio
async def test_providers_attempted_in_priority_order():
    gpt = StubProvider("GPT", 2, content="from gpt")
    claude = StubProvider("Claude", 1, content="from claude")
    orchestrator = make_orchestrator([gpt, DemoProvider(), claude])

    response = await orchestrator.generate_response(make_request())

    assert response.provider == "Claude"
    assert gpt.calls == 0
    assert [p.name for p in orchestrator.providers] == ["Claude", "GPT", "Demo"]


@pytest.mark.asyncio
async def test_two_failures_then_success_records_one_metric_each():
    claude = StubProvider("FallClaude", 1, fail=True)
    gpt = StubProvider("FallGPT", 2, fail=True, error=RateLimitError("FallGPT"))
    gemini = StubProvider("FallGemini", 3, content="gemini answer")
    orchestrator = make_orchestrator([claude, gpt, gemini, DemoProvider()])

    before = {
        name: (provider_metric(name, "failure"), provider_metric(name, "success"))
        for name in ("FallClaude", "FallGPT", "FallGemini")
    }

    response = await orchestrator.generate_response(make_request())

    assert response.provider == "FallGemini"
    assert response.content == "gemini answer"

    metrics = {m.provider: m for m in orchestrator.get_metrics().providers}
    assert metrics["FallClaude"].failed_requests == 1
    assert metrics["FallClaude"].successful_requests == 0
    assert metrics["FallGPT"].failed_requests == 1
    assert metrics["FallGemini"].successful_requests == 1
    assert metrics["FallGemini"].failed_requests == 0
    assert metrics["Demo"].total_requests == 0

    assert provider_metric("FallClaude", "failure") == before["FallClaude"][0] + 1
    assert provider_metric("FallGPT", "failure") == before["FallGPT"][0] + 1
    assert provider_metric("FallGemini", "success") == before["FallGemini"][1] + 1
    assert REGISTRY.get_sample_value(
        "ai_provider_errors_total", {"provider": "FallGPT", "error_kind": "rate_limited"}
    ) >= 1


@pytest.mark.asyncio
async def test_all_remote_failing_falls_back_to_demo():
    providers = [
        StubProvider("Claude", 1, fail=True),
        StubProvider("GPT", 2, fail=True),
        StubProvider("Gemini", 3, fail=True),
        DemoProvider(),
    ]
    orchestrator = make_orchestrator(providers)

    response = await orchestrator.generate_response(make_request())

    assert response.provider == "Demo"
    assert response.model == "demo-v1"
    assert response.content
    assert orchestrator.get_metrics().fallback_responses == 1


@pytest.mark.asyncio
async def test_fallback_only_registry_returns_response():
    orchestrator = make_orchestrator([DemoProvider()])

    response = await orchestrator.generate_response(make_request(context=""))

    assert response.provider == "Demo"
    assert len(response.content) <= 280


@pytest.mark.asyncio
async def test_provider_errors_are_not_raised_to_caller():
    orchestrator = make_orchestrator([StubProvider("Claude", 1, error=ValueError("weird"), fail=True), DemoProvider()])

    response = await orchestrator.generate_response(make_request())

    assert response.provider == "Demo"


@pytest.mark.asyncio
async def test_all_providers_failed_raises_with_last_error():
    last = RateLimitError("GPT", "slow down")
    orchestrator = make_orchestrator([
        StubProvider("Claude", 1, fail=True),
        StubProvider("GPT", 2, fail=True, error=last),
    ])

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await orchestrator.generate_response(make_request())

    assert exc_info.value.attempted == ["Claude", "GPT"]
    assert exc_info.value.last_error is last
    assert exc_info.value.__cause__ is last


@pytest.mark.asyncio
async def test_no_healthy_providers_when_every_circuit_open(clock):
    claude = StubProvider("Claude", 1)
    orchestrator = make_orchestrator([claude], clock=clock)
    for _ in range(3):
        orchestrator.circuit_breaker.record_failure("Claude")

    with pytest.raises(NoHealthyProvidersError):
        await orchestrator.generate_response(make_request())
    assert claude.calls == 0


@pytest.mark.asyncio
async def test_empty_registry_raises_no_healthy_providers():
    orchestrator = make_orchestrator([])
    with pytest.raises(NoHealthyProvidersError):
        await orchestrator.generate_response(make_request())


# ============================================================================
# Circuit breaker integration
# ============================================================================

@pytest.mark.asyncio
async def test_circuit_opens_after_threshold_and_skips_provider(clock):
    claude = StubProvider("Claude", 1, fail=True)
    orchestrator = make_orchestrator([claude, DemoProvider()], clock=clock)

    for i in range(3):
        await orchestrator.generate_response(make_request(context=f"question {i}"))

    assert claude.calls == 3
    assert not orchestrator.circuit_breaker.can_execute("Claude")

    response = await orchestrator.generate_response(make_request(context="question 4"))
    assert response.provider == "Demo"
    assert claude.calls == 3


@pytest.mark.asyncio
async def test_half_open_trial_success_closes_circuit(clock):
    claude = StubProvider("Claude", 1, fail=True)
    orchestrator = make_orchestrator([claude, DemoProvider()], clock=clock)
    for i in range(3):
        await orchestrator.generate_response(make_request(context=f"q{i}"))

    clock.advance(30)
    claude.fail = False
    response = await orchestrator.generate_response(make_request(context="recovered?"))

    assert response.provider == "Claude"
    state = orchestrator.circuit_breaker.get_state("Claude")
    assert state.state == "closed"
    assert state.consecutive_failures == 0


@pytest.mark.asyncio
async def test_half_open_trial_failure_reopens_circuit(clock):
    claude = StubProvider("Claude", 1, fail=True)
    orchestrator = make_orchestrator([claude, DemoProvider()], clock=clock)
    for i in range(3):
        await orchestrator.generate_response(make_request(context=f"q{i}"))

    clock.advance(30)
    response = await orchestrator.generate_response(make_request(context="still down?"))

    assert response.provider == "Demo"
    assert claude.calls == 4
    assert orchestrator.circuit_breaker.get_state("Claude").state == "open"


@pytest.mark.asyncio
async def test_concurrent_half_open_admits_only_quota(clock):
    claude = StubProvider("Claude", 1, fail=True)
    orchestrator = make_orchestrator([claude, DemoProvider()], clock=clock, half_open_max_calls=1)
    for i in range(3):
        await orchestrator.generate_response(make_request(context=f"q{i}"))

    clock.advance(30)
    claude.fail = False
    claude.delay = 0.05

    responses = await asyncio.gather(*(
        orchestrator.generate_response(make_request(context=f"burst {i}")) for i in range(4)
    ))

    assert claude.calls == 4  # three failures plus a single trial
    assert sum(1 for r in responses if r.provider == "Claude") == 1
    assert sum(1 for r in responses if r.provider == "Demo") == 3


# ============================================================================
# Timeouts and deadlines
# ============================================================================

@pytest.mark.asyncio
async def test_timeout_counts_as_failure_and_falls_through():
    slow = StubProvider("Claude", 1, delay=1.0, timeout_seconds=0.05)
    orchestrator = make_orchestrator([slow, DemoProvider()])

    response = await orchestrator.generate_response(make_request())

    assert response.provider == "Demo"
    assert orchestrator.circuit_breaker.get_state("Claude").consecutive_failures == 1
    metrics = {m.provider: m for m in orchestrator.get_metrics().providers}
    assert metrics["Claude"].failed_requests == 1


@pytest.mark.asyncio
async def test_caller_deadline_skips_remaining_remote_providers():
    slow = StubProvider("Claude", 1, delay=1.0, timeout_seconds=5.0)
    gpt = StubProvider("GPT", 2)
    orchestrator = make_orchestrator([slow, gpt, DemoProvider()])

    response = await orchestrator.generate_response(make_request(), deadline_seconds=0.05)

    assert response.provider == "Demo"
    assert gpt.calls == 0
    # Running out of caller budget is not held against the provider.
    assert orchestrator.circuit_breaker.get_state("Claude").consecutive_failures == 0


@pytest.mark.asyncio
async def test_deadline_cut_attempt_still_counted_in_provider_metrics():
    slow = StubProvider("DeadlineSlow", 1, delay=0.5, timeout_seconds=2.0)
    orchestrator = make_orchestrator([slow, DemoProvider()])
    before = REGISTRY.get_sample_value(
        "ai_provider_errors_total", {"provider": "DeadlineSlow", "error_kind": "deadline_exceeded"}
    ) or 0.0

    response = await orchestrator.generate_response(make_request(), deadline_seconds=0.05)

    assert response.provider == "Demo"
    assert slow.calls == 1
    metrics = {m.provider: m for m in orchestrator.get_metrics().providers}
    assert metrics["DeadlineSlow"].total_requests == 1
    assert metrics["DeadlineSlow"].failed_requests == 1
    assert provider_metric("DeadlineSlow", "failure") >= 1
    assert REGISTRY.get_sample_value(
        "ai_provider_errors_total", {"provider": "DeadlineSlow", "error_kind": "deadline_exceeded"}
    ) == before + 1
    assert orchestrator.circuit_breaker.can_execute("DeadlineSlow")
    assert orchestrator.health_monitor.get_provider_health("DeadlineSlow").consecutive_failures == 0


@pytest.mark.asyncio
async def test_deadline_not_reached_uses_preferred_provider():
    orchestrator = make_orchestrator([StubProvider("Claude", 1), DemoProvider()])

    response = await orchestrator.generate_response(make_request(), deadline_seconds=5.0)

    assert response.provider == "Claude"


# ============================================================================
# Health, metrics and observability
# ============================================================================

@pytest.mark.asyncio
async def test_attempt_outcomes_reach_health_monitor():
    claude = StubProvider("Claude", 1, fail=True)
    orchestrator = make_orchestrator([claude, DemoProvider()])

    await orchestrator.generate_response(make_request())

    health = orchestrator.health_monitor.get_provider_health("Claude")
    assert health.consecutive_failures == 1


@pytest.mark.asyncio
async def test_metrics_aggregate_cost_tokens_and_hit_rate():
    orchestrator = make_orchestrator([StubProvider("Claude", 1), DemoProvider()])

    await orchestrator.generate_response(make_request())
    await orchestrator.generate_response(make_request())

    metrics = orchestrator.get_metrics()
    claude = next(m for m in metrics.providers if m.provider == "Claude")
    assert metrics.total_requests == 2
    assert metrics.cache_hit_rate == pytest.approx(0.5)
    assert claude.total_tokens_used == 15
    assert claude.estimated_cost == pytest.approx(0.015)
    assert metrics.total_cost == pytest.approx(0.015)
    assert claude.last_used is not None
    assert metrics.degraded is False


@pytest.mark.asyncio
async def test_metrics_report_degraded_when_only_fallback_available(clock):
    orchestrator = make_orchestrator([StubProvider("Claude", 1, fail=True), DemoProvider()], clock=clock)
    for i in range(3):
        await orchestrator.generate_response(make_request(context=f"q{i}"))

    assert orchestrator.get_metrics().degraded is True
    summary = orchestrator.get_system_health()
    assert summary.status == "degraded"
    assert "fallback" in summary.summary.lower()


def test_summarize_system_health_unhealthy_without_available_providers():
    assert summarize_system_health([]).status == "unhealthy"


@pytest.mark.asyncio
async def test_request_is_not_mutated():
    request = make_request()
    snapshot = request.model_dump()
    orchestrator = make_orchestrator([StubProvider("Claude", 1, fail=True), DemoProvider()])

    await orchestrator.generate_response(request)

    assert request.model_dump() == snapshot


def test_non_positive_max_length_rejected_at_construction():
    with pytest.raises(ValidationError):
        ResponseConstraints(max_length=0)
    with pytest.raises(ValidationError):
        make_request(max_length=-5)


@pytest.mark.asyncio
async def test_persona_id_restored_after_generation():
    orchestrator = make_orchestrator([StubProvider("Claude", 1), DemoProvider()])
    token = set_persona_id("outer-persona")
    try:
        await orchestrator.generate_response(make_request())
        assert get_persona_id() == "outer-persona"
    finally:
        reset_persona_id(token)


@pytest.mark.asyncio
async def test_persona_id_restored_when_generation_fails():
    orchestrator = make_orchestrator([StubProvider("Claude", 1, fail=True)])
    set_persona_id(None)

    with pytest.raises(AllProvidersFailedError):
        await orchestrator.generate_response(make_request())

    assert get_persona_id() is None


@pytest.mark.asyncio
async def test_cache_management_operations():
    orchestrator = make_orchestrator([StubProvider("Claude", 1), DemoProvider()])
    await orchestrator.generate_response(make_request())

    assert orchestrator.get_cache_stats()["entries"] == 1
    assert orchestrator.invalidate_cache_for_provider("Claude") == 1

    await orchestrator.generate_response(make_request())
    orchestrator.clear_cache()
    assert orchestrator.get_cache_stats()["entries"] == 0


@pytest.mark.asyncio
async def test_perform_health_check_and_reset():
    orchestrator = make_orchestrator([StubProvider("Claude", 1, healthy=False), DemoProvider()])
    for _ in range(3):
        orchestrator.circuit_breaker.record_failure("Claude")

    results = await orchestrator.perform_health_check()
    assert results == {"Claude": False, "Demo": True}

    orchestrator.reset_circuit_breakers()
    assert orchestrator.circuit_breaker.can_execute("Claude")


@pytest.mark.asyncio
async def test_shutdown_stops_monitoring():
    orchestrator = make_orchestrator([DemoProvider()])
    orchestrator.start_health_monitoring()
    assert orchestrator.get_status()["health_monitoring"] is True

    await orchestrator.shutdown()

    assert orchestrator.health_monitor.is_monitoring is False


def test_duplicate_provider_names_rejected():
    with pytest.raises(ValueError):
        AIOrchestrator([StubProvider("Claude", 1), StubProvider("Claude", 2)])


def test_get_provider_by_name():
    orchestrator = make_orchestrator([StubProvider("Claude", 1), DemoProvider()])
    assert orchestrator.get_provider_by_name("Demo").is_fallback
    assert orchestrator.get_provider_by_name("Nope") is None


# ============================================================================
# Construction from configuration
# ============================================================================

def test_missing_credentials_omit_providers_but_keep_fallback():
    providers = build_providers(AIConfig(openai=ProviderSettings(api_key="sk-test")))
    assert [p.name for p in providers] == ["GPT", "Demo"]


def test_create_orchestrator_from_config():
    config = AIConfig(
        claude=ProviderSettings(api_key="sk-ant-test"),
        google=ProviderSettings(api_key="g-key"),
        cache_ttl_seconds=60,
        circuit_failure_threshold=5,
    )

    orchestrator = create_orchestrator(config)

    assert [p.name for p in orchestrator.providers] == ["Claude", "Gemini", "Demo"]
    assert orchestrator.cache.default_ttl_seconds == 60
    assert orchestrator.circuit_breaker.failure_threshold == 5


# ============================================================================
# End-to-end example
# ============================================================================

@pytest.mark.asyncio
async def test_end_to_end_headline_reaction():
    provider_a = StubProvider("A", 1, content="Transit money should go where riders are.")
    orchestrator = make_orchestrator([provider_a, DemoProvider()])
    request = make_request(context="react to this headline", max_length=280)

    first = await orchestrator.generate_response(request)
    repeat = await orchestrator.generate_response(make_request(context="react to this headline", max_length=280))

    assert first.provider == "A"
    assert 0 < len(first.content) <= 280
    assert repeat.content == first.content
    assert provider_a.calls == 1
