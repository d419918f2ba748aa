"""
Unit tests for Prometheus metrics collection.

Tests verify:
- Provider RED metrics are recorded per provider and outcome
- Token and cost counters only move for positive amounts
- Cache, health and fallback metrics are recorded
- Metrics endpoint output is valid Prometheus text
"""
import pytest

from persona_ai.core.metrics import (
    ai_all_providers_failed_total,
    ai_cost_usd_total,
    ai_fallback_responses_total,
    ai_provider_errors_total,
    ai_provider_healthy,
    ai_provider_requests_total,
    ai_tokens_total,
    cache_hits_total,
    cache_misses_total,
    get_metrics,
    get_metrics_content_type,
    record_all_providers_failed,
    record_cache_hit,
    record_cache_miss,
    record_fallback_response,
    record_provider_failure,
    record_provider_success,
    record_tokens_and_cost,
    set_provider_health,
)


def test_record_provider_success():
    counter = ai_provider_requests_total.labels(provider="MetricsA", outcome="success")
    initial = counter._value.get()

    record_provider_success("MetricsA", 0.2)

    assert counter._value.get() == initial + 1


def test_record_provider_failure_counts_error_kind():
    requests = ai_provider_requests_total.labels(provider="MetricsB", outcome="failure")
    errors = ai_provider_errors_total.labels(provider="MetricsB", error_kind="rate_limited")
    initial_requests = requests._value.get()
    initial_errors = errors._value.get()

    record_provider_failure("MetricsB", "rate_limited", 0.1)

    assert requests._value.get() == initial_requests + 1
    assert errors._value.get() == initial_errors + 1


def test_record_tokens_and_cost():
    input_tokens = ai_tokens_total.labels(provider="MetricsC", direction="input")
    output_tokens = ai_tokens_total.labels(provider="MetricsC", direction="output")
    cost = ai_cost_usd_total.labels(provider="MetricsC")
    initial = (input_tokens._value.get(), output_tokens._value.get(), cost._value.get())

    record_tokens_and_cost("MetricsC", 100, 20, 0.0036)
    record_tokens_and_cost("MetricsC", 0, 0, 0.0)

    assert input_tokens._value.get() == initial[0] + 100
    assert output_tokens._value.get() == initial[1] + 20
    assert cost._value.get() == pytest.approx(initial[2] + 0.0036)


def test_cache_hit_and_miss():
    hits = cache_hits_total.labels(cache_type="metrics_test")
    misses = cache_misses_total.labels(cache_type="metrics_test")
    initial_hits, initial_misses = hits._value.get(), misses._value.get()

    record_cache_hit("metrics_test")
    record_cache_miss("metrics_test")
    record_cache_miss("metrics_test")

    assert hits._value.get() == initial_hits + 1
    assert misses._value.get() == initial_misses + 2


def test_provider_health_gauge():
    set_provider_health("MetricsD", True)
    assert ai_provider_healthy.labels(provider="MetricsD")._value.get() == 1
    set_provider_health("MetricsD", False)
    assert ai_provider_healthy.labels(provider="MetricsD")._value.get() == 0


def test_fallback_and_all_failed_counters():
    fallback_initial = ai_fallback_responses_total._value.get()
    failed_initial = ai_all_providers_failed_total._value.get()

    record_fallback_response()
    record_all_providers_failed()

    assert ai_fallback_responses_total._value.get() == fallback_initial + 1
    assert ai_all_providers_failed_total._value.get() == failed_initial + 1


def test_metrics_output_format():
    record_provider_success("MetricsE", 0.05)

    output = get_metrics().decode("utf-8")

    assert "# HELP ai_provider_requests_total" in output
    assert "# TYPE ai_provider_requests_total counter" in output
    assert 'provider="MetricsE"' in output
    assert get_metrics_content_type().startswith("text/plain")
