"""
Shared fixtures for the orchestration tests.

Everything here is in-memory: stub providers, a controllable clock and a
request factory. No test performs real network calls.
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from persona_ai.services.ai.errors import ServiceUnavailableError
from persona_ai.services.ai.providers.base import BaseProvider
from persona_ai.services.ai.schema import (
    ConversationTurn,
    GenerationRequest,
    HealthStatus,
    NewsItem,
    PersonaConfiguration,
    PoliticalAlignment,
    ProviderCapabilities,
    ResponseConstraints,
    TokenUsage,
    ToneStyle,
)


class FakeClock:
    """Manually advanced clock for circuit breaker and cache tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubProvider(BaseProvider):
    """
    Provider with scripted behaviour.

    fail: raise this error (default ServiceUnavailableError) on every call
    delay: seconds to sleep before answering (for timeout tests)
    """

    def __init__(
        self,
        name: str,
        priority: int,
        content: str = "stub response",
        fail: bool = False,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        is_fallback: bool = False,
        timeout_seconds: float = 1.0,
        healthy: bool = True,
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self.name = name
        self.priority = priority
        self.is_fallback = is_fallback
        self.content = content
        self.fail = fail
        self.error = error
        self.delay = delay
        self.healthy = healthy
        self.calls = 0
        self.health_checks = 0

    async def _call_api(self, request: GenerationRequest) -> Dict[str, Any]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise self.error or ServiceUnavailableError(self.name, "stub outage")
        return {"content": self.content}

    def _extract_content(self, raw: Dict[str, Any]) -> str:
        return raw["content"]

    def _extract_token_usage(self, raw: Dict[str, Any]) -> TokenUsage:
        return TokenUsage(input=10, output=5, total=15)

    def _model_name(self, raw: Dict[str, Any]) -> str:
        return f"{self.name.lower()}-stub"

    async def check_health(self) -> HealthStatus:
        self.health_checks += 1
        return HealthStatus(
            is_healthy=self.healthy,
            response_time_ms=1.0,
            error_rate=0.0 if self.healthy else 1.0,
        )

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(max_tokens=1000, cost_per_token=0.001)


def make_persona(**overrides) -> PersonaConfiguration:
    fields = dict(
        id="persona-1",
        name="Riley Reform",
        handle="rileyreform",
        system_prompt="You are a policy commentator.",
        political_alignment=PoliticalAlignment(
            id="align-1",
            economic_position=30,
            social_position=25,
            primary_issues=["healthcare", "climate"],
            ideology_tags=["progressive"],
        ),
        tone_style=ToneStyle.CASUAL,
        personality_traits=["curious", "direct", "wry"],
        interests=["policy"],
        expertise=["economics"],
        controversy_tolerance=40,
        debate_aggression=35,
        engagement_frequency=60,
    )
    fields.update(overrides)
    return PersonaConfiguration(**fields)


def make_request(
    context: str = "What do you think about the new transit bill?",
    persona: Optional[PersonaConfiguration] = None,
    history: Optional[List[ConversationTurn]] = None,
    news: Optional[NewsItem] = None,
    **constraint_overrides,
) -> GenerationRequest:
    return GenerationRequest(
        context=context,
        persona=persona or make_persona(),
        constraints=ResponseConstraints(**constraint_overrides),
        conversation_history=history or [],
        news_context=news,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def request_factory():
    return make_request


@pytest.fixture
def persona_factory():
    return make_persona
