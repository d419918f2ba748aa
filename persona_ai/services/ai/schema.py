"""
Pydantic models for the AI provider orchestration layer.

Request-side models (persona, constraints, conversation, news item) are
frozen: a GenerationRequest is owned by the call that created it and is
never mutated by the orchestrator or any provider.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from persona_ai.core.circuit_breaker import CircuitBreakerState


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ToneStyle(str, Enum):
    """Communication style of a persona."""
    PROFESSIONAL = "PROFESSIONAL"
    CASUAL = "CASUAL"
    AGGRESSIVE = "AGGRESSIVE"
    HUMOROUS = "HUMOROUS"
    SARCASTIC = "SARCASTIC"
    INSPIRATIONAL = "INSPIRATIONAL"


# ============================================================================
# REQUEST MODELS
# ============================================================================

class PoliticalAlignment(BaseModel):
    """
    Stance descriptor with two numeric axes.

    economic_position: 0 (left) .. 100 (right)
    social_position:   0 (liberal) .. 100 (conservative)
    """

    model_config = ConfigDict(frozen=True)

    id: str = ""
    economic_position: float = Field(50.0, ge=0.0, le=100.0)
    social_position: float = Field(50.0, ge=0.0, le=100.0)
    primary_issues: List[str] = Field(default_factory=list)
    ideology_tags: List[str] = Field(default_factory=list)
    party_affiliation: Optional[str] = None


class PersonaConfiguration(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    handle: str
    system_prompt: str = ""
    political_alignment: PoliticalAlignment = Field(default_factory=PoliticalAlignment)
    tone_style: ToneStyle = ToneStyle.CASUAL
    personality_traits: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)
    expertise: List[str] = Field(default_factory=list)
    controversy_tolerance: float = Field(50.0, ge=0.0, le=100.0)
    debate_aggression: float = Field(50.0, ge=0.0, le=100.0)
    engagement_frequency: float = Field(50.0, ge=0.0, le=100.0)


class ResponseConstraints(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_length: int = Field(280, gt=0, description="Maximum response length in characters")
    require_political_stance: bool = False
    avoid_topics: List[str] = Field(default_factory=list)
    required_tone: Optional[ToneStyle] = None
    context_window: int = 2000
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    persona_id: Optional[str] = None


class NewsItem(BaseModel):
    """Reference item supplying topical grounding for a generation."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    summary: str = ""
    url: str = ""
    source: str = ""
    category: str = ""
    keywords: List[str] = Field(default_factory=list)
    sentiment: float = 0.0
    published_at: Optional[datetime] = None


MAX_CONVERSATION_TURNS = 50


class GenerationRequest(BaseModel):
    """Immutable description of what to generate."""

    model_config = ConfigDict(frozen=True)

    context: str
    persona: PersonaConfiguration
    constraints: ResponseConstraints = Field(default_factory=ResponseConstraints)
    conversation_history: List[ConversationTurn] = Field(default_factory=list)
    news_context: Optional[NewsItem] = None

    @field_validator("conversation_history")
    @classmethod
    def bound_history(cls, value: List[ConversationTurn]) -> List[ConversationTurn]:
        # Keep the most recent turns only.
        return value[-MAX_CONVERSATION_TURNS:]


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    input: int = 0
    output: int = 0
    total: int = 0


class SafetyResults(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_allowed: bool = True
    flags: List[str] = Field(default_factory=list)
    confidence: float = 1.0


class GenerationResponse(BaseModel):
    """Result of one successful generation attempt."""

    model_config = ConfigDict(frozen=True)

    content: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    processing_time_ms: float = 0.0
    provider: str
    model: str
    tokens: Optional[TokenUsage] = None
    safety: Optional[SafetyResults] = None
    cached: bool = False


# ============================================================================
# HEALTH & CAPABILITY MODELS
# ============================================================================

class HealthStatus(BaseModel):
    """Result of a single health probe."""

    is_healthy: bool
    response_time_ms: float = 0.0
    error_rate: float = 0.0
    last_checked: datetime = Field(default_factory=utc_now)
    consecutive_failures: int = 0


class ProviderCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_tokens: int
    supports_conversation_history: bool = False
    supports_political_alignment: bool = True
    supports_persona_injection: bool = True
    supports_content_filtering: bool = False
    supported_languages: List[str] = Field(default_factory=lambda: ["en"])
    cost_per_token: float = 0.0


class ProviderHealth(BaseModel):
    """
    Mutable per-provider health state, owned by the HealthMonitor.

    consecutive_failures resets to zero on any successful check or call and
    increments by exactly one on each failure.
    """

    name: str
    is_healthy: bool = True
    response_time_ms: float = 0.0
    error_rate: float = 0.0
    last_checked: Optional[datetime] = None
    consecutive_failures: int = 0


class LastResponseInfo(BaseModel):
    timestamp: datetime
    response_time_ms: float
    success: bool


class ProviderHealthReport(BaseModel):
    name: str
    priority: int
    health: HealthStatus
    circuit_breaker_state: CircuitBreakerState
    capabilities: ProviderCapabilities
    is_fallback: bool = False
    last_response: Optional[LastResponseInfo] = None


# ============================================================================
# METRICS MODELS
# ============================================================================

class ProviderMetrics(BaseModel):
    provider: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time_ms: float = 0.0
    total_tokens_used: int = 0
    estimated_cost: float = 0.0
    last_used: Optional[datetime] = None


class OrchestratorMetrics(BaseModel):
    providers: List[ProviderMetrics] = Field(default_factory=list)
    total_requests: int = 0
    cache_hit_rate: float = 0.0
    average_response_time_ms: float = 0.0
    total_cost: float = 0.0
    fallback_responses: int = 0
    degraded: bool = False


class SystemHealthSummary(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    summary: str
    details: List[str] = Field(default_factory=list)
