"""
Provider capability contract and shared generation pipeline.

Every provider exposes name, priority (lower is preferred), timeout_seconds
and is_fallback, plus:
- generate(request): one generation attempt; raises ProviderError
- check_health(): low-cost probe; never raises
- get_capabilities(): static capability descriptor

BaseProvider.generate() runs the pipeline shared by all backends:
validate request -> call backend -> extract content -> length check ->
safety check -> confidence and token accounting.

RemoteProvider adds the HTTP plumbing used by the vendor adapters: httpx
calls with bounded retries on 429/5xx and mapping of transport and status
errors onto ProviderError kinds.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Dict, Optional

import httpx

from persona_ai.core.config import ProviderSettings
from persona_ai.core.logging import get_logger
from persona_ai.services.ai.errors import (
    ContentFilterError,
    InvalidRequestError,
    ModelNotFoundError,
    ProviderError,
    RateLimitError,
    ServiceUnavailableError,
    error_kind_of,
)
from persona_ai.services.ai.prompts import build_prompt
from persona_ai.services.ai.safety import KeywordSafetyCheck, SafetyCheck
from persona_ai.services.ai.schema import (
    GenerationRequest,
    GenerationResponse,
    HealthStatus,
    PoliticalAlignment,
    ProviderCapabilities,
    TokenUsage,
)

logger = get_logger(__name__)

OUTCOME_WINDOW = 10
CHARS_PER_TOKEN = 4

_ECONOMIC_KEYWORDS = {
    "left": ("government", "regulation", "public", "social programs", "inequality"),
    "right": ("free market", "private", "business", "individual", "competition"),
}


class BaseProvider(ABC):
    """Abstract AI provider."""

    name: str = "base"
    priority: int = 100
    is_fallback: bool = False

    # When False, unsafe content is returned with its SafetyResults attached
    # instead of raising ContentFilterError.
    enforce_safety: bool = True

    def __init__(self, timeout_seconds: float = 20.0, safety_check: Optional[SafetyCheck] = None):
        self.timeout_seconds = timeout_seconds
        self.safety_check: SafetyCheck = safety_check or KeywordSafetyCheck()
        self._outcomes: Deque[bool] = deque(maxlen=OUTCOME_WINDOW)
        self._response_times_ms: Deque[float] = deque(maxlen=OUTCOME_WINDOW)
        self._consecutive_failures = 0

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        start = time.perf_counter()
        try:
            self.validate_request(request)
            raw = await self._call_api(request)
            response = self._process_response(raw, request, start)
        except Exception:
            self._track_outcome(False, (time.perf_counter() - start) * 1000.0)
            raise

        self._track_outcome(True, response.processing_time_ms)
        return response

    @abstractmethod
    async def check_health(self) -> HealthStatus:
        ...

    @abstractmethod
    def get_capabilities(self) -> ProviderCapabilities:
        ...

    # ------------------------------------------------------------------
    # Backend-specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _call_api(self, request: GenerationRequest) -> Dict[str, Any]:
        ...

    @abstractmethod
    def _extract_content(self, raw: Dict[str, Any]) -> str:
        ...

    @abstractmethod
    def _extract_token_usage(self, raw: Dict[str, Any]) -> TokenUsage:
        ...

    @abstractmethod
    def _model_name(self, raw: Dict[str, Any]) -> str:
        ...

    def _calculate_confidence(self, raw: Dict[str, Any], request: GenerationRequest) -> float:
        confidence = 0.8
        if request.constraints.require_political_stance:
            confidence += 0.1
        if request.persona.controversy_tolerance > 50:
            confidence += 0.05
        return min(confidence, 1.0)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def validate_request(self, request: GenerationRequest) -> None:
        if not request.context or not request.context.strip():
            raise InvalidRequestError(self.name, "Context is required")
        if not request.persona.id:
            raise InvalidRequestError(self.name, "Valid persona configuration is required")
        if request.constraints.max_length <= 0:
            raise InvalidRequestError(self.name, "max_length must be positive")
        if request.constraints.max_length > self.get_capabilities().max_tokens * CHARS_PER_TOKEN:
            raise InvalidRequestError(self.name, "Requested length exceeds provider capabilities")

    def _process_response(
        self,
        raw: Dict[str, Any],
        request: GenerationRequest,
        start: float,
    ) -> GenerationResponse:
        content = self._extract_content(raw).strip()

        if len(content) > request.constraints.max_length:
            raise InvalidRequestError(self.name, "Response exceeds length constraints")

        safety = self.safety_check.evaluate(content, request.persona)
        if not safety.is_allowed and self.enforce_safety:
            raise ContentFilterError(
                self.name, f"Response failed safety checks: {', '.join(safety.flags)}"
            )

        if request.constraints.require_political_stance:
            self._check_political_alignment(content, request.persona.political_alignment)

        return GenerationResponse(
            content=content,
            confidence=self._calculate_confidence(raw, request),
            processing_time_ms=(time.perf_counter() - start) * 1000.0,
            provider=self.name,
            model=self._model_name(raw),
            tokens=self._extract_token_usage(raw),
            safety=safety,
        )

    def _check_political_alignment(self, content: str, alignment: PoliticalAlignment) -> None:
        """Advisory only: a mismatch is logged, never raised."""
        if alignment.economic_position == 50:
            return
        side = "left" if alignment.economic_position < 50 else "right"
        lowered = content.lower()
        if not any(keyword in lowered for keyword in _ECONOMIC_KEYWORDS[side]):
            logger.warning(
                "ai_response_alignment_mismatch",
                provider=self.name,
                alignment_id=alignment.id,
                expected_side=side,
            )

    # ------------------------------------------------------------------
    # Rolling outcome tracking
    # ------------------------------------------------------------------

    def _track_outcome(self, success: bool, response_time_ms: float) -> None:
        self._outcomes.append(success)
        self._response_times_ms.append(response_time_ms)
        if success:
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1

    @property
    def error_rate(self) -> float:
        if not self._outcomes:
            return 0.0
        return self._outcomes.count(False) / len(self._outcomes)

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def average_response_time_ms(self) -> float:
        if not self._response_times_ms:
            return 0.0
        return sum(self._response_times_ms) / len(self._response_times_ms)

    def get_estimated_cost(self, request: GenerationRequest) -> float:
        """Rough cost of a request: prompt plus maximum output, at ~4 chars per token."""
        estimated_tokens = (len(build_prompt(request)) + request.constraints.max_length) / CHARS_PER_TOKEN
        return estimated_tokens * self.get_capabilities().cost_per_token

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} priority={self.priority}>"


def error_for_status(provider: str, status_code: int, message: str, model: str) -> ProviderError:
    """Map an HTTP error status onto the provider error taxonomy."""
    if status_code == 429:
        return RateLimitError(provider, message or "Rate limit exceeded")
    if status_code == 404:
        return ModelNotFoundError(provider, model)
    if status_code in (400, 422):
        return InvalidRequestError(provider, message or "Invalid request parameters")
    error = ServiceUnavailableError(provider, message or f"HTTP {status_code}")
    error.status_code = status_code
    return error


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message", ""))
    if isinstance(error, str):
        return error
    return response.text[:200]


class RemoteProvider(BaseProvider):
    """
    Base class for vendor adapters talking REST over httpx.

    No vendor SDKs are used. A custom httpx transport can be injected
    (tests use httpx.MockTransport).
    """

    default_base_url: str = ""

    def __init__(
        self,
        settings: ProviderSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        safety_check: Optional[SafetyCheck] = None,
        retry_backoff_seconds: float = 0.5,
    ):
        super().__init__(timeout_seconds=settings.timeout_seconds, safety_check=safety_check)
        self.api_key = settings.api_key
        self.base_url = (settings.base_url or self.default_base_url).rstrip("/")
        self.model = settings.model or ""
        self.max_retries = settings.max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        json_payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        retry: bool = True,
    ) -> Dict[str, Any]:
        """Send one request, retrying 429 and 5xx with exponential backoff."""
        attempts = self.max_retries + 1 if retry else 1

        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self.timeout_seconds,
                    transport=self._transport,
                ) as client:
                    response = await client.request(
                        method, path, headers=self._headers(), json=json_payload, params=params
                    )
            except httpx.TimeoutException as exc:
                raise ServiceUnavailableError(self.name, f"Request timed out: {exc}") from exc
            except httpx.HTTPError as exc:
                raise ServiceUnavailableError(self.name, f"Transport error: {exc}") from exc

            if response.is_success:
                try:
                    return response.json()
                except ValueError as exc:
                    raise ServiceUnavailableError(self.name, "Malformed response body") from exc

            retryable = response.status_code == 429 or response.status_code >= 500
            if retryable and attempt < attempts - 1:
                delay = self.retry_backoff_seconds * (2 ** attempt)
                logger.info(
                    "ai_provider_retry",
                    provider=self.name,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                    delay_seconds=delay,
                )
                if delay > 0:
                    await asyncio.sleep(delay)
                continue

            raise error_for_status(self.name, response.status_code, _error_message(response), self.model)

        # Unreachable: the final attempt either returns or raises.
        raise ServiceUnavailableError(self.name, "Retries exhausted")

    async def _probe(self, method: str, path: str, params: Optional[Dict[str, str]] = None) -> HealthStatus:
        """Single un-retried request used by check_health(). Never raises."""
        start = time.perf_counter()
        try:
            await self._request(method, path, params=params, retry=False)
            is_healthy = True
        except Exception as exc:
            logger.warning(
                "ai_provider_health_probe_failed",
                provider=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
                error_kind=error_kind_of(exc),
            )
            is_healthy = False

        return HealthStatus(
            is_healthy=is_healthy,
            response_time_ms=(time.perf_counter() - start) * 1000.0,
            error_rate=self.error_rate,
            consecutive_failures=self.consecutive_failures,
        )
