"""
Anthropic Claude adapter (Messages API over httpx).

Environment configuration (see core.config):
- ANTHROPIC_API_KEY
- ANTHROPIC_BASE_URL (default: https://api.anthropic.com)
- ANTHROPIC_MODEL (default: claude-3-sonnet-20240229)
"""
from typing import Any, Dict

from persona_ai.core.config import DEFAULT_CLAUDE_MODEL
from persona_ai.services.ai.errors import ContentFilterError
from persona_ai.services.ai.prompts import build_system_prompt, build_user_prompt, temperature_for
from persona_ai.services.ai.providers.base import RemoteProvider
from persona_ai.services.ai.schema import (
    GenerationRequest,
    HealthStatus,
    ProviderCapabilities,
    TokenUsage,
)

ANTHROPIC_VERSION = "2023-06-01"
MAX_OUTPUT_TOKENS = 1000


class ClaudeProvider(RemoteProvider):
    name = "Claude"
    priority = 1
    default_base_url = "https://api.anthropic.com"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    async def _call_api(self, request: GenerationRequest) -> Dict[str, Any]:
        # Recent history is folded into the user prompt.
        messages = [{"role": "user", "content": build_user_prompt(request)}]

        payload = {
            "model": self.model or DEFAULT_CLAUDE_MODEL,
            "max_tokens": min(MAX_OUTPUT_TOKENS, self.get_capabilities().max_tokens),
            "temperature": min(temperature_for(request), 1.0),
            "system": build_system_prompt(request.persona),
            "messages": messages,
        }
        data = await self._request("POST", "/v1/messages", json_payload=payload)

        if data.get("stop_reason") == "refusal":
            raise ContentFilterError(self.name, "Response refused by provider safety system")
        return data

    def _extract_content(self, raw: Dict[str, Any]) -> str:
        blocks = raw.get("content") or []
        return "".join(block.get("text", "") for block in blocks if block.get("type") == "text")

    def _extract_token_usage(self, raw: Dict[str, Any]) -> TokenUsage:
        usage = raw.get("usage") or {}
        input_tokens = int(usage.get("input_tokens") or 0)
        output_tokens = int(usage.get("output_tokens") or 0)
        return TokenUsage(input=input_tokens, output=output_tokens, total=input_tokens + output_tokens)

    def _model_name(self, raw: Dict[str, Any]) -> str:
        return raw.get("model") or self.model

    def _calculate_confidence(self, raw: Dict[str, Any], request: GenerationRequest) -> float:
        confidence = super()._calculate_confidence(raw, request)
        if raw.get("stop_reason") == "max_tokens":
            confidence -= 0.1
        return max(0.0, min(confidence, 0.95))

    async def check_health(self) -> HealthStatus:
        return await self._probe("GET", "/v1/models")

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            max_tokens=4096,
            supports_conversation_history=True,
            supports_political_alignment=True,
            supports_persona_injection=True,
            supports_content_filtering=True,
            supported_languages=["en", "es", "fr", "de", "it", "pt", "ja", "ko", "zh"],
            cost_per_token=0.000008,
        )
