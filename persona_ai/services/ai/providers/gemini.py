"""
Google Gemini adapter (generateContent REST endpoint over httpx).

Environment configuration (see core.config):
- GOOGLE_AI_API_KEY
- GOOGLE_AI_BASE_URL (default: https://generativelanguage.googleapis.com/v1beta)
- GOOGLE_AI_MODEL (default: gemini-pro)
"""
from typing import Any, Dict

from persona_ai.core.config import DEFAULT_GEMINI_MODEL
from persona_ai.services.ai.errors import ContentFilterError
from persona_ai.services.ai.prompts import build_prompt, temperature_for
from persona_ai.services.ai.providers.base import RemoteProvider
from persona_ai.services.ai.schema import (
    GenerationRequest,
    HealthStatus,
    ProviderCapabilities,
    TokenUsage,
)

MAX_OUTPUT_TOKENS = 500
BLOCKED_FINISH_REASONS = ("SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST")


class GeminiProvider(RemoteProvider):
    name = "Gemini"
    priority = 3
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    @property
    def _model_path(self) -> str:
        return f"/models/{self.model or DEFAULT_GEMINI_MODEL}"

    def _params(self) -> Dict[str, str]:
        return {"key": self.api_key}

    async def _call_api(self, request: GenerationRequest) -> Dict[str, Any]:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": build_prompt(request)}]}],
            "generationConfig": {
                "temperature": temperature_for(request),
                "maxOutputTokens": MAX_OUTPUT_TOKENS,
            },
        }
        data = await self._request(
            "POST", f"{self._model_path}:generateContent", json_payload=payload, params=self._params()
        )

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise ContentFilterError(self.name, f"Prompt blocked: {block_reason}")

        candidates = data.get("candidates") or []
        if candidates and candidates[0].get("finishReason") in BLOCKED_FINISH_REASONS:
            raise ContentFilterError(
                self.name, f"Response blocked: {candidates[0].get('finishReason')}"
            )
        return data

    def _extract_content(self, raw: Dict[str, Any]) -> str:
        candidates = raw.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def _extract_token_usage(self, raw: Dict[str, Any]) -> TokenUsage:
        usage = raw.get("usageMetadata") or {}
        input_tokens = int(usage.get("promptTokenCount") or 0)
        output_tokens = int(usage.get("candidatesTokenCount") or 0)
        total = int(usage.get("totalTokenCount") or input_tokens + output_tokens)
        return TokenUsage(input=input_tokens, output=output_tokens, total=total)

    def _model_name(self, raw: Dict[str, Any]) -> str:
        return raw.get("modelVersion") or self.model

    async def check_health(self) -> HealthStatus:
        return await self._probe("GET", self._model_path, params=self._params())

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            max_tokens=2048,
            supports_conversation_history=False,
            supports_political_alignment=True,
            supports_persona_injection=True,
            supports_content_filtering=True,
            supported_languages=["en", "es", "fr", "de", "it", "pt", "ja", "ko", "zh", "hi"],
            cost_per_token=0.00000075,
        )
