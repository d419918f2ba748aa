"""
OpenAI GPT adapter (chat completions over httpx, no SDK).

Environment configuration (see core.config):
- OPENAI_API_KEY
- OPENAI_BASE_URL (default: https://api.openai.com/v1)
- OPENAI_MODEL (default: gpt-4)
"""
from typing import Any, Dict

from persona_ai.core.config import DEFAULT_OPENAI_MODEL
from persona_ai.services.ai.errors import ContentFilterError
from persona_ai.services.ai.prompts import build_system_prompt, build_user_prompt, temperature_for
from persona_ai.services.ai.providers.base import RemoteProvider
from persona_ai.services.ai.schema import (
    GenerationRequest,
    HealthStatus,
    ProviderCapabilities,
    TokenUsage,
)

MAX_OUTPUT_TOKENS = 500


class OpenAIProvider(RemoteProvider):
    name = "GPT"
    priority = 2
    default_base_url = "https://api.openai.com/v1"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def _call_api(self, request: GenerationRequest) -> Dict[str, Any]:
        messages = [
            {"role": "system", "content": build_system_prompt(request.persona)},
            {"role": "user", "content": build_user_prompt(request)},
        ]

        payload = {
            "model": self.model or DEFAULT_OPENAI_MODEL,
            "messages": messages,
            "temperature": temperature_for(request),
            "max_tokens": MAX_OUTPUT_TOKENS,
        }
        data = await self._request("POST", "/chat/completions", json_payload=payload)

        choices = data.get("choices") or []
        if choices and choices[0].get("finish_reason") == "content_filter":
            raise ContentFilterError(self.name, "Response blocked by provider content filter")
        return data

    def _extract_content(self, raw: Dict[str, Any]) -> str:
        choices = raw.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""

    def _extract_token_usage(self, raw: Dict[str, Any]) -> TokenUsage:
        usage = raw.get("usage") or {}
        input_tokens = int(usage.get("prompt_tokens") or 0)
        output_tokens = int(usage.get("completion_tokens") or 0)
        total = int(usage.get("total_tokens") or input_tokens + output_tokens)
        return TokenUsage(input=input_tokens, output=output_tokens, total=total)

    def _model_name(self, raw: Dict[str, Any]) -> str:
        return raw.get("model") or self.model

    async def check_health(self) -> HealthStatus:
        return await self._probe("GET", "/models")

    def get_capabilities(self) -> ProviderCapabilities:
        model = self.model or DEFAULT_OPENAI_MODEL
        if model.startswith("gpt-4"):
            max_tokens, cost_per_token = 8192, 0.00003
        elif model.startswith("gpt-3.5"):
            max_tokens, cost_per_token = 4096, 0.000002
        else:
            max_tokens, cost_per_token = 4096, 0.00002

        return ProviderCapabilities(
            max_tokens=max_tokens,
            supports_conversation_history=True,
            supports_political_alignment=True,
            supports_persona_injection=True,
            supports_content_filtering=True,
            supported_languages=["en", "es", "fr", "de", "it", "pt", "ru", "ja", "ko", "zh"],
            cost_per_token=cost_per_token,
        )
