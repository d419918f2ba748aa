"""
Deterministic local fallback provider.

Needs no network or credentials. Responses are picked from canned sets by
political quadrant and context type, and the choice is a stable hash of
persona id and context, so the same request always yields the same text.

Guarantees relied on by the orchestrator:
- always healthy
- generate() never raises
- output never exceeds constraints.max_length
"""
import hashlib
import re
from typing import Any, Dict, List

from persona_ai.services.ai.prompts import build_political_context, build_prompt
from persona_ai.services.ai.providers.base import CHARS_PER_TOKEN, BaseProvider
from persona_ai.services.ai.schema import (
    GenerationRequest,
    HealthStatus,
    PersonaConfiguration,
    ProviderCapabilities,
    TokenUsage,
    ToneStyle,
)

DEMO_MODEL = "demo-v1"
DEMO_PREFIX = "[Demo Mode] "

DEBATE_KEYWORDS = (
    "disagree", "wrong", "oppose", "against", "debate", "argue",
    "policy", "election", "vote", "politics", "government",
)

RESPONSES: Dict[str, Dict[str, List[str]]] = {
    "conservative": {
        "general": [
            "We need to return to traditional values and fiscal responsibility.",
            "The free market will solve this problem more efficiently than government.",
            "This is exactly why we need smaller government and more individual freedom.",
            "Private sector solutions always outperform government programs.",
            "Family values and personal responsibility are the foundation of society.",
        ],
        "questions": [
            "The answer is simple: less government interference and more freedom.",
            "We should trust the market and individual choice, not bureaucrats.",
            "The solution is deregulation and empowering businesses to compete.",
        ],
        "debates": [
            "Your big government approach has failed repeatedly throughout history.",
            "We need solutions based on merit, not identity politics.",
            "The data clearly shows conservative policies create more prosperity.",
        ],
    },
    "liberal": {
        "general": [
            "We need systemic change to address inequality and injustice.",
            "Government has a responsibility to help those who need it most.",
            "Climate action and social justice must be our top priorities.",
            "Healthcare and education should be rights, not privileges.",
            "Progress requires bold action, not incremental change.",
        ],
        "questions": [
            "The solution requires addressing systemic inequalities and injustice.",
            "We need evidence-based policies that put people before profits.",
            "Government investment in public services is the answer.",
        ],
        "debates": [
            "Conservative policies have created the inequality we see today.",
            "Your trickle-down economics has been thoroughly debunked.",
            "This is about basic human dignity and social justice.",
        ],
    },
    "centrist": {
        "general": [
            "We need pragmatic solutions that work for everyone.",
            "Both sides raise valid points that deserve consideration.",
            "Evidence and data should guide our decision-making process.",
            "We should focus on practical outcomes, not ideological purity.",
        ],
        "questions": [
            "The answer likely involves finding balance between competing priorities.",
            "We should examine what works in practice, not just theory.",
            "The evidence suggests a nuanced approach is needed.",
        ],
        "debates": [
            "Both perspectives have merit, but the truth is probably somewhere in between.",
            "We should focus on shared values rather than partisan talking points.",
            "The data shows that extreme positions rarely produce good outcomes.",
        ],
    },
    "libertarian": {
        "general": [
            "The government has no business regulating personal choices.",
            "Maximum freedom with minimum government is the ideal.",
            "The market and voluntary cooperation solve problems better than force.",
            "Individual liberty should be the highest political value.",
        ],
        "questions": [
            "The government should stay out of it and let people choose freely.",
            "Markets and voluntary associations will find better solutions.",
            "This is not a legitimate role for government at any level.",
        ],
        "debates": [
            "Both major parties want to expand government power.",
            "The real choice is between freedom and government control.",
            "Government force is not the solution to social or economic problems.",
        ],
    },
}

NEWS_REACTIONS: Dict[str, List[str]] = {
    "lib-left": [
        "This {topic} situation highlights exactly why we need {stance} policies.",
        "The {topic} story shows how systemic inequality affects real people.",
        "This {topic} development proves that corporate interests are harming society.",
    ],
    "lib-right": [
        "The {topic} issue demonstrates why we need more freedom, not more government.",
        "This {topic} situation could be solved by reducing regulations and barriers.",
        "Free markets would handle the {topic} problem more efficiently.",
    ],
    "auth-left": [
        "The {topic} crisis requires strong government action and public investment.",
        "This {topic} situation shows why we need comprehensive reform.",
        "Only coordinated public policy can address the {topic} challenge.",
    ],
    "auth-right": [
        "The {topic} situation highlights the need for law, order, and traditional values.",
        "The {topic} issue requires strong leadership and decisive action.",
        "We need to return to the time-tested solutions for the {topic} problem.",
    ],
}

QUADRANT_RESPONSE_SETS = {
    "lib-left": "liberal",
    "lib-right": "libertarian",
    "auth-left": "liberal",
    "auth-right": "conservative",
}

QUADRANT_STANCES = {
    "lib-left": "progressive",
    "lib-right": "libertarian",
    "auth-left": "socialist",
    "auth-right": "conservative",
}


def stable_index(seed: str, size: int) -> int:
    """Deterministic index in [0, size) derived from seed."""
    return int(hashlib.md5(seed.encode()).hexdigest(), 16) % size


def fit_to_length(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    if max_length <= 3:
        return text[:max_length]
    return text[: max_length - 3] + "..."


def apply_persona_style(text: str, persona: PersonaConfiguration) -> str:
    tone = persona.tone_style
    if tone == ToneStyle.AGGRESSIVE:
        text = text.replace(".", "!", 1)
        text = re.sub(r"\bi think\b", "I KNOW", text, flags=re.IGNORECASE)
    elif tone == ToneStyle.SARCASTIC:
        text = re.sub(r"\b(good|great)\b", r'"\1"', text, flags=re.IGNORECASE)
    elif tone == ToneStyle.PROFESSIONAL:
        text = text.replace("!", ".")
        text = re.sub(r"\byeah\b", "yes", text, flags=re.IGNORECASE)

    if persona.controversy_tolerance > 75:
        text = re.sub(r"\bmaybe\b", "definitely", text, flags=re.IGNORECASE)
        text = re.sub(r"\bmight\b", "will", text, flags=re.IGNORECASE)
    elif persona.controversy_tolerance < 25:
        text = text.replace("!", ".")
        text = re.sub(r"\bdefinitely\b", "perhaps", text, flags=re.IGNORECASE)

    return text


class DemoProvider(BaseProvider):
    name = "Demo"
    priority = 999
    is_fallback = True
    enforce_safety = False

    def __init__(self, **kwargs: Any):
        kwargs.setdefault("timeout_seconds", 5.0)
        super().__init__(**kwargs)

    def validate_request(self, request: GenerationRequest) -> None:
        # The fallback must answer whatever reaches it.
        return None

    async def _call_api(self, request: GenerationRequest) -> Dict[str, Any]:
        content = self.compose(request)
        prompt_tokens = len(build_prompt(request)) // CHARS_PER_TOKEN
        output_tokens = len(content) // CHARS_PER_TOKEN
        return {
            "content": content,
            "usage": {"input_tokens": prompt_tokens, "output_tokens": output_tokens},
        }

    def compose(self, request: GenerationRequest) -> str:
        """Build the demo text for a request; pure and deterministic."""
        persona = request.persona
        context = request.context or ""
        political = build_political_context(persona.political_alignment)
        seed = f"{persona.id}:{context}"

        if request.news_context is not None:
            templates = NEWS_REACTIONS[political.quadrant]
            text = templates[stable_index(seed, len(templates))].format(
                topic=request.news_context.title.lower(),
                stance=QUADRANT_STANCES.get(political.quadrant, "moderate"),
            )
        else:
            responses = RESPONSES[self._response_set(persona)]
            if "?" in context:
                category = "questions"
            elif any(keyword in context.lower() for keyword in DEBATE_KEYWORDS):
                category = "debates"
            else:
                category = "general"
            options = responses[category]
            text = options[stable_index(seed, len(options))]

        text = apply_persona_style(text, persona)
        return fit_to_length(f"{DEMO_PREFIX}{text}", max(request.constraints.max_length, 0))

    @staticmethod
    def _response_set(persona: PersonaConfiguration) -> str:
        alignment = persona.political_alignment
        if 40 <= alignment.economic_position <= 60 and 40 <= alignment.social_position <= 60:
            return "centrist"
        quadrant = build_political_context(alignment).quadrant
        return QUADRANT_RESPONSE_SETS.get(quadrant, "centrist")

    def _extract_content(self, raw: Dict[str, Any]) -> str:
        return raw["content"]

    def _extract_token_usage(self, raw: Dict[str, Any]) -> TokenUsage:
        usage = raw["usage"]
        return TokenUsage(
            input=usage["input_tokens"],
            output=usage["output_tokens"],
            total=usage["input_tokens"] + usage["output_tokens"],
        )

    def _model_name(self, raw: Dict[str, Any]) -> str:
        return DEMO_MODEL

    def _calculate_confidence(self, raw: Dict[str, Any], request: GenerationRequest) -> float:
        confidence = 0.6
        if self._response_set(request.persona) != "centrist":
            confidence += 0.1
        if len(request.persona.personality_traits) > 2:
            confidence += 0.05
        return min(confidence, 0.8)

    async def check_health(self) -> HealthStatus:
        return HealthStatus(is_healthy=True, response_time_ms=0.0, error_rate=0.0, consecutive_failures=0)

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            max_tokens=280,
            supports_conversation_history=False,
            supports_political_alignment=True,
            supports_persona_injection=True,
            supports_content_filtering=False,
            supported_languages=["en"],
            cost_per_token=0.0,
        )

    def get_estimated_cost(self, request: GenerationRequest) -> float:
        return 0.0
