"""
Prompt assembly with persona and political-alignment injection.

Shared by every remote provider so that a given request produces the same
instructions regardless of which backend serves it.
"""
from dataclasses import dataclass
from typing import List

from persona_ai.services.ai.schema import (
    ConversationTurn,
    GenerationRequest,
    NewsItem,
    PersonaConfiguration,
    PoliticalAlignment,
    ToneStyle,
)

HISTORY_TURNS_IN_PROMPT = 5

_TONE_TEMPERATURE_MODIFIERS = {
    ToneStyle.PROFESSIONAL: -0.1,
    ToneStyle.CASUAL: 0.0,
    ToneStyle.AGGRESSIVE: 0.2,
    ToneStyle.HUMOROUS: 0.15,
    ToneStyle.SARCASTIC: 0.1,
    ToneStyle.INSPIRATIONAL: 0.05,
}


@dataclass(frozen=True)
class PoliticalContext:
    economic_stance: str
    social_stance: str
    quadrant: str
    primary_issues: List[str]
    ideology_tags: List[str]


def map_economic_position(position: float) -> str:
    if position <= 20:
        return "left"
    if position <= 40:
        return "center-left"
    if position <= 60:
        return "center"
    if position <= 80:
        return "center-right"
    return "right"


def map_social_position(position: float) -> str:
    if position <= 20:
        return "liberal"
    if position <= 40:
        return "moderate-liberal"
    if position <= 60:
        return "moderate"
    if position <= 80:
        return "moderate-conservative"
    return "conservative"


def determine_quadrant(economic: float, social: float) -> str:
    left = economic < 50
    liberal = social < 50
    if left and liberal:
        return "lib-left"
    if not left and liberal:
        return "lib-right"
    if left:
        return "auth-left"
    return "auth-right"


def build_political_context(alignment: PoliticalAlignment) -> PoliticalContext:
    return PoliticalContext(
        economic_stance=map_economic_position(alignment.economic_position),
        social_stance=map_social_position(alignment.social_position),
        quadrant=determine_quadrant(alignment.economic_position, alignment.social_position),
        primary_issues=list(alignment.primary_issues),
        ideology_tags=list(alignment.ideology_tags),
    )


def describe_political_alignment(alignment: PoliticalAlignment) -> str:
    """Short human-readable summary, e.g. "centrist economically, liberal socially"."""
    if alignment.economic_position < 30:
        economic = "left-leaning"
    elif alignment.economic_position > 70:
        economic = "right-leaning"
    else:
        economic = "centrist"

    if alignment.social_position < 30:
        social = "liberal"
    elif alignment.social_position > 70:
        social = "conservative"
    else:
        social = "moderate"

    return f"{economic} economically, {social} socially"


def temperature_for(request: GenerationRequest) -> float:
    """
    Sampling temperature for a request.

    An explicit constraint wins; otherwise it is derived from the persona's
    controversy tolerance, debate aggression and tone, clamped to [0.1, 1.0].
    """
    if request.constraints.temperature is not None:
        return request.constraints.temperature

    persona = request.persona
    temperature = 0.7
    temperature += (persona.controversy_tolerance - 50) / 200
    temperature += (persona.debate_aggression - 50) / 200
    temperature += _TONE_TEMPERATURE_MODIFIERS.get(persona.tone_style, 0.0)
    return max(0.1, min(1.0, temperature))


def build_system_prompt(persona: PersonaConfiguration) -> str:
    political = build_political_context(persona.political_alignment)
    return f"""{persona.system_prompt}

PERSONA IDENTITY:
You are {persona.name} (@{persona.handle}).

POLITICAL ALIGNMENT:
Economic Position: {political.economic_stance}
Social Position: {political.social_stance}
Political Quadrant: {political.quadrant}
Primary Issues: {', '.join(political.primary_issues)}
Ideology Tags: {', '.join(political.ideology_tags)}

PERSONALITY PROFILE:
- Traits: {', '.join(persona.personality_traits)}
- Interests: {', '.join(persona.interests)}
- Expertise: {', '.join(persona.expertise)}
- Communication Style: {persona.tone_style.value}
- Controversy Tolerance: {persona.controversy_tolerance:.0f}/100
- Debate Aggression: {persona.debate_aggression:.0f}/100
- Engagement Level: {persona.engagement_frequency:.0f}/100

Stay in character and keep responses under the requested character limit.""".strip()


def build_history_context(history: List[ConversationTurn]) -> str:
    if not history:
        return ""
    lines = [
        f"{turn.role.upper()}: {turn.content}"
        for turn in history[-HISTORY_TURNS_IN_PROMPT:]
    ]
    return "CONVERSATION HISTORY:\n" + "\n".join(lines) + "\n"


def build_news_context(news: NewsItem) -> str:
    if news.sentiment > 0:
        sentiment = "Positive"
    elif news.sentiment < 0:
        sentiment = "Negative"
    else:
        sentiment = "Neutral"

    return (
        "CURRENT NEWS CONTEXT:\n"
        f"Title: {news.title}\n"
        f"Summary: {news.summary}\n"
        f"Source: {news.source}\n"
        f"Category: {news.category}\n"
        f"Keywords: {', '.join(news.keywords)}\n"
        f"Sentiment: {sentiment}\n"
    )


def build_user_prompt(request: GenerationRequest) -> str:
    """Task part of the prompt: history, news grounding, context and constraints."""
    persona = request.persona
    constraints = request.constraints
    tone = (constraints.required_tone or persona.tone_style).value

    rules = [
        f"- Maximum length: {constraints.max_length} characters",
        f"- Tone: {tone}",
        f"- Stay in character as {persona.name} (@{persona.handle})",
        f"- Controversy level: {persona.controversy_tolerance:.0f}/100",
    ]
    if constraints.require_political_stance:
        rules.append("- Take a clear political stance consistent with your alignment")
    if constraints.avoid_topics:
        rules.append(f"- Do not discuss: {', '.join(constraints.avoid_topics)}")

    sections = [
        build_history_context(request.conversation_history),
        build_news_context(request.news_context) if request.news_context else "",
        f"CURRENT CONTEXT: {request.context}",
        "RESPONSE CONSTRAINTS:\n" + "\n".join(rules),
        f"Respond as {persona.name} would:",
    ]
    return "\n\n".join(section for section in sections if section)


def build_prompt(request: GenerationRequest) -> str:
    """Single-string prompt for backends without a separate system role."""
    return f"{build_system_prompt(request.persona)}\n\n{build_user_prompt(request)}"
