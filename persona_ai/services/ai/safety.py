"""
Pluggable content-safety post-processing.

Providers run every generated text through a SafetyCheck before returning
it. The default KeywordSafetyCheck is a coarse keyword screen; real
moderation lives outside this package and can be plugged in by passing a
different SafetyCheck to the providers.
"""
import re
from typing import List, Protocol

from persona_ai.services.ai.schema import PersonaConfiguration, SafetyResults


class SafetyCheck(Protocol):
    def evaluate(self, content: str, persona: PersonaConfiguration) -> SafetyResults:
        ...


class AllowAllSafetyCheck:
    """No-op check, for backends that filter server-side."""

    def evaluate(self, content: str, persona: PersonaConfiguration) -> SafetyResults:
        return SafetyResults(is_allowed=True, flags=[], confidence=1.0)


class KeywordSafetyCheck:
    """Keyword and pattern screen; extremism is tolerated for high-controversy personas."""

    HATE_SPEECH_KEYWORDS = (
        "genocide", "supremacist", "kill all", "death to", "violence against",
    )
    MISINFORMATION_PATTERNS = (
        re.compile(r"election was (?:stolen|rigged)", re.IGNORECASE),
        re.compile(r"vaccines? (?:cause|contain) (?:autism|microchips)", re.IGNORECASE),
    )
    EXTREMISM_KEYWORDS = (
        "overthrow", "civil war", "armed resistance", "burn it all down",
    )

    def __init__(self, extremism_tolerance_threshold: float = 70.0):
        self.extremism_tolerance_threshold = extremism_tolerance_threshold

    def evaluate(self, content: str, persona: PersonaConfiguration) -> SafetyResults:
        lowered = content.lower()
        flags: List[str] = []
        confidence = 1.0

        if any(keyword in lowered for keyword in self.HATE_SPEECH_KEYWORDS):
            flags.append("hate_speech")
            confidence = min(confidence, 0.9)

        if any(pattern.search(content) for pattern in self.MISINFORMATION_PATTERNS):
            flags.append("misinformation")
            confidence = min(confidence, 0.8)

        if (
            any(keyword in lowered for keyword in self.EXTREMISM_KEYWORDS)
            and persona.controversy_tolerance < self.extremism_tolerance_threshold
        ):
            flags.append("extremism")
            confidence = min(confidence, 0.7)

        return SafetyResults(is_allowed=not flags, flags=flags, confidence=confidence)
