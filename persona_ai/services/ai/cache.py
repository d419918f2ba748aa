"""
In-memory response cache for AI generations.

Cache keys:
- ai:response:{md5(fingerprint)}

The fingerprint covers everything that changes the generated text: persona
id, context, every constraint field, the reference item and a digest of the
last three conversation turns. Two requests differing only in fields that
are not part of the fingerprint share an entry.

TTL:
- Default 5 minutes, checked lazily on read.
- Size is bounded; the oldest insertion is evicted first.
"""
import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional

from persona_ai.core.logging import get_logger
from persona_ai.core.metrics import record_cache_hit, record_cache_miss
from persona_ai.services.ai.schema import GenerationRequest, GenerationResponse

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "ai:response:"
CACHE_TYPE = "ai_response"
DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 1000
HISTORY_TURNS_IN_KEY = 3


def hash_text(text: str) -> str:
    """Generate hash for a string (for cache keys)."""
    return hashlib.md5(text.encode()).hexdigest()


def generate_cache_key(request: GenerationRequest) -> str:
    """
    Deterministic key for a request.

    Pure: identical fingerprint fields always give the same key, and a
    change to any of them gives a different one.
    """
    constraints = request.constraints
    recent_turns = request.conversation_history[-HISTORY_TURNS_IN_KEY:]
    history_digest = hash_text(
        "|".join(f"{turn.role}:{turn.content}" for turn in recent_turns)
    ) if recent_turns else None

    fingerprint = {
        "persona_id": request.persona.id,
        "context": request.context,
        "constraints": {
            "max_length": constraints.max_length,
            "require_political_stance": constraints.require_political_stance,
            "avoid_topics": sorted(constraints.avoid_topics),
            "required_tone": constraints.required_tone.value if constraints.required_tone else None,
            "context_window": constraints.context_window,
            "temperature": constraints.temperature,
        },
        "news": (
            {"id": request.news_context.id, "title": request.news_context.title}
            if request.news_context else None
        ),
        "history": history_digest,
    }
    serialized = json.dumps(fingerprint, sort_keys=True)
    return f"{CACHE_KEY_PREFIX}{hash_text(serialized)}"


@dataclass
class CacheEntry:
    response: GenerationResponse
    inserted_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl_seconds


class ResponseCache:
    """
    Bounded TTL cache of GenerationResponses.

    Thread-safe; concurrent writes of the same key are last-writer-wins.
    """

    def __init__(
        self,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.default_ttl_seconds = default_ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock

        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[GenerationResponse]:
        if not self.enabled:
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(self._clock()):
                del self._entries[key]
                entry = None

            if entry is None:
                self._misses += 1
            else:
                self._hits += 1

        if entry is None:
            record_cache_miss(CACHE_TYPE)
            logger.debug("ai_cache_miss", key=key)
            return None

        record_cache_hit(CACHE_TYPE)
        logger.debug("ai_cache_hit", key=key, provider=entry.response.provider)
        return entry.response

    def set(self, key: str, response: GenerationResponse, ttl_seconds: Optional[float] = None) -> None:
        if not self.enabled:
            return

        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            # Re-inserting moves the key to the newest position.
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(response=response, inserted_at=self._clock(), ttl_seconds=ttl)

            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("ai_cache_evicted", key=evicted_key)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_by_provider(self, provider: str) -> int:
        """Remove every entry produced by the given provider. Returns the count removed."""
        with self._lock:
            keys = [key for key, entry in self._entries.items() if entry.response.provider == provider]
            for key in keys:
                del self._entries[key]

        if keys:
            logger.info("ai_cache_invalidated_by_provider", provider=provider, removed=len(keys))
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info("ai_cache_cleared", removed=removed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def hit_rate(self) -> float:
        with self._lock:
            lookups = self._hits + self._misses
            return self._hits / lookups if lookups else 0.0

    def get_stats(self) -> Dict[str, object]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "enabled": self.enabled,
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "default_ttl_seconds": self.default_ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": self._hits / lookups if lookups else 0.0,
            }
