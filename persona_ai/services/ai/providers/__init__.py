"""
Generation backends.

Remote adapters call vendor REST APIs over httpx; DemoProvider is the
network-free fallback.
"""
from .base import BaseProvider, RemoteProvider
from .claude import ClaudeProvider
from .demo import DemoProvider
from .gemini import GeminiProvider
from .openai import OpenAIProvider

__all__ = [
    "BaseProvider",
    "RemoteProvider",
    "ClaudeProvider",
    "DemoProvider",
    "GeminiProvider",
    "OpenAIProvider",
]
