"""
AI provider orchestration services package.

Routes persona-constrained generation requests across remote providers
(Claude, GPT, Gemini) and a deterministic local fallback, with per-provider
circuit breaking, health monitoring and response caching.
"""
