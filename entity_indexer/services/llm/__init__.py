"""LLM integration for entity extraction.

Components:
    - LLMClient: Abstract client (Gemini, Ollama, Mock backends)
    - build_extraction_prompt: Deterministic extraction prompt renderer
    - MIN_SCHEMA / TINY_SCHEMA: Response schemas for the stricter tiers
"""
from entity_indexer.services.llm.client import (
    LLMClient,
    LLMConfig,
    LLMRequest,
    LLMResponse,
    GeminiClient,
    OllamaClient,
    MockLLMClient,
    create_llm_client,
    get_llm_client,
)
from entity_indexer.services.llm.prompts import (
    MIN_SCHEMA,
    TINY_SCHEMA,
    STRICT_JSON_HINT,
    TINY_JSON_HINT,
    build_extraction_prompt,
)

__all__: list[str] = [
    "LLMClient",
    "LLMConfig",
    "LLMRequest",
    "LLMResponse",
    "GeminiClient",
    "OllamaClient",
    "MockLLMClient",
    "create_llm_client",
    "get_llm_client",
    "MIN_SCHEMA",
    "TINY_SCHEMA",
    "STRICT_JSON_HINT",
    "TINY_JSON_HINT",
    "build_extraction_prompt",
]
