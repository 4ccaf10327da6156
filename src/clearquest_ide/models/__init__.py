"""
Models module for LLM client abstraction.

Provides the Ollama client used by the LLM fact extractor.
"""

from clearquest_ide.models.llm_client import (
    DEFAULT_OLLAMA_MODEL,
    LLMClient,
    LLMClientBase,
    LLMResponse,
    Message,
    OllamaError,
    parse_json_loose,
)

__all__ = [
    "LLMClient",
    "LLMClientBase",
    "LLMResponse",
    "Message",
    "OllamaError",
    "DEFAULT_OLLAMA_MODEL",
    "parse_json_loose",
]
