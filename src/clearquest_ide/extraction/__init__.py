"""
Extraction module.

Fact extractors turning candidate answers into fact values.
"""

from clearquest_ide.extraction.base import (
    ExtractionContext,
    ExtractionError,
    ExtractionResult,
    FactExtractor,
)
from clearquest_ide.extraction.llm import LLMFactExtractor
from clearquest_ide.extraction.rule_based import RuleBasedFactExtractor, family_for_key

__all__ = [
    "ExtractionContext",
    "ExtractionError",
    "ExtractionResult",
    "FactExtractor",
    "LLMFactExtractor",
    "RuleBasedFactExtractor",
    "family_for_key",
]
