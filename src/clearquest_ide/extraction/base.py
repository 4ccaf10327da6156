"""
Fact extraction interface.

A fact extractor reads one candidate answer and returns the values it can
attribute to the requested fact keys. Extractors never infer: a key the
answer does not clearly address is reported as missing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class ExtractionError(Exception):
    """Raised when an extractor cannot produce a usable result."""


class ExtractionContext(BaseModel):
    """What the extractor knows about the question being answered."""

    category_id: str | None = Field(default=None, description="Incident category")
    pack_id: str | None = Field(default=None, description="Follow-up pack id")
    target_keys: list[str] = Field(
        default_factory=list,
        description="Fact keys the last clarifier asked for",
    )


class ExtractionResult(BaseModel):
    """Facts extracted from one answer."""

    facts: dict[str, Any] = Field(
        default_factory=dict,
        description="Fact key to extracted value",
    )
    missing: list[str] = Field(
        default_factory=list,
        description="Requested keys the answer did not provide",
    )


class FactExtractor(ABC):
    """Abstract base class for fact extractors."""

    @abstractmethod
    async def extract(
        self,
        answer_text: str,
        fact_keys: list[str],
        context: ExtractionContext | None = None,
    ) -> ExtractionResult:
        """
        Extract fact values from a candidate answer.

        Args:
            answer_text: The candidate's free-text answer.
            fact_keys: Keys still worth collecting.
            context: Optional question context.

        Returns:
            Extracted facts and the keys left unanswered.

        Raises:
            ExtractionError: If extraction fails outright.
        """
        ...
