"""
Clarifier style guardrail.

Background-investigation clarifiers must stay short, factual and neutral:
no requests for narrative, no emotional framing, no shaming.
"""

from __future__ import annotations

import logging
import re
from enum import Enum

from pydantic import BaseModel, Field

from clearquest_ide.policy.config import ClarifierGuardrails

logger = logging.getLogger(__name__)


class GuardrailIssue(str, Enum):
    """Reasons a clarifier fails the style guardrail."""

    NARRATIVE_REQUEST = "contains_narrative_request"
    WALK_ME_THROUGH = "contains_walk_me_through"
    EMOTIONAL_PROMPT = "contains_emotional_prompt"
    SHAMING_LANGUAGE = "contains_shaming_language"
    TOO_LONG = "too_long"
    TOO_MANY_WORDS = "too_many_words"
    MULTIPLE_QUESTIONS = "multiple_questions"


NARRATIVE_PHRASES = (
    "tell me the story",
    "describe in detail",
    "explain everything",
    "tell me everything",
    "in your own words",
)

WALK_ME_THROUGH_PHRASES = ("walk me through",)

EMOTIONAL_PHRASES = (
    "tell me about your feelings",
    "how did that make you feel",
    "how do you feel",
    "what were you thinking",
    "why did you",
    "what possessed you",
    "what was going through your mind",
)

SHAMING_PHRASES = (
    "why would you",
    "how could you",
    "you should have",
    "you shouldn't have",
    "that was wrong",
    "that was a mistake",
    "you failed",
    "you lied",
)


class ClarifierRejectedError(Exception):
    """Raised when no acceptable wording exists for a clarifier."""

    def __init__(self, question: str, issues: list[GuardrailIssue]) -> None:
        codes = ", ".join(issue.value for issue in issues)
        super().__init__(f"Clarifier rejected ({codes}): {question!r}")
        self.question = question
        self.issues = issues


class GuardrailResult(BaseModel):
    """Outcome of a guardrail check."""

    passed: bool = Field(..., description="Whether the question may be shown")
    issues: list[GuardrailIssue] = Field(default_factory=list, description="Rules violated")


class StyleGuardrail:
    """Validates clarifier wording against the configured style rules."""

    def __init__(self, settings: ClarifierGuardrails | None = None) -> None:
        """
        Initialize the guardrail.

        Args:
            settings: Guardrail switches and limits; defaults when omitted.
        """
        self._settings = settings or ClarifierGuardrails()

    @staticmethod
    def _contains(text: str, phrases: tuple[str, ...]) -> bool:
        return any(phrase in text for phrase in phrases)

    def validate(self, question: str) -> GuardrailResult:
        """
        Check a clarifier.

        Args:
            question: Clarifier text.

        Returns:
            The result with every violated rule.
        """
        settings = self._settings
        if not settings.enable_style_guardrail:
            return GuardrailResult(passed=True)

        text = question.lower().replace("’", "'")
        issues: list[GuardrailIssue] = []

        if settings.forbid_narrative_requests and self._contains(text, NARRATIVE_PHRASES):
            issues.append(GuardrailIssue.NARRATIVE_REQUEST)
        if settings.forbid_walk_me_through and self._contains(text, WALK_ME_THROUGH_PHRASES):
            issues.append(GuardrailIssue.WALK_ME_THROUGH)
        if settings.forbid_emotional_prompts and self._contains(text, EMOTIONAL_PHRASES):
            issues.append(GuardrailIssue.EMOTIONAL_PROMPT)
        if settings.forbid_shaming_language and self._contains(text, SHAMING_PHRASES):
            issues.append(GuardrailIssue.SHAMING_LANGUAGE)
        if len(question) > settings.max_clarifier_chars:
            issues.append(GuardrailIssue.TOO_LONG)
        if len(re.findall(r"\S+", question)) > settings.max_clarifier_words:
            issues.append(GuardrailIssue.TOO_MANY_WORDS)
        if settings.forbid_multiple_questions and question.count("?") > 1:
            issues.append(GuardrailIssue.MULTIPLE_QUESTIONS)

        if issues:
            logger.debug(f"Guardrail flagged clarifier {question!r}: {[i.value for i in issues]}")
        return GuardrailResult(passed=not issues, issues=issues)
