"""
Clarifiers module.

Anchor state, clarifying question templates and the style guardrail.
"""

from clearquest_ide.clarifiers.anchors import compute_anchor_state, get_pack_topic
from clearquest_ide.clarifiers.builder import (
    ANCHOR_QUESTION_TEMPLATES,
    MULTI_INSTANCE_PREFIXES,
    TONE_PREFIXES,
    ClarifierContext,
    ClarifierMode,
    build_clarifier_question_from_anchors,
    build_combined_clarifier,
    build_micro_clarifier,
)
from clearquest_ide.clarifiers.guardrail import (
    ClarifierRejectedError,
    GuardrailIssue,
    GuardrailResult,
    StyleGuardrail,
)

__all__ = [
    "ANCHOR_QUESTION_TEMPLATES",
    "MULTI_INSTANCE_PREFIXES",
    "TONE_PREFIXES",
    "ClarifierContext",
    "ClarifierMode",
    "ClarifierRejectedError",
    "GuardrailIssue",
    "GuardrailResult",
    "StyleGuardrail",
    "build_clarifier_question_from_anchors",
    "build_combined_clarifier",
    "build_micro_clarifier",
    "compute_anchor_state",
    "get_pack_topic",
]
