"""
Clarifier question builder.

Turns missing anchors into short, template-driven clarifying questions:
a micro clarifier asks for one anchor, a combined clarifier asks for several
in one grammatical question.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Sequence
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from clearquest_ide.facts.schemas import FactAnchor, FollowUpPack
from clearquest_ide.policy.config import Tone

# Anchor key -> (micro question, fragment used inside a combined question)
ANCHOR_QUESTION_TEMPLATES: dict[str, tuple[str, str]] = {
    "agency_type": (
        "What type of agency was it (city police, sheriff's office, state agency, or federal agency)?",
        "what type of agency was it",
    ),
    "agency_name": ("What was the name of that agency?", "what was the agency name"),
    "position": ("What position did you apply for?", "what position did you apply for"),
    "month_year": ("About what month and year was that?", "about what month and year"),
    "approx_date": ("About what month and year did that happen?", "about what month and year"),
    "date": ("When did that occur?", "when it occurred"),
    "location": ("Where did that happen?", "where it happened"),
    "location_general": ("What city and state was that in?", "what city and state"),
    "outcome": ("What was the outcome?", "what was the outcome"),
    "consequences": ("What were the consequences?", "what were the consequences"),
    "what_happened": ("What happened?", "what happened"),
    "description": ("Can you briefly describe what occurred?", "what occurred"),
}

# Only for anchors without a key.
DEFAULT_TEMPLATE = ("Can you provide more details?", "any other details")

MULTI_INSTANCE_PREFIXES = ("For this incident, ", "For this situation, ", "Regarding this, ")

TONE_PREFIXES: dict[Tone, tuple[str, ...]] = {
    Tone.SOFT: ("If you recall, ", "To the best of your memory, ", "If you can remember, "),
    Tone.NEUTRAL: (),
    Tone.FIRM: ("Please specify: ", "We need to confirm: ", "For the record, "),
}


class ClarifierMode(str, Enum):
    """Shape of a clarifying question."""

    MICRO = "micro"
    COMBINED = "combined"


class ClarifierContext(BaseModel):
    """Context that affects clarifier wording."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    multi_instance: bool = Field(
        default=False,
        description="Whether the candidate has disclosed more than one incident for this question",
    )
    tone: Tone = Field(default=Tone.NEUTRAL, description="Tone the clarifier is delivered in")
    choose: Callable[[Sequence[str]], str] = Field(
        default=random.choice,
        description="Picks tone and multi-instance prefixes",
    )


def _lower_first(text: str) -> str:
    return text[:1].lower() + text[1:]


def _upper_first(text: str) -> str:
    return text[:1].upper() + text[1:]


def humanize_key(key: str) -> str:
    """Anchor key as plain words, e.g. "bac_level" -> "bac level"."""
    return " ".join(key.replace("_", " ").split()).lower()


def get_anchor_templates(anchor: FactAnchor) -> tuple[str, str]:
    """
    Get the (micro, combined fragment) templates for an anchor.

    Known keys use their template. Other anchors are asked by label, then
    by the key itself.
    """
    if anchor.key in ANCHOR_QUESTION_TEMPLATES:
        return ANCHOR_QUESTION_TEMPLATES[anchor.key]
    name = anchor.label.strip().rstrip("?").lower() or humanize_key(anchor.key)
    if not name:
        return DEFAULT_TEMPLATE
    return f"What was the {name}?", f"what was the {name}"


def _with_tone(question: str, context: ClarifierContext | None) -> str:
    if context is None:
        return question
    prefixes = TONE_PREFIXES.get(context.tone, ())
    if not prefixes:
        return question
    prefix = context.choose(prefixes)
    # "Please specify: What ..." keeps its capital.
    return prefix + (_lower_first(question) if prefix.endswith(", ") else question)


def _with_prefix(question: str, anchors: Sequence[FactAnchor], context: ClarifierContext | None) -> str:
    question = _with_tone(question, context)
    if context is None or not context.multi_instance:
        return question
    if not any(anchor.multi_instance_aware for anchor in anchors):
        return question
    return context.choose(MULTI_INSTANCE_PREFIXES) + _lower_first(question)


def build_micro_clarifier(anchor: FactAnchor, context: ClarifierContext | None = None) -> str:
    """
    Build a single-anchor question.

    Args:
        anchor: Anchor to ask about.
        context: Optional wording context.

    Returns:
        The question text.
    """
    micro, _ = get_anchor_templates(anchor)
    return _with_prefix(micro, [anchor], context)


def build_combined_clarifier(
    anchors: Sequence[FactAnchor],
    context: ClarifierContext | None = None,
) -> str | None:
    """
    Build one question covering several anchors.

    Two anchors read "X and Y?", three or more "X, Y, and Z?". A single
    anchor produces a micro clarifier.

    Args:
        anchors: Anchors to ask about, in asking order.
        context: Optional wording context.

    Returns:
        The question text, or None when there are no anchors.
    """
    if not anchors:
        return None
    if len(anchors) == 1:
        return build_micro_clarifier(anchors[0], context)

    fragments = [get_anchor_templates(anchor)[1] for anchor in anchors]
    if len(fragments) == 2:
        body = f"{fragments[0]} and {fragments[1]}"
    else:
        body = ", ".join(fragments[:-1]) + f", and {fragments[-1]}"
    return _with_prefix(_upper_first(body) + "?", anchors, context)


def resolve_anchors(pack: FollowUpPack | None, anchor_keys: Sequence[str]) -> list[FactAnchor]:
    """Look up anchors by key on a pack; unknown keys get a bare anchor."""
    by_key = {anchor.key: anchor for anchor in (pack.fact_anchors if pack else [])}
    return [by_key.get(key) or FactAnchor(key=key) for key in anchor_keys]


def build_clarifier_question_from_anchors(
    pack: FollowUpPack | None,
    anchor_keys: Sequence[str],
    mode: ClarifierMode = ClarifierMode.MICRO,
    context: ClarifierContext | None = None,
    max_combined: int = 3,
) -> str | None:
    """
    Build a clarifier for the given anchor keys of a pack.

    Micro mode asks for the first key only; combined mode asks for up to
    `max_combined` keys.
    """
    anchors = resolve_anchors(pack, anchor_keys)
    if not anchors:
        return None
    if mode == ClarifierMode.MICRO:
        return build_micro_clarifier(anchors[0], context)
    return build_combined_clarifier(anchors[:max_combined], context)
