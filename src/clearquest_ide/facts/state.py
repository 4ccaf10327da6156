"""
Incident and fact-state operations.

Pure helpers over incidents and fact states, plus the session-level helpers
that locate incidents inside an InterviewSession record.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Any
from uuid import uuid4

from clearquest_ide.extraction.base import ExtractionContext, FactExtractor
from clearquest_ide.facts.registry import initialize_fact_state_for_category
from clearquest_ide.facts.schemas import (
    CompletionStatus,
    FactModel,
    FactState,
    Incident,
    Severity,
)

logger = logging.getLogger(__name__)

SeverityResolver = Callable[[FactModel, FactState], Severity | None]


def is_empty_value(value: Any) -> bool:
    """Whether a fact value counts as not collected."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def create_incident(
    category_id: str,
    question_code: str,
    question_id: str | None = None,
    instance_number: int = 1,
    fact_model: FactModel | None = None,
    pack_id: str | None = None,
) -> Incident:
    """
    Create a new incident with an empty fact state.

    The id combines category, question code, instance number and creation
    time in milliseconds, with a short random suffix so two incidents created
    in the same millisecond stay distinct.

    Args:
        category_id: Incident category.
        question_code: Code of the triggering question.
        question_id: Database id of the triggering question.
        instance_number: 1-based instance within the question.
        fact_model: Category fact model used to seed the fact keys.
        pack_id: Follow-up pack that opened the incident.

    Returns:
        The new incident.
    """
    millis = int(time.time() * 1000)
    incident_id = (
        f"incident_{category_id}_{question_code}_{instance_number}_{millis}_{uuid4().hex[:6]}"
    )
    return Incident(
        incident_id=incident_id,
        category_id=category_id,
        question_code=question_code,
        question_id=question_id,
        instance_number=instance_number,
        pack_id=pack_id,
        fact_state=initialize_fact_state_for_category(fact_model),
    )


def get_missing_facts(fact_model: FactModel | None, fact_state: FactState | None) -> list[str]:
    """
    Get mandatory fact keys that have not been collected.

    Args:
        fact_model: Category fact model.
        fact_state: Current fact state.

    Returns:
        Missing mandatory keys in declaration order. Empty when there is no
        model; every mandatory key when there is no state.
    """
    if fact_model is None or not fact_model.mandatory_facts:
        return []
    if fact_state is None:
        return list(fact_model.mandatory_facts)
    return [key for key in fact_model.mandatory_facts if is_empty_value(fact_state.facts.get(key))]


def get_collected_facts(fact_state: FactState | None) -> dict[str, Any]:
    """Get only the facts that have non-empty values."""
    if fact_state is None:
        return {}
    return {key: value for key, value in fact_state.facts.items() if not is_empty_value(value)}


def is_mandatory_facts_complete(fact_model: FactModel | None, fact_state: FactState | None) -> bool:
    """Whether every mandatory fact has a value."""
    return not get_missing_facts(fact_model, fact_state)


def calculate_completion_percent(fact_model: FactModel | None, fact_state: FactState | None) -> int:
    """
    Percentage of mandatory facts collected, rounded to an integer.

    A model with no mandatory facts is 100% complete.
    """
    if fact_model is None or not fact_model.mandatory_facts:
        return 100
    total = len(fact_model.mandatory_facts)
    collected = total - len(get_missing_facts(fact_model, fact_state))
    return round(collected / total * 100)


def refresh_completion_status(fact_model: FactModel | None, fact_state: FactState) -> None:
    """
    Recompute completion status from the collected facts.

    A blocked incident stays blocked unless it has become complete.
    """
    if is_mandatory_facts_complete(fact_model, fact_state):
        fact_state.completion_status = CompletionStatus.COMPLETE
    elif fact_state.completion_status != CompletionStatus.BLOCKED:
        fact_state.completion_status = CompletionStatus.INCOMPLETE


def severity_facts_collected(fact_model: FactModel | None, fact_state: FactState) -> bool:
    """Whether every severity fact has a value."""
    if fact_model is None:
        return False
    return all(not is_empty_value(fact_state.facts.get(key)) for key in fact_model.severity_facts)


async def update_fact_state_from_answer(
    fact_state: FactState,
    fact_model: FactModel | None,
    answer_text: str,
    extractor: FactExtractor,
    context: ExtractionContext | None = None,
    severity_resolver: SeverityResolver | None = None,
) -> FactState:
    """
    Merge facts extracted from an answer into a copy of the fact state.

    Only keys the fact model knows are updated. An empty extracted value
    never overwrites an already collected one.

    Args:
        fact_state: Current fact state (not modified).
        fact_model: Category fact model.
        answer_text: Candidate answer.
        extractor: Fact extractor to run.
        context: Optional question context for the extractor.
        severity_resolver: Computes severity once all severity facts are in.
            Without one, severity defaults to STANDARD at that point.

    Returns:
        The updated fact state.

    Raises:
        ExtractionError: Propagated from the extractor.
    """
    updated = fact_state.model_copy(deep=True)
    if fact_model is None:
        return updated

    known_keys = fact_model.all_fact_keys
    wanted = [key for key in known_keys if is_empty_value(updated.facts.get(key))]

    if wanted and answer_text and answer_text.strip():
        result = await extractor.extract(answer_text, wanted, context)
        for key, value in result.facts.items():
            if key not in known_keys or is_empty_value(value):
                continue
            if not is_empty_value(updated.facts.get(key)):
                continue
            updated.facts[key] = value.strip() if isinstance(value, str) else value
        logger.debug(
            f"Extracted {len(result.facts)} fact(s) for {fact_model.category_id}; "
            f"still missing {result.missing}"
        )

    refresh_completion_status(fact_model, updated)

    if severity_facts_collected(fact_model, updated):
        resolved = severity_resolver(fact_model, updated) if severity_resolver else None
        if resolved is not None:
            updated.severity = resolved
        elif updated.severity is None:
            updated.severity = Severity.STANDARD

    return updated


def _load_incidents(session: dict[str, Any]) -> list[Incident]:
    return [Incident.model_validate(raw) for raw in session.get("incidents") or []]


def get_session_incidents(session: dict[str, Any], category_id: str | None = None) -> list[Incident]:
    """
    Get the incidents stored on a session, optionally for one category.

    Args:
        session: InterviewSession record.
        category_id: Optional category filter.

    Returns:
        Matching incidents in creation order.
    """
    incidents = _load_incidents(session)
    if category_id is None:
        return incidents
    return [incident for incident in incidents if incident.category_id == category_id]


def find_incident_by_id(session: dict[str, Any], incident_id: str) -> Incident | None:
    """Find one incident on a session by id."""
    for incident in _load_incidents(session):
        if incident.incident_id == incident_id:
            return incident
    return None


def add_or_update_incident(session: dict[str, Any], incident: Incident) -> list[dict[str, Any]]:
    """
    Return the session's incident list with `incident` inserted or replaced.

    The session record itself is not modified.
    """
    serialized = incident.model_dump(mode="json")
    incidents = list(session.get("incidents") or [])
    for i, raw in enumerate(incidents):
        if raw.get("incident_id") == incident.incident_id:
            incidents[i] = serialized
            return incidents
    incidents.append(serialized)
    return incidents


SUMMARY_OPENER_CHARS = 200
SUMMARY_DETAIL_THRESHOLD = 100


def finalize_incident(
    incident: Incident,
    opener_text: str | None,
    exchanges: Sequence[str] = (),
    category_label: str | None = None,
) -> Incident:
    """
    Write a deterministic narrative summary onto a stopped incident.

    With enough text the summary quotes the opening answer (trimmed) and the
    bullets record the category, the incident id and how many probing
    exchanges took place. Short incidents get a one-line summary.

    Args:
        incident: Incident to finalize; updated in place.
        opener_text: The candidate's first answer for the incident.
        exchanges: Texts of the probing exchanges that followed.
        category_label: Display label; the humanized category id otherwise.

    Returns:
        The same incident.
    """
    label = category_label or incident.category_id.replace("_", " ")
    opener = (opener_text or "").strip()
    detail_length = len(opener) + sum(len(text) for text in exchanges)

    if not opener and not exchanges:
        summary = "Incident recorded. No additional details provided."
        bullets: list[str] = []
    elif detail_length > SUMMARY_DETAIL_THRESHOLD:
        trimmed = opener[:SUMMARY_OPENER_CHARS]
        if len(opener) > SUMMARY_OPENER_CHARS:
            trimmed += "..."
        summary = f"{label}: {trimmed}"
        bullets = [
            f"Category: {label}",
            f"Incident ID: {incident.incident_id}",
            "Details collected by fact-model probing",
        ]
        if exchanges:
            bullets.append(f"{len(exchanges)} probing exchange(s) recorded")
    else:
        summary = f"{label}: Details recorded."
        bullets = [f"Category: {label}"]

    incident.narrative_summary = summary
    incident.summary_bullets = bullets
    incident.touch()
    logger.debug(f"Finalized {incident.incident_id} with a {len(summary)}-char summary")
    return incident
