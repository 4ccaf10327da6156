"""
Facts module.

Fact model registry, incident records and fact-state operations.
"""

from clearquest_ide.facts.registry import (
    FactModelRegistry,
    initialize_fact_state_for_category,
    normalize_fact_model,
)
from clearquest_ide.facts.schemas import (
    AnchorState,
    CompletionStatus,
    FactAnchor,
    FactModel,
    FactState,
    FollowUpPack,
    Incident,
    ProbeState,
    Severity,
)
from clearquest_ide.facts.state import (
    add_or_update_incident,
    calculate_completion_percent,
    create_incident,
    finalize_incident,
    find_incident_by_id,
    get_collected_facts,
    get_missing_facts,
    get_session_incidents,
    is_mandatory_facts_complete,
    update_fact_state_from_answer,
)

__all__ = [
    "AnchorState",
    "CompletionStatus",
    "FactAnchor",
    "FactModel",
    "FactModelRegistry",
    "FactState",
    "FollowUpPack",
    "Incident",
    "ProbeState",
    "Severity",
    "add_or_update_incident",
    "calculate_completion_percent",
    "create_incident",
    "finalize_incident",
    "find_incident_by_id",
    "get_collected_facts",
    "get_missing_facts",
    "get_session_incidents",
    "initialize_fact_state_for_category",
    "is_mandatory_facts_complete",
    "normalize_fact_model",
    "update_fact_state_from_answer",
]
