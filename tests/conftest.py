"""
Shared fixtures for the engine tests.
"""

import pytest

from clearquest_ide.db.store import (
    FACT_MODEL,
    FOLLOW_UP_PACK,
    INTERVIEW_SESSION,
    SYSTEM_CONFIG,
    InMemoryEntityStore,
)
from clearquest_ide.facts.schemas import FactAnchor, FactModel, FollowUpPack
from clearquest_ide.policy.config import DiscretionConfig, InterviewMode

SESSION_ID = "session-001"
PACK_ID = "PACK_PRIOR_LE_APPS_STANDARD"


@pytest.fixture
def prior_apps_model() -> FactModel:
    """Fact model for prior law enforcement applications."""
    return FactModel(
        category_id="PRIOR_LE_APPS",
        category_label="Prior Law Enforcement Applications",
        mandatory_facts=["agency_name", "month_year", "position", "outcome"],
        optional_facts=["location"],
        severity_facts=["outcome"],
        is_ready_for_ai_probing=True,
        linked_pack_ids=[PACK_ID],
    )


@pytest.fixture
def prior_apps_pack() -> FollowUpPack:
    """Follow-up pack whose anchors match the prior applications model."""
    return FollowUpPack(
        pack_id=PACK_ID,
        pack_name="Prior LE Applications",
        fact_anchors=[
            FactAnchor(key="agency_name", label="agency name", priority=1),
            FactAnchor(key="month_year", label="month and year", priority=2),
            FactAnchor(key="position", label="position", priority=3),
            FactAnchor(key="outcome", label="outcome", priority=4),
            FactAnchor(key="location", label="location", priority=5, required=False),
        ],
    )


@pytest.fixture
def probing_config() -> DiscretionConfig:
    """Configuration with AI probing on outside the sandbox."""
    return DiscretionConfig(interview_mode=InterviewMode.AI_PROBING, sandbox_ai_probing_only=False)


@pytest.fixture
def seeded_store(prior_apps_model: FactModel, prior_apps_pack: FollowUpPack) -> InMemoryEntityStore:
    """In-memory store holding one session, the fact model and the pack."""
    pack_record = prior_apps_pack.model_dump(mode="json")
    pack_record["followup_pack_id"] = pack_record.pop("pack_id")
    return InMemoryEntityStore(
        seed={
            FACT_MODEL: [prior_apps_model.model_dump(mode="json")],
            FOLLOW_UP_PACK: [pack_record],
            SYSTEM_CONFIG: [
                {
                    "config_key": "global_config",
                    "config_data": {"interviewMode": "AI_PROBING", "sandboxAiProbingOnly": False},
                }
            ],
            INTERVIEW_SESSION: [{"id": SESSION_ID, "incidents": [], "transcript_snapshot": []}],
        }
    )
