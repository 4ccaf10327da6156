"""
Pydantic schemas for incidents and their fact state.

Defines fact models (what must be learned per incident category), incidents,
and the mutable per-incident fact state carried across probing turns.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class CompletionStatus(str, Enum):
    """Whether an incident has all of its mandatory facts."""

    INCOMPLETE = "incomplete"
    COMPLETE = "complete"
    BLOCKED = "blocked"


class Severity(str, Enum):
    """How thoroughly an incident must be probed."""

    LAXED = "LAXED"
    STANDARD = "STANDARD"
    STRICT = "STRICT"

    @classmethod
    def normalize(cls, value: Any) -> Severity | None:
        """
        Map stored severity values onto the enum.

        Legacy records use lower-case values and `MODERATE`, which is the
        same tier as `STANDARD`. Unknown values normalise to None.
        """
        if value is None or isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        if text == "MODERATE":
            return cls.STANDARD
        try:
            return cls(text)
        except ValueError:
            return None


class ProbeState(str, Enum):
    """Discretion engine state for a single incident."""

    COLLECTING = "COLLECTING"
    STOP_COMPLETE = "STOP_COMPLETE"
    STOP_BUDGET_EXHAUSTED = "STOP_BUDGET_EXHAUSTED"
    STOP_NONSUBSTANTIVE_EXCEEDED = "STOP_NONSUBSTANTIVE_EXCEEDED"
    STOP_ERROR_FALLBACK = "STOP_ERROR_FALLBACK"

    @property
    def is_terminal(self) -> bool:
        """Whether no further probing happens from this state."""
        return self is not ProbeState.COLLECTING


class FactModel(BaseModel):
    """The facts that must be learned about one incident category."""

    category_id: str = Field(..., description="Unique incident category identifier")
    category_label: str = Field(default="", description="Human-readable category name")
    mandatory_facts: list[str] = Field(
        default_factory=list,
        description="Fact keys required before the incident is complete",
    )
    optional_facts: list[str] = Field(
        default_factory=list,
        description="Fact keys collected when offered",
    )
    severity_facts: list[str] = Field(
        default_factory=list,
        description="Fact keys that determine the incident's severity",
    )
    is_ready_for_ai_probing: bool = Field(
        default=False,
        description="Whether AI probing may run for this category",
    )
    description: str = Field(default="", description="Admin notes for the category")
    linked_pack_ids: list[str] = Field(
        default_factory=list,
        description="Follow-up packs that open incidents in this category",
    )

    @field_validator("mandatory_facts", "optional_facts", "severity_facts", "linked_pack_ids", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def all_fact_keys(self) -> list[str]:
        """Union of mandatory, optional and severity facts, in declaration order."""
        keys: list[str] = []
        for key in [*self.mandatory_facts, *self.optional_facts, *self.severity_facts]:
            if key not in keys:
                keys.append(key)
        return keys


class FactState(BaseModel):
    """Per-incident record of collected facts and probing progress."""

    facts: dict[str, Any] = Field(
        default_factory=dict,
        description="Fact key to collected value (None until collected)",
    )
    completion_status: CompletionStatus = Field(
        default=CompletionStatus.INCOMPLETE,
        description="Whether all mandatory facts are collected",
    )
    severity: Severity | None = Field(default=None, description="Assessed incident severity")
    probe_count: int = Field(default=0, ge=0, description="Clarifying questions asked so far")
    non_substantive_count: int = Field(
        default=0,
        ge=0,
        description="Vague or evasive answers received so far",
    )
    stop_reason: str | None = Field(default=None, description="Why probing stopped")
    probe_state: ProbeState = Field(
        default=ProbeState.COLLECTING,
        description="Discretion engine state",
    )
    micro_clarifier_count: int = Field(default=0, ge=0, description="Single-anchor clarifiers asked")
    combined_clarifier_count: int = Field(
        default=0,
        ge=0,
        description="Multi-anchor clarifiers asked",
    )
    needs_manual_review: bool = Field(
        default=False,
        description="Set when probing was skipped after an error",
    )
    last_target_anchors: list[str] = Field(
        default_factory=list,
        description="Anchor keys the most recent clarifier asked for",
    )

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: Any) -> Severity | None:
        return Severity.normalize(value)


class Incident(BaseModel):
    """One disclosed occurrence being probed within an interview session."""

    incident_id: str = Field(..., description="Unique incident identifier")
    category_id: str = Field(..., description="Incident category")
    question_code: str = Field(..., description="Code of the question that triggered it")
    question_id: str | None = Field(default=None, description="Database id of that question")
    instance_number: int = Field(default=1, ge=1, description="1-based instance within the question")
    pack_id: str | None = Field(default=None, description="Follow-up pack that opened the incident")
    fact_state: FactState = Field(default_factory=FactState, description="Collected facts")
    narrative_summary: str | None = Field(
        default=None,
        description="Deterministic summary written when probing stops",
    )
    summary_bullets: list[str] = Field(default_factory=list, description="Key points of the summary")
    created_at: datetime = Field(default_factory=_now_utc)
    updated_at: datetime = Field(default_factory=_now_utc)

    def touch(self) -> None:
        """Mark the incident as updated now."""
        self.updated_at = _now_utc()


class FactAnchor(BaseModel):
    """A piece of information a follow-up pack needs, in asking order."""

    key: str = Field(..., description="Anchor key, usually also a fact key")
    label: str = Field(default="", description="Display label")
    priority: int = Field(default=100, description="Lower values are asked first")
    multi_instance_aware: bool = Field(
        default=False,
        validation_alias=AliasChoices("multi_instance_aware", "multiInstanceAware"),
        description="Prefix clarifiers for this anchor when several incidents exist",
    )
    required: bool = Field(default=True, description="Whether the anchor must be collected")


class FollowUpPack(BaseModel):
    """Follow-up pack definition, reduced to what the engine needs."""

    pack_id: str = Field(
        ...,
        validation_alias=AliasChoices("pack_id", "followup_pack_id"),
        description="Pack identifier, e.g. PACK_PRIOR_LE_APPS_STANDARD",
    )
    pack_name: str = Field(default="", description="Display name")
    fact_anchors: list[FactAnchor] = Field(
        default_factory=list,
        description="Anchors the pack collects",
    )

    @field_validator("fact_anchors", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class AnchorState(BaseModel):
    """Collected and missing anchors for one incident instance."""

    anchors: list[FactAnchor] = Field(default_factory=list, description="Anchors by priority")
    collected: dict[str, Any] = Field(default_factory=dict, description="Anchor key to value")
    missing: list[FactAnchor] = Field(
        default_factory=list,
        description="Uncollected anchors by priority",
    )

    @property
    def missing_keys(self) -> list[str]:
        """Keys of the uncollected anchors, in asking order."""
        return [anchor.key for anchor in self.missing]
