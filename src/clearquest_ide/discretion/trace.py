"""
Decision trace logging.

Persists one DecisionTrace record per discretion decision, filtered by the
configured verbosity: MINIMAL keeps incident start and stop, STANDARD keeps
every step, NONE keeps nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from clearquest_ide.db.store import DECISION_TRACE, EntityStore, StoreError
from clearquest_ide.discretion.engine import DiscretionDecision
from clearquest_ide.facts.schemas import Incident, ProbeState, Severity
from clearquest_ide.policy.config import DecisionLoggingSettings, LogVerbosity, Tone

logger = logging.getLogger(__name__)

QUESTION_PREVIEW_CHARS = 120


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class TraceAction(str, Enum):
    """Kind of traced decision."""

    START = "START"
    PROBE = "PROBE"
    STOP = "STOP"
    ERROR = "ERROR"


class DecisionTrace(BaseModel):
    """Audit record of one discretion decision."""

    session_id: str
    incident_id: str
    category_id: str
    timestamp: datetime = Field(default_factory=_now_utc)
    action: TraceAction
    probe_state: ProbeState
    severity: Severity | None = None
    tone: Tone | None = None
    missing_facts_before: list[str] = Field(default_factory=list)
    missing_facts_after: list[str] = Field(default_factory=list)
    probe_count: int = 0
    non_substantive_count: int = 0
    next_question_preview: str | None = None
    stop_reason: str | None = None
    logging_level: LogVerbosity = LogVerbosity.STANDARD

    @classmethod
    def from_decision(
        cls,
        session_id: str,
        incident: Incident,
        decision: DiscretionDecision,
        action: TraceAction,
        missing_facts_after: list[str] | None = None,
    ) -> DecisionTrace:
        """Build a trace from an engine decision."""
        preview = decision.question[:QUESTION_PREVIEW_CHARS] if decision.question else None
        return cls(
            session_id=session_id,
            incident_id=incident.incident_id,
            category_id=incident.category_id,
            action=action,
            probe_state=decision.probe_state,
            severity=decision.severity,
            tone=decision.tone,
            missing_facts_before=decision.missing_facts,
            missing_facts_after=missing_facts_after or [],
            probe_count=decision.probe_count,
            non_substantive_count=decision.non_substantive_count,
            next_question_preview=preview,
            stop_reason=decision.stop_reason,
        )


class DecisionTraceLogger:
    """Writes decision traces to the entity store."""

    def __init__(self, store: EntityStore, settings: DecisionLoggingSettings | None = None) -> None:
        """
        Initialize the logger.

        Args:
            store: Entity store receiving DecisionTrace records.
            settings: Logging switch and verbosity.
        """
        self._store = store
        self._level = (settings or DecisionLoggingSettings()).effective_level

    @property
    def level(self) -> LogVerbosity:
        """Verbosity in force."""
        return self._level

    def should_record(self, action: TraceAction) -> bool:
        """Whether a decision of this kind is recorded at the current verbosity."""
        if self._level == LogVerbosity.NONE:
            return False
        if self._level == LogVerbosity.MINIMAL:
            return action != TraceAction.PROBE
        return True

    async def record(self, trace: DecisionTrace) -> DecisionTrace | None:
        """
        Persist a trace if the verbosity allows it.

        A store failure is logged; the trace is still returned.

        Returns:
            The trace, or None if it was filtered out.
        """
        if not self.should_record(trace.action):
            return None

        trace.logging_level = self._level
        try:
            await self._store.create(DECISION_TRACE, trace.model_dump(mode="json"))
        except StoreError as e:
            logger.error(f"Failed to persist decision trace for {trace.incident_id}: {e}")
        return trace
