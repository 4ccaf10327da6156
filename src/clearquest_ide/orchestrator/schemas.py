"""
Pydantic schemas for orchestrator results.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from clearquest_ide.discretion.engine import DiscretionDecision
from clearquest_ide.facts.schemas import Incident


class ProbeTurnResult(BaseModel):
    """Outcome of processing one candidate answer for an incident."""

    incident: Incident = Field(..., description="Incident after the turn")
    decision: DiscretionDecision = Field(..., description="Discretion decision for the turn")
    non_substantive: bool = Field(default=False, description="Whether the answer was judged vague")
    completion_percent: int = Field(default=0, description="Mandatory facts collected, 0-100")
    incident_persisted: bool = Field(default=False, description="Whether the incident write was confirmed")
    transcript_persisted: bool = Field(
        default=False,
        description="Whether every transcript append for the turn was confirmed",
    )

    @property
    def next_question(self) -> str | None:
        """Clarifier to show next, if probing continues."""
        return self.decision.question
