"""
Transcript integrity audit.

Checks the invariants the ledger maintains: one welcome card, unique ids,
strictly increasing indices.
"""

from __future__ import annotations

import logging
from collections import Counter

from pydantic import BaseModel, Field

from clearquest_ide.transcript.schemas import MessageType, TranscriptEntry

logger = logging.getLogger(__name__)


class TranscriptAuditReport(BaseModel):
    """Result of auditing one transcript."""

    total_entries: int = 0
    welcome_count: int = 0
    resume_count: int = 0
    duplicate_ids: list[str] = Field(default_factory=list)
    candidate_visible: int = Field(default=0, description="Entries shown to the candidate")
    audit_only: int = Field(default=0, description="Entries hidden from the candidate")
    indices_monotonic: bool = True

    @property
    def passed(self) -> bool:
        """Whether every invariant holds."""
        return self.welcome_count == 1 and not self.duplicate_ids and self.indices_monotonic


def audit_transcript(transcript: list[TranscriptEntry]) -> TranscriptAuditReport:
    """
    Audit a transcript.

    Args:
        transcript: Entries in stored order.

    Returns:
        Counts and invariant checks for the transcript.
    """
    id_counts = Counter(entry.id for entry in transcript)
    indices = [entry.index for entry in transcript]

    report = TranscriptAuditReport(
        total_entries=len(transcript),
        welcome_count=sum(1 for e in transcript if e.message_type == MessageType.WELCOME),
        resume_count=sum(1 for e in transcript if e.message_type == MessageType.RESUME),
        duplicate_ids=sorted(entry_id for entry_id, count in id_counts.items() if count > 1),
        candidate_visible=sum(1 for e in transcript if e.visible_to_candidate),
        audit_only=sum(1 for e in transcript if not e.visible_to_candidate),
        indices_monotonic=all(a < b for a, b in zip(indices, indices[1:])),
    )

    if not report.passed:
        logger.warning(
            f"Transcript audit failed: welcome={report.welcome_count}, "
            f"duplicates={report.duplicate_ids}, monotonic={report.indices_monotonic}"
        )
    return report
