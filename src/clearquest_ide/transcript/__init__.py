"""
Transcript module.

Canonical, append-only interview transcript and its integrity audit.
"""

from clearquest_ide.transcript.audit import TranscriptAuditReport, audit_transcript
from clearquest_ide.transcript.ledger import (
    AppendResult,
    TranscriptContractError,
    TranscriptLedger,
    get_next_index,
    merge_transcripts,
    parse_transcript,
)
from clearquest_ide.transcript.schemas import (
    LEGACY_MESSAGE_TYPES,
    MessageType,
    Role,
    SystemEvent,
    TranscriptEntry,
)

__all__ = [
    "LEGACY_MESSAGE_TYPES",
    "AppendResult",
    "MessageType",
    "Role",
    "SystemEvent",
    "TranscriptAuditReport",
    "TranscriptContractError",
    "TranscriptEntry",
    "TranscriptLedger",
    "audit_transcript",
    "get_next_index",
    "merge_transcripts",
    "parse_transcript",
]
