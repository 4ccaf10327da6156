"""
Pydantic schemas for the canonical interview transcript.

Entries are stored on the InterviewSession in camelCase, the shape written by
earlier releases. Legacy message type strings are migrated when entries are
read back.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Who produced a transcript entry."""

    ASSISTANT = "assistant"
    USER = "user"
    SYSTEM = "system"


class MessageType(str, Enum):
    """Closed set of transcript entry kinds."""

    WELCOME = "WELCOME"
    RESUME = "RESUME"
    QUESTION_SHOWN = "QUESTION_SHOWN"
    ANSWER = "ANSWER"
    SECTION_COMPLETE = "SECTION_COMPLETE"
    FOLLOWUP_SHOWN = "FOLLOWUP_SHOWN"
    PROBE_QUESTION = "PROBE_QUESTION"
    PROBE_ANSWER = "PROBE_ANSWER"
    MULTI_INSTANCE_GATE_SHOWN = "MULTI_INSTANCE_GATE_SHOWN"
    SYSTEM_EVENT = "SYSTEM_EVENT"
    OTHER = "OTHER"

    @classmethod
    def migrate(cls, value: Any) -> MessageType:
        """
        Map a stored message type onto the enum.

        Legacy strings map to their canonical kind; anything unrecognised
        becomes OTHER.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.OTHER
        text = str(value).strip()
        if text in LEGACY_MESSAGE_TYPES:
            return LEGACY_MESSAGE_TYPES[text]
        try:
            return cls(text.upper())
        except ValueError:
            return cls.OTHER


LEGACY_MESSAGE_TYPES: dict[str, MessageType] = {
    "deterministic_followup_question": MessageType.FOLLOWUP_SHOWN,
    "v2_pack_followup": MessageType.FOLLOWUP_SHOWN,
    "FOLLOWUP_CARD_SHOWN": MessageType.FOLLOWUP_SHOWN,
    "v3_opener_question": MessageType.FOLLOWUP_SHOWN,
    "v3_probe_question": MessageType.PROBE_QUESTION,
    "V3_PROBE_QUESTION": MessageType.PROBE_QUESTION,
    "v3_probe_answer": MessageType.PROBE_ANSWER,
    "V3_PROBE_ANSWER": MessageType.PROBE_ANSWER,
    "v3_opener_answer": MessageType.ANSWER,
}


class SystemEvent(str, Enum):
    """Audit-only events recorded as invisible SYSTEM_EVENT entries."""

    SESSION_CREATED = "SESSION_CREATED"
    SESSION_RESUMED = "SESSION_RESUMED"
    QUESTION_SHOWN = "QUESTION_SHOWN"
    SECTION_COMPLETED = "SECTION_COMPLETED"
    FOLLOWUP_SHOWN = "FOLLOWUP_SHOWN"
    PACK_ENTERED = "PACK_ENTERED"
    PROBE_STOPPED = "PROBE_STOPPED"


class TranscriptEntry(BaseModel):
    """One append-only transcript entry."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid4().hex, description="Entry id, deterministic where idempotent")
    index: int = Field(default=0, ge=0, description="Monotonic position, assigned on append")
    role: Role = Field(default=Role.ASSISTANT, description="Who produced the entry")
    text: str | None = Field(default=None, description="Rendered text")
    timestamp: datetime = Field(default_factory=_now_utc)
    visible_to_candidate: bool = Field(default=False, description="Whether the candidate sees this entry")
    message_type: MessageType = Field(default=MessageType.OTHER, description="Entry kind")
    ui_variant: str | None = Field(default=None, description="Rendering hint")
    title: str | None = None
    lines: list[str] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict, description="Per-kind details")
    event_type: str | None = Field(default=None, description="System event name for SYSTEM_EVENT entries")
    stable_key: str | None = Field(default=None, description="Idempotency key")

    @field_validator("message_type", mode="before")
    @classmethod
    def _migrate_message_type(cls, value: Any) -> MessageType:
        return MessageType.migrate(value)

    @field_validator("lines", "meta", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return [] if info.field_name == "lines" else {}
        return value

    @property
    def dedupe_key(self) -> str:
        """Key used when merging transcripts."""
        return self.stable_key or self.id or f"idx_{self.index}"

    def to_storage(self) -> dict[str, Any]:
        """Dump in the stored camelCase shape."""
        return self.model_dump(mode="json", by_alias=True)
