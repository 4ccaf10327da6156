"""
Append-only transcript ledger.

The canonical transcript lives on the InterviewSession as
`transcript_snapshot`. Every append re-reads the session, assigns the next
index, and writes the whole array back with a compare-and-set on the session
version. Appends for the same session are serialised by an in-process lock,
and version conflicts from other writers are retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from clearquest_ide.db.store import (
    INTERVIEW_SESSION,
    ConcurrencyConflictError,
    EntityStore,
    StoreError,
)
from clearquest_ide.transcript.schemas import (
    MessageType,
    Role,
    SystemEvent,
    TranscriptEntry,
)

logger = logging.getLogger(__name__)

TRANSCRIPT_FIELD = "transcript_snapshot"

WELCOME_TITLE = "Welcome to your ClearQuest Interview"
WELCOME_LINES = [
    "This interview is part of your application process.",
    "One question at a time, at your own pace.",
    "Clear, complete, and honest answers help investigators understand the full picture.",
    "You can pause and come back. We'll pick up where you left off.",
]
RESUME_TEXT = "Welcome back. Resuming where you left off."

EntryBuilder = Callable[[list[TranscriptEntry]], "TranscriptEntry | None"]


class TranscriptContractError(Exception):
    """Raised when a caller breaks the transcript append contract."""


class AppendResult(BaseModel):
    """Outcome of one append attempt."""

    transcript: list[TranscriptEntry] = Field(
        default_factory=list,
        description="Transcript after the append, as far as it is known",
    )
    entry: TranscriptEntry | None = Field(
        default=None,
        description="The appended entry, or the existing one it duplicated",
    )
    appended: bool = Field(default=False, description="Whether a new entry was added")
    persisted: bool = Field(default=False, description="Whether the store confirmed the write")


def get_next_index(transcript: list[TranscriptEntry]) -> int:
    """Next monotonic index: one past the highest, starting at 1."""
    return max((entry.index for entry in transcript), default=0) + 1


def parse_transcript(raw: list[dict[str, Any]] | None) -> list[TranscriptEntry]:
    """
    Parse a stored transcript, migrating legacy entries.

    Raises:
        StoreError: If an entry cannot be read at all.
    """
    entries: list[TranscriptEntry] = []
    for position, item in enumerate(raw or []):
        try:
            entries.append(TranscriptEntry.model_validate(item))
        except ValidationError as e:
            raise StoreError(f"Unreadable transcript entry at position {position}: {e}") from e
    return entries


def merge_transcripts(
    existing: list[TranscriptEntry],
    incoming: list[TranscriptEntry],
) -> list[TranscriptEntry]:
    """
    Merge a refreshed transcript into the current one without ever shrinking it.

    Args:
        existing: Transcript currently held.
        incoming: Transcript just read from the store.

    Returns:
        `existing` if `incoming` is shorter, otherwise `existing` followed by
        the entries of `incoming` whose stable key or id is new.
    """
    if len(incoming) < len(existing):
        logger.warning(
            f"Ignoring transcript regression: {len(incoming)} incoming < {len(existing)} held"
        )
        return list(existing)

    seen = {entry.dedupe_key for entry in existing}
    merged = list(existing)
    for entry in incoming:
        if entry.dedupe_key not in seen:
            merged.append(entry)
            seen.add(entry.dedupe_key)
    return merged


def _find_duplicate(
    transcript: list[TranscriptEntry],
    entry: TranscriptEntry,
) -> TranscriptEntry | None:
    for existing in transcript:
        if existing.id == entry.id:
            return existing
        if entry.stable_key and existing.stable_key == entry.stable_key:
            return existing
    return None


class TranscriptLedger:
    """Serialised, versioned appends to a session's canonical transcript."""

    def __init__(self, store: EntityStore, max_attempts: int = 3) -> None:
        """
        Initialize the ledger.

        Args:
            store: Entity store holding InterviewSession records.
            max_attempts: Write attempts per append before giving up on
                version conflicts.
        """
        self._store = store
        self._max_attempts = max(1, max_attempts)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def read(self, session_id: str) -> list[TranscriptEntry]:
        """
        Read a session's transcript fresh from the store.

        Raises:
            StoreError: If the session cannot be read.
        """
        session = await self._store.get(INTERVIEW_SESSION, session_id)
        return parse_transcript(session.get(TRANSCRIPT_FIELD))

    async def _append(self, session_id: str, build: EntryBuilder) -> AppendResult:
        """
        Append the entry produced by `build` against the freshest transcript.

        `build` receives the current transcript and returns the entry to add,
        or None to skip. Entries whose id or stable key already exist are not
        added again.
        """
        async with self._lock_for(session_id):
            transcript: list[TranscriptEntry] = []
            updated: list[TranscriptEntry] = []
            entry: TranscriptEntry | None = None

            for attempt in range(1, self._max_attempts + 1):
                try:
                    session = await self._store.get(INTERVIEW_SESSION, session_id)
                    transcript = parse_transcript(session.get(TRANSCRIPT_FIELD))
                except StoreError as e:
                    logger.error(f"Failed to read transcript for session {session_id}: {e}")
                    return AppendResult(transcript=transcript, entry=entry, appended=False, persisted=False)

                entry = build(transcript)
                if entry is None:
                    return AppendResult(transcript=transcript, appended=False, persisted=True)

                duplicate = _find_duplicate(transcript, entry)
                if duplicate is not None:
                    logger.debug(f"Transcript entry {entry.id} already present, skipping")
                    return AppendResult(
                        transcript=transcript, entry=duplicate, appended=False, persisted=True
                    )

                entry.index = get_next_index(transcript)
                updated = [*transcript, entry]
                try:
                    await self._store.update(
                        INTERVIEW_SESSION,
                        session_id,
                        {TRANSCRIPT_FIELD: [e.to_storage() for e in updated]},
                        expected_version=session.get("version"),
                    )
                except ConcurrencyConflictError as e:
                    logger.warning(
                        f"Transcript write conflict for session {session_id} "
                        f"(attempt {attempt}/{self._max_attempts}): {e}"
                    )
                    continue
                except StoreError as e:
                    logger.error(f"Failed to persist transcript entry {entry.id}: {e}")
                    return AppendResult(transcript=updated, entry=entry, appended=True, persisted=False)

                logger.debug(
                    f"Appended {entry.message_type.value} {entry.id} "
                    f"at index {entry.index} for session {session_id}"
                )
                return AppendResult(transcript=updated, entry=entry, appended=True, persisted=True)

            logger.error(
                f"Gave up appending to session {session_id} transcript "
                f"after {self._max_attempts} conflicting writes"
            )
            return AppendResult(transcript=updated, entry=entry, appended=True, persisted=False)

    async def append_assistant_message(
        self,
        session_id: str,
        text: str | None,
        *,
        visible_to_candidate: bool | None = None,
        message_type: MessageType = MessageType.OTHER,
        entry_id: str | None = None,
        stable_key: str | None = None,
        ui_variant: str | None = None,
        title: str | None = None,
        lines: list[str] | None = None,
        meta: dict[str, Any] | None = None,
    ) -> AppendResult:
        """
        Append an assistant-authored entry.

        Args:
            session_id: Interview session id.
            text: Entry text.
            visible_to_candidate: Whether the candidate sees the entry. Must
                be given explicitly.
            message_type: Entry kind.
            entry_id: Deterministic id for idempotent appends.
            stable_key: Idempotency key.
            ui_variant: Rendering hint.
            title: Card title.
            lines: Card body lines.
            meta: Per-kind details.

        Raises:
            TranscriptContractError: If `visible_to_candidate` is not given.
                Nothing is read or written in that case.
        """
        if visible_to_candidate is None:
            raise TranscriptContractError(
                f"Assistant message of type {MessageType.migrate(message_type).value} "
                "must set visible_to_candidate explicitly"
            )

        fields: dict[str, Any] = {
            "role": Role.ASSISTANT,
            "text": text,
            "visible_to_candidate": visible_to_candidate,
            "message_type": message_type,
            "stable_key": stable_key,
            "ui_variant": ui_variant,
            "title": title,
            "lines": lines or [],
            "meta": meta or {},
        }
        if entry_id:
            fields["id"] = entry_id
        return await self._append(session_id, lambda _: TranscriptEntry(**fields))

    async def append_user_message(
        self,
        session_id: str,
        text: str,
        *,
        message_type: MessageType = MessageType.ANSWER,
        entry_id: str | None = None,
        stable_key: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> AppendResult:
        """Append a candidate answer. User entries are always visible."""
        fields: dict[str, Any] = {
            "role": Role.USER,
            "text": text,
            "visible_to_candidate": True,
            "message_type": message_type,
            "stable_key": stable_key,
            "meta": meta or {},
        }
        if entry_id:
            fields["id"] = entry_id
        return await self._append(session_id, lambda _: TranscriptEntry(**fields))

    async def log_system_event(
        self,
        session_id: str,
        event_type: SystemEvent | str,
        meta: dict[str, Any] | None = None,
    ) -> AppendResult:
        """
        Append an audit-only system event.

        SESSION_CREATED is recorded at most once per session.
        """
        event = event_type.value if isinstance(event_type, SystemEvent) else str(event_type)

        def build(transcript: list[TranscriptEntry]) -> TranscriptEntry | None:
            if event == SystemEvent.SESSION_CREATED.value and any(
                e.message_type == MessageType.SYSTEM_EVENT and e.event_type == event
                for e in transcript
            ):
                logger.debug(f"SESSION_CREATED already logged for session {session_id}")
                return None
            return TranscriptEntry(
                role=Role.SYSTEM,
                text=None,
                visible_to_candidate=False,
                message_type=MessageType.SYSTEM_EVENT,
                event_type=event,
                meta=meta or {},
            )

        return await self._append(session_id, build)

    async def append_welcome_message(self, session_id: str) -> AppendResult:
        """
        Append the welcome card once per session and log SESSION_CREATED.

        Calling this again leaves the transcript unchanged.
        """
        result = await self.append_assistant_message(
            session_id,
            WELCOME_TITLE,
            visible_to_candidate=True,
            message_type=MessageType.WELCOME,
            entry_id=f"welcome-{session_id}",
            stable_key=f"welcome:{session_id}",
            ui_variant="WELCOME_CARD",
            title=WELCOME_TITLE,
            lines=WELCOME_LINES,
        )
        if not result.persisted:
            return result

        event = await self.log_system_event(
            session_id, SystemEvent.SESSION_CREATED, {"sessionId": session_id}
        )
        if event.persisted:
            return result.model_copy(update={"transcript": event.transcript})
        return result

    async def append_resume_marker(
        self,
        session_id: str,
        last_question_id: str | None = None,
    ) -> AppendResult:
        """Append a resume banner and log SESSION_RESUMED."""
        resume_index = 0

        def build(transcript: list[TranscriptEntry]) -> TranscriptEntry:
            nonlocal resume_index
            resume_index = sum(1 for e in transcript if e.message_type == MessageType.RESUME)
            return TranscriptEntry(
                id=f"resume-{session_id}-{resume_index}",
                role=Role.ASSISTANT,
                text=RESUME_TEXT,
                visible_to_candidate=True,
                message_type=MessageType.RESUME,
                ui_variant="RESUME_BANNER",
            )

        result = await self._append(session_id, build)
        if not (result.appended and result.persisted):
            return result

        event = await self.log_system_event(
            session_id,
            SystemEvent.SESSION_RESUMED,
            {"resumeIndex": resume_index, "lastQuestionId": last_question_id},
        )
        if event.persisted:
            return result.model_copy(update={"transcript": event.transcript})
        return result

    async def log_question_shown(
        self,
        session_id: str,
        question_id: str,
        question_text: str,
        question_number: int,
        section_name: str | None = None,
        render_count: int = 1,
    ) -> AppendResult:
        """Record a base question as rendered to the candidate."""
        title = f"Question {question_number}"
        if section_name:
            title = f"{title} • {section_name}"

        result = await self.append_assistant_message(
            session_id,
            question_text,
            visible_to_candidate=True,
            message_type=MessageType.QUESTION_SHOWN,
            entry_id=f"q-render-{session_id}-{question_id}-{render_count}",
            ui_variant="QUESTION_CARD",
            title=title,
            meta={
                "questionDbId": question_id,
                "questionNumber": question_number,
                "sectionName": section_name,
                "renderCount": render_count,
            },
        )
        if result.appended and result.persisted:
            await self.log_system_event(
                session_id,
                SystemEvent.QUESTION_SHOWN,
                {"questionDbId": question_id, "questionNumber": question_number},
            )
        return result

    async def log_section_complete(
        self,
        session_id: str,
        completed_section_id: str,
        completed_section_name: str,
        next_section_name: str | None = None,
        progress: dict[str, Any] | None = None,
    ) -> AppendResult:
        """Record the section-complete card, once per section."""
        title = f"Section Complete: {completed_section_name}"
        lines = ["Nice work. You've finished this section. Ready for the next one?"]
        if next_section_name:
            lines.append(f"Next up: {next_section_name}")

        result = await self.append_assistant_message(
            session_id,
            title,
            visible_to_candidate=True,
            message_type=MessageType.SECTION_COMPLETE,
            entry_id=f"section-complete-{session_id}-{completed_section_id}",
            stable_key=f"section-complete:{completed_section_id}",
            ui_variant="SECTION_COMPLETE_CARD",
            title=title,
            lines=lines,
            meta={"completedSectionId": completed_section_id, "progress": progress or {}},
        )
        if result.appended and result.persisted:
            await self.log_system_event(
                session_id,
                SystemEvent.SECTION_COMPLETED,
                {"completedSectionId": completed_section_id},
            )
        return result

    async def log_followup_shown(
        self,
        session_id: str,
        pack_id: str,
        prompt_text: str,
        instance_number: int = 1,
        field_key: str | None = None,
        pack_label: str | None = None,
    ) -> AppendResult:
        """
        Record a follow-up card as rendered.

        Without `field_key` the card is the pack opener; otherwise it asks
        for one pack field.
        """
        if field_key:
            entry_id = f"followup-card-{session_id}-{pack_id}-field-{field_key}-{instance_number}"
            stable_key = f"followup-card:{pack_id}:field:{field_key}:{instance_number}"
        else:
            entry_id = f"followup-card-{session_id}-{pack_id}-opener-{instance_number}"
            stable_key = f"followup-card:{pack_id}:opener:{instance_number}"

        result = await self.append_assistant_message(
            session_id,
            prompt_text,
            visible_to_candidate=True,
            message_type=MessageType.FOLLOWUP_SHOWN,
            entry_id=entry_id,
            stable_key=stable_key,
            ui_variant="FOLLOWUP_CARD",
            title=pack_label or "Follow-up",
            meta={"packId": pack_id, "instanceNumber": instance_number, "fieldKey": field_key},
        )
        if result.appended and result.persisted:
            await self.log_system_event(
                session_id,
                SystemEvent.FOLLOWUP_SHOWN,
                {"packId": pack_id, "instanceNumber": instance_number, "fieldKey": field_key},
            )
        return result

    async def log_multi_instance_gate(
        self,
        session_id: str,
        pack_id: str,
        instance_number: int,
        prompt_text: str,
    ) -> AppendResult:
        """Record the "another instance?" gate, once per pack instance."""
        return await self.append_assistant_message(
            session_id,
            prompt_text,
            visible_to_candidate=True,
            message_type=MessageType.MULTI_INSTANCE_GATE_SHOWN,
            entry_id=f"mi-gate-{session_id}-{pack_id}-{instance_number}",
            stable_key=f"mi-gate:{pack_id}:{instance_number}:q",
            meta={"packId": pack_id, "instanceNumber": instance_number},
        )

    async def log_probe_question(
        self,
        session_id: str,
        incident_id: str,
        probe_number: int,
        question: str,
        target_anchors: list[str] | None = None,
        tone: str | None = None,
    ) -> AppendResult:
        """Record a clarifying question as a visible probe entry."""
        meta: dict[str, Any] = {
            "incidentId": incident_id,
            "probeNumber": probe_number,
            "targetAnchors": target_anchors or [],
        }
        if tone:
            meta["tone"] = tone
        return await self.append_assistant_message(
            session_id,
            question,
            visible_to_candidate=True,
            message_type=MessageType.PROBE_QUESTION,
            entry_id=f"probe-q-{session_id}-{incident_id}-{probe_number}",
            ui_variant="PROBE_QUESTION",
            meta=meta,
        )

    async def log_probe_answer(
        self,
        session_id: str,
        incident_id: str,
        probe_number: int,
        answer_text: str,
    ) -> AppendResult:
        """Record the candidate's answer to a probe."""
        return await self.append_user_message(
            session_id,
            answer_text,
            message_type=MessageType.PROBE_ANSWER,
            entry_id=f"probe-a-{session_id}-{incident_id}-{probe_number}",
            meta={"incidentId": incident_id, "probeNumber": probe_number},
        )
