"""
Tests for the canonical transcript ledger and its audit.
"""

import asyncio

import pytest

from clearquest_ide.db.store import (
    INTERVIEW_SESSION,
    ConcurrencyConflictError,
    InMemoryEntityStore,
    StoreError,
)
from clearquest_ide.transcript import (
    MessageType,
    Role,
    SystemEvent,
    TranscriptContractError,
    TranscriptEntry,
    TranscriptLedger,
    audit_transcript,
    get_next_index,
    merge_transcripts,
    parse_transcript,
)

SESSION_ID = "s"


class ConflictingStore(InMemoryEntityStore):
    """Store whose first `conflicts` updates fail with a version conflict."""

    def __init__(self, conflicts: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.conflicts = conflicts
        self.update_calls = 0

    async def update(self, entity_type, entity_id, fields, expected_version=None):
        self.update_calls += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConcurrencyConflictError(entity_type, entity_id, expected_version or 0, 99)
        return await super().update(entity_type, entity_id, fields, expected_version)


class BrokenStore(InMemoryEntityStore):
    """Store that can read sessions but never write them."""

    async def update(self, entity_type, entity_id, fields, expected_version=None):
        raise StoreError("disk full")


def session_seed() -> dict:
    return {INTERVIEW_SESSION: [{"id": SESSION_ID, "transcript_snapshot": []}]}


@pytest.fixture
def store() -> InMemoryEntityStore:
    """Store holding one empty session."""
    return InMemoryEntityStore(seed=session_seed())


@pytest.fixture
def ledger(store: InMemoryEntityStore) -> TranscriptLedger:
    """Ledger over the session store."""
    return TranscriptLedger(store)


class TestWelcomeAndResume:
    """Tests for the welcome card and resume markers."""

    @pytest.mark.asyncio
    async def test_welcome_is_idempotent(self, ledger: TranscriptLedger) -> None:
        """Test that calling the welcome helper twice leaves one welcome and one SESSION_CREATED."""
        first = await ledger.append_welcome_message(SESSION_ID)
        second = await ledger.append_welcome_message(SESSION_ID)

        transcript = await ledger.read(SESSION_ID)
        assert [e.message_type for e in transcript] == [MessageType.WELCOME, MessageType.SYSTEM_EVENT]
        assert transcript[1].event_type == SystemEvent.SESSION_CREATED.value
        assert first.appended is True
        assert second.appended is False
        assert second.persisted is True
        assert second.entry is not None and second.entry.id == f"welcome-{SESSION_ID}"
        assert [e.id for e in second.transcript] == [e.id for e in transcript]

    @pytest.mark.asyncio
    async def test_welcome_card_shape(self, ledger: TranscriptLedger) -> None:
        """Test the welcome card is visible and the event is audit-only."""
        result = await ledger.append_welcome_message(SESSION_ID)

        welcome, event = result.transcript
        assert welcome.visible_to_candidate is True
        assert welcome.ui_variant == "WELCOME_CARD"
        assert welcome.title == "Welcome to your ClearQuest Interview"
        assert len(welcome.lines) == 4
        assert event.visible_to_candidate is False
        assert event.role == Role.SYSTEM

    @pytest.mark.asyncio
    async def test_resume_markers_are_numbered(self, ledger: TranscriptLedger) -> None:
        """Test that each resume gets its own banner and SESSION_RESUMED event."""
        await ledger.append_welcome_message(SESSION_ID)
        first = await ledger.append_resume_marker(SESSION_ID, last_question_id="q-3")
        second = await ledger.append_resume_marker(SESSION_ID)

        transcript = await ledger.read(SESSION_ID)
        resumes = [e for e in transcript if e.message_type == MessageType.RESUME]
        events = [e for e in transcript if e.event_type == SystemEvent.SESSION_RESUMED.value]

        assert [e.id for e in resumes] == [f"resume-{SESSION_ID}-0", f"resume-{SESSION_ID}-1"]
        assert events[0].meta == {"resumeIndex": 0, "lastQuestionId": "q-3"}
        assert first.persisted and second.persisted
        assert audit_transcript(transcript).resume_count == 2


class TestAppendContract:
    """Tests for the append contract and index assignment."""

    @pytest.mark.asyncio
    async def test_visibility_must_be_explicit(
        self, store: InMemoryEntityStore, ledger: TranscriptLedger
    ) -> None:
        """Test that omitting visible_to_candidate raises and writes nothing."""
        before = await store.get(INTERVIEW_SESSION, SESSION_ID)

        with pytest.raises(TranscriptContractError):
            await ledger.append_assistant_message(SESSION_ID, "Hello", message_type=MessageType.OTHER)

        after = await store.get(INTERVIEW_SESSION, SESSION_ID)
        assert after == before

    @pytest.mark.asyncio
    async def test_indices_are_monotonic(self, ledger: TranscriptLedger) -> None:
        """Test that sequential appends get increasing indices starting at 1."""
        await ledger.append_assistant_message(SESSION_ID, "One", visible_to_candidate=True)
        await ledger.append_user_message(SESSION_ID, "Two")
        await ledger.log_system_event(SESSION_ID, SystemEvent.PACK_ENTERED, {"packId": "PACK_X"})

        transcript = await ledger.read(SESSION_ID)
        assert [e.index for e in transcript] == [1, 2, 3]
        assert transcript[1].role == Role.USER
        assert transcript[1].visible_to_candidate is True

    @pytest.mark.asyncio
    async def test_concurrent_appends_stay_ordered(self, ledger: TranscriptLedger) -> None:
        """Test that concurrent appends never lose entries or reuse an index."""
        await asyncio.gather(
            *(
                ledger.append_assistant_message(SESSION_ID, f"Message {n}", visible_to_candidate=True)
                for n in range(10)
            )
        )

        transcript = await ledger.read(SESSION_ID)
        indices = [e.index for e in transcript]
        assert len(transcript) == 10
        assert indices == sorted(set(indices))
        assert audit_transcript(transcript).indices_monotonic is True

    @pytest.mark.asyncio
    async def test_duplicate_id_is_skipped(self, ledger: TranscriptLedger) -> None:
        """Test that re-appending an entry id is a no-op."""
        await ledger.append_user_message(SESSION_ID, "Yes", entry_id="answer-q1")
        result = await ledger.append_user_message(SESSION_ID, "Yes again", entry_id="answer-q1")

        assert result.appended is False
        assert result.entry is not None and result.entry.text == "Yes"
        assert len(await ledger.read(SESSION_ID)) == 1

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self) -> None:
        """Test that a version conflict is retried against a fresh read."""
        store = ConflictingStore(conflicts=1, seed=session_seed())
        ledger = TranscriptLedger(store)

        result = await ledger.append_user_message(SESSION_ID, "Mesa")

        assert result.persisted is True
        assert store.update_calls == 2
        assert len(await ledger.read(SESSION_ID)) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        """Test that persistent conflicts are reported as not persisted."""
        store = ConflictingStore(conflicts=5, seed=session_seed())
        ledger = TranscriptLedger(store, max_attempts=3)

        result = await ledger.append_user_message(SESSION_ID, "Mesa")

        assert result.persisted is False
        assert store.update_calls == 3
        assert await ledger.read(SESSION_ID) == []

    @pytest.mark.asyncio
    async def test_store_failure_is_not_raised(self) -> None:
        """Test that a failed write returns the in-memory transcript with persisted False."""
        ledger = TranscriptLedger(BrokenStore(seed=session_seed()))

        result = await ledger.append_user_message(SESSION_ID, "Mesa")

        assert result.persisted is False
        assert [e.text for e in result.transcript] == ["Mesa"]

    @pytest.mark.asyncio
    async def test_missing_session(self, ledger: TranscriptLedger) -> None:
        """Test that appending to an unknown session reports failure."""
        result = await ledger.append_user_message("nope", "Mesa")
        assert result.persisted is False
        assert result.appended is False


class TestRenderHelpers:
    """Tests for the idempotent render helpers."""

    @pytest.mark.asyncio
    async def test_question_shown_once_per_render(self, ledger: TranscriptLedger) -> None:
        """Test that a re-render with the same count is not logged twice."""
        for _ in range(2):
            await ledger.log_question_shown(SESSION_ID, "q-1", "Have you ever applied?", 1, "Applications")
        await ledger.log_question_shown(SESSION_ID, "q-1", "Have you ever applied?", 1, render_count=2)

        transcript = await ledger.read(SESSION_ID)
        shown = [e for e in transcript if e.message_type == MessageType.QUESTION_SHOWN]
        events = [e for e in transcript if e.event_type == SystemEvent.QUESTION_SHOWN.value]

        assert [e.id for e in shown] == [f"q-render-{SESSION_ID}-q-1-1", f"q-render-{SESSION_ID}-q-1-2"]
        assert shown[0].title == "Question 1 • Applications"
        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_section_complete_once(self, ledger: TranscriptLedger) -> None:
        """Test that a section-complete card is recorded once."""
        await ledger.log_section_complete(SESSION_ID, "sec-1", "Applications", "Driving")
        await ledger.log_section_complete(SESSION_ID, "sec-1", "Applications", "Driving")

        cards = [e for e in await ledger.read(SESSION_ID) if e.message_type == MessageType.SECTION_COMPLETE]
        assert len(cards) == 1
        assert cards[0].lines[-1] == "Next up: Driving"

    @pytest.mark.asyncio
    async def test_followup_opener_and_fields_are_distinct(self, ledger: TranscriptLedger) -> None:
        """Test follow-up card ids for openers and fields."""
        await ledger.log_followup_shown(SESSION_ID, "PACK_X", "Tell us about it.")
        await ledger.log_followup_shown(SESSION_ID, "PACK_X", "Which agency?", field_key="agency")
        await ledger.log_followup_shown(SESSION_ID, "PACK_X", "Which agency?", field_key="agency")

        cards = [e for e in await ledger.read(SESSION_ID) if e.message_type == MessageType.FOLLOWUP_SHOWN]
        assert [e.stable_key for e in cards] == [
            "followup-card:PACK_X:opener:1",
            "followup-card:PACK_X:field:agency:1",
        ]

    @pytest.mark.asyncio
    async def test_probe_entries_are_visible(self, ledger: TranscriptLedger) -> None:
        """Test that probe questions and answers are shown to the candidate."""
        await ledger.log_probe_question(SESSION_ID, "inc-1", 1, "What was the outcome?", ["outcome"])
        await ledger.log_probe_answer(SESSION_ID, "inc-1", 1, "Not selected")

        question, answer = await ledger.read(SESSION_ID)
        assert question.visible_to_candidate is True
        assert question.meta["targetAnchors"] == ["outcome"]
        assert answer.role == Role.USER
        assert answer.message_type == MessageType.PROBE_ANSWER

    @pytest.mark.asyncio
    async def test_multi_instance_gate_once(self, ledger: TranscriptLedger) -> None:
        """Test that the gate prompt is recorded once per instance."""
        await ledger.log_multi_instance_gate(SESSION_ID, "PACK_X", 1, "Any other instances?")
        await ledger.log_multi_instance_gate(SESSION_ID, "PACK_X", 1, "Any other instances?")
        assert len(await ledger.read(SESSION_ID)) == 1


class TestParsingAndMerging:
    """Tests for reading stored transcripts."""

    def test_legacy_message_types_migrate(self) -> None:
        """Test that stored legacy types map to canonical ones."""
        transcript = parse_transcript(
            [
                {"id": "a", "index": 1, "messageType": "v3_probe_question", "lines": None},
                {"id": "b", "index": 2, "messageType": "FOLLOWUP_CARD_SHOWN", "meta": None},
                {"id": "c", "index": 3, "messageType": "v3_opener_answer"},
                {"id": "d", "index": 4, "messageType": "something_new"},
                {"id": "e", "index": 5, "messageType": "welcome"},
            ]
        )

        assert [e.message_type for e in transcript] == [
            MessageType.PROBE_QUESTION,
            MessageType.FOLLOWUP_SHOWN,
            MessageType.ANSWER,
            MessageType.OTHER,
            MessageType.WELCOME,
        ]
        assert transcript[0].lines == []
        assert transcript[1].meta == {}

    def test_unreadable_entry_raises(self) -> None:
        """Test that a corrupt entry surfaces as a store error."""
        with pytest.raises(StoreError):
            parse_transcript([{"id": "a", "index": -1}])

    def test_next_index(self) -> None:
        """Test next-index computation."""
        assert get_next_index([]) == 1
        assert get_next_index([TranscriptEntry(index=4), TranscriptEntry(index=2)]) == 5

    def test_merge_never_shrinks(self) -> None:
        """Test that a shorter incoming transcript is ignored."""
        a, b = TranscriptEntry(id="a", index=1), TranscriptEntry(id="b", index=2)
        assert [e.id for e in merge_transcripts([a, b], [a])] == ["a", "b"]

    def test_merge_appends_new_keys(self) -> None:
        """Test that only unseen entries are appended."""
        a = TranscriptEntry(id="a", index=1, stable_key="welcome:s")
        a_copy = TranscriptEntry(id="a2", index=1, stable_key="welcome:s")
        b = TranscriptEntry(id="b", index=2)

        merged = merge_transcripts([a], [a_copy, b])

        assert [e.id for e in merged] == ["a", "b"]


class TestAudit:
    """Tests for audit_transcript."""

    @pytest.mark.asyncio
    async def test_clean_transcript_passes(self, ledger: TranscriptLedger) -> None:
        """Test a normal session transcript passes the audit."""
        await ledger.append_welcome_message(SESSION_ID)
        await ledger.log_question_shown(SESSION_ID, "q-1", "Have you ever applied?", 1)
        await ledger.append_user_message(SESSION_ID, "Yes")

        report = audit_transcript(await ledger.read(SESSION_ID))

        assert report.passed is True
        assert report.total_entries == 5
        assert report.candidate_visible == 3
        assert report.audit_only == 2

    def test_violations_are_reported(self) -> None:
        """Test that duplicate welcomes, ids and out-of-order indices fail."""
        transcript = [
            TranscriptEntry(id="w", index=2, message_type=MessageType.WELCOME),
            TranscriptEntry(id="w", index=1, message_type=MessageType.WELCOME),
        ]

        report = audit_transcript(transcript)

        assert report.passed is False
        assert report.welcome_count == 2
        assert report.duplicate_ids == ["w"]
        assert report.indices_monotonic is False
