"""
Incident orchestrator.

Wires fact models, follow-up packs, fact extraction, the discretion engine
and the transcript ledger into the two calls the interview flow makes:
open an incident when a follow-up pack is entered, and process each
candidate answer for it.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Sequence
from typing import Any

from clearquest_ide.clarifiers.anchors import get_pack_topic
from clearquest_ide.clarifiers.guardrail import ClarifierRejectedError
from clearquest_ide.config import Settings, get_settings
from clearquest_ide.db.store import (
    INTERVIEW_SESSION,
    ConcurrencyConflictError,
    EntityNotFoundError,
    EntityStore,
    StoreError,
)
from clearquest_ide.discretion.engine import DiscretionDecision, DiscretionEngine
from clearquest_ide.discretion.trace import DecisionTrace, DecisionTraceLogger, TraceAction
from clearquest_ide.discretion.vague import VagueAnswerDetector
from clearquest_ide.extraction.base import ExtractionContext, ExtractionError, FactExtractor
from clearquest_ide.extraction.rule_based import RuleBasedFactExtractor
from clearquest_ide.facts.registry import FactModelRegistry
from clearquest_ide.facts.schemas import FactModel, FollowUpPack, Incident
from clearquest_ide.facts.state import (
    add_or_update_incident,
    calculate_completion_percent,
    create_incident,
    finalize_incident,
    find_incident_by_id,
    get_missing_facts,
    get_session_incidents,
    update_fact_state_from_answer,
)
from clearquest_ide.orchestrator.schemas import ProbeTurnResult
from clearquest_ide.packs.category_mapping import PackCategoryMapper
from clearquest_ide.packs.repository import FollowUpPackRepository
from clearquest_ide.policy.config import DiscretionConfig
from clearquest_ide.policy.system_config import SystemConfigService, is_ai_probing_enabled
from clearquest_ide.transcript.ledger import TranscriptLedger
from clearquest_ide.transcript.schemas import MessageType, SystemEvent

logger = logging.getLogger(__name__)


def with_pack_anchors(fact_model: FactModel | None, pack: FollowUpPack | None) -> FactModel | None:
    """
    Extend a fact model with pack anchor keys it does not already declare.

    Extra anchors become optional facts so that answers to anchor
    clarifiers are kept.
    """
    if fact_model is None or pack is None:
        return fact_model
    known = set(fact_model.all_fact_keys)
    extra = [anchor.key for anchor in pack.fact_anchors if anchor.key not in known]
    if not extra:
        return fact_model
    return fact_model.model_copy(update={"optional_facts": [*fact_model.optional_facts, *extra]})


class IncidentOrchestrator:
    """
    Runs fact-model probing for incidents within an interview session.

    One orchestrator is built per request or session with the configuration
    loaded for it; incidents carry all state between turns.
    """

    def __init__(
        self,
        store: EntityStore,
        config: DiscretionConfig,
        extractor: FactExtractor | None = None,
        ledger: TranscriptLedger | None = None,
        mapper: PackCategoryMapper | None = None,
        is_sandbox: bool = False,
        department_code: str | None = None,
        max_write_attempts: int = 3,
        choose: Callable[[Sequence[str]], str] = random.choice,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Entity store for sessions, fact models, packs and traces.
            config: Discretion configuration for this request or session.
            extractor: Fact extractor. Defaults to the rule-based extractor.
            ledger: Transcript ledger. Built on `store` when omitted.
            mapper: Pack to category mapper.
            is_sandbox: Whether the session runs in the sandbox.
            department_code: Department running the interview.
            max_write_attempts: Incident write attempts on version conflicts.
            choose: Picks multi-instance prefixes.
        """
        self._store = store
        self._config = config
        self._extractor = extractor or RuleBasedFactExtractor()
        self._ledger = ledger or TranscriptLedger(store, max_write_attempts)
        self._mapper = mapper or PackCategoryMapper()
        self._is_sandbox = is_sandbox
        self._department_code = department_code
        self._max_write_attempts = max(1, max_write_attempts)

        self._registry = FactModelRegistry(store)
        self._packs = FollowUpPackRepository(store)
        self._engine = DiscretionEngine(config, choose=choose)
        self._vague_detector = VagueAnswerDetector(config.vague_answer_detection)
        self._traces = DecisionTraceLogger(store, config.logging)

    @classmethod
    async def from_store(
        cls,
        store: EntityStore,
        extractor: FactExtractor | None = None,
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> IncidentOrchestrator:
        """
        Build an orchestrator with the configuration stored in `store`.

        Args:
            store: Entity store.
            extractor: Fact extractor.
            settings: Application settings. Defaults to `get_settings()`.
            **kwargs: Passed through to the constructor.
        """
        settings = settings or get_settings()
        config = await SystemConfigService(store, settings.system_config_key).load()
        kwargs.setdefault("max_write_attempts", settings.transcript_append_max_attempts)
        kwargs.setdefault(
            "ledger", TranscriptLedger(store, settings.transcript_append_max_attempts)
        )
        return cls(store, config, extractor=extractor, **kwargs)

    @property
    def config(self) -> DiscretionConfig:
        """The configuration in force."""
        return self._config

    @property
    def engine(self) -> DiscretionEngine:
        """The discretion engine."""
        return self._engine

    @property
    def ledger(self) -> TranscriptLedger:
        """The transcript ledger."""
        return self._ledger

    async def resolve_category(self, pack_id: str | None) -> FactModel | None:
        """
        Resolve the fact model that should drive probing for a pack.

        Returns:
            The fact model, or None when the pack stays on the deterministic
            flow (AI probing off, unmapped pack, category not enabled, or no
            ready fact model).
        """
        if not is_ai_probing_enabled(self._config, self._is_sandbox, self._department_code):
            logger.debug("AI probing disabled for this context")
            return None

        category_id = self._mapper.map(pack_id)
        if category_id is None:
            return None

        enabled = self._config.decision_engine.enabled_categories
        if enabled and category_id not in enabled:
            logger.info(f"Category {category_id} not enabled for fact-model probing")
            return None

        fact_model = await self._registry.get_fact_model_for_category(category_id)
        if fact_model is None or not fact_model.is_ready_for_ai_probing:
            logger.info(f"No fact model ready for category {category_id}")
            return None
        return fact_model

    async def open_incident(
        self,
        session_id: str,
        pack_id: str,
        question_code: str,
        question_id: str | None = None,
        instance_number: int = 1,
    ) -> Incident | None:
        """
        Open (or resume) the incident for a follow-up pack instance.

        Args:
            session_id: Interview session id.
            pack_id: Follow-up pack being entered.
            question_code: Code of the triggering question.
            question_id: Database id of the triggering question.
            instance_number: 1-based instance of the pack for the question.

        Returns:
            The incident, or None when the pack should run the legacy
            deterministic flow.
        """
        fact_model = await self.resolve_category(pack_id)
        if fact_model is None:
            return None

        try:
            session = await self._store.get(INTERVIEW_SESSION, session_id)
        except StoreError as e:
            logger.error(f"Failed to read session {session_id}: {e}")
            session = {}

        for existing in get_session_incidents(session, fact_model.category_id):
            if (
                existing.question_code == question_code
                and existing.instance_number == instance_number
                and existing.pack_id == pack_id
            ):
                logger.info(f"Resuming incident {existing.incident_id}")
                return existing

        incident = create_incident(
            fact_model.category_id,
            question_code,
            question_id=question_id,
            instance_number=instance_number,
            fact_model=fact_model,
            pack_id=pack_id,
        )
        await self._save_incident(session_id, incident)
        await self._ledger.log_system_event(
            session_id,
            SystemEvent.PACK_ENTERED,
            {
                "packId": pack_id,
                "instanceNumber": instance_number,
                "categoryId": fact_model.category_id,
                "incidentId": incident.incident_id,
            },
        )
        await self._traces.record(
            DecisionTrace(
                session_id=session_id,
                incident_id=incident.incident_id,
                category_id=incident.category_id,
                action=TraceAction.START,
                probe_state=incident.fact_state.probe_state,
                missing_facts_before=get_missing_facts(fact_model, incident.fact_state),
            )
        )
        logger.info(f"Opened incident {incident.incident_id} for pack {pack_id}")
        return incident

    async def process_answer(
        self,
        session_id: str,
        incident_id: str,
        answer_text: str,
    ) -> ProbeTurnResult:
        """
        Process one candidate answer for an incident.

        Records the answer, extracts facts, runs the discretion engine, shows
        the next clarifier (if any) and persists the incident.

        Args:
            session_id: Interview session id.
            incident_id: Incident being probed.
            answer_text: The candidate's answer.

        Returns:
            The turn result.

        Raises:
            StoreError: If the session cannot be read.
            EntityNotFoundError: If the incident is not on the session.
        """
        session = await self._store.get(INTERVIEW_SESSION, session_id)
        incident = find_incident_by_id(session, incident_id)
        if incident is None:
            raise EntityNotFoundError("Incident", incident_id)

        fact_model = await self._registry.get_fact_model_for_category(incident.category_id)
        pack = await self._packs.get_pack(incident.pack_id)
        probing_model = with_pack_anchors(fact_model, pack)
        state = incident.fact_state

        if state.probe_state.is_terminal:
            decision = self._engine.evaluate(incident, probing_model, pack)
            return ProbeTurnResult(
                incident=incident,
                decision=decision,
                completion_percent=calculate_completion_percent(fact_model, state),
                incident_persisted=True,
                transcript_persisted=True,
            )

        answer = await self._ledger.log_probe_answer(
            session_id, incident_id, state.probe_count, answer_text
        )
        transcript_persisted = answer.persisted

        non_substantive = self._vague_detector.is_non_substantive(answer_text)
        if non_substantive:
            state.non_substantive_count += 1
            logger.info(
                f"Non-substantive answer {state.non_substantive_count} for {incident_id}"
            )

        decision = await self._decide(
            incident, probing_model, pack, answer_text, non_substantive, session
        )
        state = incident.fact_state

        if decision.question:
            shown = await self._ledger.log_probe_question(
                session_id,
                incident_id,
                decision.probe_count,
                decision.question,
                decision.target_anchors,
                tone=decision.tone.value,
            )
            transcript_persisted = transcript_persisted and shown.persisted

        if decision.is_terminal:
            await self.finalize_incident(session_id, incident, fact_model, answer_text)

        incident_persisted = await self._save_incident(session_id, incident)

        missing_after = get_missing_facts(fact_model, state)
        if decision.fallback is not None:
            action = TraceAction.ERROR
        elif decision.is_terminal:
            action = TraceAction.STOP
        else:
            action = TraceAction.PROBE
        await self._traces.record(
            DecisionTrace.from_decision(session_id, incident, decision, action, missing_after)
        )

        if decision.is_terminal:
            stopped = await self._ledger.log_system_event(
                session_id,
                SystemEvent.PROBE_STOPPED,
                {
                    "incidentId": incident_id,
                    "stopReason": decision.stop_reason,
                    "probeCount": state.probe_count,
                },
            )
            transcript_persisted = transcript_persisted and stopped.persisted

        return ProbeTurnResult(
            incident=incident,
            decision=decision,
            non_substantive=non_substantive,
            completion_percent=calculate_completion_percent(fact_model, state),
            incident_persisted=incident_persisted,
            transcript_persisted=transcript_persisted,
        )

    async def _decide(
        self,
        incident: Incident,
        fact_model: FactModel | None,
        pack: FollowUpPack | None,
        answer_text: str,
        non_substantive: bool,
        session: dict[str, Any],
    ) -> DiscretionDecision:
        """Extract facts and evaluate, applying the error fallback on failure."""
        topic = get_pack_topic(incident.pack_id)
        if not non_substantive:
            context = ExtractionContext(
                category_id=incident.category_id,
                pack_id=incident.pack_id,
                target_keys=incident.fact_state.last_target_anchors,
            )
            try:
                incident.fact_state = await update_fact_state_from_answer(
                    incident.fact_state,
                    fact_model,
                    answer_text,
                    self._extractor,
                    context,
                    self._engine.severity_resolver(topic),
                )
            except ExtractionError as e:
                return self._engine.apply_error_fallback(incident, e, fact_model)

        siblings = [
            other
            for other in get_session_incidents(session, incident.category_id)
            if other.question_code == incident.question_code
        ]
        try:
            return self._engine.evaluate(
                incident, fact_model, pack, multi_instance=len(siblings) > 1
            )
        except ClarifierRejectedError as e:
            return self._engine.apply_error_fallback(incident, e, fact_model)

    async def finalize_incident(
        self,
        session_id: str,
        incident: Incident,
        fact_model: FactModel | None = None,
        last_answer: str | None = None,
    ) -> Incident:
        """
        Write the narrative summary onto a stopped incident.

        The opener is the incident's first logged answer; every later answer
        counts as one probing exchange. The caller persists the incident.

        Args:
            session_id: Interview session id.
            incident: Stopped incident; updated in place.
            fact_model: Category fact model, for the category label.
            last_answer: Answer to use as the opener if the transcript
                cannot be read.
        """
        opener: str | None = None
        exchanges: list[str] = []
        try:
            transcript = await self._ledger.read(session_id)
        except StoreError as e:
            logger.error(f"Failed to read transcript for {incident.incident_id}, summarizing last answer: {e}")
            opener = last_answer
        else:
            for entry in transcript:
                if (
                    entry.message_type != MessageType.PROBE_ANSWER
                    or entry.meta.get("incidentId") != incident.incident_id
                ):
                    continue
                if opener is None and entry.meta.get("probeNumber") == 0:
                    opener = entry.text or ""
                else:
                    exchanges.append(entry.text or "")

        label = fact_model.category_label if fact_model and fact_model.category_label else None
        return finalize_incident(incident, opener, exchanges, label)

    async def _save_incident(self, session_id: str, incident: Incident) -> bool:
        """
        Write an incident onto its session with compare-and-set.

        Returns:
            Whether the write was confirmed.
        """
        for attempt in range(1, self._max_write_attempts + 1):
            try:
                session = await self._store.get(INTERVIEW_SESSION, session_id)
                await self._store.update(
                    INTERVIEW_SESSION,
                    session_id,
                    {"incidents": add_or_update_incident(session, incident)},
                    expected_version=session.get("version"),
                )
                return True
            except ConcurrencyConflictError as e:
                logger.warning(
                    f"Incident write conflict for {incident.incident_id} "
                    f"(attempt {attempt}/{self._max_write_attempts}): {e}"
                )
            except StoreError as e:
                logger.error(f"Failed to persist incident {incident.incident_id}: {e}")
                return False

        logger.error(f"Gave up persisting incident {incident.incident_id} after conflicting writes")
        return False

    async def get_incidents(self, session_id: str, category_id: str | None = None) -> list[Incident]:
        """
        List a session's incidents, optionally for one category.

        Raises:
            StoreError: If the session cannot be read.
        """
        session = await self._store.get(INTERVIEW_SESSION, session_id)
        return get_session_incidents(session, category_id)

