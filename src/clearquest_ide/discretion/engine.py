"""
Discretion engine.

Decides, turn by turn, whether to keep probing an incident and what to ask
next. Each incident moves through a small state machine:

    COLLECTING -> STOP_COMPLETE
               -> STOP_BUDGET_EXHAUSTED
               -> STOP_NONSUBSTANTIVE_EXCEEDED
               -> STOP_ERROR_FALLBACK

Stop states are terminal. Checks run in a fixed order: completion, probe
budget, non-substantive answers, then target selection.
"""

from __future__ import annotations

import logging
import random
import re
from collections.abc import Callable, Sequence
from enum import Enum

from pydantic import BaseModel, Field

from clearquest_ide.clarifiers.anchors import compute_anchor_state, get_pack_topic
from clearquest_ide.clarifiers.builder import (
    DEFAULT_TEMPLATE,
    ClarifierContext,
    ClarifierMode,
    build_combined_clarifier,
    build_micro_clarifier,
)
from clearquest_ide.clarifiers.guardrail import (
    ClarifierRejectedError,
    GuardrailIssue,
    StyleGuardrail,
)
from clearquest_ide.facts.schemas import (
    CompletionStatus,
    FactAnchor,
    FactModel,
    FactState,
    FollowUpPack,
    Incident,
    ProbeState,
    Severity,
)
from clearquest_ide.facts.state import (
    get_missing_facts,
    refresh_completion_status,
    severity_facts_collected,
)
from clearquest_ide.policy.config import DiscretionConfig, FallbackBehavior, Tone

logger = logging.getLogger(__name__)

STOP_REASON_COMPLETE = "mandatory_facts_complete"
STOP_REASON_NO_ANCHORS = "no_missing_anchors"
STOP_REASON_BUDGET = "probe_budget_exhausted"
STOP_REASON_NON_SUBSTANTIVE = "non_substantive_threshold"
STOP_REASON_ERROR_FALLBACK = "error_deterministic_fallback"
STOP_REASON_ERROR_SKIPPED = "error_flagged_for_review"


class DiscretionAction(str, Enum):
    """What the engine decided to do this turn."""

    ASK_MICRO = "ask_micro"
    ASK_COMBINED = "ask_combined"
    STOP = "stop"


class DiscretionDecision(BaseModel):
    """Result of one discretion turn."""

    action: DiscretionAction = Field(..., description="Ask or stop")
    probe_state: ProbeState = Field(..., description="Incident state after this turn")
    stop_reason: str | None = Field(default=None, description="Why probing stopped")
    question: str | None = Field(default=None, description="Clarifier to show")
    target_anchors: list[str] = Field(default_factory=list, description="Anchor keys asked for")
    tone: Tone = Field(default=Tone.NEUTRAL, description="Tone to deliver the clarifier in")
    severity: Severity | None = Field(default=None, description="Incident severity")
    topic: str = Field(default="general", description="Pack topic")
    missing_facts: list[str] = Field(
        default_factory=list,
        description="Mandatory facts missing when the turn started",
    )
    probe_count: int = Field(default=0, description="Probes asked, including this one")
    non_substantive_count: int = Field(default=0, description="Vague answers so far")
    guardrail_issues: list[GuardrailIssue] = Field(
        default_factory=list,
        description="Issues found in rejected wordings before the emitted one",
    )
    fallback: FallbackBehavior | None = Field(
        default=None,
        description="Error policy applied, if probing stopped on an error",
    )

    @property
    def is_terminal(self) -> bool:
        """Whether the incident stopped."""
        return self.probe_state.is_terminal


def _contains_keyword(text: str, keywords: Sequence[str]) -> bool:
    return any(re.search(rf"\b{re.escape(k.lower())}\b", text) for k in keywords if k.strip())


class DiscretionEngine:
    """
    Turn-by-turn probing policy for incidents.

    The engine mutates the incident's fact state in place (counters, state,
    stop reason, severity) so that a later turn needs nothing but the
    persisted incident.
    """

    def __init__(
        self,
        config: DiscretionConfig,
        guardrail: StyleGuardrail | None = None,
        choose: Callable[[Sequence[str]], str] = random.choice,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: Discretion configuration for this request or session.
            guardrail: Style guardrail; built from the config when omitted.
            choose: Picks multi-instance prefixes.
        """
        self._config = config
        self._guardrail = guardrail or StyleGuardrail(config.clarifier_guardrails)
        self._choose = choose

    @property
    def config(self) -> DiscretionConfig:
        """The configuration in force."""
        return self._config

    def resolve_tone(self, topic: str | None) -> Tone:
        """Global tone override, else the topic profile's tone, else neutral."""
        if self._config.tone_control is not None:
            return self._config.tone_control
        profile = self._config.topic_profile(topic)
        return profile.default_tone if profile else Tone.NEUTRAL

    def probe_budget(self, topic: str | None) -> int:
        """
        Maximum probes for an incident on this topic.

        The global per-incident cap always applies. With probe budgeting on,
        the topic's (or global) default probe count tightens it further.
        """
        budget = self._config.decision_engine.max_probes_per_incident
        discretion = self._config.discretion
        if discretion.enable_probe_budgeting:
            profile = self._config.topic_profile(topic)
            topic_budget = (
                profile.default_max_probes
                if profile and profile.default_max_probes is not None
                else discretion.default_max_probes
            )
            budget = min(budget, topic_budget)
        return budget

    def resolve_severity(
        self,
        category_id: str,
        fact_model: FactModel | None,
        fact_state: FactState,
        topic: str | None = None,
    ) -> Severity:
        """
        Severity for an incident.

        Starts from the category default (then the topic profile, then
        STANDARD). Once every severity fact is collected, their values may
        move it to STRICT or LAXED by keyword. Disabled tiers fall back to
        STANDARD.
        """
        config = self._config
        severity = config.decision_engine.category_severity_defaults.get(category_id)
        if severity is None:
            profile = config.topic_profile(topic)
            severity = profile.severity_profile if profile and profile.severity_profile else Severity.STANDARD

        if fact_model is not None and fact_model.severity_facts and severity_facts_collected(fact_model, fact_state):
            text = " ".join(str(fact_state.facts.get(key)) for key in fact_model.severity_facts).lower()
            if _contains_keyword(text, config.severity_rules.strict_keywords):
                severity = Severity.STRICT
            elif _contains_keyword(text, config.severity_rules.laxed_keywords):
                severity = Severity.LAXED

        if severity == Severity.STRICT and not config.discretion.enable_strict_severity:
            severity = Severity.STANDARD
        if severity == Severity.LAXED and not config.discretion.enable_laxed_severity:
            severity = Severity.STANDARD
        return severity

    def severity_resolver(self, topic: str | None = None) -> Callable[[FactModel, FactState], Severity]:
        """Adapter for `update_fact_state_from_answer`."""
        return lambda fact_model, fact_state: self.resolve_severity(
            fact_model.category_id, fact_model, fact_state, topic
        )

    def _anchors_per_clarifier(self, severity: Severity, fact_state: FactState) -> int:
        # After a vague answer, ask for one thing at a time.
        if fact_state.non_substantive_count > 0 or severity == Severity.LAXED:
            return 1
        cap = self._config.clarifier_strategy.max_anchors_per_combined_clarifier
        if severity == Severity.STRICT:
            return cap
        return min(2, cap)

    @staticmethod
    def _targets(
        pack: FollowUpPack | None,
        fact_state: FactState,
        missing_facts: list[str],
    ) -> list[FactAnchor]:
        anchor_state = compute_anchor_state(pack, fact_state.facts)
        targets = [anchor for anchor in anchor_state.missing if anchor.required]
        known = {anchor.key for anchor in anchor_state.anchors}
        targets.extend(FactAnchor(key=key) for key in missing_facts if key not in known)
        return targets

    def evaluate(
        self,
        incident: Incident,
        fact_model: FactModel | None,
        pack: FollowUpPack | None = None,
        multi_instance: bool = False,
    ) -> DiscretionDecision:
        """
        Run one discretion turn.

        Args:
            incident: Incident to decide on; its fact state is updated in place.
            fact_model: Category fact model.
            pack: Follow-up pack supplying anchors and priorities.
            multi_instance: Whether several incidents exist for the question.

        Returns:
            The decision.

        Raises:
            ClarifierRejectedError: If no clarifier wording passes the guardrail.
        """
        state = incident.fact_state
        topic = get_pack_topic(incident.pack_id or (pack.pack_id if pack else None))
        tone = self.resolve_tone(topic)

        if state.probe_state.is_terminal:
            return self._decision(incident, DiscretionAction.STOP, topic, tone, [])

        refresh_completion_status(fact_model, state)
        state.severity = self.resolve_severity(incident.category_id, fact_model, state, topic)
        missing = get_missing_facts(fact_model, state)
        engine_settings = self._config.decision_engine

        if engine_settings.stop_when_mandatory_facts_complete and not missing:
            return self._stop(incident, ProbeState.STOP_COMPLETE, STOP_REASON_COMPLETE, topic, tone, missing)

        if state.probe_count >= self.probe_budget(topic):
            return self._stop(incident, ProbeState.STOP_BUDGET_EXHAUSTED, STOP_REASON_BUDGET, topic, tone, missing)

        if state.non_substantive_count >= engine_settings.max_non_substantive_responses:
            state.completion_status = CompletionStatus.BLOCKED
            return self._stop(
                incident,
                ProbeState.STOP_NONSUBSTANTIVE_EXCEEDED,
                STOP_REASON_NON_SUBSTANTIVE,
                topic,
                tone,
                missing,
            )

        targets = self._targets(pack, state, missing)
        if not targets:
            # Facts may still be missing when the pack marks their anchors optional.
            reason = STOP_REASON_NO_ANCHORS if missing else STOP_REASON_COMPLETE
            return self._stop(incident, ProbeState.STOP_COMPLETE, reason, topic, tone, missing)

        strategy = self._config.clarifier_strategy
        can_combined = (
            strategy.allow_combined_clarifier
            and state.combined_clarifier_count < strategy.max_combined_clarifiers_per_instance
        )
        can_micro = (
            strategy.allow_micro_clarifier
            and state.micro_clarifier_count < strategy.max_micro_clarifiers_per_instance
        )
        size = min(len(targets), self._anchors_per_clarifier(state.severity, state))

        if size >= 2 and can_combined:
            mode, chosen = ClarifierMode.COMBINED, targets[:size]
        elif can_micro:
            mode, chosen = ClarifierMode.MICRO, targets[:1]
        elif can_combined:
            mode, chosen = ClarifierMode.COMBINED, targets[:size]
        else:
            logger.info(f"Clarifier allowance used up for {incident.incident_id}")
            return self._stop(incident, ProbeState.STOP_BUDGET_EXHAUSTED, STOP_REASON_BUDGET, topic, tone, missing)

        if state.non_substantive_count > 0 and self._config.tone_control is None:
            tone = Tone.SOFT

        context = ClarifierContext(multi_instance=multi_instance, tone=tone, choose=self._choose)
        question, chosen, tone, issues = self._build_question(mode, chosen, context)
        if len(chosen) == 1:
            mode = ClarifierMode.MICRO

        state.probe_count += 1
        state.last_target_anchors = [anchor.key for anchor in chosen]
        if mode == ClarifierMode.COMBINED:
            state.combined_clarifier_count += 1
        else:
            state.micro_clarifier_count += 1
        incident.touch()

        action = DiscretionAction.ASK_COMBINED if mode == ClarifierMode.COMBINED else DiscretionAction.ASK_MICRO
        logger.debug(
            f"Probe {state.probe_count} for {incident.incident_id}: {action.value} {[a.key for a in chosen]}"
        )
        decision = self._decision(incident, action, topic, tone, missing)
        decision.question = question
        decision.target_anchors = [anchor.key for anchor in chosen]
        decision.guardrail_issues = issues
        return decision

    def _build_question(
        self,
        mode: ClarifierMode,
        anchors: list[FactAnchor],
        context: ClarifierContext,
    ) -> tuple[str, list[FactAnchor], Tone, list[GuardrailIssue]]:
        """
        Build a clarifier that passes the guardrail.

        Each shape is tried in the requested tone, then without a tone
        prefix. Falls back from combined to micro, then to the generic
        template.

        Returns:
            The question, the anchors it asks for, the tone it carries and
            the issues of rejected wordings.
        """
        tones = [context.tone] if context.tone == Tone.NEUTRAL else [context.tone, Tone.NEUTRAL]
        attempts: list[tuple[str, list[FactAnchor], Tone]] = []
        for tone in tones:
            toned = context.model_copy(update={"tone": tone})
            if mode == ClarifierMode.COMBINED:
                attempts.append((build_combined_clarifier(anchors, toned) or "", anchors, tone))
        for tone in tones:
            toned = context.model_copy(update={"tone": tone})
            attempts.append((build_micro_clarifier(anchors[0], toned), anchors[:1], tone))
        attempts.append((DEFAULT_TEMPLATE[0], anchors[:1], Tone.NEUTRAL))

        rejected: list[GuardrailIssue] = []
        for question, chosen, tone in attempts:
            result = self._guardrail.validate(question)
            if result.passed:
                return question, chosen, tone, rejected
            logger.warning(f"Clarifier failed guardrail {[i.value for i in result.issues]}: {question!r}")
            rejected.extend(result.issues)

        raise ClarifierRejectedError(attempts[-1][0], rejected)

    def apply_error_fallback(
        self,
        incident: Incident,
        error: Exception,
        fact_model: FactModel | None = None,
    ) -> DiscretionDecision:
        """
        Stop an incident after an extraction or probing error.

        The configured fallback decides how the caller continues: with the
        deterministic follow-up pack, or by skipping the incident and
        flagging it for manual review.
        """
        state = incident.fact_state
        behavior = self._config.decision_engine.fallback_behavior_on_error
        topic = get_pack_topic(incident.pack_id)

        if behavior == FallbackBehavior.FLAG_AND_SKIP:
            reason = STOP_REASON_ERROR_SKIPPED
            state.needs_manual_review = True
        else:
            reason = STOP_REASON_ERROR_FALLBACK

        logger.error(f"Probing error on {incident.incident_id}, applying {behavior.value}: {error}")
        state.completion_status = CompletionStatus.BLOCKED
        decision = self._stop(
            incident,
            ProbeState.STOP_ERROR_FALLBACK,
            reason,
            topic,
            self.resolve_tone(topic),
            get_missing_facts(fact_model, state),
        )
        decision.fallback = behavior
        return decision

    def _stop(
        self,
        incident: Incident,
        probe_state: ProbeState,
        reason: str,
        topic: str,
        tone: Tone,
        missing: list[str],
    ) -> DiscretionDecision:
        state = incident.fact_state
        state.probe_state = probe_state
        state.stop_reason = reason
        if probe_state == ProbeState.STOP_COMPLETE and not missing:
            state.completion_status = CompletionStatus.COMPLETE
        incident.touch()
        logger.info(f"Stopped probing {incident.incident_id}: {reason}")
        return self._decision(incident, DiscretionAction.STOP, topic, tone, missing)

    @staticmethod
    def _decision(
        incident: Incident,
        action: DiscretionAction,
        topic: str,
        tone: Tone,
        missing: list[str],
    ) -> DiscretionDecision:
        state = incident.fact_state
        return DiscretionDecision(
            action=action,
            probe_state=state.probe_state,
            stop_reason=state.stop_reason,
            tone=tone,
            severity=state.severity,
            topic=topic,
            missing_facts=missing,
            probe_count=state.probe_count,
            non_substantive_count=state.non_substantive_count,
        )

