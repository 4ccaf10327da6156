"""
Readiness self-test.

Runs the engine end to end against an isolated in-memory store seeded with
synthetic V3_SELFTEST_ records, so it never touches production data.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, Field

from clearquest_ide.clarifiers.anchors import compute_anchor_state
from clearquest_ide.clarifiers.builder import build_combined_clarifier
from clearquest_ide.clarifiers.guardrail import StyleGuardrail
from clearquest_ide.db.store import (
    FACT_MODEL,
    FOLLOW_UP_PACK,
    INTERVIEW_SESSION,
    SYSTEM_CONFIG,
    EntityStore,
    InMemoryEntityStore,
)
from clearquest_ide.extraction.rule_based import RuleBasedFactExtractor
from clearquest_ide.facts.registry import FactModelRegistry, initialize_fact_state_for_category
from clearquest_ide.facts.schemas import CompletionStatus
from clearquest_ide.orchestrator.incident_orchestrator import IncidentOrchestrator
from clearquest_ide.packs.category_mapping import map_pack_id_to_category
from clearquest_ide.packs.repository import FollowUpPackRepository
from clearquest_ide.policy.system_config import SystemConfigService
from clearquest_ide.transcript.audit import audit_transcript
from clearquest_ide.transcript.ledger import TranscriptContractError, TranscriptLedger

logger = logging.getLogger(__name__)

SELFTEST_PREFIX = "V3_SELFTEST_"
SELFTEST_SESSION_ID = f"{SELFTEST_PREFIX}SESSION"
SELFTEST_CATEGORY = "PRIOR_LE_APPS"
SELFTEST_PACK_ID = "PACK_PRIOR_LE_APPS_STANDARD"
SELFTEST_NARRATIVE = (
    "In March 2022, I applied to Mesa Police Department for a Police Officer Recruit "
    "position and was not selected after the physical fitness test."
)
SELFTEST_MAX_TURNS = 20


class CheckResult(BaseModel):
    """One readiness check."""

    name: str
    passed: bool
    detail: str = ""


class ReadinessReport(BaseModel):
    """Outcome of a self-test run."""

    checks: list[CheckResult] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        """Whether every check passed."""
        return bool(self.checks) and all(check.passed for check in self.checks)

    @property
    def summary(self) -> str:
        """One-line result."""
        passed = sum(1 for check in self.checks if check.passed)
        if self.passed:
            return f"All {len(self.checks)} checks passed. The engine is ready."
        return f"{passed}/{len(self.checks)} checks passed."


def build_selftest_store() -> InMemoryEntityStore:
    """Create an in-memory store seeded with synthetic records."""
    return InMemoryEntityStore(
        seed={
            FACT_MODEL: [
                {
                    "id": f"{SELFTEST_PREFIX}FACT_MODEL",
                    "category_id": SELFTEST_CATEGORY,
                    "category_label": "Prior Law Enforcement Applications",
                    "mandatory_facts": ["agency_name", "month_year", "position", "outcome"],
                    "optional_facts": ["location"],
                    "severity_facts": ["outcome"],
                    "is_ready_for_ai_probing": True,
                    "linked_pack_ids": [SELFTEST_PACK_ID],
                }
            ],
            FOLLOW_UP_PACK: [
                {
                    "id": f"{SELFTEST_PREFIX}PACK",
                    "followup_pack_id": SELFTEST_PACK_ID,
                    "pack_name": "Prior LE Applications",
                    "fact_anchors": [
                        {"key": "agency_name", "label": "agency name", "priority": 1},
                        {"key": "month_year", "label": "month and year", "priority": 2},
                        {"key": "position", "label": "position", "priority": 3},
                        {"key": "outcome", "label": "outcome", "priority": 4},
                        {"key": "location", "label": "location", "priority": 5, "required": False},
                    ],
                }
            ],
            SYSTEM_CONFIG: [
                {
                    "id": f"{SELFTEST_PREFIX}CONFIG",
                    "config_key": "global_config",
                    "config_data": {"interviewMode": "AI_PROBING", "sandboxAiProbingOnly": False},
                }
            ],
            INTERVIEW_SESSION: [
                {"id": SELFTEST_SESSION_ID, "incidents": [], "transcript_snapshot": []},
            ],
        }
    )


async def _check_registry(store: EntityStore) -> CheckResult:
    fact_model = await FactModelRegistry(store).get_fact_model_for_category(SELFTEST_CATEGORY)
    passed = fact_model is not None and bool(fact_model.mandatory_facts)
    return CheckResult(
        name="fact_model_registry",
        passed=passed,
        detail=f"mandatory={fact_model.mandatory_facts}" if fact_model else "no fact model",
    )


async def _check_fact_state(store: EntityStore) -> CheckResult:
    fact_model = await FactModelRegistry(store).get_fact_model_for_category(SELFTEST_CATEGORY)
    state = initialize_fact_state_for_category(fact_model)
    expected = set(fact_model.mandatory_facts) if fact_model else set()
    passed = (
        expected <= set(state.facts)
        and all(state.facts[key] is None for key in expected)
        and state.completion_status == CompletionStatus.INCOMPLETE
    )
    return CheckResult(name="fact_state_init", passed=passed, detail=f"keys={sorted(state.facts)}")


async def _check_pack_mapping(store: EntityStore) -> CheckResult:
    mapped = {
        pack_id: map_pack_id_to_category(pack_id)
        for pack_id in (SELFTEST_PACK_ID, "PACK_DRIVING_DUIDWI_STANDARD", "PACK_UNKNOWN_THING")
    }
    passed = mapped == {
        SELFTEST_PACK_ID: SELFTEST_CATEGORY,
        "PACK_DRIVING_DUIDWI_STANDARD": "DUI",
        "PACK_UNKNOWN_THING": None,
    }
    return CheckResult(name="pack_mapping", passed=passed, detail=str(mapped))


async def _check_clarifiers(store: EntityStore) -> CheckResult:
    pack = await FollowUpPackRepository(store).get_pack(SELFTEST_PACK_ID)
    if pack is None:
        return CheckResult(name="anchor_clarifiers", passed=False, detail="no follow-up pack")

    anchor_state = compute_anchor_state(pack, {"agency_name": "Mesa Police Department"})
    question = build_combined_clarifier(anchor_state.missing[:2]) or ""
    passed = (
        anchor_state.missing_keys[:2] == ["month_year", "position"]
        and question.endswith("?")
        and " and " in question
    )
    return CheckResult(name="anchor_clarifiers", passed=passed, detail=question)


async def _check_guardrail(store: EntityStore) -> CheckResult:
    guardrail = StyleGuardrail()
    rejected = not guardrail.validate("Can you walk me through everything that happened?").passed
    accepted = guardrail.validate("What was the name of that agency?").passed
    return CheckResult(
        name="style_guardrail",
        passed=rejected and accepted,
        detail=f"rejects_narrative={rejected}, accepts_micro={accepted}",
    )


async def _check_extraction(store: EntityStore) -> CheckResult:
    result = await RuleBasedFactExtractor().extract(
        SELFTEST_NARRATIVE, ["agency_name", "month_year", "position", "outcome"]
    )
    passed = "agency_name" in result.facts and "month_year" in result.facts
    return CheckResult(name="fact_extraction", passed=passed, detail=f"extracted={sorted(result.facts)}")


async def _check_discretion(store: EntityStore) -> CheckResult:
    orchestrator = await IncidentOrchestrator.from_store(store)
    incident = await orchestrator.open_incident(
        SELFTEST_SESSION_ID, SELFTEST_PACK_ID, f"{SELFTEST_PREFIX}Q1", instance_number=1
    )
    if incident is None:
        return CheckResult(name="discretion_termination", passed=False, detail="incident not opened")

    turn = await orchestrator.process_answer(SELFTEST_SESSION_ID, incident.incident_id, SELFTEST_NARRATIVE)
    turns = 1
    while not turn.decision.is_terminal and turns < SELFTEST_MAX_TURNS:
        turn = await orchestrator.process_answer(SELFTEST_SESSION_ID, incident.incident_id, "I don't know")
        turns += 1

    passed = (
        turn.decision.is_terminal
        and turn.decision.stop_reason is not None
        and turn.incident.narrative_summary is not None
    )
    return CheckResult(
        name="discretion_termination",
        passed=passed,
        detail=f"turns={turns}, stop_reason={turn.decision.stop_reason}",
    )


async def _check_transcript(store: EntityStore) -> CheckResult:
    ledger = TranscriptLedger(store)
    await ledger.append_welcome_message(SELFTEST_SESSION_ID)
    await ledger.append_welcome_message(SELFTEST_SESSION_ID)
    before = len(await ledger.read(SELFTEST_SESSION_ID))

    try:
        await ledger.append_assistant_message(SELFTEST_SESSION_ID, "Unlabelled message")
        contract_enforced = False
    except TranscriptContractError:
        contract_enforced = True

    transcript = await ledger.read(SELFTEST_SESSION_ID)
    report = audit_transcript(transcript)
    passed = contract_enforced and len(transcript) == before and report.passed
    return CheckResult(
        name="transcript_integrity",
        passed=passed,
        detail=(
            f"welcome={report.welcome_count}, duplicates={report.duplicate_ids}, "
            f"monotonic={report.indices_monotonic}, contract_enforced={contract_enforced}"
        ),
    )


async def _check_config(store: EntityStore) -> CheckResult:
    config = await SystemConfigService(store).load()
    return CheckResult(
        name="system_config",
        passed=config.decision_engine.max_probes_per_incident > 0,
        detail=f"interview_mode={config.interview_mode.value}",
    )


CHECKS: list[Callable[[EntityStore], Awaitable[CheckResult]]] = [
    _check_config,
    _check_registry,
    _check_fact_state,
    _check_pack_mapping,
    _check_clarifiers,
    _check_guardrail,
    _check_extraction,
    _check_transcript,
    _check_discretion,
]


async def run_self_test(store: EntityStore | None = None) -> ReadinessReport:
    """
    Run every readiness check.

    Args:
        store: Store to run against. Defaults to a fresh synthetic store.

    Returns:
        The readiness report. A check that raises is reported as failed.
    """
    store = store or build_selftest_store()
    report = ReadinessReport()

    for check in CHECKS:
        name = check.__name__.removeprefix("_check_")
        try:
            result = await check(store)
        except Exception as e:
            logger.exception(f"Self-test check {name} raised")
            result = CheckResult(name=name, passed=False, detail=f"error: {e}")
        logger.info(f"[{'PASS' if result.passed else 'FAIL'}] {result.name}: {result.detail}")
        report.checks.append(result)

    logger.info(report.summary)
    return report
