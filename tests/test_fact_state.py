"""
Tests for fact models, fact state and incidents.
"""

import pytest

from clearquest_ide.db.store import FACT_MODEL, InMemoryEntityStore
from clearquest_ide.extraction.base import ExtractionContext, ExtractionError, ExtractionResult, FactExtractor
from clearquest_ide.facts import (
    CompletionStatus,
    FactModel,
    FactModelRegistry,
    FactState,
    Severity,
    add_or_update_incident,
    calculate_completion_percent,
    create_incident,
    finalize_incident,
    find_incident_by_id,
    get_missing_facts,
    get_session_incidents,
    initialize_fact_state_for_category,
    is_mandatory_facts_complete,
    update_fact_state_from_answer,
)


class StaticExtractor(FactExtractor):
    """Extractor returning fixed facts and recording what it was asked."""

    def __init__(self, facts: dict[str, str]) -> None:
        self.facts = facts
        self.requested: list[str] = []

    async def extract(self, answer_text, fact_keys, context: ExtractionContext | None = None) -> ExtractionResult:
        self.requested = list(fact_keys)
        found = {key: value for key, value in self.facts.items() if key in fact_keys}
        return ExtractionResult(facts=found, missing=[k for k in fact_keys if k not in found])


class FailingExtractor(FactExtractor):
    async def extract(self, answer_text, fact_keys, context=None) -> ExtractionResult:
        raise ExtractionError("model unavailable")


class TestCompletion:
    """Tests for completion helpers."""

    @pytest.fixture
    def date_location_model(self) -> FactModel:
        """Model requiring a date and a location."""
        return FactModel(category_id="DRIVING", mandatory_facts=["date", "location"])

    def test_full_mandatory_completion(self, date_location_model: FactModel) -> None:
        """Test that all mandatory facts present means 100% complete."""
        state = FactState(facts={"date": "2019-02-01", "location": "Casa Grande, AZ"})

        assert is_mandatory_facts_complete(date_location_model, state) is True
        assert calculate_completion_percent(date_location_model, state) == 100

    def test_partial_completion(self, date_location_model: FactModel) -> None:
        """Test that one of two mandatory facts is 50% complete."""
        state = FactState(facts={"date": "2019-02-01", "location": None})

        assert get_missing_facts(date_location_model, state) == ["location"]
        assert calculate_completion_percent(date_location_model, state) == 50
        assert is_mandatory_facts_complete(date_location_model, state) is False

    def test_blank_string_counts_as_missing(self, date_location_model: FactModel) -> None:
        """Test that whitespace values are not collected facts."""
        state = FactState(facts={"date": "  ", "location": "Mesa, AZ"})
        assert get_missing_facts(date_location_model, state) == ["date"]

    def test_no_model_means_nothing_required(self) -> None:
        """Test that a missing fact model requires nothing."""
        assert get_missing_facts(None, FactState()) == []
        assert calculate_completion_percent(None, None) == 100
        assert is_mandatory_facts_complete(None, None) is True

    def test_no_state_means_everything_missing(self, date_location_model: FactModel) -> None:
        """Test that a missing fact state lacks every mandatory fact."""
        assert get_missing_facts(date_location_model, None) == ["date", "location"]


class TestFactStateInitialization:
    """Tests for seeding fact state from a model."""

    def test_seeds_every_fact_key(self, prior_apps_model: FactModel) -> None:
        """Test that mandatory, optional and severity keys start as None."""
        state = initialize_fact_state_for_category(prior_apps_model)

        assert state.facts == {
            "agency_name": None,
            "month_year": None,
            "position": None,
            "outcome": None,
            "location": None,
        }
        assert state.completion_status == CompletionStatus.INCOMPLETE
        assert state.probe_count == 0

    def test_without_model(self) -> None:
        """Test that no model gives an empty state."""
        assert initialize_fact_state_for_category(None).facts == {}

    def test_legacy_severity_values_normalize(self) -> None:
        """Test that stored MODERATE severity reads as STANDARD."""
        assert FactState(severity="moderate").severity == Severity.STANDARD
        assert FactState(severity="bogus").severity is None


class TestIncidents:
    """Tests for incident creation and session helpers."""

    def test_create_incident(self, prior_apps_model: FactModel) -> None:
        """Test incident ids and initial state."""
        incident = create_incident(
            "PRIOR_LE_APPS", "Q012", question_id="q-12", instance_number=2, fact_model=prior_apps_model
        )

        assert incident.incident_id.startswith("incident_PRIOR_LE_APPS_Q012_2_")
        assert incident.instance_number == 2
        assert set(incident.fact_state.facts) == set(prior_apps_model.all_fact_keys)

    def test_incident_ids_are_unique(self) -> None:
        """Test that back-to-back incidents get distinct ids."""
        ids = {create_incident("DUI", "Q1").incident_id for _ in range(20)}
        assert len(ids) == 20

    def test_add_or_update_incident(self) -> None:
        """Test inserting and then replacing an incident on a session."""
        session = {"id": "s1", "incidents": []}
        incident = create_incident("DUI", "Q1")

        session["incidents"] = add_or_update_incident(session, incident)
        assert len(session["incidents"]) == 1

        incident.fact_state.probe_count = 2
        session["incidents"] = add_or_update_incident(session, incident)
        assert len(session["incidents"]) == 1

        found = find_incident_by_id(session, incident.incident_id)
        assert found is not None
        assert found.fact_state.probe_count == 2

    def test_get_session_incidents_by_category(self) -> None:
        """Test filtering a session's incidents by category."""
        session: dict = {"incidents": []}
        for category in ("DUI", "THEFT", "DUI"):
            session["incidents"] = add_or_update_incident(session, create_incident(category, "Q1"))

        assert len(get_session_incidents(session)) == 3
        assert len(get_session_incidents(session, "DUI")) == 2
        assert find_incident_by_id(session, "missing") is None


class TestFinalizeIncident:
    """Tests for finalize_incident."""

    def test_long_opener_is_trimmed(self) -> None:
        """Test that a detailed incident quotes the opener up to 200 characters."""
        incident = create_incident("PRIOR_LE_APPS", "Q010")
        opener = "I applied to Tempe Police Department. " * 10

        finalize_incident(incident, opener, ["March 2022", "Detention Officer"])

        assert incident.narrative_summary == f"PRIOR LE APPS: {opener.strip()[:200]}..."
        assert incident.summary_bullets == [
            "Category: PRIOR LE APPS",
            f"Incident ID: {incident.incident_id}",
            "Details collected by fact-model probing",
            "2 probing exchange(s) recorded",
        ]

    def test_short_answers_get_one_line(self) -> None:
        """Test that little detail yields a short summary with the category label."""
        incident = create_incident("DUI", "Q020")

        finalize_incident(incident, "Yes, once.", ["2019"], category_label="Driving Under the Influence")

        assert incident.narrative_summary == "Driving Under the Influence: Details recorded."
        assert incident.summary_bullets == ["Category: Driving Under the Influence"]

    def test_nothing_said(self) -> None:
        """Test the summary when no answers were recorded."""
        incident = create_incident("DUI", "Q020")

        finalize_incident(incident, None)

        assert incident.narrative_summary == "Incident recorded. No additional details provided."
        assert incident.summary_bullets == []


class TestUpdateFactStateFromAnswer:
    """Tests for merging extracted facts."""

    @pytest.mark.asyncio
    async def test_merges_known_keys_only(self, prior_apps_model: FactModel) -> None:
        """Test that unknown keys are ignored and the input is not mutated."""
        state = initialize_fact_state_for_category(prior_apps_model)
        extractor = StaticExtractor({"agency_name": "Mesa Police Department", "shoe_size": "10"})

        updated = await update_fact_state_from_answer(state, prior_apps_model, "answer", extractor)

        assert updated.facts["agency_name"] == "Mesa Police Department"
        assert "shoe_size" not in updated.facts
        assert state.facts["agency_name"] is None

    @pytest.mark.asyncio
    async def test_never_overwrites_collected_value(self, prior_apps_model: FactModel) -> None:
        """Test that collected facts are not requested or replaced."""
        state = initialize_fact_state_for_category(prior_apps_model)
        state.facts["agency_name"] = "Mesa Police Department"
        extractor = StaticExtractor({"agency_name": "Tempe PD"})

        updated = await update_fact_state_from_answer(state, prior_apps_model, "answer", extractor)

        assert updated.facts["agency_name"] == "Mesa Police Department"
        assert "agency_name" not in extractor.requested

    @pytest.mark.asyncio
    async def test_completion_and_default_severity(self, prior_apps_model: FactModel) -> None:
        """Test that a complete answer completes the state and sets severity."""
        state = initialize_fact_state_for_category(prior_apps_model)
        extractor = StaticExtractor(
            {
                "agency_name": "Mesa Police Department",
                "month_year": "March 2022",
                "position": "Police Officer Recruit",
                "outcome": "not selected",
            }
        )

        updated = await update_fact_state_from_answer(state, prior_apps_model, "answer", extractor)

        assert updated.completion_status == CompletionStatus.COMPLETE
        assert updated.severity == Severity.STANDARD

    @pytest.mark.asyncio
    async def test_severity_resolver_is_used(self, prior_apps_model: FactModel) -> None:
        """Test that the resolver decides severity once severity facts are in."""
        state = initialize_fact_state_for_category(prior_apps_model)
        extractor = StaticExtractor({"outcome": "disqualified"})

        updated = await update_fact_state_from_answer(
            state, prior_apps_model, "answer", extractor, severity_resolver=lambda m, s: Severity.STRICT
        )

        assert updated.severity == Severity.STRICT

    @pytest.mark.asyncio
    async def test_extraction_error_propagates(self, prior_apps_model: FactModel) -> None:
        """Test that extractor failures reach the caller."""
        state = initialize_fact_state_for_category(prior_apps_model)
        with pytest.raises(ExtractionError):
            await update_fact_state_from_answer(state, prior_apps_model, "answer", FailingExtractor())


class TestFactModelRegistry:
    """Tests for loading fact models from the store."""

    @pytest.mark.asyncio
    async def test_camel_case_records(self) -> None:
        """Test that admin-exported camelCase keys are understood."""
        store = InMemoryEntityStore(
            seed={
                FACT_MODEL: [
                    {
                        "category_id": "THEFT",
                        "mandatoryFacts": ["date", "amount"],
                        "isReadyForAiProbing": True,
                    }
                ]
            }
        )

        fact_model = await FactModelRegistry(store).get_fact_model_for_category("THEFT")

        assert fact_model is not None
        assert fact_model.mandatory_facts == ["date", "amount"]
        assert fact_model.category_label == "THEFT"
        assert fact_model.is_ready_for_ai_probing is True

    @pytest.mark.asyncio
    async def test_missing_category(self) -> None:
        """Test that an unknown category yields None."""
        registry = FactModelRegistry(InMemoryEntityStore())
        assert await registry.get_fact_model_for_category("DUI") is None
        assert await registry.get_fact_model_for_category(None) is None
