"""
Tests for the stored discretion configuration.
"""

import pytest
from pydantic import ValidationError

from clearquest_ide.db.store import SYSTEM_CONFIG, InMemoryEntityStore
from clearquest_ide.facts.schemas import Severity
from clearquest_ide.policy import (
    DiscretionConfig,
    InterviewMode,
    LogVerbosity,
    SystemConfigService,
    deep_merge,
    effective_interview_mode,
    is_ai_probing_enabled,
)


def config_store(config_data: dict) -> InMemoryEntityStore:
    return InMemoryEntityStore(
        seed={SYSTEM_CONFIG: [{"config_key": "global_config", "config_data": config_data}]}
    )


class TestDeepMerge:
    """Tests for deep_merge."""

    def test_nested_dicts_merge(self) -> None:
        """Test that nested keys merge and other values replace."""
        base = {"a": {"x": 1, "y": 2}, "b": [1, 2]}
        merged = deep_merge(base, {"a": {"y": 3}, "b": [9]})

        assert merged == {"a": {"x": 1, "y": 3}, "b": [9]}
        assert base["a"]["y"] == 2


class TestSystemConfigService:
    """Tests for SystemConfigService."""

    @pytest.mark.asyncio
    async def test_defaults_without_record(self) -> None:
        """Test that a missing record yields the defaults."""
        config = await SystemConfigService(InMemoryEntityStore()).load()

        assert config.interview_mode == InterviewMode.DETERMINISTIC
        assert config.sandbox_ai_probing_only is True
        assert config.decision_engine.max_probes_per_incident == 10
        assert config.decision_engine.category_severity_defaults["DOMESTIC_VIOLENCE"] == Severity.STRICT

    @pytest.mark.asyncio
    async def test_partial_record_keeps_defaults(self) -> None:
        """Test that a stored partial config is merged over the defaults."""
        store = config_store({"decisionEngine": {"maxProbesPerIncident": 4}, "toneControl": "firm"})

        config = await SystemConfigService(store).load()

        assert config.decision_engine.max_probes_per_incident == 4
        assert config.decision_engine.max_non_substantive_responses == 3
        assert config.tone_control == "firm"
        assert "prior_apps" in config.topic_profiles

    @pytest.mark.asyncio
    async def test_legacy_v3_block(self) -> None:
        """Test that the old v3 block is folded into the current shape."""
        store = config_store(
            {"v3": {"enabled_categories": ["DUI", "THEFT"], "logging_level": "BASIC"}}
        )

        config = await SystemConfigService(store).load()

        assert config.decision_engine.enabled_categories == ["DUI", "THEFT"]
        assert config.logging.level == LogVerbosity.MINIMAL

    @pytest.mark.asyncio
    async def test_legacy_severity_names(self) -> None:
        """Test that MODERATE severity is read as STANDARD."""
        store = config_store({"decisionEngine": {"categorySeverityDefaults": {"THEFT": "MODERATE"}}})

        config = await SystemConfigService(store).load()

        assert config.decision_engine.category_severity_defaults["THEFT"] == Severity.STANDARD

    @pytest.mark.asyncio
    async def test_invalid_record_falls_back_to_defaults(self) -> None:
        """Test that an unreadable stored config does not break loading."""
        store = config_store({"decisionEngine": {"maxProbesPerIncident": -1}})

        config = await SystemConfigService(store).load()

        assert config.decision_engine.max_probes_per_incident == 10

    @pytest.mark.asyncio
    async def test_update_creates_then_merges(self) -> None:
        """Test that updates create the record and deep-merge later changes."""
        store = InMemoryEntityStore()
        service = SystemConfigService(store)

        await service.update({"interviewMode": "AI_PROBING"})
        updated = await service.update({"decisionEngine": {"enabledCategories": ["DUI"]}})

        records = await store.list(SYSTEM_CONFIG)
        assert len(records) == 1
        assert records[0]["config_data"]["interviewMode"] == "AI_PROBING"
        assert updated.interview_mode == InterviewMode.AI_PROBING
        assert updated.decision_engine.enabled_categories == ["DUI"]
        assert updated.decision_engine.max_probes_per_incident == 10

    @pytest.mark.asyncio
    async def test_invalid_update_is_rejected(self) -> None:
        """Test that an invalid partial raises and stores nothing."""
        store = InMemoryEntityStore()

        with pytest.raises(ValidationError):
            await SystemConfigService(store).update({"interviewMode": "SOMETIMES"})

        assert await store.list(SYSTEM_CONFIG) == []

    @pytest.mark.asyncio
    async def test_get_value(self) -> None:
        """Test dotted path lookups."""
        service = SystemConfigService(config_store({"decisionEngine": {"maxProbesPerIncident": 6}}))

        assert await service.get_value("decisionEngine.maxProbesPerIncident") == 6
        assert await service.get_value("decisionEngine.nope", "fallback") == "fallback"


class TestInterviewMode:
    """Tests for effective_interview_mode."""

    def test_sandbox_restriction(self) -> None:
        """Test that sandbox-only probing is deterministic in production."""
        config = DiscretionConfig(interview_mode=InterviewMode.AI_PROBING)

        assert effective_interview_mode(config) == InterviewMode.DETERMINISTIC
        assert effective_interview_mode(config, is_sandbox=True) == InterviewMode.AI_PROBING
        assert is_ai_probing_enabled(config) is False

    def test_department_override_wins(self) -> None:
        """Test that a department override beats the sandbox restriction."""
        config = DiscretionConfig(
            interview_mode=InterviewMode.DETERMINISTIC,
            interview_mode_overrides_by_department={"MESA": InterviewMode.HYBRID},
        )

        assert effective_interview_mode(config, department_code="MESA") == InterviewMode.HYBRID
        assert is_ai_probing_enabled(config, department_code="MESA") is True
        assert is_ai_probing_enabled(config, department_code="TEMPE") is False
