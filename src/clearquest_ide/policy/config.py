"""
Admin-editable discretion configuration.

The configuration is stored as camelCase JSON (the shape the admin panels
save) and validated into typed pydantic models. It is loaded once per request
or session and passed explicitly to the engine components.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from clearquest_ide.facts.schemas import Severity


class InterviewMode(str, Enum):
    """How follow-up questioning is driven."""

    DETERMINISTIC = "DETERMINISTIC"
    AI_PROBING = "AI_PROBING"
    HYBRID = "HYBRID"


class FallbackBehavior(str, Enum):
    """What happens to an incident when extraction or probing fails."""

    DETERMINISTIC_FALLBACK = "DETERMINISTIC_FALLBACK"
    FLAG_AND_SKIP = "FLAG_AND_SKIP"


class Tone(str, Enum):
    """Clarifier tone."""

    SOFT = "soft"
    NEUTRAL = "neutral"
    FIRM = "firm"


class LogVerbosity(str, Enum):
    """Decision trace verbosity."""

    NONE = "NONE"
    MINIMAL = "MINIMAL"
    STANDARD = "STANDARD"

    @classmethod
    def normalize(cls, value: Any) -> LogVerbosity:
        """Map legacy level names onto the unified enum."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper()
        legacy = {
            "BASIC": cls.MINIMAL,
            "TRACE": cls.STANDARD,
            "VERBOSE": cls.STANDARD,
            "DEBUG": cls.STANDARD,
            "OFF": cls.NONE,
            "": cls.NONE,
        }
        if text in legacy:
            return legacy[text]
        return cls(text)


class VagueDetectionMode(str, Enum):
    """How non-substantive answers are recognised."""

    TOKENS = "TOKENS"
    MIN_LENGTH = "MIN_LENGTH"
    EITHER = "EITHER"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


DEFAULT_CATEGORY_SEVERITY = {
    "DUI": Severity.STANDARD,
    "DOMESTIC_VIOLENCE": Severity.STRICT,
    "THEFT": Severity.LAXED,
    "DRUG_USE": Severity.STANDARD,
    "FINANCIAL": Severity.LAXED,
    "EMPLOYMENT": Severity.LAXED,
}

DEFAULT_VAGUE_TOKENS = [
    "i don't recall",
    "i dont recall",
    "i don't know",
    "i dont know",
    "don't know",
    "dont know",
    "not sure",
    "unsure",
    "unknown",
    "can't remember",
    "cant remember",
    "can't recall",
    "cant recall",
    "no idea",
    "idk",
    "forgot",
    "prefer not to say",
    "n/a",
]


class DecisionEngineSettings(_CamelModel):
    """Stop conditions and per-category defaults."""

    max_probes_per_incident: int = Field(default=10, ge=0, description="Hard probe budget per incident")
    max_non_substantive_responses: int = Field(
        default=3,
        ge=1,
        description="Vague answers tolerated before probing stops",
    )
    stop_when_mandatory_facts_complete: bool = Field(default=True)
    fallback_behavior_on_error: FallbackBehavior = Field(default=FallbackBehavior.DETERMINISTIC_FALLBACK)
    category_severity_defaults: dict[str, Severity] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_SEVERITY),
    )
    enabled_categories: list[str] = Field(
        default_factory=list,
        description="Categories AI probing may run for; empty means every ready category",
    )

    @field_validator("category_severity_defaults", mode="before")
    @classmethod
    def _normalize_severities(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        normalized = {key: Severity.normalize(raw) for key, raw in value.items()}
        return {key: sev for key, sev in normalized.items() if sev is not None}


class DiscretionSettings(_CamelModel):
    """Global discretion defaults and severity tier switches."""

    default_max_probes: int = Field(default=3, ge=0)
    default_max_followups: int = Field(default=2, ge=0)
    enable_strict_severity: bool = True
    enable_laxed_severity: bool = True
    enable_probe_budgeting: bool = True


class TopicProfile(_CamelModel):
    """Per-topic tone and severity profile."""

    default_tone: Tone = Tone.NEUTRAL
    severity_profile: Severity | None = None
    default_max_probes: int | None = Field(default=None, ge=0)

    @field_validator("severity_profile", mode="before")
    @classmethod
    def _normalize_severity(cls, value: Any) -> Severity | None:
        return Severity.normalize(value)


def _default_topic_profiles() -> dict[str, TopicProfile]:
    return {
        "honesty_integrity": TopicProfile(default_tone=Tone.FIRM, severity_profile=Severity.STRICT),
        "violence_dv": TopicProfile(default_tone=Tone.SOFT, severity_profile=Severity.STANDARD),
        "dui_drugs": TopicProfile(default_tone=Tone.NEUTRAL, severity_profile=Severity.STANDARD),
        "prior_apps": TopicProfile(default_tone=Tone.NEUTRAL, severity_profile=Severity.LAXED),
    }


class ClarifierStrategy(_CamelModel):
    """Which clarifier shapes may be used and how often."""

    allow_combined_clarifier: bool = True
    allow_micro_clarifier: bool = True
    max_combined_clarifiers_per_instance: int = Field(default=1, ge=0)
    max_micro_clarifiers_per_instance: int = Field(default=2, ge=0)
    max_anchors_per_combined_clarifier: int = Field(default=3, ge=2)


class ClarifierGuardrails(_CamelModel):
    """Style rules every clarifier must pass before it is shown."""

    enable_style_guardrail: bool = True
    max_clarifier_words: int = Field(default=25, ge=1)
    max_clarifier_chars: int = Field(default=200, ge=1)
    forbid_narrative_requests: bool = True
    forbid_walk_me_through: bool = True
    forbid_emotional_prompts: bool = True
    forbid_shaming_language: bool = True
    forbid_multiple_questions: bool = True


class VagueAnswerDetection(_CamelModel):
    """Non-substantive answer detection."""

    mode: VagueDetectionMode = VagueDetectionMode.TOKENS
    vague_tokens: list[str] = Field(default_factory=lambda: list(DEFAULT_VAGUE_TOKENS))
    min_substantive_chars: int = Field(default=5, ge=0)


class SeverityRules(_CamelModel):
    """Keywords in severity facts that move an incident off its default tier."""

    strict_keywords: list[str] = Field(
        default_factory=lambda: [
            "injury",
            "injured",
            "hospital",
            "weapon",
            "gun",
            "knife",
            "felony",
            "arrested",
            "convicted",
            "child",
            "terminated",
            "fired",
            "falsified",
            "lied",
        ]
    )
    laxed_keywords: list[str] = Field(
        default_factory=lambda: [
            "warning",
            "juvenile",
            "dismissed",
            "expunged",
            "no charges",
            "citation",
        ]
    )


class DecisionLoggingSettings(_CamelModel):
    """Decision trace logging."""

    decision_logging_enabled: bool = True
    level: LogVerbosity = LogVerbosity.STANDARD

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> LogVerbosity:
        return LogVerbosity.normalize(value)

    @property
    def effective_level(self) -> LogVerbosity:
        """The verbosity actually in force."""
        return self.level if self.decision_logging_enabled else LogVerbosity.NONE


class DiscretionConfig(_CamelModel):
    """Complete discretion configuration."""

    interview_mode: InterviewMode = InterviewMode.DETERMINISTIC
    sandbox_ai_probing_only: bool = True
    interview_mode_overrides_by_department: dict[str, InterviewMode] = Field(default_factory=dict)
    decision_engine: DecisionEngineSettings = Field(default_factory=DecisionEngineSettings)
    discretion: DiscretionSettings = Field(default_factory=DiscretionSettings)
    topic_profiles: dict[str, TopicProfile] = Field(default_factory=_default_topic_profiles)
    tone_control: Tone | None = Field(
        default=None,
        description="Global tone override; topic profiles apply when unset",
    )
    clarifier_strategy: ClarifierStrategy = Field(default_factory=ClarifierStrategy)
    clarifier_guardrails: ClarifierGuardrails = Field(default_factory=ClarifierGuardrails)
    vague_answer_detection: VagueAnswerDetection = Field(default_factory=VagueAnswerDetection)
    severity_rules: SeverityRules = Field(default_factory=SeverityRules)
    logging: DecisionLoggingSettings = Field(default_factory=DecisionLoggingSettings)

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_v3_block(cls, data: Any) -> Any:
        return cls.migrate_legacy(data)

    @staticmethod
    def migrate_legacy(data: Any) -> Any:
        """Fold the separate "v3" block older records carry into the current shape."""
        if not isinstance(data, dict) or not isinstance(data.get("v3"), dict):
            return data
        data = dict(data)
        v3 = data.pop("v3")
        engine = dict(data.get("decisionEngine") or data.get("decision_engine") or {})
        if v3.get("enabled_categories") and not engine.get("enabledCategories"):
            engine["enabledCategories"] = v3["enabled_categories"]
        data.pop("decision_engine", None)
        data["decisionEngine"] = engine
        if "logging_level" in v3:
            logging_block = dict(data.get("logging") or {})
            logging_block.setdefault("level", v3["logging_level"])
            data["logging"] = logging_block
        return data

    def topic_profile(self, topic: str | None) -> TopicProfile | None:
        """Get the profile for a pack topic, if configured."""
        if topic is None:
            return None
        return self.topic_profiles.get(topic)

    def to_storage(self) -> dict[str, Any]:
        """Serialize in the camelCase shape stored in SystemConfig.config_data."""
        return self.model_dump(mode="json", by_alias=True)
