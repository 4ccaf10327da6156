"""
Policy module.

The admin-editable discretion configuration and the service that stores it.
"""

from clearquest_ide.policy.config import (
    ClarifierGuardrails,
    ClarifierStrategy,
    DecisionEngineSettings,
    DecisionLoggingSettings,
    DiscretionConfig,
    DiscretionSettings,
    FallbackBehavior,
    InterviewMode,
    LogVerbosity,
    SeverityRules,
    Tone,
    TopicProfile,
    VagueAnswerDetection,
    VagueDetectionMode,
)
from clearquest_ide.policy.system_config import (
    SystemConfigService,
    deep_merge,
    effective_interview_mode,
    is_ai_probing_enabled,
)

__all__ = [
    "ClarifierGuardrails",
    "ClarifierStrategy",
    "DecisionEngineSettings",
    "DecisionLoggingSettings",
    "DiscretionConfig",
    "DiscretionSettings",
    "FallbackBehavior",
    "InterviewMode",
    "LogVerbosity",
    "SeverityRules",
    "SystemConfigService",
    "Tone",
    "TopicProfile",
    "VagueAnswerDetection",
    "VagueDetectionMode",
    "deep_merge",
    "effective_interview_mode",
    "is_ai_probing_enabled",
]
