"""
Discretion module.

Continue/stop policy for incident probing, non-substantive answer detection
and decision trace logging.
"""

from clearquest_ide.discretion.engine import (
    STOP_REASON_BUDGET,
    STOP_REASON_COMPLETE,
    STOP_REASON_ERROR_FALLBACK,
    STOP_REASON_ERROR_SKIPPED,
    STOP_REASON_NON_SUBSTANTIVE,
    STOP_REASON_NO_ANCHORS,
    DiscretionAction,
    DiscretionDecision,
    DiscretionEngine,
)
from clearquest_ide.discretion.trace import DecisionTrace, DecisionTraceLogger, TraceAction
from clearquest_ide.discretion.vague import VagueAnswerDetector

__all__ = [
    "STOP_REASON_BUDGET",
    "STOP_REASON_COMPLETE",
    "STOP_REASON_ERROR_FALLBACK",
    "STOP_REASON_ERROR_SKIPPED",
    "STOP_REASON_NON_SUBSTANTIVE",
    "STOP_REASON_NO_ANCHORS",
    "DecisionTrace",
    "DecisionTraceLogger",
    "DiscretionAction",
    "DiscretionDecision",
    "DiscretionEngine",
    "TraceAction",
    "VagueAnswerDetector",
]
