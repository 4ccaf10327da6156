"""
Orchestrator module for opening incidents and running probe turns.
"""

from clearquest_ide.orchestrator.incident_orchestrator import IncidentOrchestrator, with_pack_anchors
from clearquest_ide.orchestrator.schemas import ProbeTurnResult

__all__ = [
    "IncidentOrchestrator",
    "ProbeTurnResult",
    "with_pack_anchors",
]
