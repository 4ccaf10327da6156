"""
Anchor state and pack topics.
"""

from __future__ import annotations

from typing import Any

from clearquest_ide.facts.schemas import AnchorState, FollowUpPack
from clearquest_ide.facts.state import is_empty_value

PACK_TOPICS: dict[str, str] = {
    "PACK_PRIOR_LE_APPS_STANDARD": "prior_apps",
    "PACK_LE_APPS": "prior_apps",
    "PACK_INTEGRITY_APPS": "honesty_integrity",
    "PACK_DOMESTIC_VIOLENCE_STANDARD": "violence_dv",
    "PACK_ASSAULT_STANDARD": "violence_dv",
    "PACK_CHILD_ABUSE_STANDARD": "violence_dv",
    "PACK_DRIVING_DUIDWI_STANDARD": "dui_drugs",
    "PACK_DRUG_USE_STANDARD": "dui_drugs",
    "PACK_DRUG_SALE_STANDARD": "dui_drugs",
    "PACK_PRESCRIPTION_MISUSE_STANDARD": "dui_drugs",
    "PACK_ALCOHOL_STANDARD": "dui_drugs",
    "PACK_DRIVING_COLLISION_STANDARD": "driving",
    "PACK_DRIVING_VIOLATIONS_STANDARD": "driving",
    "PACK_DRIVING_STANDARD": "driving",
}

GENERAL_TOPIC = "general"


def get_pack_topic(pack_id: str | None) -> str:
    """Get the topic a pack belongs to; unknown packs are "general"."""
    if not pack_id:
        return GENERAL_TOPIC
    return PACK_TOPICS.get(pack_id, GENERAL_TOPIC)


def compute_anchor_state(pack: FollowUpPack | None, values: dict[str, Any] | None) -> AnchorState:
    """
    Split a pack's anchors into collected and missing.

    Args:
        pack: Follow-up pack with its fact anchors.
        values: Values collected so far for this incident instance.

    Returns:
        Anchor state with anchors and missing anchors sorted by ascending
        priority. Ties keep declaration order.
    """
    if pack is None:
        return AnchorState()

    values = values or {}
    anchors = sorted(pack.fact_anchors, key=lambda anchor: anchor.priority)
    collected: dict[str, Any] = {}
    missing = []
    for anchor in anchors:
        value = values.get(anchor.key)
        if is_empty_value(value):
            missing.append(anchor)
        else:
            collected[anchor.key] = value
    return AnchorState(anchors=anchors, collected=collected, missing=missing)
