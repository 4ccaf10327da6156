"""
Follow-up pack to incident category mapping.

A pack id resolves to a category through exact overrides first, then keyword
groups tested in a fixed order against the upper-cased id. Unmatched packs
map to None and stay on the legacy deterministic pack flow.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

DEFAULT_PACK_CATEGORY_OVERRIDES: dict[str, str] = {
    "PACK_PRIOR_LE_APPS_STANDARD": "PRIOR_LE_APPS",
    "PACK_INTEGRITY_APPS": "INTEGRITY_APPS",
}

# Tested in order; a pack id may contain keywords from several groups.
CATEGORY_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("DUI", ("DUI", "DWI")),
    ("DOMESTIC_VIOLENCE", ("DOMESTIC", "FAMILY_VIOLENCE")),
    ("THEFT", ("THEFT", "DISHONESTY", "STEALING")),
    ("DRUG_USE", ("DRUG", "SUBSTANCE", "MARIJUANA")),
    ("FINANCIAL", ("FINANCIAL", "DEBT", "CREDIT")),
    ("EMPLOYMENT", ("EMPLOYMENT", "TERMINATED", "WORKPLACE")),
    ("DRIVING", ("DRIVING", "TRAFFIC", "COLLISION")),
    ("CRIMINAL", ("CRIME", "ARREST", "POLICE")),
    ("PRIOR_LE_APPS", ("LE_APP", "PRIOR", "APPLICATION")),
    ("INTEGRITY_APPS", ("INTEGRITY",)),
]


class PackCategoryMapper:
    """Resolves follow-up pack ids to incident categories."""

    def __init__(
        self,
        overrides: dict[str, str] | None = None,
        keyword_groups: list[tuple[str, tuple[str, ...]]] | None = None,
    ) -> None:
        """
        Initialize the mapper.

        Args:
            overrides: Exact pack id to category overrides.
            keyword_groups: Ordered (category, keywords) rules.
        """
        self._overrides = dict(DEFAULT_PACK_CATEGORY_OVERRIDES if overrides is None else overrides)
        self._keyword_groups = CATEGORY_KEYWORDS if keyword_groups is None else keyword_groups

    def map(self, pack_id: str | None) -> str | None:
        """
        Map a pack id to a category.

        Args:
            pack_id: Follow-up pack identifier.

        Returns:
            The category id, or None when no rule matches.
        """
        if not pack_id:
            return None
        if pack_id in self._overrides:
            return self._overrides[pack_id]

        upper = pack_id.upper()
        for category_id, keywords in self._keyword_groups:
            if any(keyword in upper for keyword in keywords):
                return category_id

        logger.debug(f"No category for pack {pack_id}")
        return None


_default_mapper = PackCategoryMapper()


def map_pack_id_to_category(pack_id: str | None) -> str | None:
    """Map a pack id to a category with the default rules."""
    return _default_mapper.map(pack_id)
