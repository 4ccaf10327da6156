"""
Fact model registry.

Loads per-category fact models from the entity store. Lookups never raise:
a missing category or a store failure is logged and treated as "no model",
which downstream means "nothing required".
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from clearquest_ide.db.store import FACT_MODEL, EntityStore, StoreError
from clearquest_ide.facts.schemas import CompletionStatus, FactModel, FactState

logger = logging.getLogger(__name__)

# Stored records may be snake_case (database) or camelCase (admin UI exports).
_FIELD_ALIASES = {
    "categoryId": "category_id",
    "categoryLabel": "category_label",
    "mandatoryFacts": "mandatory_facts",
    "optionalFacts": "optional_facts",
    "severityFacts": "severity_facts",
    "isReadyForAiProbing": "is_ready_for_ai_probing",
    "linkedPackIds": "linked_pack_ids",
}


def normalize_fact_model(record: dict[str, Any]) -> FactModel:
    """
    Convert a stored fact model record into a FactModel.

    Args:
        record: Raw record from the entity store.

    Returns:
        The normalized fact model.

    Raises:
        ValidationError: If the record has no usable category id.
    """
    data: dict[str, Any] = {}
    for key, value in record.items():
        data[_FIELD_ALIASES.get(key, key)] = value
    if not data.get("category_label"):
        data["category_label"] = data.get("category_id", "")
    return FactModel.model_validate(data)


def initialize_fact_state_for_category(fact_model: FactModel | None) -> FactState:
    """
    Build an empty fact state for a new incident.

    Every key in the union of mandatory, optional and severity facts is
    seeded with None. Without a fact model the state starts with no facts.

    Args:
        fact_model: The category's fact model, if any.

    Returns:
        A fresh, incomplete fact state.
    """
    facts: dict[str, Any] = {}
    if fact_model is not None:
        facts = {key: None for key in fact_model.all_fact_keys}
    return FactState(facts=facts, completion_status=CompletionStatus.INCOMPLETE)


class FactModelRegistry:
    """Read-only access to fact models stored in the entity store."""

    def __init__(self, store: EntityStore) -> None:
        """
        Initialize the registry.

        Args:
            store: Entity store holding FactModel records.
        """
        self._store = store

    async def get_fact_model_for_category(self, category_id: str | None) -> FactModel | None:
        """
        Get the fact model for a category.

        Args:
            category_id: Incident category identifier.

        Returns:
            The fact model, or None if absent, invalid or unreachable.
        """
        if not category_id:
            return None

        try:
            records = await self._store.filter(FACT_MODEL, category_id=category_id)
        except StoreError as e:
            logger.error(f"Failed to load fact model for {category_id}: {e}")
            return None

        if not records:
            logger.warning(f"No fact model found for category {category_id}")
            return None

        try:
            return normalize_fact_model(records[0])
        except ValidationError as e:
            logger.error(f"Invalid fact model record for {category_id}: {e}")
            return None

    async def get_all_fact_models(self) -> list[FactModel]:
        """
        Get every valid fact model.

        Returns:
            All fact models; empty if the store is unreachable.
        """
        try:
            records = await self._store.list(FACT_MODEL)
        except StoreError as e:
            logger.error(f"Failed to list fact models: {e}")
            return []

        models: list[FactModel] = []
        for record in records:
            try:
                models.append(normalize_fact_model(record))
            except ValidationError as e:
                logger.warning(f"Skipping invalid fact model record {record.get('id')}: {e}")
        return models
