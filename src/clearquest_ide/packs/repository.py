"""
Follow-up pack lookups.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from clearquest_ide.db.store import FOLLOW_UP_PACK, EntityStore, StoreError
from clearquest_ide.facts.schemas import FollowUpPack

logger = logging.getLogger(__name__)


class FollowUpPackRepository:
    """Loads follow-up packs and their fact anchors from the entity store."""

    def __init__(self, store: EntityStore) -> None:
        """
        Initialize the repository.

        Args:
            store: Entity store holding FollowUpPack records.
        """
        self._store = store

    async def get_pack(self, pack_id: str | None) -> FollowUpPack | None:
        """
        Get a pack by its pack id.

        A missing pack, an invalid record or a store failure all return
        None, meaning "no anchors to ask about".

        Args:
            pack_id: Follow-up pack identifier.

        Returns:
            The pack, or None.
        """
        if not pack_id:
            return None

        try:
            records = await self._store.filter(FOLLOW_UP_PACK, followup_pack_id=pack_id)
        except StoreError as e:
            logger.error(f"Failed to load follow-up pack {pack_id}: {e}")
            return None

        if not records:
            logger.debug(f"No follow-up pack record for {pack_id}")
            return None

        try:
            return FollowUpPack.model_validate(records[0])
        except ValidationError as e:
            logger.error(f"Invalid follow-up pack record {pack_id}: {e}")
            return None
