"""
Packs module.

Follow-up pack lookups and pack-to-category mapping.
"""

from clearquest_ide.packs.category_mapping import (
    CATEGORY_KEYWORDS,
    DEFAULT_PACK_CATEGORY_OVERRIDES,
    PackCategoryMapper,
    map_pack_id_to_category,
)
from clearquest_ide.packs.repository import FollowUpPackRepository

__all__ = [
    "CATEGORY_KEYWORDS",
    "DEFAULT_PACK_CATEGORY_OVERRIDES",
    "FollowUpPackRepository",
    "PackCategoryMapper",
    "map_pack_id_to_category",
]
