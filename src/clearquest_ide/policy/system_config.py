"""
System configuration service.

Loads and saves the global DiscretionConfig held in the SystemConfig entity
and answers interview-mode questions for a given context.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from pydantic import ValidationError

from clearquest_ide.db.store import SYSTEM_CONFIG, EntityStore, StoreError
from clearquest_ide.policy.config import DiscretionConfig, InterviewMode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_KEY = "global_config"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Recursively merge `override` into a copy of `base`.

    Nested dicts are merged key by key; any other value in `override`
    replaces the one in `base`.
    """
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


class SystemConfigService:
    """Reads and writes the stored discretion configuration."""

    def __init__(self, store: EntityStore, config_key: str = DEFAULT_CONFIG_KEY) -> None:
        """
        Initialize the service.

        Args:
            store: Entity store holding SystemConfig records.
            config_key: config_key of the record to use.
        """
        self._store = store
        self._config_key = config_key

    async def _find_record(self) -> dict[str, Any] | None:
        records = await self._store.filter(SYSTEM_CONFIG, config_key=self._config_key)
        return records[0] if records else None

    async def load(self) -> DiscretionConfig:
        """
        Load the configuration, filling anything unset from the defaults.

        Store failures and invalid records fall back to the defaults.

        Returns:
            The effective configuration.
        """
        defaults = DiscretionConfig().to_storage()

        try:
            record = await self._find_record()
        except StoreError as e:
            logger.error(f"Failed to load system config '{self._config_key}': {e}")
            return DiscretionConfig()

        if record is None:
            logger.info(f"No system config '{self._config_key}' stored, using defaults")
            return DiscretionConfig()

        stored = DiscretionConfig.migrate_legacy(record.get("config_data") or {})
        try:
            return DiscretionConfig.model_validate(deep_merge(defaults, stored))
        except ValidationError as e:
            logger.error(f"Invalid system config '{self._config_key}', using defaults: {e}")
            return DiscretionConfig()

    async def update(self, partial: dict[str, Any]) -> DiscretionConfig:
        """
        Deep-merge a partial camelCase config into the stored one and save it.

        The record is created if it does not exist yet.

        Args:
            partial: Fields to change.

        Returns:
            The saved configuration.

        Raises:
            ValidationError: If the merged configuration is invalid.
            StoreError: If the store write fails.
        """
        current = (await self.load()).to_storage()
        merged = DiscretionConfig.model_validate(deep_merge(current, partial))
        config_data = merged.to_storage()

        record = await self._find_record()
        if record is None:
            await self._store.create(
                SYSTEM_CONFIG,
                {"config_key": self._config_key, "config_data": config_data},
            )
            logger.info(f"Created system config '{self._config_key}'")
        else:
            await self._store.update(SYSTEM_CONFIG, record["id"], {"config_data": config_data})
            logger.info(f"Updated system config '{self._config_key}'")
        return merged

    async def get_value(self, path: str, default: Any = None) -> Any:
        """
        Read one value by dotted camelCase path, e.g. "decisionEngine.maxProbesPerIncident".
        """
        node: Any = (await self.load()).to_storage()
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node


def effective_interview_mode(
    config: DiscretionConfig,
    is_sandbox: bool = False,
    department_code: str | None = None,
) -> InterviewMode:
    """
    Resolve the interview mode for a context.

    A department override wins. Otherwise, when AI probing is restricted to
    the sandbox, production interviews run deterministically.
    """
    if department_code and department_code in config.interview_mode_overrides_by_department:
        return config.interview_mode_overrides_by_department[department_code]
    if config.sandbox_ai_probing_only and not is_sandbox:
        return InterviewMode.DETERMINISTIC
    return config.interview_mode


def is_ai_probing_enabled(
    config: DiscretionConfig,
    is_sandbox: bool = False,
    department_code: str | None = None,
) -> bool:
    """Whether AI probing runs in this context."""
    return effective_interview_mode(config, is_sandbox, department_code) in (
        InterviewMode.AI_PROBING,
        InterviewMode.HYBRID,
    )
