"""
Configuration loading with layered merging.

Implements the precedence chain:
    defaults < persisted config blob < env vars

The persisted layer lives in the key-value store under ``config`` and is
only ever changed through :meth:`ConfigManager.update`, which re-persists it
immediately. Environment overrides are applied on top at load time and are
never written back.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from pydantic import ValidationError

from speakersync.core.config.models import SyncConfig
from speakersync.core.exceptions import ConfigError
from speakersync.core.storage import KeyValueStore, Keys

logger = logging.getLogger(__name__)

ENV_TOKEN = "SPEAKERSYNC_TOKEN"
ENV_DOCUMENT_ID = "SPEAKERSYNC_DOCUMENT_ID"
ENV_STRATEGY = "SPEAKERSYNC_STRATEGY"
ENV_SYNC_INTERVAL = "SPEAKERSYNC_SYNC_INTERVAL"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`. Nested dicts
    are merged, not replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 30}})
        {'a': 1, 'b': {'x': 10, 'y': 30}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def get_default_config() -> dict[str, Any]:
    """Hardcoded defaults, as a plain dictionary."""
    return SyncConfig().model_dump(mode="json")


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        SPEAKERSYNC_TOKEN - overrides token
        SPEAKERSYNC_DOCUMENT_ID - overrides document_id
        SPEAKERSYNC_STRATEGY - overrides conflict_resolution_strategy
        SPEAKERSYNC_SYNC_INTERVAL - overrides auto_sync_interval (seconds)
    """
    result = config_dict.copy()

    if token := os.environ.get(ENV_TOKEN):
        result["token"] = token

    if document_id := os.environ.get(ENV_DOCUMENT_ID):
        result["document_id"] = document_id

    if strategy := os.environ.get(ENV_STRATEGY):
        result["conflict_resolution_strategy"] = strategy.strip().lower()

    if interval_str := os.environ.get(ENV_SYNC_INTERVAL):
        try:
            result["auto_sync_interval"] = float(interval_str)
        except ValueError:
            logger.warning("Invalid %s value '%s', ignoring", ENV_SYNC_INTERVAL, interval_str)

    return result


class ConfigManager:
    """
    Owns the sync configuration for one runtime.

    Example:
        >>> manager = ConfigManager(store)
        >>> manager.load().is_configured()
        False
        >>> manager.update(token="ghp_...", document_id="abc123").is_configured()
        True
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self._stored: dict[str, Any] = {}
        self._config: SyncConfig | None = None

    @property
    def config(self) -> SyncConfig:
        """The loaded configuration (loads on first access)."""
        if self._config is None:
            return self.load()
        return self._config

    def is_configured(self) -> bool:
        return self.config.is_configured()

    def _read_stored(self) -> dict[str, Any]:
        raw = self.store.get(Keys.CONFIG)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Failed to load sync config: %s", e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring sync config blob that is not an object")
            return {}
        return data

    def _build(self, stored: dict[str, Any]) -> SyncConfig:
        merged = apply_env_overrides(deep_merge(get_default_config(), stored))
        return SyncConfig.model_validate(merged)

    def load(self) -> SyncConfig:
        """
        Load the configuration from the store and environment.

        A persisted blob that fails validation is ignored with a warning so a
        bad write can never stop the application from starting.
        """
        self._stored = self._read_stored()
        try:
            self._config = self._build(self._stored)
        except ValidationError as e:
            logger.warning("Persisted sync config is invalid, using defaults: %s", e)
            self._stored = {}
            try:
                self._config = self._build({})
            except ValidationError as env_error:
                raise ConfigError(f"Invalid configuration in environment: {env_error}") from env_error
        return self._config

    def update(self, **changes: Any) -> SyncConfig:
        """
        Apply changes, persist them, and return the new configuration.

        Raises:
            ConfigError: If the resulting configuration is invalid. Nothing is
                persisted in that case.
        """
        if self._config is None:
            self.load()
        stored = deep_merge(self._stored, changes)
        try:
            new_config = self._build(stored)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration update: {e}") from e

        self.store.set(Keys.CONFIG, json.dumps(stored, indent=2, default=str))
        self._stored = stored
        self._config = new_config
        logger.info("Sync configuration updated: %s", ", ".join(sorted(changes)))
        return new_config
