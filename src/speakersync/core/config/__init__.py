"""
Configuration for speakersync.

Example:
    >>> from speakersync.core.config import ConfigManager
    >>> manager = ConfigManager(store)
    >>> manager.config.auto_sync_interval
    30.0
"""

from speakersync.core.config.env import load_layered_env
from speakersync.core.config.loader import ConfigManager, deep_merge
from speakersync.core.config.models import BackupConfig, ConflictStrategy, SyncConfig

__all__ = [
    "BackupConfig",
    "ConfigManager",
    "ConflictStrategy",
    "SyncConfig",
    "deep_merge",
    "load_layered_env",
]
