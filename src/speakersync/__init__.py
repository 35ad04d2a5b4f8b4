"""
speakersync - replication and durability core for the speaker tracker.

Keeps a local speaker dataset and a remote document copy consistent under
intermittent connectivity, resolves field-level conflicts, and protects the
dataset with snapshots, integrity checks and restore.
"""

__version__ = "0.4.0"

from speakersync.core.records.models import Dataset, Speaker, SpeakerStatus
from speakersync.core.runtime import Runtime

__all__ = ["Dataset", "Runtime", "Speaker", "SpeakerStatus", "__version__"]
