"""
Speaker records, the dataset, and their local persistence.
"""

from speakersync.core.records.journal import ChangeEntry, ChangeJournal
from speakersync.core.records.models import (
    OPTIONAL_FIELDS,
    REQUIRED_FIELDS,
    Dataset,
    Speaker,
    SpeakerStatus,
)
from speakersync.core.records.repository import DatasetRepository

__all__ = [
    "OPTIONAL_FIELDS",
    "REQUIRED_FIELDS",
    "ChangeEntry",
    "ChangeJournal",
    "Dataset",
    "DatasetRepository",
    "Speaker",
    "SpeakerStatus",
]
