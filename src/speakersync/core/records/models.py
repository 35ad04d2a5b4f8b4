"""
Data models for speaker records and the dataset.

Records travel as plain dicts through sync and merge (the merge works on
the union of keys present on either side, including keys it does not know
about). :class:`Speaker` is the typed view used to validate them.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
)

from speakersync.core.exceptions import DatasetParseError
from speakersync.core.timeutil import EPOCH, format_timestamp, parse_timestamp


class SpeakerStatus(str, Enum):
    """Pipeline stage of a speaker."""

    IDEAS = "Ideas"
    APPROACHED = "Approached"
    AGREED = "Agreed"
    SCHEDULED = "Scheduled"
    SPOKEN = "Spoken"
    DROPPED = "Dropped"


class Speaker(BaseModel):
    """
    A tracked speaker.

    Field names on the wire are camelCase; unknown fields are rejected.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: StrictInt
    name: StrictStr = Field(min_length=1)
    status: SpeakerStatus = SpeakerStatus.IDEAS
    email: StrictStr | None = None
    organization: StrictStr | None = None
    job_title: StrictStr | None = Field(default=None, alias="jobTitle")
    phone: StrictStr | None = None
    topic: StrictStr | None = None
    notes: StrictStr | None = None
    rotarian: StrictBool | None = None
    links: list[StrictStr] | None = None
    date_contacted: StrictStr | None = Field(default=None, alias="dateContacted")
    scheduled_date: StrictStr | None = Field(default=None, alias="scheduledDate")

    def to_record(self) -> dict[str, Any]:
        """Wire form, without unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


REQUIRED_FIELDS: tuple[str, ...] = ("id", "name")
OPTIONAL_FIELDS: tuple[str, ...] = tuple(
    (field.alias or name)
    for name, field in Speaker.model_fields.items()
    if (field.alias or name) not in REQUIRED_FIELDS
)


class Dataset(BaseModel):
    """
    The full record collection plus version bookkeeping.

    ``version`` only ever increases and ``last_modified`` moves forward on
    every mutation that should be considered for sync.
    """

    model_config = ConfigDict(populate_by_name=True)

    version: int = Field(default=1, ge=0)
    last_modified: datetime = Field(default=EPOCH, alias="lastModified")
    speakers: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("last_modified", mode="before")
    @classmethod
    def _parse_last_modified(cls, value: Any) -> Any:
        if isinstance(value, (str, datetime)):
            return parse_timestamp(value)
        return value

    @classmethod
    def from_document(cls, data: str | bytes | dict[str, Any]) -> Dataset:
        """
        Parse the serialized dataset form.

        Raises:
            DatasetParseError: If the payload is not JSON or has the wrong shape.
        """
        if isinstance(data, (str, bytes)):
            try:
                data = json.loads(data)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise DatasetParseError(f"Dataset is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise DatasetParseError("Dataset must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DatasetParseError(f"Dataset has an invalid structure: {e}") from e

    def to_document(self) -> dict[str, Any]:
        """Wire form: ``{version, lastModified, speakers, metadata}``."""
        return {
            "version": self.version,
            "lastModified": format_timestamp(self.last_modified),
            "speakers": self.speakers,
            "metadata": self.metadata,
        }

    def content(self) -> dict[str, Any]:
        """Wire form without metadata, which differs per replica."""
        document = self.to_document()
        del document["metadata"]
        return document
