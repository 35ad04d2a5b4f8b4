"""
Corruption detection, structural validation and in-place repair of the
persisted record set.

Detection and validation are separate: detection finds defects that make
the data unsafe to use (wrong shapes, duplicate or missing identifiers,
wrongly typed fields); validation reports schema drift such as unexpected
fields, which is surfaced but not treated as corruption.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from pydantic import ValidationError

from speakersync.core.backup.models import (
    CorruptionIssue,
    CorruptionKind,
    RepairResult,
    ValidationResult,
)
from speakersync.core.records.models import OPTIONAL_FIELDS, REQUIRED_FIELDS, Speaker
from speakersync.core.timeutil import parse_timestamp

logger = logging.getLogger(__name__)

_IGNORED_ERROR_TYPES = {"missing", "extra_forbidden"}


def _valid_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _missing_fields(record: dict[str, Any]) -> list[str]:
    missing = []
    if record.get("id") is None:
        missing.append("id")
    name = record.get("name")
    if name is None or (isinstance(name, str) and not name.strip()):
        missing.append("name")
    return missing


def _dataset_issues(payload: Any) -> list[CorruptionIssue]:
    if not isinstance(payload, dict):
        return []
    issues: list[CorruptionIssue] = []
    version = payload.get("version", 0)
    if not (type(version) is int and version >= 0):
        issues.append(
            CorruptionIssue(
                kind=CorruptionKind.INVALID_DATA_TYPE,
                message=f"Dataset version is not a non-negative integer: {version!r}",
                field="version",
                value=version,
            )
        )
    if "lastModified" not in payload:
        return issues
    modified = payload["lastModified"]
    try:
        parse_timestamp(modified)
    except (TypeError, ValueError, AttributeError):
        issues.append(
            CorruptionIssue(
                kind=CorruptionKind.INVALID_DATA_TYPE,
                message=f"Dataset lastModified is not a timestamp: {modified!r}",
                field="lastModified",
                value=modified,
            )
        )
    return issues


def _speakers_of(payload: Any) -> Any:
    if isinstance(payload, dict):
        return payload.get("speakers")
    return payload


def detect_corruption(payload: Any) -> list[CorruptionIssue]:
    """
    Find defects in a dataset payload (or a bare record list).

    Dataset-level version and lastModified are checked when present;
    those defects are never repairable in place.

    Returns:
        One issue per defect; empty when the record set is sound.
    """
    issues = _dataset_issues(payload)
    speakers = _speakers_of(payload)
    if not isinstance(speakers, list):
        return issues + [
            CorruptionIssue(
                kind=CorruptionKind.NOT_AN_ARRAY,
                message="Record collection is not an array",
                value=type(speakers).__name__,
            )
        ]

    ids: list[Any] = []

    for index, record in enumerate(speakers):
        if not isinstance(record, dict):
            issues.append(
                CorruptionIssue(
                    kind=CorruptionKind.NOT_AN_OBJECT,
                    message=f"Record {index} is not an object",
                    index=index,
                )
            )
            continue

        record_id = record.get("id")
        if _valid_id(record_id):
            ids.append(record_id)
        elif type(record_id) is int:
            issues.append(
                CorruptionIssue(
                    kind=CorruptionKind.INVALID_DATA_TYPE,
                    message=f"Record {index} has non-positive id {record_id}",
                    index=index,
                    field="id",
                    value=record_id,
                )
            )

        missing = _missing_fields(record)
        if missing:
            issues.append(
                CorruptionIssue(
                    kind=CorruptionKind.MISSING_REQUIRED_FIELDS,
                    message=f"Record {index} is missing {', '.join(missing)}",
                    index=index,
                    field=missing[0],
                )
            )

        try:
            Speaker.model_validate(record)
        except ValidationError as e:
            for error in e.errors():
                field = str(error["loc"][0]) if error["loc"] else None
                if error["type"] in _IGNORED_ERROR_TYPES or field in missing:
                    continue
                issues.append(
                    CorruptionIssue(
                        kind=CorruptionKind.INVALID_DATA_TYPE,
                        message=f"Record {index} field '{field}': {error['msg']}",
                        index=index,
                        field=field,
                        value=record.get(field) if field else None,
                    )
                )

    duplicates = [record_id for record_id, count in Counter(ids).items() if count > 1]
    if duplicates:
        issues.append(
            CorruptionIssue(
                kind=CorruptionKind.DUPLICATE_IDS,
                message=f"Duplicate record ids: {', '.join(map(str, duplicates))}",
                ids=duplicates,
            )
        )

    return issues


def validate_structure(payload: Any) -> ValidationResult:
    """Check the record set against the known schema, field by field."""
    result = ValidationResult()
    speakers = _speakers_of(payload)
    if not isinstance(speakers, list):
        result.valid = False
        result.errors.append("speakers must be an array")
        return result

    known = set(REQUIRED_FIELDS) | set(OPTIONAL_FIELDS)
    for index, record in enumerate(speakers):
        if not isinstance(record, dict):
            result.errors.append(f"Speaker {index}: not an object")
            continue
        for field in REQUIRED_FIELDS:
            if field not in record:
                result.errors.append(f"Speaker {index}: missing required field '{field}'")
        for field in record:
            if field not in known:
                result.warnings.append(f"Speaker {index}: unexpected field '{field}'")

    result.valid = not result.errors
    return result


def is_repairable(issues: list[CorruptionIssue]) -> bool:
    return bool(issues) and all(issue.repairable for issue in issues)


def repair_records(records: list[Any]) -> RepairResult:
    """
    Assign fresh identifiers to records with a missing, invalid or
    duplicated id, and a default name to records without one.

    Fresh identifiers count up from the highest valid id present. The first
    record holding a given id keeps it.
    """
    next_id = max((r["id"] for r in records if isinstance(r, dict) and _valid_id(r.get("id"))), default=0)
    seen: set[int] = set()
    result = RepairResult(records=[])

    for record in records:
        if not isinstance(record, dict):
            result.records.append(record)
            continue

        repaired = dict(record)
        record_id = repaired.get("id")
        if not _valid_id(record_id) or record_id in seen:
            next_id += 1
            repaired["id"] = next_id
            result.reassigned_ids.append(next_id)
            logger.info("Reassigned record id %r to %d", record_id, next_id)
        seen.add(repaired["id"])

        name = repaired.get("name")
        if not isinstance(name, str) or not name.strip():
            repaired["name"] = f"Speaker {repaired['id']}"
            result.named.append(repaired["id"])

        result.records.append(repaired)

    return result
