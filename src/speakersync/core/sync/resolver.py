"""
Conflict Resolver.

Pure functions: field-level diff between two versions of a record, and
resolution of the two versions into one according to a strategy. Nothing
here touches storage or the network.

Merge tie-break: when both sides carry a non-empty scalar and they differ,
the local value wins. Lists are unioned instead.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any

from speakersync.core.config.models import ConflictStrategy
from speakersync.core.records.models import Dataset
from speakersync.core.serialization import canonical_json
from speakersync.core.sync.models import Conflict, FieldDiff, MergeResult

_MISSING: Any = object()


def _same(local: Any, remote: Any) -> bool:
    if local is _MISSING or remote is _MISSING:
        return local is remote
    return canonical_json(local) == canonical_json(remote)


def is_empty(value: Any) -> bool:
    """Missing, None, empty string, empty list or empty dict. ``False`` and ``0`` are values."""
    if value is _MISSING or value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def _union_keys(local: dict[str, Any], remote: dict[str, Any]) -> list[str]:
    return list(local) + [key for key in remote if key not in local]


def _union_lists(local: list[Any], remote: list[Any]) -> list[Any]:
    seen: set[str] = set()
    merged: list[Any] = []
    for item in [*local, *remote]:
        marker = canonical_json(item)
        if marker not in seen:
            seen.add(marker)
            merged.append(item)
    return merged


def diff(local: dict[str, Any], remote: dict[str, Any]) -> list[FieldDiff]:
    """
    Field-level differences between two versions of a record.

    Every key present on either side whose values differ structurally
    produces one :class:`FieldDiff`. A key missing on one side differs from
    an explicit ``None`` on the other. Missing values are reported as None.
    """
    differences = []
    for key in _union_keys(local, remote):
        local_value = local.get(key, _MISSING)
        remote_value = remote.get(key, _MISSING)
        if not _same(local_value, remote_value):
            differences.append(
                FieldDiff(
                    field=key,
                    local=None if local_value is _MISSING else local_value,
                    remote=None if remote_value is _MISSING else remote_value,
                )
            )
    return differences


def resolve(
    local: dict[str, Any],
    remote: dict[str, Any],
    strategy: ConflictStrategy = ConflictStrategy.MERGE,
) -> dict[str, Any]:
    """
    Resolve two versions of the same record into one.

    - ``local``: the local record, unchanged
    - ``remote``: the remote record, unchanged
    - ``merge``: per field, a non-empty value beats an empty one, two
      non-empty lists are unioned, and two non-empty scalars resolve to the
      local value

    Inputs are never mutated; the result shares no containers with them.
    """
    strategy = ConflictStrategy(strategy)
    if strategy is ConflictStrategy.LOCAL:
        return copy.deepcopy(local)
    if strategy is ConflictStrategy.REMOTE:
        return copy.deepcopy(remote)

    merged: dict[str, Any] = {}
    for key in _union_keys(local, remote):
        local_value = local.get(key, _MISSING)
        remote_value = remote.get(key, _MISSING)
        local_empty = is_empty(local_value)
        remote_empty = is_empty(remote_value)

        if not local_empty and remote_empty:
            value = local_value
        elif local_empty and not remote_empty:
            value = remote_value
        elif isinstance(local_value, list) and isinstance(remote_value, list):
            value = _union_lists(local_value, remote_value)
        elif not local_empty:
            value = local_value
        else:
            # both empty: keep whichever side actually has the key
            value = remote_value if local_value is _MISSING else local_value

        merged[key] = copy.deepcopy(value)
    return merged


def detect_conflict(
    local: dict[str, Any],
    remote: dict[str, Any],
    strategy: ConflictStrategy = ConflictStrategy.MERGE,
) -> Conflict | None:
    """Return a :class:`Conflict` when the two versions differ, else None."""
    differences = diff(local, remote)
    if not differences:
        return None
    return Conflict(
        record_id=local.get("id", remote.get("id")),
        record_name=local.get("name") or remote.get("name"),
        differences=differences,
        resolution=ConflictStrategy(strategy),
    )


def _record_key(record: dict[str, Any]) -> str | None:
    if record.get("id") is None:
        return None
    return canonical_json(record["id"])


def merge_datasets(
    local: Dataset,
    remote: Dataset,
    strategy: ConflictStrategy,
    now: datetime,
) -> MergeResult:
    """
    Merge a local dataset into a newer remote one.

    Records on one side only are kept unchanged. Records on both sides are
    diffed; any difference is reported as a :class:`Conflict` and the record
    is replaced by its resolution. The merged dataset's version is
    ``max(local, remote) + 1`` and its timestamp is ``now``.
    """
    remote_by_key: dict[str, dict[str, Any]] = {}
    merged: dict[str, dict[str, Any]] = {}
    unkeyed: list[dict[str, Any]] = []
    conflicts: list[Conflict] = []

    for record in remote.speakers:
        key = _record_key(record)
        if key is None:
            unkeyed.append(copy.deepcopy(record))
            continue
        remote_by_key[key] = record
        merged[key] = copy.deepcopy(record)

    for record in local.speakers:
        key = _record_key(record)
        if key is None:
            unkeyed.append(copy.deepcopy(record))
            continue
        remote_record = remote_by_key.get(key)
        if remote_record is None:
            merged[key] = copy.deepcopy(record)
            continue
        conflict = detect_conflict(record, remote_record, strategy)
        if conflict is not None:
            conflicts.append(conflict)
            merged[key] = resolve(record, remote_record, strategy)

    dataset = Dataset(
        version=max(local.version, remote.version) + 1,
        last_modified=now,
        speakers=[*merged.values(), *unkeyed],
        metadata=copy.deepcopy(remote.metadata),
    )
    return MergeResult(dataset=dataset, conflicts=conflicts)
