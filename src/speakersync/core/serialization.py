"""Canonical JSON form shared by equality checks and checksums."""

import json
from typing import Any


def canonical_json(value: Any) -> str:
    """Sorted keys, compact separators, unicode kept as-is."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
