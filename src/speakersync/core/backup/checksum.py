"""
Dataset checksums.

A rolling hash over the UTF-16 code units of the canonical JSON form
(``h = h * 31 + unit``, wrapped to 32 bits). Rendered as 8 lowercase hex digits.
"""

from typing import Any

from speakersync.core.serialization import canonical_json

_MASK = 0xFFFFFFFF


def rolling_hash(text: str) -> int:
    """32-bit rolling hash over the UTF-16 code units of ``text``."""
    encoded = text.encode("utf-16-le")
    value = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        value = (value * 31 + unit) & _MASK
    return value


def calculate_checksum(data: Any) -> str:
    return f"{rolling_hash(canonical_json(data)):08x}"
