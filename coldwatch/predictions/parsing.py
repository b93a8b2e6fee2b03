"""Parsing of the free-text ``rul`` field on prediction records.

The ML service writes RUL either as a number or as text such as
``"142.5 hours (Part at risk: condenser fan)"``. Only this module looks
at the raw text.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Iterable

UNKNOWN_PART = "unknown"

_PART_AT_RISK = re.compile(r"\(Part at risk:\s*([^)]+)\)")
_IGNORED_PARTS = {"none", UNKNOWN_PART}


def parse_part_at_risk(rul: object) -> str:
    """Return the part named in '(Part at risk: <name>)', or 'unknown'."""
    if not isinstance(rul, str):
        return UNKNOWN_PART
    match = _PART_AT_RISK.search(rul)
    if match is None:
        return UNKNOWN_PART
    name = match.group(1).strip()
    return name or UNKNOWN_PART


def numeric_rul(rul: object) -> float | None:
    """RUL as a number when the field holds one (or a plain numeric string)."""
    if isinstance(rul, bool):
        return None
    if isinstance(rul, (int, float)):
        return float(rul) if math.isfinite(rul) else None
    if isinstance(rul, str):
        try:
            value = float(rul.strip())
        except ValueError:
            return None
        return value if math.isfinite(value) else None
    return None


def most_common_part(parts: Iterable[str]) -> str:
    """Most frequent real part name; ties go to the one seen first."""
    counts = Counter(p for p in parts if p and p not in _IGNORED_PARTS)
    if not counts:
        return UNKNOWN_PART
    # most_common keeps insertion order among equal counts
    return counts.most_common(1)[0][0]
