"""Value coercion rules for Wahapedia CSV ingestion.

All functions accept str | None and return the appropriate type or None.
They never raise on bad input: unparseable values collapse to None (or 0
for the boolean rule).
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

_INT_RE = re.compile(r"^[+-]?\d+(?:\.0+)?$")
# Seconds fraction; fromisoformat on 3.10 only takes 3 or 6 digits.
_FRACTION_RE = re.compile(r"(:\d{2})\.(\d+)")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = str(value).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: text
# ---------------------------------------------------------------------------

def text(value: str | None) -> str | None:
    """Free-text column: pass through, empty-as-null."""
    return trim(value)


# ---------------------------------------------------------------------------
# Rule 3: to_int
# ---------------------------------------------------------------------------

def to_int(value: str | int | None) -> int | None:
    """Parse an integer column.

    Leading zeros are accepted ("000000042" -> 42), as are integral
    decimals ("3.0" -> 3). Anything else, including empty input, is None.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    v = trim(value)
    if v is None or not _INT_RE.match(v):
        return None
    return int(v.split(".", 1)[0])


# ---------------------------------------------------------------------------
# Rule 4: to_bool_int
# ---------------------------------------------------------------------------

def to_bool_int(value: str | None) -> int:
    """Map the literal "true" (any casing) to 1; everything else to 0."""
    if value is None:
        return 0
    return 1 if str(value).strip().lower() == "true" else 0


# ---------------------------------------------------------------------------
# Rule 5: dash_to_none
# ---------------------------------------------------------------------------

def dash_to_none(value: str | None) -> str | None:
    """Sentinel column: a lone "-" means no value."""
    v = trim(value)
    if v == "-":
        return None
    return v


# ---------------------------------------------------------------------------
# Rule 6: parse_marker
# ---------------------------------------------------------------------------

def parse_marker(value: str | None) -> datetime | None:
    """Parse a dataset freshness timestamp into an aware UTC datetime.

    Accepts ISO-8601 with or without a trailing "Z" and the space-separated
    "YYYY-MM-DD HH:MM:SS" form the remote marker file uses, with a seconds
    fraction of any length. Naive values are taken to be UTC. Returns None when the value cannot be parsed.
    """
    v = trim(value)
    if v is None:
        return None
    if v.endswith(("Z", "z")):
        v = v[:-1] + "+00:00"
    v = _FRACTION_RE.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", v, count=1)
    try:
        ts = datetime.fromisoformat(v)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def format_marker(ts: datetime) -> str:
    """Render a marker as ISO-8601 UTC with a "Z" suffix."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    return ts.isoformat().replace("+00:00", "Z")
