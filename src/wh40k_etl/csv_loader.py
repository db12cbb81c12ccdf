"""wh40k_etl.csv_loader

Parse pipe-delimited Wahapedia exports into header -> value mappings.

Dialect: "|" delimiter, header row present, no quoting (values carry raw
HTML with literal quote characters), values trimmed, empty -> None, no
type inference. A trailing delimiter produces an empty header, which is
dropped. Rows shorter than the header simply lack the trailing keys.
"""

from __future__ import annotations

import csv
import io
import sys
from pathlib import Path

from wh40k_etl.normalize import trim

DELIMITER = "|"
_BOM = "\ufeff"

# Description columns carry whole HTML fragments with no length bound.
csv.field_size_limit(sys.maxsize)


def _clean_text(raw: str) -> str:
    if raw.startswith(_BOM):
        raw = raw[len(_BOM):]
    # Stray carriage returns appear both as line endings and inside HTML fields.
    return raw.replace("\r", "")


def parse_csv_text(raw: str) -> list[dict[str, str | None]]:
    """Return one dict per data row, keyed by trimmed header name."""
    reader = csv.reader(
        io.StringIO(_clean_text(raw)),
        delimiter=DELIMITER,
        quoting=csv.QUOTE_NONE,
    )
    try:
        header = next(reader)
    except StopIteration:
        return []
    columns = [(idx, h.strip()) for idx, h in enumerate(header) if h.strip()]

    rows: list[dict[str, str | None]] = []
    for values in reader:
        if not any(v.strip() for v in values):
            continue
        row: dict[str, str | None] = {}
        for idx, name in columns:
            if idx >= len(values):
                break
            row[name] = trim(values[idx])
        rows.append(row)
    return rows


def read_csv_file(path: Path) -> list[dict[str, str | None]]:
    return parse_csv_text(path.read_text(encoding="utf-8"))
