"""CSV table parsing.

Each archive entry becomes a ``ParsedTable``: the first line is the header
and every later non-blank line a ``{header: value}`` row. Structural
problems abort the table with a ``TableParseError`` listing what went wrong.
"""

import csv
import io
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from utils.errors import TableParseError

# Diagnostics beyond this many are summarised rather than listed
MAX_DIAGNOSTICS = 10


@dataclass
class ParsedTable:
    name: str
    rows: list[dict[str, str]] = field(default_factory=list)

    @property
    def stem(self) -> str:
        """Filename stem normalised for table matching: lower-case, ``_`` as ``-``."""
        return PurePosixPath(self.name).stem.strip().lower().replace("_", "-")


def parse_csv_table(text: str, name: str) -> ParsedTable:
    """Parse CSV *text* into a ``ParsedTable`` called *name*.

    Empty cells stay as ``""``. Blank lines are skipped.

    Raises:
        TableParseError: on malformed quoting or a row whose field count
            differs from the header's.
    """
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    diagnostics: list[str] = []
    rows: list[dict[str, str]] = []
    header: list[str] | None = None

    try:
        for record in reader:
            if not record or record == [""]:
                continue
            if header is None:
                header = record
                continue
            if len(record) != len(header):
                diagnostics.append(
                    f"line {reader.line_num}: expected {len(header)} fields, got {len(record)}"
                )
                continue
            rows.append(dict(zip(header, record)))
    except csv.Error as exc:
        diagnostics.append(f"line {reader.line_num}: {exc}")

    if diagnostics:
        if len(diagnostics) > MAX_DIAGNOSTICS:
            extra = len(diagnostics) - MAX_DIAGNOSTICS
            diagnostics = diagnostics[:MAX_DIAGNOSTICS] + [f"... and {extra} more"]
        raise TableParseError(name, diagnostics)

    return ParsedTable(name=name, rows=rows)
