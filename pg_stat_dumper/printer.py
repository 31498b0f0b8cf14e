from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Iterable, Optional

from pg_stat_dumper.runtime import rfc3339_micros


WHITESPACE = re.compile(r"\s+")
COLUMN_GAP = 3

TEXT_TYPES = {"name", "text", "varchar"}
NUMBER_TYPES = {"oid", "int4"}


def clean_ws(value: str) -> str:
    return WHITESPACE.sub(" ", value)


def _timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return rfc3339_micros(value)


def _auto(value: Any) -> str:
    if value is None:
        return ""
    return clean_ws(str(value))


def convert_to_strings(
    columns: list[tuple[str, str]],
    rows: Iterable[tuple[Any, ...]],
) -> list[list[str]]:
    """Header line of column names followed by one line of cell strings per row."""
    lines = [[name for name, _ in columns]]
    for row in rows:
        cells = []
        for index, (name, type_name) in enumerate(columns):
            value = row[index]
            if type_name == "timestamptz":
                cells.append(_timestamp(value))
            elif type_name in TEXT_TYPES or type_name in NUMBER_TYPES:
                cells.append(_auto(value))
            else:
                raise ValueError(f"unknown type {type_name!r} for column {name!r}")
        lines.append(cells)
    return lines


def render(lines: list[list[str]], mins: list[int]) -> str:
    if not mins:
        return ""
    for line in lines:
        for col, (cell, width) in enumerate(zip(line, mins)):
            if len(cell) > width:
                mins[col] = len(cell)

    last = len(mins) - 1
    out = []
    for line in lines:
        padded = [cell.ljust(width + COLUMN_GAP) for cell, width in zip(line[:last], mins[:last])]
        padded.append(line[last])
        out.append("".join(padded))
    return "".join(line + "\n" for line in out)
