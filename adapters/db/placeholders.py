"""
Positional-marker translation.

Every caller writes `?`. Adapters rewrite occurrences strictly left to right
into their driver's native syntax. The rewrite is purely textual: a `?`
inside a quoted literal is rewritten too, so callers must not embed literal
question marks in SQL that also carries parameters.
"""

from __future__ import annotations

import re
from typing import Literal

MARKER = "?"

MarkerStyle = Literal["qmark", "named", "numbered", "format"]

_NATIVE_MARKER_RE = {
    "qmark": re.compile(r"\?"),
    "named": re.compile(r"@param\d+\b"),
    "numbered": re.compile(r"\$\d+\b"),
    "format": re.compile(r"(?<!%)%s"),
}


def to_named_markers(sql: str) -> str:
    """`?` -> `@param0`, `@param1`, ... (SQL Server)."""
    counter = iter(range(sql.count(MARKER)))
    return re.sub(r"\?", lambda _m: f"@param{next(counter)}", sql)


def to_numbered_markers(sql: str) -> str:
    """`?` -> `$1`, `$2`, ... (PostgreSQL)."""
    counter = iter(range(1, sql.count(MARKER) + 1))
    return re.sub(r"\?", lambda _m: f"${next(counter)}", sql)


def to_format_markers(sql: str) -> str:
    """
    `?` -> `%s` (pymysql). Literal `%` is doubled first because the driver
    applies %-interpolation whenever arguments are bound.
    """
    return sql.replace("%", "%%").replace(MARKER, "%s")


def translate(sql: str, style: MarkerStyle) -> str:
    if style == "qmark":
        return sql
    if style == "named":
        return to_named_markers(sql)
    if style == "numbered":
        return to_numbered_markers(sql)
    if style == "format":
        return to_format_markers(sql)
    raise ValueError(f"Unknown marker style: {style}")


def count_markers(sql: str, style: MarkerStyle) -> int:
    """Count native markers of the given style in already-translated SQL."""
    return len(_NATIVE_MARKER_RE[style].findall(sql))
