"""
Statement-class predicates.

These decide which tool may run which statement. They look only at the
leading keyword(s) of the trimmed statement, case-insensitively.
"""

from __future__ import annotations

import re
from typing import Pattern

_SELECT_RE: Pattern[str] = re.compile(r"^select\b", re.IGNORECASE)
_WRITE_RE: Pattern[str] = re.compile(r"^(insert|update|delete|truncate)\b", re.IGNORECASE)
_CREATE_TABLE_RE: Pattern[str] = re.compile(r"^create\s+table\b", re.IGNORECASE)
_ALTER_TABLE_RE: Pattern[str] = re.compile(r"^alter\s+table\b", re.IGNORECASE)


def is_select(sql: str) -> bool:
    return bool(_SELECT_RE.match((sql or "").strip()))


def is_write(sql: str) -> bool:
    return bool(_WRITE_RE.match((sql or "").strip()))


def is_create_table(sql: str) -> bool:
    return bool(_CREATE_TABLE_RE.match((sql or "").strip()))


def is_alter_table(sql: str) -> bool:
    return bool(_ALTER_TABLE_RE.match((sql or "").strip()))
