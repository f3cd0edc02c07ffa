from __future__ import annotations

import base64
import datetime as dt
import json
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Sequence, Union


@dataclass
class ToolResponse:
    """The envelope every tool call resolves to, success or failure."""

    content: List[Dict[str, str]] = field(default_factory=list)
    isError: bool = False

    @property
    def text(self) -> str:
        return "".join(c.get("text", "") for c in self.content)

    def payload(self) -> Any:
        """Decoded JSON payload (raw text when the body is not JSON, e.g. CSV)."""
        try:
            return json.loads(self.text)
        except ValueError:
            return self.text

    def to_dict(self) -> Dict[str, Any]:
        return {"content": [dict(c) for c in self.content], "isError": self.isError}


def _json_default(value: Any) -> Any:
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=_json_default)


def text_response(text: str, *, is_error: bool = False) -> ToolResponse:
    return ToolResponse(content=[{"type": "text", "text": text}], isError=is_error)


def success_response(data: Any) -> ToolResponse:
    return text_response(to_json(data))


def error_response(error: Union[BaseException, str]) -> ToolResponse:
    message = error if isinstance(error, str) else str(error)
    return text_response(to_json({"error": message}), is_error=True)


def _csv_field(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return '"' + value.replace('"', '""') + '"'
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_csv(rows: Sequence[Mapping[str, Any]]) -> str:
    """
    Render rows as CSV.

    The header is the key order of the first row. Strings are always quoted
    (inner quotes doubled), NULL/missing values are empty, every line ends
    with a newline. No rows -> empty string, not even a header.
    """
    if not rows:
        return ""
    headers = list(rows[0].keys())
    lines = [",".join(headers)]
    for row in rows:
        lines.append(",".join(_csv_field(row.get(h)) for h in headers))
    return "\n".join(lines) + "\n"
