"""Printing of result and record messages as tables, text protos or JSON."""

from __future__ import annotations

import base64
import calendar
import enum
import json
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, TextIO

from .convert import AnyMessage

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_TAB_MIN_WIDTH = 40
_TAB_PADDING = 2


@dataclass
class Result:
    """A result: a group of records."""

    name: str = ""
    id: str = ""
    uid: str = ""
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None
    annotations: dict[str, str] = field(default_factory=dict)
    etag: str = ""


@dataclass
class Record:
    """A single stored record."""

    name: str = ""
    id: str = ""
    uid: str = ""
    data: Optional[AnyMessage] = None
    etag: str = ""
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None


@dataclass
class ListResultsResponse:
    results: list[Result] = field(default_factory=list)
    next_page_token: str = ""


@dataclass
class ListRecordsResponse:
    records: list[Record] = field(default_factory=list)
    next_page_token: str = ""


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.astimezone()


def _is_default(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, bytearray, list, tuple, dict)):
        return not value
    if isinstance(value, (bool, int, float)):
        return value == 0
    return False


def _populated(message: Any) -> Iterator[tuple[str, Any]]:
    for f in fields(message):
        value = getattr(message, f.name)
        if not _is_default(value):
            yield f.name, value


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _rfc3339(moment: datetime) -> str:
    utc = _aware(moment).astimezone(timezone.utc)
    text = utc.strftime("%Y-%m-%dT%H:%M:%S")
    if utc.microsecond:
        if utc.microsecond % 1000 == 0:
            text += f".{utc.microsecond // 1000:03d}"
        else:
            text += f".{utc.microsecond:06d}"
    return text + "Z"


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _rfc3339(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode()
    if isinstance(value, enum.Enum):
        return value.name
    if is_dataclass(value):
        return {_camel(name): _json_value(item) for name, item in _populated(value)}
    if isinstance(value, (list, tuple)):
        return [_json_value(item) for item in value]
    if isinstance(value, dict):
        return {key: _json_value(item) for key, item in value.items()}
    return value


def _quote(value: Any) -> str:
    raw = value.encode() if isinstance(value, str) else bytes(value)
    escapes = {0x22: '\\"', 0x5C: "\\\\", 0x0A: "\\n", 0x0D: "\\r", 0x09: "\\t"}
    out = []
    for byte in raw:
        if byte in escapes:
            out.append(escapes[byte])
        elif 0x20 <= byte < 0x7F:
            out.append(chr(byte))
        elif isinstance(value, str) and byte >= 0x80:
            out.append(None)  # placeholder, replaced below
        else:
            out.append(f"\\x{byte:02x}")
    if None in out:
        # Keep valid UTF-8 text readable rather than escaping each byte.
        text = []
        for ch in value:
            text.append(_quote(ch)[1:-1] if ord(ch) < 0x80 else ch)
        return '"' + "".join(text) + '"'
    return '"' + "".join(out) + '"'


def _text_scalar(value: Any) -> str:
    if isinstance(value, (str, bytes, bytearray)):
        return _quote(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, enum.Enum):
        return value.name
    return str(value)


def _timestamp_fields(moment: datetime) -> list[tuple[str, Any]]:
    aware = _aware(moment)
    seconds = calendar.timegm(aware.utctimetuple())
    return [("seconds", seconds), ("nanos", aware.microsecond * 1000)]


def _text_block(name: str, pairs: list[tuple[str, Any]], indent: int, lines: list[str]) -> None:
    pad = "  " * indent
    pairs = [(key, value) for key, value in pairs if not _is_default(value)]
    if not pairs:
        lines.append(f"{pad}{name}: {{}}")
        return
    lines.append(f"{pad}{name}: {{")
    for key, value in pairs:
        _text_field(key, value, indent + 1, lines)
    lines.append(f"{pad}}}")


def _text_field(name: str, value: Any, indent: int, lines: list[str]) -> None:
    if isinstance(value, (list, tuple)):
        for item in value:
            _text_field(name, item, indent, lines)
    elif isinstance(value, dict):
        for key in sorted(value):
            _text_block(name, [("key", key), ("value", value[key])], indent, lines)
    elif isinstance(value, datetime):
        _text_block(name, _timestamp_fields(value), indent, lines)
    elif is_dataclass(value):
        _text_block(name, list(_populated(value)), indent, lines)
    else:
        lines.append(f"{'  ' * indent}{name}: {_text_scalar(value)}")


def _textproto(message: Any) -> str:
    lines: list[str] = []
    for name, value in _populated(message):
        _text_field(name, value, 0, lines)
    return "".join(line + "\n" for line in lines)


def _local_time(moment: Optional[datetime]) -> str:
    local = _aware(moment or _EPOCH).replace(microsecond=0).astimezone()
    return local.strftime("%Y-%m-%d %H:%M:%S %z ") + (local.tzname() or "")


def _tabulate(rows: list[list[str]]) -> str:
    columns = max(len(row) for row in rows) - 1
    widths = [
        max(_TAB_MIN_WIDTH, max(len(row[col]) for row in rows if len(row) > col + 1) + _TAB_PADDING)
        for col in range(columns)
    ]
    lines = []
    for row in rows:
        *cells, last = row
        lines.append("".join(cell.ljust(width) for cell, width in zip(cells, widths)) + last)
    return "".join(line + "\n" for line in lines)


def _tab_rows(message: Any) -> Optional[list[list[str]]]:
    if isinstance(message, ListResultsResponse):
        return [["Name", "Start", "Update"]] + [
            [r.name, _local_time(r.create_time), _local_time(r.update_time)] for r in message.results
        ]
    if isinstance(message, ListRecordsResponse):
        return [["Name", "Type", "Start", "Update"]] + [
            [
                r.name,
                r.data.type if r.data is not None else "",
                _local_time(r.create_time),
                _local_time(r.update_time),
            ]
            for r in message.records
        ]
    return None


def print_proto(stream: TextIO, message: Any, fmt: str) -> None:
    """Write ``message`` to ``stream`` as ``tab``, ``textproto`` or ``json``.

    Raises ValueError for any other format.
    """
    if fmt == "tab":
        rows = _tab_rows(message)
        if rows is not None:
            stream.write(_tabulate(rows))
    elif fmt == "textproto":
        stream.write(_textproto(message))
    elif fmt == "json":
        stream.write(json.dumps(_json_value(message), indent=2, ensure_ascii=False))
    else:
        raise ValueError(f'unknown output format "{fmt}"')