"""Line protocol decoding for both wire encodings."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from pydantic import ValidationError

from app.schemas import SESSION_ID_MAX, SESSION_ID_MIN, StructuredReading
from models.records import SCALAR_FIELDS, SensorRecord

KEEPALIVE_MARKER = "keepalive"
NO_SESSION_TOKEN = "None"
FIELD_SEPARATOR = ","
DELIMITED_FIELD_COUNT = 2 + len(SCALAR_FIELDS)

# Plain ASCII numerals only; int() and float() alone accept more.
_INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")
_FLOAT_PATTERN = re.compile(
    r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:e[+-]?[0-9]+)?|inf|infinity|nan)",
    re.IGNORECASE | re.ASCII,
)


class WireFormat(str, Enum):
    """Encoding a deployment expects on every connection."""

    delimited = "delimited"
    structured = "structured"
    auto = "auto"


@dataclass(frozen=True, slots=True)
class Decoded:
    record: SensorRecord


@dataclass(frozen=True, slots=True)
class Keepalive:
    pass


@dataclass(frozen=True, slots=True)
class Malformed:
    raw_line: str
    reason: str


DecodeOutcome = Union[Decoded, Keepalive, Malformed]


def decode_line(line: str, wire_format: WireFormat = WireFormat.delimited) -> DecodeOutcome:
    """Decode one line of input into exactly one outcome."""
    candidate = line.strip()
    if not candidate:
        return Malformed(raw_line=line, reason="empty line")

    if wire_format is WireFormat.auto:
        wire_format = WireFormat.structured if candidate.startswith("{") else WireFormat.delimited

    if wire_format is WireFormat.structured:
        return decode_structured(candidate)
    return decode_delimited(candidate)


def decode_delimited(line: str) -> DecodeOutcome:
    if line == KEEPALIVE_MARKER:
        return Keepalive()

    fields = line.split(FIELD_SEPARATOR)
    if len(fields) < DELIMITED_FIELD_COUNT:
        return Malformed(
            raw_line=line,
            reason=f"expected {DELIMITED_FIELD_COUNT} fields, got {len(fields)}",
        )

    timestamp = fields[1]
    if KEEPALIVE_MARKER in timestamp:
        return Keepalive()

    scalars = {
        name: _parse_float(raw)
        for name, raw in zip(SCALAR_FIELDS, fields[2:DELIMITED_FIELD_COUNT])
    }
    record = SensorRecord(
        session_id=_parse_session_id(fields[0]),
        timestamp=timestamp,
        **scalars,
    )
    return Decoded(record=record)


def decode_structured(line: str) -> DecodeOutcome:
    # Substring check on the raw text skips JSON parsing for control messages.
    if KEEPALIVE_MARKER in line:
        return Keepalive()

    try:
        reading = StructuredReading.model_validate_json(line)
    except ValidationError as exc:
        return Malformed(raw_line=line, reason=_summarize_validation_error(exc))

    # Escaped forms of the marker only become visible after parsing.
    if KEEPALIVE_MARKER in reading.timestamp:
        return Keepalive()

    return Decoded(record=reading.to_record())


def _parse_session_id(raw: str) -> Optional[int]:
    if raw == NO_SESSION_TOKEN:
        return None
    if not _INTEGER_PATTERN.fullmatch(raw):
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    if not SESSION_ID_MIN <= value <= SESSION_ID_MAX:
        return None
    return value


def _parse_float(raw: str) -> float:
    if not _FLOAT_PATTERN.fullmatch(raw):
        return 0.0
    try:
        return float(raw)
    except ValueError:
        return 0.0


def _summarize_validation_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid structured message"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    summary = f"{location}: {message}" if location else message
    if len(errors) > 1:
        summary = f"{summary} (+{len(errors) - 1} more)"
    return summary
