"""Unit tests for the line protocol decoder."""

from __future__ import annotations

import json
from typing import Any, Dict

import pytest

from models.records import SCALAR_FIELDS
from services.decoder import (
    Decoded,
    Keepalive,
    Malformed,
    WireFormat,
    decode_delimited,
    decode_line,
    decode_structured,
)


def _structured_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "type": "sensor_data",
        "sessionId": 42,
        "timestamp": "2024-01-01T00:00:00Z",
    }
    payload.update({name: float(index) + 0.5 for index, name in enumerate(SCALAR_FIELDS)})
    payload.update(overrides)
    return payload


def test_delimited_line_with_no_session() -> None:
    outcome = decode_delimited("None,2024-01-01T00:00:00Z,1.0,2.0,3.0,0,0,0,0,0,0,0,0,0,0")

    assert isinstance(outcome, Decoded)
    record = outcome.record
    assert record.session_id is None
    assert record.timestamp == "2024-01-01T00:00:00Z"
    assert (record.latitude, record.longitude, record.altitude) == (1.0, 2.0, 3.0)
    for name in SCALAR_FIELDS[3:]:
        assert getattr(record, name) == 0.0


def test_delimited_line_maps_fields_positionally() -> None:
    values = [str(index + 1) for index in range(len(SCALAR_FIELDS))]
    outcome = decode_delimited("7,ts," + ",".join(values))

    assert isinstance(outcome, Decoded)
    assert outcome.record.session_id == 7
    assert outcome.record.as_row() == (7, "ts", *(float(value) for value in values))


def test_delimited_unparseable_scalars_default_to_zero() -> None:
    outcome = decode_delimited("5,t,abc,2.5,,x,1,1,1,1,1,1,1,1,--")

    assert isinstance(outcome, Decoded)
    record = outcome.record
    assert record.latitude == 0.0
    assert record.longitude == 2.5
    assert record.altitude == 0.0
    assert record.accel_x == 0.0
    assert record.accel_y == 1.0
    assert record.dac_4 == 0.0


@pytest.mark.parametrize("raw_session", ["none", "abc", "", "1.5", "99999999999"])
def test_delimited_unparseable_session_id_means_no_session(raw_session: str) -> None:
    outcome = decode_delimited(f"{raw_session},t,1,2,3,4,5,6,7,8,9,10,11,12,13")

    assert isinstance(outcome, Decoded)
    assert outcome.record.session_id is None


@pytest.mark.parametrize("raw_session", ["1_0", " 7", "7 ", "١٢", "0x1f"])
def test_delimited_session_id_must_be_plain_ascii_integer(raw_session: str) -> None:
    outcome = decode_delimited(f"{raw_session},t,1,2,3,4,5,6,7,8,9,10,11,12,13")

    assert isinstance(outcome, Decoded)
    assert outcome.record.session_id is None


def test_delimited_signed_session_id_is_accepted() -> None:
    outcome = decode_delimited("-12,t,1,2,3,4,5,6,7,8,9,10,11,12,13")

    assert isinstance(outcome, Decoded)
    assert outcome.record.session_id == -12


@pytest.mark.parametrize("raw_value", ["1_000", " 2.0", "2.0 ", "٣", "1e", ".", "0x10"])
def test_delimited_scalar_must_be_plain_ascii_number(raw_value: str) -> None:
    outcome = decode_delimited(f"1,t,{raw_value},1,1,1,1,1,1,1,1,1,1,1,1")

    assert isinstance(outcome, Decoded)
    assert outcome.record.latitude == 0.0


@pytest.mark.parametrize(
    ("raw_value", "expected"),
    [("+1.5", 1.5), ("-.5", -0.5), ("3.", 3.0), ("2E3", 2000.0), ("1e-2", 0.01)],
)
def test_delimited_scalar_number_forms(raw_value: str, expected: float) -> None:
    outcome = decode_delimited(f"1,t,{raw_value},1,1,1,1,1,1,1,1,1,1,1,1")

    assert isinstance(outcome, Decoded)
    assert outcome.record.latitude == expected


def test_delimited_scalar_special_values() -> None:
    outcome = decode_delimited("1,t,inf,-Infinity,NaN,1,1,1,1,1,1,1,1,1,1")

    assert isinstance(outcome, Decoded)
    record = outcome.record
    assert record.latitude == float("inf")
    assert record.longitude == float("-inf")
    assert record.altitude != record.altitude



def test_delimited_extra_fields_are_ignored() -> None:
    outcome = decode_delimited("3,t,1,2,3,4,5,6,7,8,9,10,11,12,13,extra,more")

    assert isinstance(outcome, Decoded)
    assert outcome.record.dac_4 == 13.0


def test_delimited_too_few_fields_is_malformed() -> None:
    outcome = decode_delimited("7,t,1,2")

    assert isinstance(outcome, Malformed)
    assert outcome.raw_line == "7,t,1,2"
    assert "got 4" in outcome.reason


@pytest.mark.parametrize(
    "line",
    [
        "keepalive",
        "1,keepalive,0,0,0,0,0,0,0,0,0,0,0,0,0",
        "None,ping-keepalive-01,0,0,0,0,0,0,0,0,0,0,0,0,0",
    ],
)
def test_delimited_keepalive_is_never_a_record(line: str) -> None:
    assert isinstance(decode_delimited(line), Keepalive)


def test_structured_line_decodes_record() -> None:
    outcome = decode_structured(json.dumps(_structured_payload()))

    assert isinstance(outcome, Decoded)
    record = outcome.record
    assert record.session_id == 42
    assert record.timestamp == "2024-01-01T00:00:00Z"
    assert record.latitude == 0.5
    assert record.dac_4 == 12.5


def test_structured_discriminator_and_session_are_optional() -> None:
    payload = _structured_payload()
    del payload["type"]
    del payload["sessionId"]

    outcome = decode_structured(json.dumps(payload))

    assert isinstance(outcome, Decoded)
    assert outcome.record.session_id is None


def test_structured_null_session_means_no_session() -> None:
    outcome = decode_structured(json.dumps(_structured_payload(sessionId=None)))

    assert isinstance(outcome, Decoded)
    assert outcome.record.session_id is None


def test_structured_invalid_syntax_is_malformed() -> None:
    outcome = decode_structured('{"sessionId": 1, "timestamp": ')

    assert isinstance(outcome, Malformed)


def test_structured_missing_key_is_malformed() -> None:
    payload = _structured_payload()
    del payload["gyro_y"]

    outcome = decode_structured(json.dumps(payload))

    assert isinstance(outcome, Malformed)
    assert "gyro_y" in outcome.reason


def test_structured_keys_are_case_sensitive() -> None:
    payload = _structured_payload()
    payload["Latitude"] = payload.pop("latitude")

    assert isinstance(decode_structured(json.dumps(payload)), Malformed)


@pytest.mark.parametrize(
    "overrides",
    [
        {"latitude": "1.0"},
        {"altitude": True},
        {"sessionId": "7"},
        {"timestamp": 1704067200},
        {"type": "gps_fix"},
    ],
)
def test_structured_wrong_value_types_are_malformed(overrides: Dict[str, Any]) -> None:
    outcome = decode_structured(json.dumps(_structured_payload(**overrides)))

    assert isinstance(outcome, Malformed)


def test_structured_non_object_is_malformed() -> None:
    assert isinstance(decode_structured("[1, 2, 3]"), Malformed)


def test_structured_keepalive_control_message() -> None:
    assert isinstance(decode_structured('{"type":"keepalive"}'), Keepalive)


def test_structured_keepalive_timestamp_is_never_a_record() -> None:
    line = json.dumps(_structured_payload(timestamp="keepalive"))

    assert isinstance(decode_structured(line), Keepalive)


def test_structured_escaped_keepalive_is_caught_after_parsing() -> None:
    line = json.dumps(_structured_payload()).replace(
        '"2024-01-01T00:00:00Z"', '"\\u006beepalive"'
    )
    assert "keepalive" not in line

    assert isinstance(decode_structured(line), Keepalive)


def test_decode_line_trims_whitespace() -> None:
    outcome = decode_line("  1,t,0,0,0,0,0,0,0,0,0,0,0,0,0 \r\n", WireFormat.delimited)

    assert isinstance(outcome, Decoded)
    assert outcome.record.session_id == 1


def test_decode_line_empty_is_malformed() -> None:
    assert isinstance(decode_line("   ", WireFormat.delimited), Malformed)


def test_decode_line_uses_configured_format() -> None:
    structured = json.dumps(_structured_payload())

    assert isinstance(decode_line(structured, WireFormat.structured), Decoded)
    assert isinstance(
        decode_line("1,t,0,0,0,0,0,0,0,0,0,0,0,0,0", WireFormat.structured), Malformed
    )


def test_decode_line_auto_sniffs_each_line() -> None:
    structured = decode_line(json.dumps(_structured_payload()), WireFormat.auto)
    delimited = decode_line("9,t,0,0,0,0,0,0,0,0,0,0,0,0,0", WireFormat.auto)

    assert isinstance(structured, Decoded)
    assert structured.record.session_id == 42
    assert isinstance(delimited, Decoded)
    assert delimited.record.session_id == 9
