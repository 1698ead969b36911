from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from fleetwatch.ingestion.normalize import dig, is_meaningful, parse_timestamp, pick, safe_float, safe_str


def test_parse_timestamp_epoch_seconds_and_milliseconds() -> None:
    expected = datetime.fromtimestamp(1_770_928_447, tz=UTC)

    assert parse_timestamp(1_770_928_447) == expected
    assert parse_timestamp(1_770_928_447_000) == expected
    assert parse_timestamp("1770928447") == expected


def test_parse_timestamp_iso_strings() -> None:
    assert parse_timestamp("2026-02-12T20:34:07Z") == datetime(2026, 2, 12, 20, 34, 7, tzinfo=UTC)
    assert parse_timestamp("2026-02-12T21:34:07+01:00") == datetime(2026, 2, 12, 20, 34, 7, tzinfo=UTC)
    # Naive values are taken as UTC.
    assert parse_timestamp("2026-02-12T20:34:07") == datetime(2026, 2, 12, 20, 34, 7, tzinfo=UTC)


def test_parse_timestamp_converts_aware_datetimes_to_utc() -> None:
    local = datetime(2026, 2, 12, 12, 0, tzinfo=timezone(timedelta(hours=-5)))

    assert parse_timestamp(local) == datetime(2026, 2, 12, 17, 0, tzinfo=UTC)


@pytest.mark.parametrize("value", [None, True, 0, -5, "", "--", "soon", [], {}])
def test_parse_timestamp_rejects_garbage(value: object) -> None:
    assert parse_timestamp(value) is None


def test_safe_float_and_str() -> None:
    assert safe_float("12.5") == 12.5
    assert safe_float("NaN") is None
    assert safe_float(float("inf")) is None
    assert safe_float(False) is None
    assert safe_str("  GPS-1 ") == "GPS-1"
    assert safe_str("--") is None
    assert safe_str(42) == "42"


def test_dig_follows_mappings_and_list_indices() -> None:
    payload = {"gpsLocation": {"latitude": 1.5}, "engineStates": [{"value": "On"}]}

    assert dig(payload, "gpsLocation.latitude") == 1.5
    assert dig(payload, "engineStates.0.value") == "On"
    assert dig(payload, "engineStates.3.value") is None
    assert dig(payload, "gpsLocation.latitude.deeper") is None


def test_pick_skips_placeholders() -> None:
    payload = {"lat": "", "latitude": None, "location": {"latitude": 40.1}}

    assert pick(payload, "latitude", "lat", "location.latitude") == 40.1
    assert pick(payload, "missing") is None
    assert not is_meaningful([])
    assert is_meaningful(0)
