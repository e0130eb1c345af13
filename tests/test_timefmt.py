from datetime import date, datetime, time, timedelta, timezone

import pytest

from queuev.timefmt import (
    coerce_timestamp,
    combine,
    date_options,
    format_display_date,
    format_for_datetime_input,
    format_time_label,
    parse_datetime_input,
    parse_iso,
    time_options,
    to_iso,
)

MANILA = timezone(timedelta(hours=8))


def test_datetime_input_round_trip_truncates_to_minute():
    for iso in ("2025-07-02T08:15:42.123Z", "2024-02-29T23:59:59.999Z", "2025-01-01T00:00:00.000Z"):
        original = parse_iso(iso)
        text = format_for_datetime_input(iso, MANILA)
        back = parse_datetime_input(text, MANILA)
        assert back == original.replace(second=0, microsecond=0)


def test_datetime_input_invalid():
    assert format_for_datetime_input("") == ""
    assert format_for_datetime_input("yesterday") == ""
    assert parse_datetime_input("2025-13-01T00:00") is None


def test_to_iso_and_parse_iso():
    dt = datetime(2025, 7, 2, 0, 0, tzinfo=MANILA)
    assert to_iso(dt) == "2025-07-01T16:00:00.000Z"
    assert parse_iso(to_iso(dt)) == dt
    assert parse_iso(None) is None
    assert parse_iso("garbage") is None


def test_coerce_timestamp():
    assert coerce_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert coerce_timestamp("2025-07-02T08:00:00Z") == datetime(2025, 7, 2, 8, tzinfo=timezone.utc)
    assert coerce_timestamp(True) is None
    assert coerce_timestamp({"seconds": 1}) is None


def test_display_labels():
    assert format_display_date(date(2025, 7, 2)) == "JULY 2, 2025"
    assert format_time_label(time(13, 0)) == "1:00 PM"
    assert format_time_label(time(0, 30)) == "12:30 AM"


def test_option_lists():
    assert time_options(13, 15) == [time(13), time(14), time(15)]
    assert len(time_options()) == 23
    assert date_options(date(2025, 12, 31), 2) == [date(2025, 12, 31), date(2026, 1, 1)]
    with pytest.raises(ValueError):
        time_options(5, 4)
    with pytest.raises(ValueError):
        date_options(days=0)


def test_combine_keeps_parts():
    assert combine(date(2025, 7, 2), time(8, 30, 15), MANILA) == datetime(2025, 7, 2, 8, 30, tzinfo=MANILA)
