from datetime import date, datetime, timedelta, timezone

from datetime_utils import UTC, parse_day, parse_rfc3339, to_rfc3339_utc, today_iso


def test_parse_rfc3339_zulu_and_fraction():
    result = parse_rfc3339("2024-03-02T10:15:30.1234567Z")
    assert result == datetime(2024, 3, 2, 10, 15, 30, 123456, tzinfo=UTC)


def test_parse_rfc3339_converts_offsets_to_utc():
    result = parse_rfc3339("2024-03-02T10:00:00-03:00")
    assert result == datetime(2024, 3, 2, 13, 0, tzinfo=UTC)


def test_parse_rfc3339_rejects_garbage():
    assert parse_rfc3339("") is None
    assert parse_rfc3339(None) is None
    assert parse_rfc3339("ontem") is None


def test_to_rfc3339_utc_drops_microseconds():
    value = datetime(2024, 3, 2, 10, 0, 5, 999, tzinfo=timezone(timedelta(hours=-3)))
    assert to_rfc3339_utc(value) == "2024-03-02T13:00:05Z"


def test_parse_day_accepts_both_forms():
    assert parse_day("2024-03-02") == date(2024, 3, 2)
    assert parse_day("02/03/2024") == date(2024, 3, 2)
    assert parse_day("2024/03/02") is None
    assert parse_day(None) is None


def test_today_iso():
    assert today_iso(date(2024, 1, 5)) == "2024-01-05"
