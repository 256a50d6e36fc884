from datetime import date, datetime, timedelta, timezone

import pytest

from billing import time_utils
from billing.time_utils import parse_iso_date, to_iso_date, to_utc_z, utcnow


def test_parse_iso_date():
    assert parse_iso_date("2026-10-18") == date(2026, 10, 18)
    assert parse_iso_date(" 2026-10-18 ") == date(2026, 10, 18)
    assert parse_iso_date(None) is None
    assert parse_iso_date("  ") is None


def test_parse_iso_date_rejects_garbage():
    with pytest.raises(ValueError):
        parse_iso_date("tomorrow")


def test_to_utc_z_treats_naive_as_utc():
    assert to_utc_z(datetime(2026, 10, 18, 9, 30, 15, 999)) == "2026-10-18T09:30:15Z"
    assert to_utc_z(None) is None


def test_to_utc_z_converts_offsets():
    ist = timezone(timedelta(hours=5, minutes=30))
    assert to_utc_z(datetime(2026, 10, 18, 15, 0, tzinfo=ist)) == "2026-10-18T09:30:00Z"


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None
    assert to_iso_date(date(2026, 1, 2)) == "2026-01-02"
    assert to_iso_date(None) is None


def test_only_dates_are_parsed():
    # Request bodies and CLI options carry dates only; datetimes are server-stamped.
    assert not hasattr(time_utils, "parse_iso_datetime")
