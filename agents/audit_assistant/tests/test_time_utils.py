from datetime import datetime, timedelta, timezone

import pytest

from shared.utils.time_utils import (
    days_from_time_period, format_event_type, format_time_ago, is_business_hours,
    local_hour, parse_time_range, parse_timestamp
)


UTC = timezone.utc


@pytest.mark.parametrize('event_type, expected', [
    ('org.policy.edit', 'policy modified'),
    ('org.webhook.add', 'webhook added'),
    ('org.user.remove', 'user removed'),
    ('org.user.invite.accept', 'user invite accept'),
    ('api.access', 'api access'),
    (None, 'unknown event'),
])
def test_format_event_type(event_type, expected):
    assert format_event_type(event_type) == expected


@pytest.mark.parametrize('period, days', [
    (None, 7),
    ('last week', 7),
    ('3 weeks', 21),
    ('24 hours', 1),
    ('48 hours', 2),
    ('today', 1),
    ('yesterday', 1),
    ('last month', 30),
    ('10 days', 10),
    ('recent', 7),
])
def test_days_from_time_period(period, days):
    assert days_from_time_period(period) == days


def test_format_time_ago():
    now = datetime(2026, 10, 14, 12, 0, tzinfo=UTC)
    assert format_time_ago(now - timedelta(minutes=1), now) == '1 minute ago'
    assert format_time_ago(now - timedelta(hours=5), now) == '5 hours ago'
    assert format_time_ago('2026-10-11T12:00:00Z', now) == '3 days ago'
    assert format_time_ago(None, now) == 'unknown time'


def test_parse_timestamp_accepts_z_suffix():
    assert parse_timestamp('2026-10-14T03:00:00Z') == datetime(2026, 10, 14, 3, 0, tzinfo=UTC)


def test_last_night_window():
    now = datetime(2026, 10, 14, 12, 0, tzinfo=UTC)
    start, end = parse_time_range('last night', now)
    assert start == datetime(2026, 10, 13, 18, 0, tzinfo=UTC)
    assert end == datetime(2026, 10, 14, 6, 0, tzinfo=UTC)


def test_weekend_window_midweek():
    # Wednesday: Friday 17:00 to Monday 09:00 of the weekend just past
    now = datetime(2026, 10, 14, 12, 0, tzinfo=UTC)
    start, end = parse_time_range('over the weekend', now)
    assert end == datetime(2026, 10, 12, 9, 0, tzinfo=UTC)
    assert start == datetime(2026, 10, 9, 17, 0, tzinfo=UTC)


def test_weekend_window_on_sunday():
    now = datetime(2026, 10, 18, 10, 0, tzinfo=UTC)
    start, end = parse_time_range('weekend', now)
    assert start == datetime(2026, 10, 16, 17, 0, tzinfo=UTC)
    assert end.date() == now.date() and end.hour == 23


def test_after_hours_window_uses_business_hours():
    now = datetime(2026, 10, 14, 12, 0, tzinfo=UTC)
    start, end = parse_time_range('after hours', now, business_hours=(9, 17))
    assert start == datetime(2026, 10, 13, 17, 0, tzinfo=UTC)
    assert end == datetime(2026, 10, 14, 9, 0, tzinfo=UTC)


@pytest.mark.parametrize('phrase', ['after-hours', 'what happened after-hours?', 'After Hours'])
def test_after_hours_window_accepts_extracted_spellings(phrase):
    now = datetime(2026, 10, 14, 12, 0, tzinfo=UTC)
    assert parse_time_range(phrase, now) == (
        datetime(2026, 10, 13, 18, 0, tzinfo=UTC),
        datetime(2026, 10, 14, 8, 0, tzinfo=UTC)
    )


def test_unknown_range_defaults_to_last_day():
    now = datetime(2026, 10, 14, 12, 0, tzinfo=UTC)
    assert parse_time_range('sometime', now) == (now - timedelta(days=1), now)


def test_business_hours_respect_timezone():
    # 14:00 UTC is 10:00 in New York during daylight saving time
    moment = datetime(2026, 7, 15, 14, 0, tzinfo=UTC)
    assert local_hour(moment, 'America/New_York') == 10
    assert is_business_hours(moment, 8, 18, 'America/New_York')
    assert not is_business_hours(moment.replace(hour=3), 8, 18, 'UTC')
    # Saturday
    assert not is_business_hours(datetime(2026, 7, 18, 10, 0, tzinfo=UTC), 8, 18)
