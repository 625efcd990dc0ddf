"""
Time helpers shared by the service layer, the analyzers and the router.

All functions that depend on "now" accept it explicitly so callers can pass
an injected clock and tests stay deterministic.
"""

import math
import re
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, Optional, Tuple, Union
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]

DEFAULT_LOOKBACK_DAYS = 7

# Rendered action verbs for the last dotted segment of an event type
_ACTION_VERBS = {
    'create': 'created',
    'delete': 'deleted',
    'edit': 'modified',
    'add': 'added',
    'remove': 'removed'
}


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


@lru_cache(maxsize=32)
def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name, raising on unknown zones."""
    return ZoneInfo(name)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return ensure_aware(datetime.fromisoformat(text))


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    now = ensure_aware(now or utc_now())
    return now - timedelta(days=days)


def format_time_ago(timestamp: Union[str, datetime, None], now: Optional[datetime] = None) -> str:
    """Render a timestamp as "N minutes/hours/days ago"."""
    moment = parse_timestamp(timestamp)
    if moment is None:
        return 'unknown time'

    now = ensure_aware(now or utc_now())
    diff_seconds = (now - moment).total_seconds()
    minutes = int(diff_seconds // 60)
    hours = int(diff_seconds // 3600)
    days = int(diff_seconds // 86400)

    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    return f"{days} day{'s' if days != 1 else ''} ago"


def format_event_type(event_type: Optional[str]) -> str:
    """
    Turn a dotted event type into a short phrase.

    ``org.policy.edit`` becomes ``policy modified``; event types whose last
    segment is not a known action verb are rendered with dots replaced by
    spaces and the leading ``org``/``group`` scope dropped.
    """
    if not event_type:
        return 'unknown event'

    parts = event_type.split('.')
    action = parts.pop()
    verb = _ACTION_VERBS.get(action)
    if verb is not None:
        entity = parts[-1] if parts else action
        return f"{entity} {verb}"

    return re.sub(r'org |group ', '', event_type.replace('.', ' '), count=1)


def format_clock_time(moment: Optional[datetime], tz_name: str = 'UTC') -> str:
    if moment is None:
        return 'unknown time'
    return ensure_aware(moment).astimezone(get_zone(tz_name)).strftime('%H:%M:%S')


def format_datetime(moment: datetime, tz_name: str = 'UTC') -> str:
    return ensure_aware(moment).astimezone(get_zone(tz_name)).strftime('%Y-%m-%d %H:%M %Z')


_PERIOD_UNIT_DAYS = (
    ('quarter', 90),
    ('month', 30),
    ('year', 365),
    ('week', 7),
    ('day', 1),
)


def days_from_time_period(time_period: Optional[str], default: int = DEFAULT_LOOKBACK_DAYS) -> int:
    """
    Map an extracted time period to a look-back in days.

    "last week" -> 7, "3 weeks" -> 21, "48 hours" -> 2, "today" -> 1. Hour
    periods round up to whole days.
    """
    if not time_period:
        return default

    period = str(time_period).lower()
    match = re.search(r'(\d+)', period)
    count = int(match.group(1)) if match else None

    if 'today' in period or 'yesterday' in period:
        return 1
    if 'hour' in period:
        return max(1, math.ceil((count or 1) / 24))

    for unit, days in _PERIOD_UNIT_DAYS:
        if unit in period:
            return (count or 1) * days

    if count is not None:
        return count

    return default


def parse_time_range(
    time_range: Optional[str],
    now: datetime,
    business_hours: Tuple[int, int] = (8, 18)
) -> Tuple[datetime, datetime]:
    """
    Resolve a named time window into concrete (start, end) datetimes.

    ``now`` carries the timezone the wall-clock arithmetic is done in.

    - last night / overnight: 18:00 yesterday to 06:00 today
    - weekend: Friday 17:00 to Monday 09:00 of the latest weekend
      (to Sunday 23:59:59 while it is still Sunday)
    - after hours: business-hours end yesterday to business-hours start today
    - anything else: the last 24 hours
    """
    now = ensure_aware(now)
    phrase = (time_range or '').lower()

    if 'last night' in phrase or 'overnight' in phrase:
        end = now.replace(hour=6, minute=0, second=0, microsecond=0)
        start = (end - timedelta(days=1)).replace(hour=18)
        return start, end

    if 'weekend' in phrase:
        weekday = now.weekday()
        if weekday == 6:
            end = now.replace(hour=23, minute=59, second=59, microsecond=999999)
            start = (end - timedelta(days=2)).replace(hour=17, minute=0, second=0, microsecond=0)
        else:
            end = (now - timedelta(days=weekday)).replace(hour=9, minute=0, second=0, microsecond=0)
            start = (end - timedelta(days=3)).replace(hour=17)
        return start, end

    if re.search(r'after[- ]hours', phrase):
        start_hour, end_hour = business_hours
        end = now.replace(hour=start_hour, minute=0, second=0, microsecond=0)
        start = (end - timedelta(days=1)).replace(hour=end_hour)
        return start, end

    return now - timedelta(days=1), now


def local_hour(moment: datetime, tz_name: str = 'UTC') -> int:
    """Hour of day of ``moment`` in the given timezone."""
    return ensure_aware(moment).astimezone(get_zone(tz_name)).hour


def is_business_hours(moment: datetime, start_hour: int, end_hour: int, tz_name: str = 'UTC') -> bool:
    """Weekday and ``start_hour <= hour < end_hour`` in the given timezone."""
    local = ensure_aware(moment).astimezone(get_zone(tz_name))
    return start_hour <= local.hour < end_hour and local.weekday() < 5
