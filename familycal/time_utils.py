from __future__ import annotations

import os
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo


def _configured_tz() -> tzinfo:
    """Return the timezone configured for the application."""
    tz_name = os.getenv("FAMILYCAL_TZ")
    if tz_name:
        return ZoneInfo(tz_name)
    system_tz = datetime.now().astimezone().tzinfo
    return system_tz if system_tz is not None else ZoneInfo("UTC")


def get_now() -> datetime:
    """Return the current time in the configured timezone.

    Uses the ``FAMILYCAL_TZ`` environment variable if set, otherwise
    defaults to the system timezone.  Used for audit timestamps only;
    event times are naive wall-clock values.
    """
    return datetime.now(_configured_tz())


def ensure_tz(dt: datetime | None) -> datetime | None:
    """Ensure ``dt`` is timezone-aware using the configured timezone."""
    if dt is None:
        return None

    tz = _configured_tz()
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    if dt.tzinfo == tz:
        return dt
    return dt.astimezone(tz)


def parse_local_datetime(value: str) -> datetime:
    """Parse an ISO formatted datetime string into a naive wall-clock time.

    Calendar events are stored without timezone.  If ``value`` carries an
    offset it is converted into the configured timezone first and the
    offset is then dropped.
    """
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is not None:
        dt = dt.astimezone(_configured_tz()).replace(tzinfo=None)
    return dt
