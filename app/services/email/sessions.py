"""Timestamp normalization and FX market session classification.

Trade times are stored as ISO-8601 strings with an explicit UTC offset
("2024-11-29T10:30:00+09:00"). Session windows are defined in the default
journal timezone (JST) and overlap; they are checked in a fixed order and the
first window containing the hour wins.
"""

import logging
import re
from datetime import datetime, time
from enum import Enum
from typing import NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = settings.default_timezone

ISO_WITH_OFFSET = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?[+-]\d{2}:\d{2}")

# 2024-11-29 10:30:15, 2024/11/29 10:30, 2024年11月29日(金) 10時30分, 2024.11.29
_LOCAL_DATETIME = re.compile(
    r"(\d{4})\s*[-/.年]\s*(\d{1,2})\s*[-/.月]\s*(\d{1,2})\s*日?(?:\s*[(（][月火水木金土日][)）])?"
    r"(?:\s*T?\s*(\d{1,2})\s*[:時]\s*(\d{2})(?:\s*[:分]\s*(\d{2}))?)?"
)
_BARE_TIME = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*$")


class MarketSession(str, Enum):
    TOKYO = "tokyo"
    LONDON = "london"
    NEW_YORK = "newyork"
    SYDNEY = "sydney"


class SessionWindow(NamedTuple):
    """Session hours in the default timezone; open > close wraps past midnight."""

    session: MarketSession
    open_hour: int
    close_hour: int

    def contains(self, hour: int) -> bool:
        if self.open_hour < self.close_hour:
            return self.open_hour <= hour < self.close_hour
        return hour >= self.open_hour or hour < self.close_hour


# Checked in this order. London and New York overlap 22:00-01:00 JST and
# London wins; Sydney only catches 06:00-09:00 because Tokyo is checked first.
SESSION_WINDOWS: tuple[SessionWindow, ...] = (
    SessionWindow(MarketSession.TOKYO, 9, 15),
    SessionWindow(MarketSession.LONDON, 17, 1),
    SessionWindow(MarketSession.NEW_YORK, 22, 6),
    SessionWindow(MarketSession.SYDNEY, 6, 15),
)

SESSION_DISPLAY_NAMES = {
    MarketSession.TOKYO: "東京",
    MarketSession.LONDON: "ロンドン",
    MarketSession.NEW_YORK: "ニューヨーク",
    MarketSession.SYDNEY: "シドニー",
}


def _zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using %s", tz_name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def format_datetime(dt: datetime, tz_name: str = DEFAULT_TIMEZONE) -> str:
    """ISO-8601 in the given zone with an explicit offset, second precision.

    Naive datetimes are taken to already be local time in that zone.
    """
    zone = _zone(tz_name)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=zone)
    else:
        dt = dt.astimezone(zone)
    return dt.isoformat(timespec="seconds")


def current_timestamp(tz_name: str = DEFAULT_TIMEZONE) -> str:
    return format_datetime(datetime.now(_zone(tz_name)), tz_name)


def _parse_local(value: str, tz_name: str) -> datetime | None:
    bare = _BARE_TIME.match(value)
    if bare:
        hour, minute, second = int(bare.group(1)), int(bare.group(2)), int(bare.group(3) or 0)
        today = datetime.now(_zone(tz_name)).date()
        try:
            return datetime.combine(today, time(hour, minute, second))
        except ValueError:
            return None

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        parsed = None
    if parsed is not None:
        return parsed

    match = _LOCAL_DATETIME.search(value)
    if not match:
        return None
    year, month, day, hour, minute, second = (int(g) if g else 0 for g in match.groups())
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None


def parse_timestamp(value: str, default_tz: str = DEFAULT_TIMEZONE) -> str:
    """Normalize a timestamp to ISO-8601 with an explicit offset.

    Already-offset ISO strings pass through untouched. Anything else is read as
    local time in ``default_tz``. Unparseable input falls back to the current
    time, matching how trades without a usable time are stamped.
    """
    if value and ISO_WITH_OFFSET.fullmatch(value.strip()):
        return value.strip()

    parsed = _parse_local(value or "", default_tz)
    if parsed is None:
        logger.debug("Unparseable timestamp %r, using current time", value)
        return current_timestamp(default_tz)
    return format_datetime(parsed, default_tz)


def session_for_hour(hour: int) -> MarketSession | None:
    """First session window (in check order) containing the local hour."""
    for window in SESSION_WINDOWS:
        if window.contains(hour):
            return window.session
    return None


def detect_market_session(timestamp: str | None, tz_name: str = DEFAULT_TIMEZONE) -> MarketSession | None:
    """Classify a timestamp (or bare "HH:MM" local time) into a market session.

    No timestamp means no session.
    """
    if not timestamp:
        return None

    bare = _BARE_TIME.match(timestamp)
    if bare:
        hour = int(bare.group(1))
        return session_for_hour(hour) if 0 <= hour < 24 else None

    parsed = _parse_local(timestamp, tz_name)
    if parsed is None:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(_zone(tz_name))
    return session_for_hour(parsed.hour)


def session_display_name(session: MarketSession) -> str:
    return SESSION_DISPLAY_NAMES[session]
