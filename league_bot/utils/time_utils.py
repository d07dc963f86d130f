from datetime import datetime
from typing import Optional

import pytz

from league_bot.config import Config


def league_today(timezone_name: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Calendar date (YYYY-MM-DD) in the league timezone"""
    try:
        tz = pytz.timezone(timezone_name or Config.DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        tz = pytz.timezone(Config.DEFAULT_TIMEZONE)
    if now is None:
        current = datetime.now(tz)
    elif now.tzinfo is None:
        current = pytz.utc.localize(now).astimezone(tz)
    else:
        current = now.astimezone(tz)
    return current.strftime('%Y-%m-%d')


def is_valid_timezone(timezone_name: str) -> bool:
    return timezone_name in pytz.all_timezones_set
