"""
Tournament setup parsing and validation.

Admin-entered tournament settings are validated here before they reach the
leagues row. Every parser raises ValueError with a user-facing message.
"""

import re
from datetime import date
from typing import Any, Dict, List, Optional

_TIME_RE = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)$')
_DATE_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')


def parse_time_slot_starts(raw: Optional[str]) -> List[str]:
    """
    Parse a comma-separated list of 24h start times.

    Times are normalised to zero-padded HH:MM, duplicates are rejected.

    Raises:
        ValueError: If the list is empty or any entry is malformed or duplicated
    """
    text = str(raw or '').strip()
    if not text:
        raise ValueError('Time slot starts cannot be empty.')

    parts = [part.strip() for part in text.split(',') if part.strip()]
    if not parts:
        raise ValueError('Provide at least one time slot start.')

    seen = set()
    normalized = []
    for part in parts:
        match = _TIME_RE.match(part)
        if not match:
            raise ValueError(f'Invalid time format: {part}. Use HH:MM (24h).')
        value = f'{match.group(1).zfill(2)}:{match.group(2)}'
        if value in seen:
            raise ValueError(f'Duplicate time slot start found: {value}.')
        seen.add(value)
        normalized.append(value)

    return normalized


def parse_tournament_start_date(raw: Optional[str]) -> str:
    """Validate a YYYY-MM-DD calendar date and return it normalised"""
    text = str(raw or '').strip()
    if not text:
        raise ValueError('Tournament start date cannot be empty.')

    match = _DATE_RE.match(text)
    if not match:
        raise ValueError('Tournament start date must be in YYYY-MM-DD format.')

    try:
        parsed = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        raise ValueError('Tournament start date is invalid.')

    return parsed.isoformat()


def _check_int_range(value: Any, low: int, high: int, message: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < low or value > high:
        raise ValueError(message)
    return value


def validate_tournament_setup_input(
    max_players: Optional[int] = None,
    timeslot_count: Optional[int] = None,
    timeslot_duration_minutes: Optional[int] = None,
    total_tournament_days: Optional[int] = None,
    minimum_showup_percent: Optional[float] = None,
    time_slot_starts_raw: Optional[str] = None,
    clear_timeslot_starts: bool = False,
    tournament_start_date_raw: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Validate a partial tournament settings update.

    Only supplied fields are returned, keyed by their leagues column name.

    Raises:
        ValueError: On the first invalid field
    """
    values: Dict[str, Any] = {}

    if max_players is not None:
        values['max_players'] = _check_int_range(
            max_players, 2, 1024, 'No. of players must be an integer between 2 and 1024.')

    if timeslot_count is not None:
        values['timeslot_count'] = _check_int_range(
            timeslot_count, 1, 24, 'No. of timeslots must be an integer between 1 and 24.')

    if timeslot_duration_minutes is not None:
        values['timeslot_duration_minutes'] = _check_int_range(
            timeslot_duration_minutes, 15, 1440,
            'Timeslot duration must be an integer between 15 and 1440 minutes.')

    if total_tournament_days is not None:
        values['season_days'] = _check_int_range(
            total_tournament_days, 1, 365, 'Total tournament days must be an integer between 1 and 365.')

    if minimum_showup_percent is not None:
        if (isinstance(minimum_showup_percent, bool)
                or not isinstance(minimum_showup_percent, (int, float))
                or minimum_showup_percent != minimum_showup_percent  # NaN
                or minimum_showup_percent < 0 or minimum_showup_percent > 100):
            raise ValueError('Minimum show up % must be a number between 0 and 100.')
        values['eligibility_min_percent'] = round(minimum_showup_percent / 100, 4)

    if time_slot_starts_raw is not None:
        values['timeslot_starts'] = ','.join(parse_time_slot_starts(time_slot_starts_raw))

    if clear_timeslot_starts:
        values['timeslot_starts'] = ''

    if tournament_start_date_raw is not None:
        values['tournament_start_date'] = parse_tournament_start_date(tournament_start_date_raw)

    if values.get('timeslot_count') and values.get('timeslot_starts'):
        starts_count = len(values['timeslot_starts'].split(','))
        if starts_count != values['timeslot_count']:
            raise ValueError(
                f"No. of timeslots ({values['timeslot_count']}) must match start times count ({starts_count})."
            )

    return values
