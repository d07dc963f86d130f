"""
League-wide constants for the League Discord Bot.

Magic numbers, score tables and reaction emoji used across the engine and
the Discord layer.
"""


class PointDefaults:
    """Fallback point values used when a league row holds invalid data."""

    WIN = 2
    LOSS = 1
    NO_SHOW = 3
    SWEEP_BONUS = 1


class LeagueDefaults:
    """Defaults for a freshly created league row."""

    SEASON_DAYS = 20
    ATTENDANCE_MIN_DAYS = 15
    ELIGIBILITY_MIN_PERCENT = 0.75
    MAX_PLAYERS = 64
    TIMESLOT_COUNT = 4
    TIMESLOT_DURATION_MINUTES = 120
    TIMESLOT_STARTS = '18:00,20:00,22:00,00:00'

    # Each unordered pair plays twice
    LEGS_PER_PAIR = 2

    # Missed check-in days tolerated before a player drops below eligibility
    MISSED_CHECKIN_ALLOWANCE = 5


class MatchFormats:
    """Supported first-to-N formats and their score-code tables."""

    FT3 = 'FT3'
    FT2 = 'FT2'
    DEFAULT = FT3

    # score_code -> (winner games, loser games)
    SCORE_TABLES = {
        FT3: {0: (3, 0), 1: (3, 1), 2: (3, 2)},
        FT2: {0: (2, 0), 1: (2, 1)},
    }

    @classmethod
    def is_valid(cls, match_format: str) -> bool:
        return match_format in cls.SCORE_TABLES


class ReactionEmoji:
    """Emoji used as interactive affordances on match messages."""

    SIDE_A = '🇦'
    SIDE_B = '🇧'
    ADMIN_OVERRIDE = '❗'
    REMATCH = '🔁'
    CONFIRM = '✅'
    CANCEL = '❌'

    # Index in this list is the score code
    SCORE_CODES = ['0️⃣', '1️⃣', '2️⃣']

    @classmethod
    def score_emoji_for_format(cls, match_format: str):
        count = len(MatchFormats.SCORE_TABLES.get(match_format, MatchFormats.SCORE_TABLES[MatchFormats.DEFAULT]))
        return cls.SCORE_CODES[:count]


class ResetLevels:
    """Destructive reset scopes, smallest to largest."""

    CHECKINS = 'checkins'
    LEAGUE = 'league'
    EVERYTHING = 'everything'

    ALL = (CHECKINS, LEAGUE, EVERYTHING)


class UIConstants:
    """Constants for Discord UI elements."""

    ERROR_COLOR = 0xe74c3c         # Red for errors
    SUCCESS_COLOR = 0x2ecc71       # Green for success

    # Standings table is truncated to keep the message under Discord's limit
    STANDINGS_TABLE_ROWS = 20
    MATCH_LIST_LIMIT = 30
