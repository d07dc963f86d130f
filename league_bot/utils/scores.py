import re
from typing import Optional, Tuple

from league_bot.constants import MatchFormats

# Accepts "3-1", "3:1", "3 - 2" style strings for a first-to-three win
_FT3_SCORE_RE = re.compile(r'^3\s*[-:]\s*([0-2])$')
_FT2_SCORE_RE = re.compile(r'^2\s*[-:]\s*([0-1])$')


def normalize_format(match_format: Optional[str]) -> str:
    fmt = (match_format or '').upper()
    return fmt if MatchFormats.is_valid(fmt) else MatchFormats.DEFAULT


def winner_loser_games(score_code: int, match_format: str = MatchFormats.DEFAULT) -> Optional[Tuple[int, int]]:
    """(winner games, loser games) for a score code, None when the code is not valid for the format"""
    table = MatchFormats.SCORE_TABLES[normalize_format(match_format)]
    return table.get(score_code)


def scores_for_side(winner_side: str, score_code: int,
                    match_format: str = MatchFormats.DEFAULT) -> Optional[Tuple[int, int]]:
    """Translate a winner side and score code into (score_a, score_b)"""
    games = winner_loser_games(score_code, match_format)
    if games is None or winner_side not in ('A', 'B'):
        return None
    winner_games, loser_games = games
    if winner_side == 'A':
        return winner_games, loser_games
    return loser_games, winner_games


def shutout_score(match_format: str = MatchFormats.DEFAULT) -> Tuple[int, int]:
    return MatchFormats.SCORE_TABLES[normalize_format(match_format)][0]


def parse_score_text(text: str, match_format: str = MatchFormats.DEFAULT) -> Optional[Tuple[int, int]]:
    """
    Parse an admin-entered score such as "3-1" into (winner games, loser games).

    Returns None when the text is not a permitted score for the format.
    """
    pattern = _FT2_SCORE_RE if normalize_format(match_format) == MatchFormats.FT2 else _FT3_SCORE_RE
    match = pattern.match((text or '').strip())
    if not match:
        return None
    code = int(match.group(1))
    return winner_loser_games(code, match_format)
