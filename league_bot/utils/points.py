import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from league_bot.constants import PointDefaults


@dataclass(frozen=True)
class PointRules:
    """Per-league points scheme"""
    win: int = PointDefaults.WIN
    loss: int = PointDefaults.LOSS
    no_show: int = PointDefaults.NO_SHOW
    sweep_bonus: int = PointDefaults.SWEEP_BONUS

    def as_dict(self) -> dict:
        return {
            'points_win': self.win,
            'points_loss': self.loss,
            'points_no_show': self.no_show,
            'points_sweep_bonus': self.sweep_bonus,
        }


def _to_safe_int(value: Any, fallback: int) -> int:
    """Coerce to a non-negative int, truncating fractions; non-finite input yields the fallback"""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return max(0, math.trunc(number))


def normalize_point_rules(raw: Optional[Mapping[str, Any]] = None) -> PointRules:
    """
    Build a PointRules from a mapping of points_* values.

    Missing or invalid entries fall back to the defaults, negatives clamp to 0.
    """
    raw = raw or {}
    return PointRules(
        win=_to_safe_int(raw.get('points_win'), PointDefaults.WIN),
        loss=_to_safe_int(raw.get('points_loss'), PointDefaults.LOSS),
        no_show=_to_safe_int(raw.get('points_no_show'), PointDefaults.NO_SHOW),
        sweep_bonus=_to_safe_int(raw.get('points_sweep_bonus'), PointDefaults.SWEEP_BONUS),
    )


def rules_from_league(league) -> PointRules:
    return normalize_point_rules({
        'points_win': league.points_win,
        'points_loss': league.points_loss,
        'points_no_show': league.points_no_show,
        'points_sweep_bonus': league.points_sweep_bonus,
    })


def points_for_played_win(winner_score: int, loser_score: int, rules: PointRules) -> int:
    if winner_score > loser_score and loser_score == 0:
        return rules.win + rules.sweep_bonus
    return rules.win


def calc_match_points(
    score_a: int,
    score_b: int,
    winner_is_a: bool,
    is_forfeit: bool,
    rules: Optional[PointRules] = None,
) -> Tuple[int, int]:
    """
    Points awarded to (side A, side B) for one result.

    Forfeit: winner gets the no-show award and the loser nothing.
    Played: winner gets the win award plus the sweep bonus on a shutout,
    loser gets the loss award.
    """
    rules = rules or PointRules()
    if is_forfeit:
        return (rules.no_show, 0) if winner_is_a else (0, rules.no_show)

    if winner_is_a:
        return points_for_played_win(score_a, score_b, rules), rules.loss
    return rules.loss, points_for_played_win(score_b, score_a, rules)
