"""
Pure rule helpers: points, score codes, tournament setup parsing, input
validation, the profile cipher and the match transition table.
"""

import math

import pytest

from league_bot.constants import MatchFormats
from league_bot.database.models import MatchState, can_transition
from league_bot.operations.admin_operations import has_admin_privilege
from league_bot.services.profile_store import ProfileCipher, ProfileEncryptionError
from league_bot.utils.points import PointRules, calc_match_points, normalize_point_rules
from league_bot.utils.scores import parse_score_text, scores_for_side, shutout_score, winner_loser_games
from league_bot.utils.tournament_config import (
    parse_time_slot_starts, parse_tournament_start_date, validate_tournament_setup_input,
)
from league_bot.utils.validation import is_valid_email, is_valid_phone, mask_email, mask_phone

TEST_KEY_HEX = "0123456789abcdef" * 4


class TestPoints:

    def test_played_win_with_sweep_bonus(self):
        assert calc_match_points(3, 0, winner_is_a=True, is_forfeit=False) == (3, 1)

    def test_played_win_without_sweep(self):
        assert calc_match_points(1, 3, winner_is_a=False, is_forfeit=False) == (1, 2)

    def test_forfeit_gives_no_show_award_only(self):
        assert calc_match_points(0, 3, winner_is_a=False, is_forfeit=True) == (0, 3)

    def test_custom_rules(self):
        rules = PointRules(win=3, loss=0, no_show=3, sweep_bonus=0)
        assert calc_match_points(3, 0, winner_is_a=True, is_forfeit=False, rules=rules) == (3, 0)

    def test_normalize_defaults_and_clamping(self):
        rules = normalize_point_rules({
            'points_win': '5',
            'points_loss': -4,
            'points_no_show': 'abc',
            'points_sweep_bonus': 2.9,
        })
        assert rules == PointRules(win=5, loss=0, no_show=3, sweep_bonus=2)

    def test_normalize_rejects_non_finite_and_bool(self):
        rules = normalize_point_rules({'points_win': math.inf, 'points_loss': True})
        assert rules.win == 2
        assert rules.loss == 1

    def test_normalize_empty(self):
        assert normalize_point_rules(None) == PointRules()


class TestScores:

    def test_side_b_winner_flips_scores(self):
        assert scores_for_side('B', 1, MatchFormats.FT3) == (1, 3)

    def test_code_outside_format(self):
        assert winner_loser_games(2, MatchFormats.FT2) is None
        assert scores_for_side('A', 2, MatchFormats.FT2) is None

    def test_unknown_format_falls_back_to_default(self):
        assert winner_loser_games(2, 'FT9') == (3, 2)

    @pytest.mark.parametrize('text,fmt,expected', [
        ('3-1', MatchFormats.FT3, (3, 1)),
        ('3 : 2', MatchFormats.FT3, (3, 2)),
        ('2-1', MatchFormats.FT2, (2, 1)),
        ('4-0', MatchFormats.FT3, None),
        ('3-1', MatchFormats.FT2, None),
        ('', MatchFormats.FT3, None),
    ])
    def test_parse_score_text(self, text, fmt, expected):
        assert parse_score_text(text, fmt) == expected

    def test_shutout(self):
        assert shutout_score(MatchFormats.FT3) == (3, 0)
        assert shutout_score(MatchFormats.FT2) == (2, 0)


class TestTournamentSetup:

    def test_time_slots_normalised(self):
        assert parse_time_slot_starts('9:00, 18:30,00:00') == ['09:00', '18:30', '00:00']

    @pytest.mark.parametrize('raw', ['', '24:00', '18:00,18:00', '7pm'])
    def test_time_slots_rejected(self, raw):
        with pytest.raises(ValueError):
            parse_time_slot_starts(raw)

    def test_start_date(self):
        assert parse_tournament_start_date(' 2025-03-01 ') == '2025-03-01'
        with pytest.raises(ValueError):
            parse_tournament_start_date('2025-02-30')
        with pytest.raises(ValueError):
            parse_tournament_start_date('01/03/2025')

    def test_partial_update_maps_columns(self):
        values = validate_tournament_setup_input(total_tournament_days=30, minimum_showup_percent=80)
        assert values == {'season_days': 30, 'eligibility_min_percent': 0.8}

    def test_count_must_match_starts(self):
        with pytest.raises(ValueError, match='must match'):
            validate_tournament_setup_input(timeslot_count=3, time_slot_starts_raw='18:00,20:00')

    @pytest.mark.parametrize('kwargs', [
        {'max_players': 1},
        {'timeslot_count': 25},
        {'timeslot_duration_minutes': 10},
        {'total_tournament_days': 0},
        {'minimum_showup_percent': 101},
    ])
    def test_ranges(self, kwargs):
        with pytest.raises(ValueError):
            validate_tournament_setup_input(**kwargs)


class TestValidation:

    def test_email(self):
        assert is_valid_email('someone@example.com')
        assert not is_valid_email('someone@example')
        assert not is_valid_email('')

    def test_phone(self):
        assert is_valid_phone('+974 5555 1234')
        assert not is_valid_phone('12-34')

    def test_masks(self):
        assert mask_email('abcdef@example.com') == 'ab****@example.com'
        assert mask_email('a@example.com') == 'a*@example.com'
        assert mask_phone('+974 5555 1234') == '***1234'


class TestProfileCipher:

    def test_round_trip_uses_fresh_iv(self):
        cipher = ProfileCipher(TEST_KEY_HEX)
        first = cipher.encrypt('Jane Doe')
        second = cipher.encrypt('Jane Doe')
        assert first != second
        assert cipher.decrypt(first) == 'Jane Doe'
        assert len(first.split(':')) == 3

    def test_wrong_key_fails(self):
        sealed = ProfileCipher(TEST_KEY_HEX).encrypt('secret')
        with pytest.raises(ProfileEncryptionError):
            ProfileCipher('f' * 64).decrypt(sealed)

    def test_key_required(self):
        with pytest.raises(ProfileEncryptionError):
            ProfileCipher('abcd')

    def test_malformed_payload_is_none(self):
        assert ProfileCipher(TEST_KEY_HEX).decrypt('not-a-payload') is None


class TestTransitionsAndPrivilege:

    def test_cancelled_is_terminal(self):
        for target in MatchState:
            assert not can_transition(MatchState.CANCELLED, target)

    def test_pending_can_confirm(self):
        assert can_transition(MatchState.PENDING, MatchState.CONFIRMED)

    def test_reports_never_move_backwards(self):
        assert not can_transition(MatchState.REPORTED, MatchState.PENDING)
        assert not can_transition(MatchState.REPORTED, MatchState.PENDING, override=True)

    def test_confirmed_reopens_only_through_override(self):
        for target in (MatchState.PENDING, MatchState.REPORTED, MatchState.DISPUTED):
            assert not can_transition(MatchState.CONFIRMED, target)
            assert can_transition(MatchState.CONFIRMED, target, override=True)
        assert can_transition(MatchState.CONFIRMED, MatchState.CANCELLED)

    def test_admin_privilege(self):
        assert has_admin_privilege(True, [], [])
        assert has_admin_privilege(False, [1, 2], {2})
        assert not has_admin_privilege(False, [1], {2})
        assert not has_admin_privilege(False, [1], [])
