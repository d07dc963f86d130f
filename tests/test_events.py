"""
Reaction parsing and event dispatch.
"""

import pytest

from league_bot.constants import ReactionEmoji, ResetLevels
from league_bot.database.models import MatchState
from league_bot.operations.match_events import (
    OverrideToggled, RematchVoted, ResetDecision, ScoreSelected, WinnerSelected,
    parse_reaction, parse_reset_reaction,
)

ADMIN = 42
OTHER_ADMIN = 43


def test_parse_reaction():
    base = dict(match_id=1, user_id=2, is_admin=False, added=True)
    assert parse_reaction(ReactionEmoji.SIDE_A, 1, 2, False, True) == WinnerSelected(side='A', **base)
    assert parse_reaction(ReactionEmoji.SIDE_B, 1, 2, False, True).side == 'B'
    assert parse_reaction('2️⃣', 1, 2, False, True) == ScoreSelected(score_code=2, **base)
    assert isinstance(parse_reaction(ReactionEmoji.ADMIN_OVERRIDE, 1, 2, True, False), OverrideToggled)
    assert isinstance(parse_reaction(ReactionEmoji.REMATCH, 1, 2, False, True), RematchVoted)
    assert parse_reaction('👍', 1, 2, False, True) is None


def test_parse_reset_reaction():
    assert parse_reset_reaction(ReactionEmoji.CONFIRM, 9, 1).confirm
    assert not parse_reset_reaction(ReactionEmoji.CANCEL, 9, 1).confirm
    assert parse_reset_reaction(ReactionEmoji.SIDE_A, 9, 1) is None


def test_score_emoji_follow_format():
    assert ReactionEmoji.score_emoji_for_format('FT2') == ['0️⃣', '1️⃣']
    assert len(ReactionEmoji.score_emoji_for_format('FT3')) == 3


@pytest.fixture
def started(signup, fixture_ops, open_match):
    async def _started():
        p1, p2 = await signup(2)
        await fixture_ops.generate_fixtures()
        return p1, p2, await open_match(p1, p2)
    return _started


def _winner(match, user_id, side, is_admin=False, added=True):
    return WinnerSelected(match_id=match.id, user_id=user_id, is_admin=is_admin, added=added, side=side)


def _score(match, user_id, code, is_admin=False, added=True):
    return ScoreSelected(match_id=match.id, user_id=user_id, is_admin=is_admin, added=added, score_code=code)


def _override(match, user_id, is_admin=True, added=True):
    return OverrideToggled(match_id=match.id, user_id=user_id, is_admin=is_admin, added=added)


async def test_player_reactions_are_reports(started, dispatcher):
    p1, p2, match = await started()

    result = await dispatcher.dispatch(_winner(match, p1.discord_id, 'A'))
    assert result.outcome.state == MatchState.REPORTED
    assert not result.remove_reaction

    for event in (_score(match, p1.discord_id, 0), _winner(match, p2.discord_id, 'A')):
        await dispatcher.dispatch(event)
    final = await dispatcher.dispatch(_score(match, p2.discord_id, 0))
    assert final.outcome.newly_confirmed


async def test_withdrawn_player_reaction_keeps_report(started, dispatcher, match_ops):
    p1, _, match = await started()
    await dispatcher.dispatch(_winner(match, p1.discord_id, 'B'))

    result = await dispatcher.dispatch(_winner(match, p1.discord_id, 'B', added=False))
    assert result.outcome is None
    assert (await match_ops.get_match(match.id)).state == MatchState.REPORTED


async def test_rejected_reaction_is_removed(started, dispatcher):
    _, _, match = await started()
    result = await dispatcher.dispatch(_winner(match, 31337, 'A'))
    assert result.remove_reaction
    assert result.message == '❌ Only the two players in this match can report it.'

    # The bot removing it again must not produce a second notice
    removed = await dispatcher.dispatch(_winner(match, 31337, 'A', added=False))
    assert not removed.remove_reaction
    assert removed.message is None


async def test_non_admin_override(started, dispatcher):
    p1, _, match = await started()
    result = await dispatcher.dispatch(_override(match, p1.discord_id, is_admin=False))
    assert result.remove_reaction
    assert result.message == '❌ Only admins can override a match.'

    withdrawn = await dispatcher.dispatch(_override(match, p1.discord_id, is_admin=False, added=False))
    assert not withdrawn.remove_reaction and withdrawn.message is None


async def test_admin_override_via_reactions(started, dispatcher, override_ops):
    p1, p2, match = await started()
    await dispatcher.dispatch(_winner(match, p1.discord_id, 'A'))

    armed = await dispatcher.dispatch(_override(match, ADMIN))
    assert armed.message.startswith('❗ Override armed')
    assert await override_ops.active_owner(match.id) == ADMIN

    await dispatcher.dispatch(_winner(match, ADMIN, 'B', is_admin=True))
    decided = await dispatcher.dispatch(_score(match, ADMIN, 1, is_admin=True))
    assert decided.outcome.state == MatchState.CONFIRMED
    assert decided.outcome.override_admin_id == ADMIN

    contested = await dispatcher.dispatch(_winner(match, OTHER_ADMIN, 'A', is_admin=True))
    assert contested.remove_reaction
    assert 'Another admin' in contested.message

    released = await dispatcher.dispatch(_override(match, ADMIN, added=False))
    assert released.outcome.state == MatchState.REPORTED
    assert await override_ops.active_owner(match.id) is None


async def test_admin_participant_without_override_reports(signup, fixture_ops, open_match, dispatcher):
    p1, p2 = await signup(2)
    await fixture_ops.generate_fixtures()
    match = await open_match(p1, p2)

    result = await dispatcher.dispatch(_winner(match, p1.discord_id, 'A', is_admin=True))
    assert result.outcome.state == MatchState.REPORTED


async def test_rematch_on_open_match_is_removed(started, dispatcher):
    p1, _, match = await started()
    event = RematchVoted(match_id=match.id, user_id=p1.discord_id, is_admin=False, added=True)
    result = await dispatcher.dispatch(event)
    assert result.remove_reaction
    assert result.message == '❌ Rematch is only available after the match is confirmed.'


async def test_reset_prompt_decisions(signup, admin_ops, dispatcher):
    await signup(2)
    token = (await admin_ops.request_reset(ResetLevels.EVERYTHING, ADMIN)).data
    await admin_ops.bind_reset_message(token, message_id=8080, admin_id=ADMIN)

    foreign = await dispatcher.dispatch(ResetDecision(message_id=8080, user_id=OTHER_ADMIN, confirm=True))
    assert foreign.remove_reaction
    assert foreign.message.startswith('Only the admin who requested')

    confirmed = await dispatcher.dispatch(ResetDecision(message_id=8080, user_id=ADMIN, confirm=True))
    assert not confirmed.remove_reaction
    assert confirmed.message.startswith('Reset executed successfully.')


async def test_reset_prompt_cancel(admin_ops, dispatcher):
    token = (await admin_ops.request_reset(ResetLevels.LEAGUE, ADMIN)).data
    await admin_ops.bind_reset_message(token, message_id=8181, admin_id=ADMIN)

    result = await dispatcher.dispatch(ResetDecision(message_id=8181, user_id=ADMIN, confirm=False))
    assert result.message == 'Reset cancelled.'
    assert not await admin_ops.is_reset_prompt(8181)


async def test_unknown_event_type(dispatcher):
    with pytest.raises(TypeError):
        await dispatcher.dispatch(object())
