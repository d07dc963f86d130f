"""
Dual-report reconciliation and admin result commands.
"""

import pytest
from sqlalchemy import select

from league_bot.constants import MatchFormats
from league_bot.database.models import Fixture, FixtureStatus, Match, MatchState, Result
from league_bot.services.delivery import MessageRef
from league_bot.utils.exceptions import MatchStateError, ValidationError

from conftest import CHANNEL_ID, GUILD_ID


@pytest.fixture
def pair(signup, fixture_ops):
    async def _pair():
        p1, p2 = await signup(2)
        await fixture_ops.generate_fixtures()
        return p1, p2
    return _pair


async def _results(db, match_id):
    async with db.get_session() as session:
        rows = await session.execute(select(Result).where(Result.match_id == match_id))
        return list(rows.scalars().all())


async def _fixture(db, fixture_id):
    async with db.get_session() as session:
        return await session.get(Fixture, fixture_id)


async def test_matching_reports_confirm(db, pair, open_match, match_ops, queue_ops):
    p1, p2 = await pair()
    match = await open_match(p1, p2)

    partial = await match_ops.submit_report(match.id, p1.discord_id, winner_side='B')
    assert partial.state == MatchState.REPORTED
    await match_ops.submit_report(match.id, p1.discord_id, score_code=1)
    await match_ops.submit_report(match.id, p2.discord_id, score_code=1)
    outcome = await match_ops.submit_report(match.id, p2.discord_id, winner_side='B')

    assert outcome.state == MatchState.CONFIRMED
    assert outcome.newly_confirmed
    assert (outcome.score_a, outcome.score_b) == (1, 3)
    assert outcome.winner_id == p2.id

    (result,) = await _results(db, match.id)
    assert result.is_confirmed
    assert (result.reporter_id, result.confirmer_id) == (p1.discord_id, p2.discord_id)
    assert (await _fixture(db, match.fixture_id)).status == FixtureStatus.CONFIRMED
    assert not await queue_ops.has_blocking_match(p1.id)


async def test_disagreement_disputes_then_edit_confirms(db, pair, open_match, match_ops, announcer):
    p1, p2 = await pair()
    match = await open_match(p1, p2)

    await match_ops.submit_report(match.id, p1.discord_id, winner_side='A', score_code=0)
    disputed = await match_ops.submit_report(match.id, p2.discord_id, winner_side='B', score_code=0)

    assert disputed.state == MatchState.DISPUTED
    assert disputed.newly_disputed
    assert await _results(db, match.id) == []
    assert len(announcer.disputes) == 1
    assert (await _fixture(db, match.fixture_id)).status == FixtureStatus.LOCKED_IN_MATCH

    resolved = await match_ops.submit_report(match.id, p2.discord_id, winner_side='A')
    assert resolved.state == MatchState.CONFIRMED
    assert len(await _results(db, match.id)) == 1


async def test_outcome_updates_bound_message(db, pair, open_match, match_ops, announcer):
    p1, p2 = await pair()
    match = await open_match(p1, p2)
    async with db.transaction() as session:
        await match_ops.bind_message(match.id, MessageRef(channel_id=CHANNEL_ID, message_id=4321), session)

    await match_ops.submit_report(match.id, p1.discord_id, winner_side='A')

    ref, content = announcer.updates[-1]
    assert ref.message_id == 4321
    assert 'Status: Reported' in content
    assert (await match_ops.get_match_by_message(4321)).id == match.id


async def test_only_participants_report(pair, open_match, match_ops):
    p1, p2 = await pair()
    match = await open_match(p1, p2)
    with pytest.raises(ValidationError):
        await match_ops.submit_report(match.id, 999, winner_side='A')


async def test_confirmed_match_rejects_reports(pair, open_match, play, match_ops):
    p1, p2 = await pair()
    match = await open_match(p1, p2)
    await play(match, p1, p2)
    with pytest.raises(MatchStateError):
        await match_ops.submit_report(match.id, p1.discord_id, winner_side='B')


async def test_score_code_checked_against_guild_format(pair, open_match, match_ops, settings_service):
    await settings_service.update(GUILD_ID, {'match_format': 'ft2'})
    p1, p2 = await pair()
    match = await open_match(p1, p2)

    with pytest.raises(ValidationError):
        await match_ops.submit_report(match.id, p1.discord_id, score_code=2)

    await match_ops.submit_report(match.id, p1.discord_id, winner_side='A', score_code=1)
    outcome = await match_ops.submit_report(match.id, p2.discord_id, winner_side='A', score_code=1)
    assert outcome.match_format == MatchFormats.FT2
    assert (outcome.score_a, outcome.score_b) == (2, 1)


async def test_force_result(db, pair, open_match, match_ops):
    p1, p2 = await pair()
    match = await open_match(p1, p2)

    bad_winner = await match_ops.force_result(match.id, admin_id=1, winner_discord_id=999, score_text='3-0')
    assert not bad_winner.success
    bad_score = await match_ops.force_result(match.id, admin_id=1, winner_discord_id=p2.discord_id,
                                             score_text='3-3')
    assert bad_score.message.startswith('Invalid score')

    forced = await match_ops.force_result(match.id, admin_id=1, winner_discord_id=p2.discord_id, score_text='3-1')
    assert forced.success
    (result,) = await _results(db, match.id)
    assert (result.score_a, result.score_b) == (1, 3)
    assert result.reporter_id == result.confirmer_id == 1

    again = await match_ops.force_result(match.id, admin_id=1, winner_discord_id=p1.discord_id, score_text='3-0')
    assert not again.success
    assert 'already has a confirmed result' in again.message


async def test_forfeit_is_shutout(db, pair, open_match, match_ops):
    p1, p2 = await pair()
    match = await open_match(p1, p2)
    forced = await match_ops.force_result(match.id, admin_id=1, winner_discord_id=p1.discord_id, forfeit=True)
    assert forced.message.endswith('(FORFEIT). (result_id=%d)' % forced.data.id)
    (result,) = await _results(db, match.id)
    assert result.is_forfeit
    assert (result.score_a, result.score_b) == (3, 0)


async def test_void_reopens_fixture(db, pair, open_match, play, match_ops, fixture_ops):
    p1, p2 = await pair()
    match = await open_match(p1, p2)
    await play(match, p1, p2)

    voided = await match_ops.void_match(match.id, admin_id=1)
    assert voided.success
    async with db.get_session() as session:
        stored = await session.get(Match, match.id)
    assert stored.state == MatchState.CANCELLED
    assert await _results(db, match.id) == []
    assert (await _fixture(db, match.fixture_id)).status == FixtureStatus.UNPLAYED
    assert (await fixture_ops.next_unplayed_fixture(p1.id, p2.id)).id == match.fixture_id

    twice = await match_ops.void_match(match.id, admin_id=1)
    assert twice.message == f'Match {match.id} is already cancelled.'


async def test_mark_disputed(db, pair, open_match, play, match_ops, announcer):
    p1, p2 = await pair()
    match = await open_match(p1, p2)

    result = await match_ops.mark_disputed(match.id, admin_id=1, reason='no-show claim')
    assert result.success
    assert 'no-show claim' in announcer.disputes[-1][1]

    await match_ops.submit_report(match.id, p1.discord_id, winner_side='A', score_code=0)
    await match_ops.submit_report(match.id, p2.discord_id, winner_side='A', score_code=0)
    closed = await match_ops.mark_disputed(match.id, admin_id=1)
    assert not closed.success


async def test_cancelled_match_rejects_everything(pair, open_match, match_ops):
    p1, p2 = await pair()
    match = await open_match(p1, p2)
    await match_ops.void_match(match.id, admin_id=1)

    with pytest.raises(MatchStateError):
        await match_ops.submit_report(match.id, p1.discord_id, winner_side='A')
    forced = await match_ops.force_result(match.id, admin_id=1, winner_discord_id=p1.discord_id, score_text='3-0')
    assert not forced.success


async def test_list_matches(pair, open_match, play, match_ops):
    p1, p2 = await pair()
    first = await open_match(p1, p2)
    await play(first, p1, p2, side='A', code=1)
    second = await open_match(p1, p2)

    rows = await match_ops.list_matches(player_id=p1.id)
    assert [row[0] for row in rows] == [second.id, first.id]
    assert rows[1][3:] == ('confirmed', 3, 1)
    assert rows[0][3:] == ('pending', None, None)
