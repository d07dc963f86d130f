"""
A short league day from signup to standings, driven the way the bot drives
it: commands for attendance, the matchmaker tick for pairing and reactions
for results.
"""

from league_bot.database.models import Fixture, FixtureStatus, Match
from league_bot.operations.match_events import ScoreSelected, WinnerSelected

from conftest import GUILD_ID


async def _react(dispatcher, match_id, user_id, side, code):
    await dispatcher.dispatch(WinnerSelected(match_id=match_id, user_id=user_id, is_admin=False, added=True,
                                             side=side))
    return await dispatcher.dispatch(ScoreSelected(match_id=match_id, user_id=user_id, is_admin=False,
                                                   added=True, score_code=code))


async def _pairs(db, match_ids):
    pairs = {}
    async with db.get_session() as session:
        for match_id in match_ids:
            match = await session.get(Match, match_id)
            fixture = await session.get(Fixture, match.fixture_id)
            pairs[match_id] = (match, fixture)
    return pairs


async def test_league_day(db, signup, make_ready, matchmaker, dispatcher, standings_service,
                          announcer, queue_ops):
    players = await signup(4)
    by_id = {p.id: p for p in players}
    await make_ready(*players)

    first = await matchmaker.run_tick(GUILD_ID)
    assert first.fixtures_generated == 12
    assert first.created_count == 2
    assert len(announcer.announcements) == 2

    # Player A wins every match 3-0
    for match, fixture in (await _pairs(db, first.matches_created)).values():
        player_a, player_b = by_id[match.player_a_id], by_id[match.player_b_id]
        await _react(dispatcher, match.id, player_a.discord_id, 'A', 0)
        outcome = await _react(dispatcher, match.id, player_b.discord_id, 'A', 0)
        assert outcome.outcome.newly_confirmed
        assert fixture.leg_number == 1

    rows = await standings_service.get_standings()
    assert sorted(row.points for row in rows) == [1, 1, 3, 3]
    assert all(row.played == 1 for row in rows)

    # Everyone queues again; the tick prefers pairs that have not met yet
    await make_ready(*players)
    second = await matchmaker.run_tick(GUILD_ID)
    assert second.created_count == 2
    first_pairs = {(m.player_a_id, m.player_b_id) for m, _ in (await _pairs(db, first.matches_created)).values()}
    for match, fixture in (await _pairs(db, second.matches_created)).values():
        assert (match.player_a_id, match.player_b_id) not in first_pairs
        assert fixture.leg_number == 1

    # Matched players left the queue and cannot queue again until they report
    assert await queue_ops.queue_snapshot() == []
    assert not (await queue_ops.ready(players[0].discord_id)).success

    stats = await standings_service.get_completion_stats()
    assert stats.required_per_player == 6
    assert all(stats.for_player(p.id).completed == 1 for p in players)


async def test_two_of_four_ready(db, signup, fixture_ops, queue_ops, matchmaker, dispatcher,
                                 standings_service):
    players = await signup(4)
    generated = await fixture_ops.generate_fixtures()
    assert generated.created == 12

    for player in players:
        assert (await queue_ops.check_in(player.discord_id)).success
    p1, p2, p3, p4 = players
    for player in (p1, p2):
        assert (await queue_ops.ready(player.discord_id)).success

    report = await matchmaker.run_tick(GUILD_ID)
    assert report.fixtures_generated == 0
    assert report.created_count == 1
    assert await queue_ops.queue_snapshot() == []

    (match, fixture) = (await _pairs(db, report.matches_created))[report.matches_created[0]]
    assert (match.player_a_id, match.player_b_id) == (p1.id, p2.id)

    # The two checked-in players who never readied were left alone
    for player in (p3, p4):
        assert not await queue_ops.has_blocking_match(player.id)

    await _react(dispatcher, match.id, p1.discord_id, 'A', 1)
    outcome = await _react(dispatcher, match.id, p2.discord_id, 'A', 1)
    assert outcome.outcome.newly_confirmed
    assert (outcome.outcome.score_a, outcome.outcome.score_b) == (3, 1)

    async with db.get_session() as session:
        fixture = await session.get(Fixture, match.fixture_id)
    assert fixture.status == FixtureStatus.CONFIRMED

    # 3-1 is a plain win: no sweep bonus, and the loser keeps the loss point
    points = {row.player_id: row.points for row in await standings_service.get_standings()}
    assert points == {p1.id: 2, p2.id: 1, p3.id: 0, p4.id: 0}
