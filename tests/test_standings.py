"""
Standings: points, tie-breaks, disqualification overrides and schedule
completion.
"""

from league_bot.database.models import PlayerStatus


async def _table(standings_service):
    return {row.tag: row for row in await standings_service.get_standings()}


async def test_sweep_and_loss_points(signup, fixture_ops, open_match, play, standings_service):
    p1, p2 = await signup(2)
    await fixture_ops.generate_fixtures()

    await play(await open_match(p1, p2), p1, p2, side='A', code=0)

    table = await _table(standings_service)
    assert (table['P1'].points, table['P1'].games_won, table['P1'].games_lost) == (3, 3, 0)
    assert (table['P2'].points, table['P2'].losses) == (1, 1)
    assert table['P1'].rank == 1


async def test_tie_break_on_game_difference(signup, fixture_ops, open_match, play, standings_service):
    p1, p2, p3 = await signup(3)
    await fixture_ops.generate_fixtures()

    # P1 beats P3 3-2 and P2 beats P3 3-1: both on 2 points, P2 has the better diff
    await play(await open_match(p1, p3), p1, p3, side='A', code=2)
    await play(await open_match(p2, p3), p2, p3, side='A', code=1)

    rows = await standings_service.get_standings()
    assert [row.tag for row in rows][:2] == ['P2', 'P1']
    assert rows[0].points == rows[1].points == 2
    assert rows[0].diff == 2 and rows[1].diff == 1


async def test_tag_breaks_full_ties(signup, standings_service):
    await signup(3)
    rows = await standings_service.get_standings()
    assert [row.tag for row in rows] == ['P1', 'P2', 'P3']


async def test_disqualification_forces_forfeits(signup, fixture_ops, open_match, play, player_ops,
                                                standings_service):
    p1, p2, p3 = await signup(3)
    await fixture_ops.generate_fixtures()

    # P3 won a leg before being disqualified; the override replaces it
    await play(await open_match(p1, p3), p1, p3, side='B', code=0)
    await player_ops.set_status(p3.discord_id, PlayerStatus.DISQUALIFIED, admin_id=1)

    table = await _table(standings_service)
    # Two forced 3-0 forfeit wins each against P3, no-show award 3 per fixture
    assert table['P1'].points == 6
    assert table['P2'].points == 6
    assert table['P1'].games_won == 6
    assert table['P3'].points == 0
    assert table['P3'].losses == 4
    assert table['P3'].status == 'disqualified'


async def test_two_disqualified_players_ignore_each_other(signup, fixture_ops, player_ops, standings_service):
    p1, p2, p3 = await signup(3)
    await fixture_ops.generate_fixtures()
    for player in (p2, p3):
        await player_ops.set_status(player.discord_id, PlayerStatus.DISQUALIFIED, admin_id=1)

    table = await _table(standings_service)
    assert table['P2'].played == 2
    assert table['P3'].played == 2
    assert table['P1'].wins == 4


async def test_withdrawn_players_are_not_listed(signup, player_ops, standings_service):
    p1, p2 = await signup(2)
    await player_ops.set_status(p2.discord_id, PlayerStatus.WITHDRAWN, admin_id=1)
    assert [row.tag for row in await standings_service.get_standings()] == ['P1']


async def test_points_scheme_is_read_from_league(signup, fixture_ops, open_match, play, admin_ops,
                                                 standings_service):
    p1, p2 = await signup(2)
    await fixture_ops.generate_fixtures()
    await admin_ops.update_points(admin_id=1, win=3, loss=0, no_show=3, sweep_bonus=0)

    await play(await open_match(p1, p2), p1, p2, side='A', code=0)
    table = await _table(standings_service)
    assert (table['P1'].points, table['P2'].points) == (3, 0)


async def test_completion_stats(signup, fixture_ops, open_match, play, standings_service):
    p1, p2, p3 = await signup(3)
    await fixture_ops.generate_fixtures()
    await play(await open_match(p1, p2), p1, p2)

    stats = await standings_service.get_completion_stats()
    assert stats.required_per_player == 4
    assert stats.for_player(p1.id).completed == 1
    assert stats.for_player(p3.id).completed == 0
    assert not stats.for_player(p1.id).is_complete
