"""
Fixture generation and schedule queries.
"""

import asyncio

from sqlalchemy import func, select

from league_bot.database.database import Database
from league_bot.database.models import Fixture, FixtureStatus, PlayerStatus
from league_bot.operations.fixture_operations import FixtureOperations


async def _fixture_count(db) -> int:
    async with db.get_session() as session:
        return await session.scalar(select(func.count(Fixture.id)))


async def test_double_round_robin_is_idempotent(db, signup, fixture_ops):
    await signup(4)

    first = await fixture_ops.generate_fixtures()
    assert first.success
    assert first.created == 12

    second = await fixture_ops.generate_fixtures()
    assert second.success
    assert second.created == 0
    assert 'No new fixtures' in second.message
    assert await _fixture_count(db) == 12


async def test_concurrent_generation_inserts_each_leg_once(db, signup, fixture_ops):
    await signup(3)
    other_db = Database(database_url=db.database_url)
    await other_db.initialize()
    try:
        results = await asyncio.gather(
            fixture_ops.generate_fixtures(),
            FixtureOperations(other_db).generate_fixtures(),
        )
    finally:
        await other_db.close()

    assert all(r.success for r in results)
    assert sum(r.created for r in results) == 6
    assert await _fixture_count(db) == 6


async def test_needs_two_players(signup, fixture_ops):
    await signup(1)
    result = await fixture_ops.generate_fixtures()
    assert not result.success
    assert result.created == 0
    assert result.message.startswith('Need at least 2')


async def test_late_joiner_gets_only_missing_fixtures(db, signup, fixture_ops):
    await signup(3)
    assert (await fixture_ops.generate_fixtures()).created == 6

    await signup(1, start=4)
    result = await fixture_ops.generate_fixtures()
    assert result.created == 6
    assert await _fixture_count(db) == 12


async def test_pairs_are_normalised(db, signup, fixture_ops):
    await signup(3)
    await fixture_ops.generate_fixtures()
    async with db.get_session() as session:
        rows = (await session.execute(select(Fixture))).scalars().all()
    assert all(f.player_a_id < f.player_b_id for f in rows)
    assert {f.leg_number for f in rows} == {1, 2}


async def test_withdrawn_players_get_no_fixtures(signup, player_ops, fixture_ops):
    players = await signup(3)
    await player_ops.set_status(players[2].discord_id, PlayerStatus.WITHDRAWN, admin_id=1)
    assert (await fixture_ops.generate_fixtures()).created == 2


async def test_next_unplayed_fixture_is_lowest_leg(db, signup, fixture_ops):
    p1, p2 = await signup(2)
    await fixture_ops.generate_fixtures()

    fixture = await fixture_ops.next_unplayed_fixture(p2.id, p1.id)
    assert fixture.leg_number == 1
    assert (fixture.player_a_id, fixture.player_b_id) == (p1.id, p2.id)

    async with db.transaction() as session:
        assert await fixture_ops.claim_fixture(fixture.id, session)

    assert (await fixture_ops.next_unplayed_fixture(p1.id, p2.id)).leg_number == 2


async def test_claim_is_conditional(db, signup, fixture_ops):
    p1, p2 = await signup(2)
    await fixture_ops.generate_fixtures()
    fixture = await fixture_ops.next_unplayed_fixture(p1.id, p2.id)

    async with db.transaction() as session:
        assert await fixture_ops.claim_fixture(fixture.id, session)
    async with db.transaction() as session:
        assert not await fixture_ops.claim_fixture(fixture.id, session)

    async with db.get_session() as session:
        stored = await session.get(Fixture, fixture.id)
        assert stored.status == FixtureStatus.LOCKED_IN_MATCH


async def test_eligible_opponents_sorted_by_tag(db, signup, player_ops, fixture_ops):
    players = await signup(3)
    # Rename so id order and tag order differ
    await player_ops.signup(players[1].discord_id, 'Player 2', 'zed', 'p2@example.com', '+974 5555 0002')
    await player_ops.signup(players[2].discord_id, 'Player 3', 'Alpha', 'p3@example.com', '+974 5555 0003')
    await fixture_ops.generate_fixtures()

    opponents = await fixture_ops.eligible_opponents(players[0].id)
    assert [p.tag for p in opponents] == ['Alpha', 'zed']


async def test_left_to_play_counts(db, signup, fixture_ops, open_match, play):
    p1, p2, p3 = await signup(3)
    await fixture_ops.generate_fixtures()

    match = await open_match(p1, p2)
    await play(match, p1, p2)

    left = await fixture_ops.left_to_play(p1.id)
    by_opponent = {entry.opponent_tag: entry.matches_left for entry in left.entries}
    assert by_opponent == {'P3': 2, 'P2': 1}
    assert left.entries[0].opponent_tag == 'P3'
    assert left.total_left == 3
