"""
Matchmaker: pairing, optimistic claims, compensation on delivery failure and
admin-directed matches.
"""

import asyncio
import random

from sqlalchemy import select

from league_bot.database.models import Fixture, FixtureStatus, Match, MatchState
from league_bot.operations.fixture_operations import FixtureOperations
from league_bot.operations.matchmaking import Matchmaker
from league_bot.services.audit import AuditActions

from conftest import CHANNEL_ID, GUILD_ID


async def _matches(db):
    async with db.get_session() as session:
        return list((await session.execute(select(Match).order_by(Match.id))).scalars().all())


async def test_tick_pairs_ready_players(db, signup, make_ready, matchmaker, queue_ops, announcer):
    p1, p2 = await signup(2)
    await make_ready(p1, p2)

    report = await matchmaker.run_tick(GUILD_ID)

    assert report.created_count == 1
    assert report.fixtures_generated == 2
    (match,) = await _matches(db)
    assert match.state == MatchState.PENDING
    assert match.channel_id == CHANNEL_ID
    assert match.message_id is not None
    assert await queue_ops.queue_snapshot() == []

    async with db.get_session() as session:
        fixture = await session.get(Fixture, match.fixture_id)
    assert fixture.leg_number == 1
    assert fixture.status == FixtureStatus.LOCKED_IN_MATCH
    assert announcer.announcements[0].player_a_discord_id == p1.discord_id


async def test_tick_pairs_disjoint_players(db, signup, make_ready, matchmaker):
    players = await signup(5)
    await make_ready(*players)

    report = await matchmaker.run_tick(GUILD_ID)

    assert report.created_count == 2
    matches = await _matches(db)
    seated = [pid for m in matches for pid in (m.player_a_id, m.player_b_id)]
    assert len(seated) == len(set(seated)) == 4


async def test_players_with_open_match_are_skipped(db, signup, make_ready, matchmaker, fixture_ops, open_match):
    p1, p2, p3 = await signup(3)
    await fixture_ops.generate_fixtures()
    await make_ready(p1, p3)
    await open_match(p1, p2)

    report = await matchmaker.run_tick(GUILD_ID)
    assert report.created_count == 0


async def test_missing_channel_is_audited(db, signup, make_ready, matchmaker, announcer, audit_service):
    players = await signup(2)
    await make_ready(*players)
    announcer.channel_id = None

    report = await matchmaker.run_tick(GUILD_ID)

    assert report.channel_missing
    assert report.created_count == 0
    assert await _matches(db) == []
    entries = await audit_service.entries(action_type=AuditActions.MATCHMAKING_CHANNEL_MISSING)
    assert len(entries) == 1


async def test_failed_announcement_rolls_back(db, signup, make_ready, matchmaker, announcer, queue_ops,
                                              audit_service):
    p1, p2 = await signup(2)
    await make_ready(p1, p2)
    announcer.fail_announce = True

    report = await matchmaker.run_tick(GUILD_ID)

    assert report.created_count == 0
    assert report.rollbacks == 1
    (match,) = await _matches(db)
    assert match.state == MatchState.CANCELLED
    async with db.get_session() as session:
        fixture = await session.get(Fixture, match.fixture_id)
    assert fixture.status == FixtureStatus.UNPLAYED
    assert len(await queue_ops.queue_snapshot()) == 2
    assert await audit_service.entries(action_type=AuditActions.MATCH_ROLLBACK)

    # The next tick can use the reopened fixture
    announcer.fail_announce = False
    assert (await matchmaker.run_tick(GUILD_ID)).created_count == 1


class _ContendedFixtures(FixtureOperations):
    """Loses the first claim as if another tick got there first"""

    def __init__(self, database):
        super().__init__(database)
        self.lost = False

    async def claim_fixture(self, fixture_id, session):
        if not self.lost:
            self.lost = True
            return False
        return await super().claim_fixture(fixture_id, session)


async def test_claim_conflict_excludes_pair(db, signup, make_ready, announcer, queue_ops, match_ops,
                                            confirmation_store, audit_service):
    p1, p2 = await signup(2)
    await make_ready(p1, p2)
    matchmaker = Matchmaker(db, announcer, fixture_ops=_ContendedFixtures(db), queue_ops=queue_ops,
                            match_ops=match_ops, confirmation_store=confirmation_store)

    report = await matchmaker.run_tick(GUILD_ID)

    assert report.claim_conflicts == 1
    assert report.created_count == 0
    assert await _matches(db) == []
    assert await audit_service.entries(action_type=AuditActions.CLAIM_CONFLICT)


async def test_concurrent_ticks_create_one_match(db, signup, make_ready, announcer, fixture_ops, queue_ops,
                                                 match_ops, confirmation_store):
    p1, p2 = await signup(2)
    await fixture_ops.generate_fixtures()
    await make_ready(p1, p2)

    first = Matchmaker(db, announcer, fixture_ops=fixture_ops, queue_ops=queue_ops, match_ops=match_ops,
                       confirmation_store=confirmation_store, rng=random.Random(1))
    second = Matchmaker(db, announcer, fixture_ops=fixture_ops, queue_ops=queue_ops, match_ops=match_ops,
                        confirmation_store=confirmation_store, rng=random.Random(2))

    reports = await asyncio.gather(first.run_tick(GUILD_ID), second.run_tick(GUILD_ID))

    assert sum(r.created_count for r in reports) == 1
    live = [m for m in await _matches(db) if m.state != MatchState.CANCELLED]
    assert len(live) == 1


async def test_admin_vs_creates_match(db, signup, fixture_ops, matchmaker, audit_service):
    p1, p2 = await signup(2)
    await fixture_ops.generate_fixtures()

    result = await matchmaker.create_match_for_pair(GUILD_ID, p2.discord_id, p1.discord_id, admin_id=1)

    assert result.success, result.message
    assert result.message.startswith('Created pending match')
    assert result.data.state == MatchState.PENDING
    assert await audit_service.entries(action_type=AuditActions.ADMIN_VS)


async def test_admin_vs_rejections(db, signup, fixture_ops, matchmaker, open_match):
    p1, p2, p3 = await signup(3)
    await fixture_ops.generate_fixtures()

    same = await matchmaker.create_match_for_pair(GUILD_ID, p1.discord_id, p1.discord_id, admin_id=1)
    assert same.message == 'Select two different players.'

    unknown = await matchmaker.create_match_for_pair(GUILD_ID, p1.discord_id, 4242, admin_id=1)
    assert unknown.message == 'Both selected users must be signed up.'

    await open_match(p1, p2)
    busy = await matchmaker.create_match_for_pair(GUILD_ID, p1.discord_id, p3.discord_id, admin_id=1)
    assert not busy.success
    assert busy.message == 'P1 already has an open match.'


async def test_admin_vs_without_remaining_fixtures(db, signup, fixture_ops, matchmaker, open_match, play):
    p1, p2 = await signup(2)
    await fixture_ops.generate_fixtures()
    for _ in range(2):
        await play(await open_match(p1, p2), p1, p2)

    result = await matchmaker.create_match_for_pair(GUILD_ID, p1.discord_id, p2.discord_id, admin_id=1)
    assert not result.success
    assert result.message == 'P1 has no eligible opponents left.'


async def test_concurrent_ticks_on_empty_schedule(db, signup, make_ready, announcer, fixture_ops, queue_ops,
                                                  match_ops, confirmation_store):
    p1, p2 = await signup(2)
    await make_ready(p1, p2)

    ticks = [
        Matchmaker(db, announcer, fixture_ops=fixture_ops, queue_ops=queue_ops, match_ops=match_ops,
                   confirmation_store=confirmation_store, rng=random.Random(seed))
        for seed in (1, 2)
    ]
    reports = await asyncio.gather(*(mm.run_tick(GUILD_ID) for mm in ticks))

    # Both ticks finish; the schedule is generated exactly once between them
    assert sum(r.fixtures_generated for r in reports) == 2
    assert sum(r.created_count for r in reports) == 1
    async with db.get_session() as session:
        fixtures = (await session.execute(select(Fixture))).scalars().all()
    assert sorted(f.leg_number for f in fixtures) == [1, 2]
