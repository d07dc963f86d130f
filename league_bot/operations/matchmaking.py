"""
Matchmaking Module

Pairs ready players into matches. Each tick picks, among queued players
without an open match, the pair with the most unplayed legs (random
tie-break), claims the pair's lowest unplayed leg with a conditional update
and creates the match in the same transaction. The match is announced after
commit; if the announcement fails the claim is compensated (match cancelled,
fixture reopened) and the players stay queued.

Claims are optimistic: the conditional update is the first write of its
transaction, so concurrent ticks serialise on it and the loser sees zero
affected rows.
"""

import random
from typing import Dict, Optional, Set, Tuple

from sqlalchemy import select

from league_bot.config import Config
from league_bot.data_models.results import MatchmakingReport, OperationResult
from league_bot.database.models import Fixture, Match, MatchState, Player
from league_bot.operations.fixture_operations import FixtureOperations, normalize_pair
from league_bot.operations.match_operations import MatchOperations
from league_bot.operations.queue_operations import QueueOperations
from league_bot.services.audit import AuditActions, AuditService
from league_bot.services.confirmation_store import ConfirmationStore
from league_bot.services.delivery import MatchAnnouncement, MatchAnnouncer
from league_bot.utils.exceptions import ClaimConflictError, DeliveryError
from league_bot.utils.logger import setup_logger
from league_bot.utils.messages import mention

logger = setup_logger(__name__)


class Matchmaker:
    """Ready-queue pairing with claim, announce and compensating rollback"""

    def __init__(
        self,
        database,
        announcer: MatchAnnouncer,
        fixture_ops: Optional[FixtureOperations] = None,
        queue_ops: Optional[QueueOperations] = None,
        match_ops: Optional[MatchOperations] = None,
        confirmation_store: Optional[ConfirmationStore] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = database
        self.league_id = database.league_id
        self.announcer = announcer
        self.fixture_ops = fixture_ops or FixtureOperations(database)
        self.queue_ops = queue_ops or QueueOperations(database)
        self.match_ops = match_ops or MatchOperations(database, announcer)
        self.confirmation_store = confirmation_store or ConfirmationStore(database.session_factory)
        self.rng = rng or random.Random()
        self.logger = logger

    async def _audit(self, actor_id: Optional[int], action_type: str, payload: dict) -> None:
        async with self.db.transaction() as session:
            await AuditService.record(session, self.league_id, actor_id, action_type, payload)

    async def _resolve_channel(self, guild_id: int) -> Optional[int]:
        try:
            return await self.announcer.resolve_channel(guild_id)
        except DeliveryError as e:
            self.logger.warning(f"Could not resolve match channel for guild {guild_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def run_tick(self, guild_id: int) -> MatchmakingReport:
        """
        One matchmaking pass for a guild. Never raises for a missing channel,
        claim contention or delivery failure; those are reported and audited.
        """
        report = MatchmakingReport()

        channel_id = await self._resolve_channel(guild_id)
        if channel_id is None:
            report.channel_missing = True
            await self._audit(None, AuditActions.MATCHMAKING_CHANNEL_MISSING, {'guild_id': guild_id})
            self.logger.warning(f"Matchmaking skipped for guild {guild_id}: no results channel")
            return report

        generated = await self.fixture_ops.generate_fixtures()
        if generated.created:
            report.fixtures_generated = generated.created
            await self._audit(None, AuditActions.FIXTURES_GENERATED,
                              {'created': generated.created, 'source': 'matchmaker'})

        excluded_pairs: Set[Tuple[int, int]] = set()
        settled_players: Set[int] = set()

        while True:
            pair = await self._choose_pair(excluded_pairs, settled_players)
            if pair is None:
                break

            try:
                match, fixture = await self._claim_and_create(pair[0], pair[1], guild_id)
            except ClaimConflictError as e:
                report.claim_conflicts += 1
                excluded_pairs.add(pair)
                self.logger.warning(f"Claim conflict for pair {pair}: {e}")
                await self._audit(None, AuditActions.CLAIM_CONFLICT,
                                  {'pair': list(pair), 'fixture_id': e.fixture_id})
                continue

            settled_players.update(pair)
            if await self._announce(match, fixture, channel_id, guild_id):
                report.matches_created.append(match.id)
            else:
                report.rollbacks += 1

        if report.created_count or report.rollbacks or report.claim_conflicts:
            self.logger.info(
                f"Matchmaking tick for guild {guild_id}: created={report.created_count} "
                f"conflicts={report.claim_conflicts} rollbacks={report.rollbacks}"
            )
        return report

    async def _choose_pair(self, excluded_pairs: Set[Tuple[int, int]],
                           settled_players: Set[int]) -> Optional[Tuple[int, int]]:
        """Pair in the ready pool with the most unplayed legs, ties broken at random"""
        async with self.db.get_session() as session:
            pool = [p.id for p in await self.queue_ops.ready_pool(session) if p.id not in settled_players]
            if len(pool) < 2:
                return None
            legs: Dict[Tuple[int, int], int] = await self.fixture_ops.unplayed_legs_by_pair(pool, session=session)

        candidates = {pair: count for pair, count in legs.items() if pair not in excluded_pairs}
        if not candidates:
            return None
        best = max(candidates.values())
        tied = sorted(pair for pair, count in candidates.items() if count == best)
        return self.rng.choice(tied)

    async def _claim_and_create(self, player_x: int, player_y: int,
                                guild_id: Optional[int]) -> Tuple[Match, Fixture]:
        """
        Claim the lowest unplayed leg for a pair and insert its match atomically.

        Raises:
            ClaimConflictError: If the fixture was taken or either player
                already has an open match
        """
        player_a, player_b = normalize_pair(player_x, player_y)
        async with self.db.transaction() as session:
            fixture = await self.fixture_ops.next_unplayed_fixture(player_a, player_b, session=session)
            if fixture is None:
                raise ClaimConflictError(None, 'no unplayed fixture left for pair')

            if not await self.fixture_ops.claim_fixture(fixture.id, session):
                raise ClaimConflictError(fixture.id)

            # The claim holds the write lock, so this sees every committed match
            for player_id in (player_a, player_b):
                if await self.queue_ops.has_blocking_match(player_id, session=session):
                    raise ClaimConflictError(fixture.id, f'player {player_id} already has an open match')

            match = await self.match_ops.create_match(fixture, guild_id, session)
            await AuditService.record(session, self.league_id, None, AuditActions.MATCH_CREATED, {
                'match_id': match.id, 'fixture_id': fixture.id, 'leg': fixture.leg_number,
            })

        self.logger.info(f"Created match {match.id} for fixture {fixture.id} (leg {fixture.leg_number})")
        return match, fixture

    async def _announce(self, match: Match, fixture: Fixture, channel_id: int, guild_id: Optional[int]) -> bool:
        """Post the match; on failure compensate and return False"""
        async with self.db.get_session() as session:
            ctx = await self.match_ops.load_context(match.id, session)

        announcement = MatchAnnouncement(
            match_id=match.id,
            guild_id=guild_id,
            player_a_discord_id=ctx.player_a.discord_id,
            player_b_discord_id=ctx.player_b.discord_id,
            leg_number=fixture.leg_number,
            match_format=ctx.match_format,
            tournament_name=ctx.tournament_name,
        )

        try:
            ref = await self.announcer.announce_match(channel_id, announcement)
        except DeliveryError as e:
            await self._rollback(match.id, str(e))
            return False
        except Exception as e:
            await self._rollback(match.id, repr(e))
            raise

        async with self.db.transaction() as session:
            await self.match_ops.bind_message(match.id, ref, session)
            await self.queue_ops.remove_from_queue(
                [ctx.player_a.discord_id, ctx.player_b.discord_id], session
            )
        return True

    async def _rollback(self, match_id: int, reason: str) -> None:
        async with self.db.transaction() as session:
            match = await self.match_ops.cancel_match(match_id, session, reason='announce failed')
            await AuditService.record(session, self.league_id, None, AuditActions.MATCH_ROLLBACK, {
                'match_id': match_id, 'fixture_id': match.fixture_id, 'reason': reason,
            })
        self.logger.warning(f"Rolled back match {match_id} after failed announcement: {reason}")

    # ------------------------------------------------------------------
    # Directed match creation
    # ------------------------------------------------------------------

    async def _create_for_pair(self, guild_id: int, player_a: Player, player_b: Player,
                               fallback_channel_id: Optional[int] = None) -> OperationResult:
        for player in (player_a, player_b):
            if await self.queue_ops.has_blocking_match(player.id):
                return OperationResult.fail(f'{player.tag} already has an open match.')

        fixture = await self.fixture_ops.next_unplayed_fixture(player_a.id, player_b.id)
        if fixture is None:
            return OperationResult.fail('No unplayed fixture remains between these players.')

        channel_id = await self._resolve_channel(guild_id) or fallback_channel_id
        if channel_id is None:
            return OperationResult.fail(
                'Results channel not found. Configure it with /bot_settings set_results_channel.'
            )

        try:
            match, fixture = await self._claim_and_create(player_a.id, player_b.id, guild_id)
        except ClaimConflictError as e:
            return OperationResult.fail(e.user_message)

        if not await self._announce(match, fixture, channel_id, guild_id):
            return OperationResult.fail('Could not post the match message. The fixture was reopened.')
        return OperationResult.ok(
            f'Created pending match for {mention(player_a.discord_id)} vs {mention(player_b.discord_id)}.',
            data=match,
        )

    async def create_match_for_pair(self, guild_id: int, discord_a: int, discord_b: int,
                                    admin_id: int) -> OperationResult:
        """Admin-directed match between two eligible players"""
        if discord_a == discord_b:
            return OperationResult.fail('Select two different players.')

        async with self.db.get_session() as session:
            player_a = await self._player(session, discord_a)
            player_b = await self._player(session, discord_b)
        if player_a is None or player_b is None:
            return OperationResult.fail('Both selected users must be signed up.')

        eligible = await self.fixture_ops.eligible_opponents(player_a.id)
        if player_b.id not in {p.id for p in eligible}:
            if eligible:
                return OperationResult.fail(
                    f'That opponent is not eligible for {player_a.tag}. '
                    f'Eligible opponents: {", ".join(p.tag for p in eligible)}'
                )
            return OperationResult.fail(f'{player_a.tag} has no eligible opponents left.')

        result = await self._create_for_pair(guild_id, player_a, player_b)
        if result.success:
            await self._audit(admin_id, AuditActions.ADMIN_VS, {
                'match_id': result.data.id, 'player_a': discord_a, 'player_b': discord_b,
            })
        return result

    async def _player(self, session, discord_id: int) -> Optional[Player]:
        result = await session.execute(
            select(Player).where(Player.league_id == self.league_id, Player.discord_id == discord_id)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Rematch votes
    # ------------------------------------------------------------------

    async def vote_rematch(self, match_id: int, voter_id: int, added: bool = True) -> OperationResult:
        """
        Record or withdraw a participant's vote to play the next leg now.

        When both participants hold a live vote and an unplayed fixture
        remains between them, the next match is created and the votes cleared.
        """
        key = ConfirmationStore.rematch_key(match_id)
        if not added:
            removed = await self.confirmation_store.remove(key, voter_id)
            return OperationResult.ok('Rematch vote withdrawn.' if removed else 'No rematch vote to withdraw.')

        async with self.db.get_session() as session:
            ctx = await self.match_ops.load_context(match_id, session)

        if not ctx.is_participant(voter_id):
            return OperationResult.fail('Only the two players in this match can vote for a rematch.')
        if ctx.match.state != MatchState.CONFIRMED:
            return OperationResult.fail('Rematch is only available after the match is confirmed.')

        await self.confirmation_store.put(key, voter_id, Config.REMATCH_VOTE_SECONDS,
                                          payload={'match_id': match_id})
        voters = set(await self.confirmation_store.members(key))
        participants = {ctx.player_a.discord_id, ctx.player_b.discord_id}
        if not participants.issubset(voters):
            return OperationResult.ok('Rematch vote recorded. Waiting for your opponent.')

        fixture = await self.fixture_ops.next_unplayed_fixture(ctx.player_a.id, ctx.player_b.id)
        if fixture is None:
            await self.confirmation_store.remove(key)
            return OperationResult.ok('No unplayed fixture remains between these players.')

        result = await self._create_for_pair(ctx.match.guild_id, ctx.player_a, ctx.player_b,
                                             fallback_channel_id=ctx.match.channel_id)
        if result.success:
            await self.confirmation_store.remove(key)
            await self._audit(voter_id, AuditActions.REMATCH_CREATED, {
                'from_match_id': match_id, 'match_id': result.data.id,
            })
            return OperationResult.ok(
                f'🔁 Rematch accepted for Match {match_id}. New match posted for '
                f'{mention(ctx.player_a.discord_id)} and {mention(ctx.player_b.discord_id)}.',
                data=result.data,
            )
        return result
