"""
Fixture Operations Module

Generates the double round-robin schedule and answers fixture questions for
the matchmaker and player commands.

Fixture history is append-only: generation only inserts pair/leg rows that
have never existed, so players who join late get their fixtures without
disturbing anything already played.
"""

from typing import Dict, List, Optional, Set, Tuple
from contextlib import asynccontextmanager

from sqlalchemy import select, update, or_
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from league_bot.constants import LeagueDefaults
from league_bot.data_models.results import FixtureGenerationResult
from league_bot.data_models.standings import LeftToPlay, LeftToPlayEntry
from league_bot.database.models import Fixture, FixtureStatus, Player, PlayerStatus
from league_bot.services.standings import compute_standings
from league_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

LEGS = tuple(range(1, LeagueDefaults.LEGS_PER_PAIR + 1))

FIXTURE_KEY_COLUMNS = ['league_id', 'player_a_id', 'player_b_id', 'leg_number']


def normalize_pair(player_x: int, player_y: int) -> Tuple[int, int]:
    """Order a pair so the lower id is side A"""
    return (player_x, player_y) if player_x < player_y else (player_y, player_x)


class FixtureOperations:
    """Fixture generation, claiming and schedule queries"""

    def __init__(self, database):
        self.db = database
        self.league_id = database.league_id
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        if session:
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session

    async def generate_fixtures(self, session: Optional[AsyncSession] = None) -> FixtureGenerationResult:
        """
        Insert every missing (pair, leg) for the current active players.

        Idempotent: a second run with the same players creates nothing.
        Runs in a single transaction; when a session is passed the caller owns it.
        """
        async def _generate(s: AsyncSession) -> FixtureGenerationResult:
            result = await s.execute(
                select(Player.id)
                .where(Player.league_id == self.league_id, Player.status == PlayerStatus.ACTIVE)
                .order_by(Player.id)
            )
            player_ids = list(result.scalars().all())

            if len(player_ids) < 2:
                return FixtureGenerationResult(
                    success=False,
                    created=0,
                    message='Need at least 2 signed-up players to generate fixtures.',
                )

            existing = await s.execute(
                select(Fixture.player_a_id, Fixture.player_b_id, Fixture.leg_number)
                .where(Fixture.league_id == self.league_id)
            )
            existing_keys: Set[Tuple[int, int, int]] = {
                (*normalize_pair(a, b), leg) for a, b, leg in existing.all()
            }

            created = 0
            for i, player_a in enumerate(player_ids):
                for player_b in player_ids[i + 1:]:
                    for leg in LEGS:
                        if (player_a, player_b, leg) in existing_keys:
                            continue
                        # A concurrent tick or admin run may insert the same row first
                        inserted = await s.execute(
                            sqlite_insert(Fixture)
                            .values(
                                league_id=self.league_id,
                                player_a_id=player_a,
                                player_b_id=player_b,
                                leg_number=leg,
                                status=FixtureStatus.UNPLAYED,
                            )
                            .on_conflict_do_nothing(index_elements=FIXTURE_KEY_COLUMNS)
                        )
                        created += inserted.rowcount

            if created == 0:
                return FixtureGenerationResult(
                    success=True,
                    created=0,
                    message='No new fixtures generated. All active player pairings already exist in fixture history.',
                )

            self.logger.info(f"Generated {created} fixtures for {len(player_ids)} active players")
            return FixtureGenerationResult(
                success=True,
                created=created,
                message=f'Generated {created} new fixtures (history preserved, no duplicate pair/leg).',
            )

        if session:
            return await _generate(session)
        async with self.db.transaction() as s:
            return await _generate(s)

    async def next_unplayed_fixture(self, player_x: int, player_y: int,
                                    session: Optional[AsyncSession] = None) -> Optional[Fixture]:
        """Lowest-leg unplayed fixture between two players"""
        player_a, player_b = normalize_pair(player_x, player_y)
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Fixture)
                .where(
                    Fixture.league_id == self.league_id,
                    Fixture.player_a_id == player_a,
                    Fixture.player_b_id == player_b,
                    Fixture.status == FixtureStatus.UNPLAYED,
                )
                .order_by(Fixture.leg_number)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def unplayed_legs_by_pair(self, player_ids: List[int],
                                    session: Optional[AsyncSession] = None) -> Dict[Tuple[int, int], int]:
        """Count unplayed fixtures for every pair drawn from player_ids"""
        if len(player_ids) < 2:
            return {}
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Fixture.player_a_id, Fixture.player_b_id)
                .where(
                    Fixture.league_id == self.league_id,
                    Fixture.status == FixtureStatus.UNPLAYED,
                    Fixture.player_a_id.in_(player_ids),
                    Fixture.player_b_id.in_(player_ids),
                )
            )
            counts: Dict[Tuple[int, int], int] = {}
            for a, b in result.all():
                pair = normalize_pair(a, b)
                counts[pair] = counts.get(pair, 0) + 1
            return counts

    async def claim_fixture(self, fixture_id: int, session: AsyncSession) -> bool:
        """
        Atomically move a fixture from unplayed to locked_in_match.

        Returns False when another claimant got there first. Must run inside
        the caller's transaction so the claim and the match insert commit together.
        """
        result = await session.execute(
            update(Fixture)
            .where(Fixture.id == fixture_id, Fixture.status == FixtureStatus.UNPLAYED)
            .values(status=FixtureStatus.LOCKED_IN_MATCH)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def eligible_opponents(self, player_id: int,
                                 session: Optional[AsyncSession] = None) -> List[Player]:
        """Active players with at least one unplayed fixture against player_id, ordered by tag"""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Fixture.player_a_id, Fixture.player_b_id)
                .where(
                    Fixture.league_id == self.league_id,
                    Fixture.status == FixtureStatus.UNPLAYED,
                    or_(Fixture.player_a_id == player_id, Fixture.player_b_id == player_id),
                )
            )
            opponent_ids = {b if a == player_id else a for a, b in result.all()}
            if not opponent_ids:
                return []

            players = await s.execute(
                select(Player).where(Player.id.in_(opponent_ids), Player.status == PlayerStatus.ACTIVE)
            )
            return sorted(players.scalars().all(), key=lambda p: (p.tag.casefold(), p.tag))

    async def left_to_play(self, player_id: int, session: Optional[AsyncSession] = None) -> LeftToPlay:
        """
        Opponents with unplayed or in-progress fixtures against player_id.

        Ordered by matches left (desc), the opponent's standings rank, then tag.
        """
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Fixture.player_a_id, Fixture.player_b_id)
                .where(
                    Fixture.league_id == self.league_id,
                    Fixture.status.in_([FixtureStatus.UNPLAYED, FixtureStatus.LOCKED_IN_MATCH]),
                    or_(Fixture.player_a_id == player_id, Fixture.player_b_id == player_id),
                )
            )
            left_by_opponent: Dict[int, int] = {}
            for a, b in result.all():
                opponent = b if a == player_id else a
                left_by_opponent[opponent] = left_by_opponent.get(opponent, 0) + 1

            if not left_by_opponent:
                return LeftToPlay(player_id=player_id, entries=[])

            standings = await compute_standings(s, self.league_id)
            rank_by_player = {row.player_id: row.rank for row in standings}

            players = await s.execute(select(Player).where(Player.id.in_(left_by_opponent.keys())))
            players_by_id = {p.id: p for p in players.scalars().all()}

            entries = []
            for opponent_id, count in left_by_opponent.items():
                opponent = players_by_id.get(opponent_id)
                tag = opponent.tag if opponent else str(opponent_id)
                entries.append(LeftToPlayEntry(
                    opponent_id=opponent_id,
                    opponent_discord_id=opponent.discord_id if opponent else 0,
                    opponent_tag=tag,
                    matches_left=count,
                    standings_rank=rank_by_player.get(opponent_id),
                ))

            no_rank = float('inf')
            entries.sort(key=lambda e: (
                -e.matches_left,
                e.standings_rank if e.standings_rank is not None else no_rank,
                e.opponent_tag.casefold(),
            ))
            return LeftToPlay(player_id=player_id, entries=entries)
