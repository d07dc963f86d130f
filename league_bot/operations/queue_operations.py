"""
Queue Operations Module

Daily attendance and the ready queue. Players check in once per league day
and join the queue when free to play; the matchmaker consumes the queue in
arrival order.
"""

from datetime import datetime
from typing import List, Optional, Set, Tuple
from contextlib import asynccontextmanager

from sqlalchemy import select, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from league_bot.data_models.results import OperationResult
from league_bot.database.models import (
    Attendance, BLOCKING_MATCH_STATES, League, Match, Player, PlayerStatus, ReadyQueueEntry,
)
from league_bot.services.standings import has_completed_schedule
from league_bot.utils.logger import setup_logger
from league_bot.utils.time_utils import league_today

logger = setup_logger(__name__)


class QueueOperations:
    """Attendance and ready queue management"""

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

    async def _league_timezone(self, session: AsyncSession) -> Optional[str]:
        league = await session.get(League, self.league_id)
        return league.timezone if league else None

    async def _active_player(self, session: AsyncSession, discord_id: int) -> Optional[Player]:
        result = await session.execute(
            select(Player).where(Player.league_id == self.league_id, Player.discord_id == discord_id)
        )
        player = result.scalar_one_or_none()
        if player is None or player.status != PlayerStatus.ACTIVE:
            return None
        return player

    async def has_blocking_match(self, player_id: int, session: Optional[AsyncSession] = None) -> bool:
        """True when the player has a match that is not yet confirmed or cancelled"""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Match.id).where(
                    Match.league_id == self.league_id,
                    Match.state.in_(BLOCKING_MATCH_STATES),
                    or_(Match.player_a_id == player_id, Match.player_b_id == player_id),
                ).limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def blocked_player_ids(self, session: AsyncSession) -> Set[int]:
        result = await session.execute(
            select(Match.player_a_id, Match.player_b_id).where(
                Match.league_id == self.league_id,
                Match.state.in_(BLOCKING_MATCH_STATES),
            )
        )
        blocked: Set[int] = set()
        for a, b in result.all():
            blocked.update((a, b))
        return blocked

    async def check_in(self, discord_id: int, now: Optional[datetime] = None) -> OperationResult:
        """Record today's attendance; repeat check-ins on the same day are no-ops"""
        async with self.db.transaction() as session:
            player = await self._active_player(session, discord_id)
            if player is None:
                return OperationResult.fail('You must be an active signed-up player. Use /signup first.')

            today = league_today(await self._league_timezone(session), now)
            existing = await session.get(Attendance, (self.league_id, discord_id, today))
            if existing is not None:
                return OperationResult.ok(f'You are already checked in for {today}.', data=today)

            session.add(Attendance(league_id=self.league_id, discord_id=discord_id, date=today))

        self.logger.info(f"Player {discord_id} checked in for {today}")
        return OperationResult.ok(f'Checked in for {today}. Use /ready when you are free to play.', data=today)

    async def has_checked_in_today(self, discord_id: int, now: Optional[datetime] = None,
                                   session: Optional[AsyncSession] = None) -> bool:
        async with self._get_session_context(session) as s:
            today = league_today(await self._league_timezone(s), now)
            return await s.get(Attendance, (self.league_id, discord_id, today)) is not None

    async def ready(self, discord_id: int, now: Optional[datetime] = None) -> OperationResult:
        """
        Add a player to the ready queue.

        Requires a check-in today unless the player has finished their
        schedule, and no match in a blocking state.
        """
        async with self.db.transaction() as session:
            player = await self._active_player(session, discord_id)
            if player is None:
                return OperationResult.fail('You must be an active signed-up player. Use /signup first.')

            if await self.has_blocking_match(player.id, session=session):
                return OperationResult.fail('You already have an active match. Finish reporting it first.')

            if not await self.has_checked_in_today(discord_id, now=now, session=session):
                if not await has_completed_schedule(session, self.league_id, player.id):
                    return OperationResult.fail('Please /checkin first today.')

            existing = await session.get(ReadyQueueEntry, (self.league_id, discord_id))
            if existing is not None:
                return OperationResult.ok('You are already in the ready queue.')

            session.add(ReadyQueueEntry(
                league_id=self.league_id,
                discord_id=discord_id,
                enqueued_at=datetime.utcnow(),
            ))
            try:
                await session.flush()
            except IntegrityError:
                # Concurrent /ready from the same user
                await session.rollback()
                return OperationResult.ok('You are already in the ready queue.')

        self.logger.info(f"Player {discord_id} joined the ready queue")
        return OperationResult.ok("You're in the ready queue. I'll pair you when an opponent is available.")

    async def unready(self, discord_id: int) -> OperationResult:
        async with self.db.transaction() as session:
            removed = await self.remove_from_queue([discord_id], session)
        if not removed:
            return OperationResult.ok('You were not in the ready queue.')
        return OperationResult.ok('Removed from the ready queue.')

    async def remove_from_queue(self, discord_ids: List[int], session: AsyncSession) -> int:
        if not discord_ids:
            return 0
        result = await session.execute(
            delete(ReadyQueueEntry).where(
                ReadyQueueEntry.league_id == self.league_id,
                ReadyQueueEntry.discord_id.in_(discord_ids),
            )
        )
        return result.rowcount

    async def queue_snapshot(self, session: Optional[AsyncSession] = None) -> List[Tuple[int, Optional[str], datetime]]:
        """(discord_id, tag, enqueued_at) in FIFO order"""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(ReadyQueueEntry.discord_id, Player.tag, ReadyQueueEntry.enqueued_at)
                .select_from(ReadyQueueEntry)
                .outerjoin(Player, Player.discord_id == ReadyQueueEntry.discord_id)
                .where(ReadyQueueEntry.league_id == self.league_id)
                .order_by(ReadyQueueEntry.enqueued_at, ReadyQueueEntry.discord_id)
            )
            return [tuple(row) for row in result.all()]

    async def ready_pool(self, session: AsyncSession) -> List[Player]:
        """
        Queued active players without a blocking match, oldest entry first.
        """
        result = await session.execute(
            select(Player)
            .join(ReadyQueueEntry, ReadyQueueEntry.discord_id == Player.discord_id)
            .where(
                ReadyQueueEntry.league_id == self.league_id,
                Player.league_id == self.league_id,
                Player.status == PlayerStatus.ACTIVE,
            )
            .order_by(ReadyQueueEntry.enqueued_at, ReadyQueueEntry.discord_id)
        )
        blocked = await self.blocked_player_ids(session)
        return [p for p in result.scalars().all() if p.id not in blocked]

    async def checkin_counts(self, session: Optional[AsyncSession] = None) -> dict:
        """Distinct check-in days per discord id"""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Attendance.discord_id, Attendance.date).where(Attendance.league_id == self.league_id)
            )
            counts: dict = {}
            for discord_id, _ in result.all():
                counts[discord_id] = counts.get(discord_id, 0) + 1
            return counts
