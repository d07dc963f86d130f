"""
Override Operations Module

Admin override of a match result. An admin arms the override, then picks a
winner and score the same way players report; once both are chosen the
override decides the match regardless of player reports. One admin owns a
match's override at a time. Releasing it hands the match back to the player
reports.
"""

from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from league_bot.constants import MatchFormats
from league_bot.database.models import AdminMatchOverride, MatchState
from league_bot.operations.match_operations import MatchOperations, ReconcileOutcome
from league_bot.services.audit import AuditActions, AuditService
from league_bot.utils.exceptions import MatchStateError, OverrideOwnershipError, ValidationError
from league_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class OverrideOperations:
    """Ownership-checked admin override slot per match"""

    def __init__(self, database, match_ops: MatchOperations):
        self.db = database
        self.league_id = database.league_id
        self.match_ops = match_ops
        self.logger = logger

    async def _get_override(self, session: AsyncSession, match_id: int) -> Optional[AdminMatchOverride]:
        result = await session.execute(
            select(AdminMatchOverride).where(AdminMatchOverride.match_id == match_id)
        )
        return result.scalar_one_or_none()

    async def set_override(
        self,
        session: AsyncSession,
        match_id: int,
        admin_id: int,
        winner_side: Optional[str] = None,
        score_code: Optional[int] = None,
        active: bool = True,
        winner_selected: bool = False,
    ) -> AdminMatchOverride:
        """
        Create or overwrite the override row.

        Raises:
            OverrideOwnershipError: If a different admin owns the override
        """
        override = await self._get_override(session, match_id)
        if override is None:
            override = AdminMatchOverride(match_id=match_id, admin_id=admin_id)
            session.add(override)
        elif override.admin_id != admin_id:
            raise OverrideOwnershipError(match_id, override.admin_id)

        override.winner_side = winner_side
        override.score_code = score_code
        override.active = active
        override.winner_selected = winner_selected
        await session.flush()
        return override

    async def owned_active_override(self, match_id: int, admin_id: int,
                                    session: Optional[AsyncSession] = None) -> bool:
        async def _check(s: AsyncSession) -> bool:
            override = await self._get_override(s, match_id)
            return bool(override and override.active and override.admin_id == admin_id)

        if session:
            return await _check(session)
        async with self.db.get_session() as s:
            return await _check(s)

    async def active_owner(self, match_id: int) -> Optional[int]:
        """Admin id holding an active override on the match, if any"""
        async with self.db.get_session() as session:
            override = await self._get_override(session, match_id)
            return override.admin_id if override is not None and override.active else None

    async def _reconcile_and_publish(self, session_work, match_id: int) -> ReconcileOutcome:
        async with self.db.transaction() as session:
            await session_work(session)
            outcome = await self.match_ops.reconcile(match_id, session, override_changed=True)
        await self.match_ops.publish_outcome(outcome)
        return outcome

    async def arm(self, match_id: int, admin_id: int) -> ReconcileOutcome:
        """
        Claim the override for admin_id with no winner or score chosen yet.

        Re-arming by the owner clears earlier selections.

        Raises:
            OverrideOwnershipError: If another admin owns the override
            MatchStateError: If the match is cancelled
        """
        async def _arm(session: AsyncSession):
            match = await self.match_ops.get_match(match_id, session=session)
            if match is None:
                raise ValidationError(f"Match {match_id} not found", "❌ Match not found.")
            if match.state == MatchState.CANCELLED:
                raise MatchStateError(match_id, match.state.value, user_message="❌ This match was cancelled.")
            await self.set_override(session, match_id, admin_id)
            await AuditService.record(session, self.league_id, admin_id, AuditActions.ADMIN_OVERRIDE,
                                      {'match_id': match_id, 'action': 'armed'})

        outcome = await self._reconcile_and_publish(_arm, match_id)
        self.logger.info(f"Admin {admin_id} armed override on match {match_id}")
        return outcome

    async def select_winner(self, match_id: int, admin_id: int, winner_side: str) -> Optional[ReconcileOutcome]:
        """
        Record the override winner. Returns None when admin_id holds no active
        override on the match, so the caller can treat the reaction as a
        player report instead.
        """
        if winner_side not in ('A', 'B'):
            raise ValidationError(f"Invalid winner side {winner_side}", "❌ Winner must be A or B.")
        if not await self.owned_active_override(match_id, admin_id):
            return None

        async def _select(session: AsyncSession):
            override = await self._get_override(session, match_id)
            await self.set_override(session, match_id, admin_id, winner_side=winner_side,
                                    score_code=override.score_code, active=True, winner_selected=True)
            await AuditService.record(session, self.league_id, admin_id, AuditActions.ADMIN_OVERRIDE,
                                      {'match_id': match_id, 'winner_side': winner_side})

        return await self._reconcile_and_publish(_select, match_id)

    async def select_score(self, match_id: int, admin_id: int, score_code: int) -> Optional[ReconcileOutcome]:
        """Record the override score code; None when admin_id holds no active override"""
        if not await self.owned_active_override(match_id, admin_id):
            return None

        async def _select(session: AsyncSession):
            ctx = await self.match_ops.load_context(match_id, session)
            if score_code not in MatchFormats.SCORE_TABLES[ctx.match_format]:
                raise ValidationError(
                    f"Score code {score_code} invalid for {ctx.match_format}",
                    f"❌ That score is not valid for {ctx.match_format}.",
                )
            override = ctx.override
            await self.set_override(session, match_id, admin_id, winner_side=override.winner_side,
                                    score_code=score_code, active=True,
                                    winner_selected=bool(override.winner_selected))
            await AuditService.record(session, self.league_id, admin_id, AuditActions.ADMIN_OVERRIDE,
                                      {'match_id': match_id, 'score_code': score_code})

        return await self._reconcile_and_publish(_select, match_id)

    async def release(
        self,
        match_id: int,
        admin_id: int,
        winner_side: Optional[str] = None,
        score_code: Optional[int] = None,
        disarm: bool = False,
    ) -> Optional[ReconcileOutcome]:
        """
        Clear the override when its owner withdraws the arming reaction, or
        withdraws the reaction matching the override's current winner or score.

        Returns None when nothing was cleared.
        """
        async with self.db.get_session() as session:
            override = await self._get_override(session, match_id)
            if override is None or override.admin_id != admin_id:
                return None
            if not disarm:
                if winner_side is not None and override.winner_side != winner_side:
                    return None
                if score_code is not None and override.score_code != score_code:
                    return None
                if winner_side is None and score_code is None:
                    return None

        async def _clear(s: AsyncSession):
            await s.execute(delete(AdminMatchOverride).where(
                AdminMatchOverride.match_id == match_id,
                AdminMatchOverride.admin_id == admin_id,
            ))
            await AuditService.record(s, self.league_id, admin_id, AuditActions.ADMIN_OVERRIDE, {
                'match_id': match_id, 'action': 'removed', 'via': 'arm' if disarm else 'selection',
            })

        match = await self.match_ops.get_match(match_id)
        if match is None or match.state == MatchState.CANCELLED:
            # Nothing to hand back; drop the row without reconciling
            async with self.db.transaction() as s:
                await _clear(s)
            return None

        outcome = await self._reconcile_and_publish(_clear, match_id)
        self.logger.info(f"Admin {admin_id} released override on match {match_id} -> {outcome.state.value}")
        return outcome
