"""
Administrative Operations Module

League administration outside the match lifecycle: staged destructive
resets, points and tournament settings, guild settings, league status and
admin role configuration.

Resets are two-step. ``request_reset`` stores a short-lived token bound to
the requesting admin; only that admin can execute it with ``confirm_reset``
before it expires. An expired or foreign confirmation never touches league
data.
"""

import json
import math
import secrets
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Set
from contextlib import asynccontextmanager

from sqlalchemy import select, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from league_bot.config import Config
from league_bot.constants import ResetLevels
from league_bot.data_models.results import OperationResult
from league_bot.database.models import (
    AdminMatchOverride, AdminRole, Attendance, BLOCKING_MATCH_STATES, Fixture, FixtureStatus,
    League, Match, MatchReport, PendingConfirmation, Player, PlayerStatus, ReadyQueueEntry, Result,
)
from league_bot.operations.fixture_operations import FixtureOperations
from league_bot.services.audit import AuditActions, AuditService
from league_bot.services.confirmation_store import ConfirmationStore
from league_bot.services.guild_settings import GuildSettingsService
from league_bot.utils.exceptions import LeagueOperationError
from league_bot.utils.logger import setup_logger
from league_bot.utils.messages import build_tournament_settings
from league_bot.utils.points import normalize_point_rules, rules_from_league
from league_bot.utils.time_utils import league_today
from league_bot.utils.tournament_config import validate_tournament_setup_input

logger = setup_logger(__name__)


class AdminOperationError(LeagueOperationError):
    """Base exception for admin operation errors"""
    pass


RESET_DESCRIPTIONS = {
    ResetLevels.CHECKINS: 'About to reset check-ins session (today attendance + queue).',
    ResetLevels.LEAGUE: 'About to reset league state (players preserved).',
    ResetLevels.EVERYTHING: 'About to reset EVERYTHING (including signups).',
}


def has_admin_privilege(native_admin: bool, member_role_ids: Iterable[int], configured: Iterable[int]) -> bool:
    """Native administrators always pass; otherwise any configured role grants access"""
    if native_admin:
        return True
    configured = set(configured)
    if not configured:
        return False
    return any(role_id in configured for role_id in member_role_ids)


class AdminRoleOperations:
    """Role ids that grant admin privilege per guild"""

    def __init__(self, database):
        self.db = database
        self.league_id = database.league_id
        self.logger = logger

    async def configured_role_ids(self, guild_id: Optional[int]) -> Set[int]:
        """Roles scoped to the guild plus roles with no guild scope"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(AdminRole.role_id).where(
                    AdminRole.league_id == self.league_id,
                    or_(AdminRole.guild_id == guild_id, AdminRole.guild_id.is_(None)),
                ).order_by(AdminRole.role_id)
            )
            return set(result.scalars().all())

    async def is_admin(self, guild_id: Optional[int], native_admin: bool, member_role_ids: Iterable[int]) -> bool:
        if native_admin:
            return True
        return has_admin_privilege(False, member_role_ids, await self.configured_role_ids(guild_id))

    async def set_admin_roles(self, guild_id: int, role_ids: Iterable[int], admin_id: int) -> OperationResult:
        """Replace the guild's admin roles, including unscoped rows"""
        ids = sorted(set(role_ids))
        if not ids:
            return OperationResult.fail('Provide at least one role.')

        async with self.db.transaction() as session:
            await session.execute(
                delete(AdminRole).where(
                    AdminRole.league_id == self.league_id,
                    or_(AdminRole.guild_id == guild_id, AdminRole.guild_id.is_(None)),
                )
            )
            for role_id in ids:
                session.add(AdminRole(league_id=self.league_id, guild_id=guild_id, role_id=role_id))
            await AuditService.record(session, self.league_id, admin_id, AuditActions.ADMIN_ROLES,
                                      {'guild_id': guild_id, 'role_ids': ids})

        self.logger.info(f"Admin roles for guild {guild_id} set to {ids} by {admin_id}")
        return OperationResult.ok(f"Admin roles set: {', '.join(f'<@&{i}>' for i in ids)}", data=ids)


class AdminOperations:
    """
    Business logic for league administration.

    Every mutating method writes an audit entry in the same transaction as
    the change it records.
    """

    def __init__(self, database, confirmation_store: Optional[ConfirmationStore] = None,
                 settings_service: Optional[GuildSettingsService] = None,
                 fixture_ops: Optional[FixtureOperations] = None):
        self.db = database
        self.league_id = database.league_id
        self.confirmation_store = confirmation_store or ConfirmationStore(database.session_factory)
        self.settings_service = settings_service or GuildSettingsService(database.session_factory)
        self.fixture_ops = fixture_ops or FixtureOperations(database)
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        if session:
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session

    # ------------------------------------------------------------------
    # Points & tournament settings
    # ------------------------------------------------------------------

    async def update_points(self, admin_id: int, win: Any, loss: Any, no_show: Any,
                            sweep_bonus: Any) -> OperationResult:
        """Store a new points scheme; invalid values fall back to the defaults"""
        rules = normalize_point_rules({
            'points_win': win,
            'points_loss': loss,
            'points_no_show': no_show,
            'points_sweep_bonus': sweep_bonus,
        })
        async with self.db.transaction() as session:
            league = await self.db.get_league(session)
            league.points_win = rules.win
            league.points_loss = rules.loss
            league.points_no_show = rules.no_show
            league.points_sweep_bonus = rules.sweep_bonus
            await AuditService.record(session, self.league_id, admin_id, AuditActions.ADMIN_POINTS, rules.as_dict())

        self.logger.info(f"Points updated by {admin_id}: {rules}")
        return OperationResult.ok(
            f'Points updated: win={rules.win}, loss={rules.loss}, '
            f'no-show={rules.no_show}, 3-0 sweep bonus={rules.sweep_bonus}.',
            data=rules,
        )

    async def tournament_settings_summary(self, session: Optional[AsyncSession] = None) -> str:
        async with self._get_session_context(session) as s:
            league = await self.db.get_league(s)
            return build_tournament_settings(league, rules_from_league(league))

    async def update_tournament_settings(self, admin_id: int, **fields) -> OperationResult:
        """
        Apply a partial tournament setup. Accepts the keyword arguments of
        ``validate_tournament_setup_input``; the minimum attendance days are
        recomputed from the merged season length and show-up percentage.
        """
        supplied = {k: v for k, v in fields.items() if v is not None and v is not False}
        if not supplied:
            return OperationResult.fail(f'No values supplied.\n{await self.tournament_settings_summary()}')

        try:
            values = validate_tournament_setup_input(**fields)
        except ValueError as e:
            return OperationResult.fail(str(e))

        async with self.db.transaction() as session:
            league = await self.db.get_league(session)
            merged = {
                'timeslot_count': values.get('timeslot_count', league.timeslot_count),
                'timeslot_starts': values.get('timeslot_starts', league.timeslot_starts),
                'season_days': values.get('season_days', league.season_days),
                'eligibility_min_percent': values.get('eligibility_min_percent', league.eligibility_min_percent),
            }
            if merged['timeslot_starts']:
                starts_count = len(merged['timeslot_starts'].split(','))
                if starts_count != merged['timeslot_count']:
                    return OperationResult.fail(
                        f"No. of timeslots ({merged['timeslot_count']}) must match start times count ({starts_count})."
                    )

            min_attendance = math.ceil(merged['season_days'] * merged['eligibility_min_percent'])
            for key, value in values.items():
                setattr(league, key, value)
            league.attendance_min_days = min_attendance

            await AuditService.record(session, self.league_id, admin_id, AuditActions.ADMIN_TOURNAMENT, {
                'updated': values,
                'computed_attendance_min_days': min_attendance,
            })
            summary = build_tournament_settings(league, rules_from_league(league))

        self.logger.info(f"Tournament settings updated by {admin_id}: {values}")
        return OperationResult.ok(f'Tournament settings updated.\n{summary}', data=values)

    # ------------------------------------------------------------------
    # Guild settings
    # ------------------------------------------------------------------

    async def update_guild_settings(self, guild_id: int, admin_id: int, patch: Dict[str, Any]) -> OperationResult:
        try:
            async with self.db.transaction() as session:
                await self.settings_service.update(guild_id, patch, session=session)
                await AuditService.record(session, self.league_id, admin_id, AuditActions.ADMIN_GUILD_SETTINGS,
                                          {'guild_id': guild_id, 'patch': patch})
        except ValueError as e:
            return OperationResult.fail(str(e))
        return OperationResult.ok(await self.guild_settings_summary(guild_id))

    async def guild_settings_summary(self, guild_id: int) -> str:
        async with self.db.transaction() as session:
            row = await self.settings_service.get_or_create(guild_id, session=session)

            def channel(value):
                return f'<#{value}>' if value else 'not set'

            return '\n'.join([
                '**Bot Settings**',
                f'Tournament: {row.tournament_name or Config.LEAGUE_NAME}',
                f'Match format: {row.match_format}',
                f'Timezone: {row.timezone}',
                f'Results channel: {channel(row.results_channel_id)}',
                f'Admin channel: {channel(row.admin_channel_id)}',
                f'Standings channel: {channel(row.standings_channel_id)}',
                f'Dispute channel: {channel(row.dispute_channel_id)}',
                f'Activity channel: {channel(row.activity_channel_id)}',
            ])

    # ------------------------------------------------------------------
    # Status & fixtures
    # ------------------------------------------------------------------

    async def league_status(self) -> OperationResult:
        async with self.db.get_session() as session:
            async def count(stmt) -> int:
                return (await session.execute(stmt)).scalar_one()

            players = await count(select(func.count(Player.id)).where(
                Player.league_id == self.league_id, Player.status == PlayerStatus.ACTIVE))
            fixtures = await count(select(func.count(Fixture.id)).where(Fixture.league_id == self.league_id))
            confirmed = await count(select(func.count(Fixture.id)).where(
                Fixture.league_id == self.league_id, Fixture.status == FixtureStatus.CONFIRMED))
            queued = await count(select(func.count()).select_from(ReadyQueueEntry).where(
                ReadyQueueEntry.league_id == self.league_id))
            open_matches = await count(select(func.count(Match.id)).where(
                Match.league_id == self.league_id, Match.state.in_(BLOCKING_MATCH_STATES)))

        counts = {
            'players': players,
            'fixtures': fixtures,
            'confirmed_fixtures': confirmed,
            'ready_queue': queued,
            'open_matches': open_matches,
        }
        return OperationResult.ok('\n'.join([
            '**League Admin Status**',
            f'Players (active): {players}',
            f'Fixtures: {fixtures} total / {confirmed} confirmed',
            f'Ready queue: {queued}',
            f'Open matches: {open_matches}',
        ]), data=counts)

    async def generate_fixtures(self, admin_id: int) -> OperationResult:
        async with self.db.transaction() as session:
            result = await self.fixture_ops.generate_fixtures(session=session)
            if result.created:
                await AuditService.record(session, self.league_id, admin_id, AuditActions.FIXTURES_GENERATED,
                                          {'created': result.created, 'source': 'admin'})
        if not result.success:
            return OperationResult.fail(result.message)
        return OperationResult.ok(result.message, data=result.created)

    # ------------------------------------------------------------------
    # Staged resets
    # ------------------------------------------------------------------

    async def request_reset(self, level: str, admin_id: int, guild_id: Optional[int] = None,
                            now: Optional[datetime] = None) -> OperationResult:
        """
        Stage a reset and return its confirmation token in ``data``.

        Nothing is deleted until the same admin confirms within the window.
        """
        if level not in ResetLevels.ALL:
            return OperationResult.fail(f"Reset level must be one of: {', '.join(ResetLevels.ALL)}")

        token = secrets.token_hex(4)
        async with self.db.transaction() as session:
            await self.confirmation_store.put(
                ConfirmationStore.reset_key(token), admin_id, Config.RESET_CONFIRMATION_SECONDS,
                payload={'level': level, 'token': token, 'guild_id': guild_id},
                session=session, now=now,
            )
            await AuditService.record(session, self.league_id, admin_id, AuditActions.RESET_REQUESTED,
                                      {'level': level, 'guild_id': guild_id})

        minutes = Config.RESET_CONFIRMATION_SECONDS // 60
        self.logger.warning(f"Reset '{level}' requested by {admin_id}")
        return OperationResult.ok(
            f'⚠️ {RESET_DESCRIPTIONS[level]}\n'
            f'Confirm with /admin_reset_confirm token:{token} or react ✅ on the DM prompt. '
            f'This expires in {minutes} minutes.',
            data=token,
        )

    async def bind_reset_message(self, token: str, message_id: int, admin_id: int,
                                 now: Optional[datetime] = None) -> None:
        """Let a DM prompt confirm or cancel the reset by reaction"""
        async with self.db.transaction() as session:
            rows = await self.confirmation_store.entries(ConfirmationStore.reset_key(token), session=session)
            if not rows:
                return
            payload = ConfirmationStore.decode(rows[0])
            payload['message_id'] = message_id
            rows[0].payload = json.dumps(payload)
            await self.confirmation_store.put(
                ConfirmationStore.reset_message_key(message_id), admin_id, Config.RESET_CONFIRMATION_SECONDS,
                payload={'token': token}, session=session, now=now,
            )

    async def _pending_reset(self, session: AsyncSession, token: Optional[str],
                             message_id: Optional[int]) -> Optional[PendingConfirmation]:
        if token is None and message_id is not None:
            rows = await self.confirmation_store.entries(
                ConfirmationStore.reset_message_key(message_id), session=session)
            if rows:
                token = ConfirmationStore.decode(rows[0]).get('token')
        if not token:
            return None
        rows = await self.confirmation_store.entries(ConfirmationStore.reset_key(token), session=session)
        return rows[0] if rows else None

    async def is_reset_prompt(self, message_id: int) -> bool:
        rows = await self.confirmation_store.entries(ConfirmationStore.reset_message_key(message_id))
        return bool(rows)

    async def _discard_reset(self, session: AsyncSession, payload: Dict[str, Any]) -> None:
        await self.confirmation_store.remove(ConfirmationStore.reset_key(payload.get('token')), session=session)
        if payload.get('message_id') is not None:
            await self.confirmation_store.remove(
                ConfirmationStore.reset_message_key(payload['message_id']), session=session)

    async def confirm_reset(self, actor_id: int, token: Optional[str] = None, message_id: Optional[int] = None,
                            now: Optional[datetime] = None) -> OperationResult:
        """
        Execute a staged reset. Rejected when no reset is pending, when the
        actor is not the requester, or when the window has passed.
        """
        async with self.db.transaction() as session:
            pending = await self._pending_reset(session, token, message_id)
            if pending is None:
                return OperationResult.fail('No pending reset found. Please run the reset command again.')
            if pending.member_id != actor_id:
                self.logger.warning(f"User {actor_id} tried to confirm a reset requested by {pending.member_id}")
                return OperationResult.fail('Only the admin who requested this reset can confirm it.')

            payload = ConfirmationStore.decode(pending)
            if pending.is_expired(now):
                await self._discard_reset(session, payload)
                return OperationResult.fail('Reset confirmation expired. Please run the reset command again.')

            level = payload.get('level')
            summary = await self._run_reset(session, level, now)
            await self._discard_reset(session, payload)
            await AuditService.record(session, self.league_id, actor_id, AuditActions.RESET_CONFIRMED, {
                'level': level,
                'summary': summary,
                'confirmed_via': 'dm_reaction' if message_id is not None else 'token',
            })

        self.logger.warning(f"Reset '{level}' executed by {actor_id}: {summary}")
        return OperationResult.ok(f'Reset executed successfully.\n{summary}', data=level)

    async def cancel_reset(self, actor_id: int, token: Optional[str] = None,
                           message_id: Optional[int] = None) -> OperationResult:
        async with self.db.transaction() as session:
            pending = await self._pending_reset(session, token, message_id)
            if pending is None:
                return OperationResult.fail('No pending reset found.')
            if pending.member_id != actor_id:
                return OperationResult.fail('Only the admin who requested this reset can cancel it.')
            payload = ConfirmationStore.decode(pending)
            await self._discard_reset(session, payload)
            await AuditService.record(session, self.league_id, actor_id, AuditActions.RESET_CANCELLED,
                                      {'level': payload.get('level')})
        return OperationResult.ok('Reset cancelled.')

    async def _run_reset(self, session: AsyncSession, level: str, now: Optional[datetime] = None) -> str:
        if level == ResetLevels.CHECKINS:
            league = await session.get(League, self.league_id)
            today = league_today(league.timezone if league else None, now)
            await session.execute(delete(ReadyQueueEntry).where(ReadyQueueEntry.league_id == self.league_id))
            await session.execute(delete(Attendance).where(
                Attendance.league_id == self.league_id, Attendance.date == today))
            return f"Reset level: checkins (cleared today's attendance + ready queue for {today})."

        if level not in (ResetLevels.LEAGUE, ResetLevels.EVERYTHING):
            raise AdminOperationError(f"Unknown reset level {level}", "❌ Unknown reset level.")

        match_ids = select(Match.id).where(Match.league_id == self.league_id)
        await session.execute(delete(PendingConfirmation).where(PendingConfirmation.key.like('rematch:%')))
        await session.execute(delete(AdminMatchOverride).where(AdminMatchOverride.match_id.in_(match_ids)))
        await session.execute(delete(MatchReport).where(MatchReport.match_id.in_(match_ids)))
        await session.execute(delete(Result).where(Result.match_id.in_(match_ids)))
        await session.execute(delete(Match).where(Match.league_id == self.league_id))
        await session.execute(delete(Fixture).where(Fixture.league_id == self.league_id))
        await session.execute(delete(ReadyQueueEntry).where(ReadyQueueEntry.league_id == self.league_id))
        await session.execute(delete(Attendance).where(Attendance.league_id == self.league_id))

        if level == ResetLevels.EVERYTHING:
            await session.execute(delete(Player).where(Player.league_id == self.league_id))
            return 'Reset level: everything (league state + signups removed).'
        return 'Reset level: league (players preserved).'

