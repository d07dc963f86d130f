"""
Match Operations Module

The match state machine under the dual-report protocol. Each participant
files a report (winner side plus score code) by reacting to the match
message; after every mutation the match is reconciled synchronously, in the
same transaction as the mutation:

1. An active admin override with a winner and score decides the result.
2. While either report is incomplete the match stays pending or reported.
3. Two complete reports that disagree put the match in dispute.
4. Two complete reports that agree confirm the result.

Discord side effects (message edits, dispute notifications) happen after
commit through the MatchAnnouncer collaborator; delivery failures are logged
and never undo a committed result.

Admin commands for forcing, voiding and disputing results live here too.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from contextlib import asynccontextmanager

from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from league_bot.config import Config
from league_bot.constants import MatchFormats
from league_bot.data_models.results import OperationResult
from league_bot.database.models import (
    AdminMatchOverride, Fixture, FixtureStatus, GuildSettings, Match, MatchReport,
    MatchState, Player, Result, can_transition,
)
from league_bot.services.audit import AuditActions, AuditService
from league_bot.services.delivery import MatchAnnouncer, MessageRef
from league_bot.utils.exceptions import (
    DeliveryError, IntegrityViolationError, MatchStateError, ValidationError,
)
from league_bot.utils.logger import setup_logger
from league_bot.utils.messages import build_match_message, mention
from league_bot.utils.scores import normalize_format, parse_score_text, scores_for_side, shutout_score

logger = setup_logger(__name__)

STATE_LABELS = {
    MatchState.PENDING: 'Pending',
    MatchState.REPORTED: 'Reported',
    MatchState.DISPUTED: 'Disputed',
    MatchState.CONFIRMED: 'Confirmed',
    MatchState.CANCELLED: 'Cancelled',
}


@dataclass(frozen=True)
class MatchContext:
    """A match with what callers need to authorise and render it."""
    match: Match
    player_a: Player
    player_b: Player
    match_format: str
    tournament_name: str
    override: Optional[AdminMatchOverride]

    def player_by_discord_id(self, discord_id: int) -> Optional[Player]:
        if discord_id == self.player_a.discord_id:
            return self.player_a
        if discord_id == self.player_b.discord_id:
            return self.player_b
        return None

    def is_participant(self, discord_id: int) -> bool:
        return self.player_by_discord_id(discord_id) is not None

    @property
    def has_active_override(self) -> bool:
        return bool(self.override and self.override.active)


@dataclass(frozen=True)
class ReconcileOutcome:
    """Result of reconciling one match, carrying what the Discord layer needs to render it."""
    match_id: int
    previous_state: MatchState
    state: MatchState
    guild_id: Optional[int]
    channel_id: Optional[int]
    message_id: Optional[int]
    player_a_discord_id: int
    player_b_discord_id: int
    match_format: str
    tournament_name: str
    winner_id: Optional[int] = None
    score_a: Optional[int] = None
    score_b: Optional[int] = None
    override_admin_id: Optional[int] = None
    details: str = ''

    @property
    def newly_confirmed(self) -> bool:
        return self.state == MatchState.CONFIRMED and self.previous_state != MatchState.CONFIRMED

    @property
    def newly_disputed(self) -> bool:
        return self.state == MatchState.DISPUTED and self.previous_state != MatchState.DISPUTED

    @property
    def message_ref(self) -> Optional[MessageRef]:
        if self.channel_id and self.message_id:
            return MessageRef(channel_id=self.channel_id, message_id=self.message_id)
        return None


class MatchOperations:
    """
    Match lifecycle: creation, player reports, reconciliation and admin
    result commands.
    """

    def __init__(self, database, announcer: Optional[MatchAnnouncer] = None):
        self.db = database
        self.league_id = database.league_id
        self.announcer = announcer
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        if session:
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_match(self, match_id: int, session: Optional[AsyncSession] = None) -> Optional[Match]:
        async with self._get_session_context(session) as s:
            return await s.get(Match, match_id)

    async def get_match_by_message(self, message_id: int, session: Optional[AsyncSession] = None) -> Optional[Match]:
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Match).where(Match.league_id == self.league_id, Match.message_id == message_id)
            )
            return result.scalar_one_or_none()

    async def load_context(self, match_id: int, session: AsyncSession) -> MatchContext:
        """
        Raises:
            ValidationError: If the match does not exist
            IntegrityViolationError: If a participant row is missing
        """
        match = await session.get(Match, match_id)
        if match is None:
            raise ValidationError(f"Match {match_id} not found", "❌ Match not found.")

        player_a = await session.get(Player, match.player_a_id)
        player_b = await session.get(Player, match.player_b_id)
        if player_a is None or player_b is None:
            raise IntegrityViolationError(f"Match {match_id} references a missing player")

        settings = await session.get(GuildSettings, match.guild_id) if match.guild_id else None
        match_format = normalize_format(settings.match_format if settings else MatchFormats.DEFAULT)
        tournament_name = (settings.tournament_name if settings and settings.tournament_name
                           else Config.LEAGUE_NAME)

        result = await session.execute(
            select(AdminMatchOverride).where(AdminMatchOverride.match_id == match_id)
        )
        return MatchContext(
            match=match,
            player_a=player_a,
            player_b=player_b,
            match_format=match_format,
            tournament_name=tournament_name,
            override=result.scalar_one_or_none(),
        )

    async def list_matches(self, limit: int = 30, player_id: Optional[int] = None) -> List[Tuple]:
        """(match_id, a_discord_id, b_discord_id, state, score_a, score_b), newest first"""
        async with self.db.get_session() as session:
            stmt = select(Match).where(Match.league_id == self.league_id)
            if player_id is not None:
                stmt = stmt.where(or_(Match.player_a_id == player_id, Match.player_b_id == player_id))
            result = await session.execute(stmt.order_by(Match.id.desc()).limit(limit))
            matches = list(result.scalars().all())
            if not matches:
                return []

            player_ids = {m.player_a_id for m in matches} | {m.player_b_id for m in matches}
            players = await session.execute(select(Player.id, Player.discord_id).where(Player.id.in_(player_ids)))
            discord_by_player = dict(players.all())

            results = await session.execute(
                select(Result).where(
                    Result.match_id.in_([m.id for m in matches]),
                    Result.confirmed_at.is_not(None),
                )
            )
            result_by_match = {r.match_id: r for r in results.scalars().all()}

            rows = []
            for m in matches:
                r = result_by_match.get(m.id)
                rows.append((
                    m.id,
                    discord_by_player.get(m.player_a_id),
                    discord_by_player.get(m.player_b_id),
                    m.state.value,
                    r.score_a if r else None,
                    r.score_b if r else None,
                ))
            return rows

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, match: Match, target: MatchState, override: bool = False) -> None:
        """
        Raises:
            MatchStateError: If target is not reachable from the current state
        """
        if not can_transition(match.state, target, override=override):
            raise MatchStateError(match.id, match.state.value, target.value)
        match.state = target
        if target in (MatchState.CONFIRMED, MatchState.CANCELLED):
            match.ended_at = datetime.utcnow()
        else:
            match.ended_at = None

    async def create_match(self, fixture: Fixture, guild_id: Optional[int], session: AsyncSession) -> Match:
        """Insert a pending match for an already-claimed fixture"""
        match = Match(
            league_id=self.league_id,
            fixture_id=fixture.id,
            player_a_id=fixture.player_a_id,
            player_b_id=fixture.player_b_id,
            state=MatchState.PENDING,
            guild_id=guild_id,
        )
        session.add(match)
        await session.flush()
        return match

    async def bind_message(self, match_id: int, ref: MessageRef, session: AsyncSession) -> None:
        match = await session.get(Match, match_id)
        if match is not None:
            match.channel_id = ref.channel_id
            match.message_id = ref.message_id

    async def cancel_match(self, match_id: int, session: AsyncSession, actor_id: Optional[int] = None,
                           reason: str = 'cancelled') -> Match:
        """Cancel a match and return its fixture to the unplayed pool"""
        match = await session.get(Match, match_id)
        if match is None:
            raise ValidationError(f"Match {match_id} not found", "❌ Match not found.")
        self._transition(match, MatchState.CANCELLED)
        await session.execute(delete(Result).where(Result.match_id == match_id))
        fixture = await session.get(Fixture, match.fixture_id)
        if fixture is not None:
            fixture.status = FixtureStatus.UNPLAYED
            fixture.confirmed_at = None
        self.logger.info(f"Match {match_id} cancelled ({reason})")
        return match

    async def _replace_result(self, session: AsyncSession, match: Match, winner_id: int,
                              score_a: int, score_b: int, reporter_id: int, confirmer_id: int,
                              is_forfeit: bool = False) -> Result:
        await session.execute(delete(Result).where(Result.match_id == match.id))
        now = datetime.utcnow()
        result = Result(
            match_id=match.id,
            winner_id=winner_id,
            score_a=score_a,
            score_b=score_b,
            is_forfeit=is_forfeit,
            reporter_id=reporter_id,
            confirmer_id=confirmer_id,
            reported_at=now,
            confirmed_at=now,
        )
        session.add(result)
        return result

    async def _set_fixture_status(self, session: AsyncSession, fixture_id: int, status: FixtureStatus) -> None:
        fixture = await session.get(Fixture, fixture_id)
        if fixture is None:
            raise IntegrityViolationError(f"Fixture {fixture_id} is missing")
        fixture.status = status
        fixture.confirmed_at = datetime.utcnow() if status == FixtureStatus.CONFIRMED else None

    async def reconcile(self, match_id: int, session: AsyncSession,
                        override_changed: bool = False) -> ReconcileOutcome:
        """
        Derive the match state and result from the override and both reports.

        Runs inside the caller's transaction. Cancelled matches are never
        reconciled. A confirmed match only reopens when an override exists or
        override_changed says one was just armed, edited or released.
        """
        ctx = await self.load_context(match_id, session)
        match = ctx.match
        via_override = override_changed or ctx.override is not None
        previous = match.state
        if previous == MatchState.CANCELLED:
            raise MatchStateError(match.id, previous.value)

        base = dict(
            match_id=match.id,
            previous_state=previous,
            guild_id=match.guild_id,
            channel_id=match.channel_id,
            message_id=match.message_id,
            player_a_discord_id=ctx.player_a.discord_id,
            player_b_discord_id=ctx.player_b.discord_id,
            match_format=ctx.match_format,
            tournament_name=ctx.tournament_name,
        )

        # 1. Decisive admin override
        override = ctx.override
        if override is not None and override.is_decisive:
            scores = scores_for_side(override.winner_side, override.score_code, ctx.match_format)
            if scores is not None:
                score_a, score_b = scores
                winner_id = match.player_for_side(override.winner_side)
                await self._replace_result(session, match, winner_id, score_a, score_b,
                                           reporter_id=override.admin_id, confirmer_id=override.admin_id)
                self._transition(match, MatchState.CONFIRMED)
                await self._set_fixture_status(session, match.fixture_id, FixtureStatus.CONFIRMED)
                await AuditService.record(session, self.league_id, override.admin_id, AuditActions.MATCH_CONFIRMED, {
                    'match_id': match.id, 'score_a': score_a, 'score_b': score_b, 'via': 'admin_override',
                })
                return ReconcileOutcome(
                    state=MatchState.CONFIRMED,
                    winner_id=winner_id,
                    score_a=score_a,
                    score_b=score_b,
                    override_admin_id=override.admin_id,
                    details=f'Final: {score_a}-{score_b} (Admin override by {mention(override.admin_id)})',
                    **base,
                )
            self.logger.warning(f"Override on match {match.id} has score code {override.score_code} "
                                f"outside {ctx.match_format}; falling back to reports")

        reports = await session.execute(select(MatchReport).where(MatchReport.match_id == match.id))
        by_reporter: Dict[int, MatchReport] = {r.reporter_id: r for r in reports.scalars().all()}
        report_a = by_reporter.get(match.player_a_id)
        report_b = by_reporter.get(match.player_b_id)
        complete_a = bool(report_a and report_a.is_complete)
        complete_b = bool(report_b and report_b.is_complete)

        # 2. Incomplete reports
        if not (complete_a and complete_b):
            any_report = any(
                r is not None and (r.winner_side is not None or r.score_code is not None)
                for r in (report_a, report_b)
            )
            target = MatchState.REPORTED if any_report else MatchState.PENDING
            await session.execute(delete(Result).where(Result.match_id == match.id))
            self._transition(match, target, override=via_override)
            await self._set_fixture_status(session, match.fixture_id, FixtureStatus.LOCKED_IN_MATCH)
            return ReconcileOutcome(
                state=target,
                details='Awaiting winner + score from both players.',
                **base,
            )

        # 3. Disagreement
        if report_a.winner_side != report_b.winner_side or report_a.score_code != report_b.score_code:
            await session.execute(delete(Result).where(Result.match_id == match.id))
            self._transition(match, MatchState.DISPUTED, override=via_override)
            await self._set_fixture_status(session, match.fixture_id, FixtureStatus.LOCKED_IN_MATCH)
            if previous != MatchState.DISPUTED:
                await AuditService.record(session, self.league_id, None, AuditActions.MATCH_DISPUTED, {
                    'match_id': match.id,
                    'report_a': [report_a.winner_side, report_a.score_code],
                    'report_b': [report_b.winner_side, report_b.score_code],
                })
            return ReconcileOutcome(
                state=MatchState.DISPUTED,
                details=(
                    'Disputed\n'
                    f'Player A report: winner={report_a.winner_side}, scoreCode={report_a.score_code}\n'
                    f'Player B report: winner={report_b.winner_side}, scoreCode={report_b.score_code}'
                ),
                **base,
            )

        # 4. Agreement
        scores = scores_for_side(report_a.winner_side, report_a.score_code, ctx.match_format)
        if scores is None:
            raise IntegrityViolationError(
                f"Match {match.id} reports carry score code {report_a.score_code} outside {ctx.match_format}"
            )
        score_a, score_b = scores
        winner_id = match.player_for_side(report_a.winner_side)
        await self._replace_result(session, match, winner_id, score_a, score_b,
                                   reporter_id=ctx.player_a.discord_id, confirmer_id=ctx.player_b.discord_id)
        self._transition(match, MatchState.CONFIRMED)
        await self._set_fixture_status(session, match.fixture_id, FixtureStatus.CONFIRMED)
        if previous != MatchState.CONFIRMED:
            await AuditService.record(session, self.league_id, None, AuditActions.MATCH_CONFIRMED, {
                'match_id': match.id, 'score_a': score_a, 'score_b': score_b, 'via': 'player_reports',
            })
        return ReconcileOutcome(
            state=MatchState.CONFIRMED,
            winner_id=winner_id,
            score_a=score_a,
            score_b=score_b,
            details=f'Final: {score_a}-{score_b} (Confirmed)',
            **base,
        )

    # ------------------------------------------------------------------
    # Player reports
    # ------------------------------------------------------------------

    async def submit_report(
        self,
        match_id: int,
        actor_id: int,
        winner_side: Optional[str] = None,
        score_code: Optional[int] = None,
        publish: bool = True,
    ) -> ReconcileOutcome:
        """
        Record a participant's winner side and/or score code, then reconcile.

        Fields left as None keep their previous value, so winner and score can
        be reported one reaction at a time and edited later.

        Raises:
            ValidationError: If the actor is not a participant or the input is invalid
            MatchStateError: If the match is cancelled, or confirmed without an active override
        """
        if winner_side is not None and winner_side not in ('A', 'B'):
            raise ValidationError(f"Invalid winner side {winner_side}", "❌ Winner must be A or B.")

        async with self.db.transaction() as session:
            ctx = await self.load_context(match_id, session)
            reporter = ctx.player_by_discord_id(actor_id)
            if reporter is None:
                raise ValidationError(
                    f"User {actor_id} is not a participant in match {match_id}",
                    "❌ Only the two players in this match can report it.",
                )

            state = ctx.match.state
            if state == MatchState.CANCELLED:
                raise MatchStateError(match_id, state.value, user_message="❌ This match was cancelled.")
            if state == MatchState.CONFIRMED and not ctx.has_active_override:
                raise MatchStateError(match_id, state.value,
                                      user_message="❌ This match is already confirmed.")

            if score_code is not None and score_code not in MatchFormats.SCORE_TABLES[ctx.match_format]:
                raise ValidationError(
                    f"Score code {score_code} invalid for {ctx.match_format}",
                    f"❌ That score is not valid for {ctx.match_format}.",
                )

            result = await session.execute(
                select(MatchReport).where(
                    MatchReport.match_id == match_id,
                    MatchReport.reporter_id == reporter.id,
                )
            )
            report = result.scalar_one_or_none()
            if report is None:
                report = MatchReport(match_id=match_id, reporter_id=reporter.id)
                session.add(report)
            if winner_side is not None:
                report.winner_side = winner_side
            if score_code is not None:
                report.score_code = score_code
            await session.flush()

            outcome = await self.reconcile(match_id, session)

        self.logger.info(f"Match {match_id}: report by {actor_id} -> {outcome.state.value}")
        if publish:
            await self.publish_outcome(outcome)
        return outcome

    async def publish_outcome(self, outcome: ReconcileOutcome) -> None:
        """Push a committed outcome to Discord; failures are logged, never raised"""
        if self.announcer is None:
            return

        ref = outcome.message_ref
        if ref is not None:
            content = build_match_message(
                outcome.match_id,
                outcome.player_a_discord_id,
                outcome.player_b_discord_id,
                outcome.tournament_name,
                outcome.match_format,
                status=STATE_LABELS[outcome.state],
                details=outcome.details,
            )
            try:
                await self.announcer.update_match_message(ref, content)
            except DeliveryError as e:
                self.logger.warning(f"Could not update message for match {outcome.match_id}: {e}")

        if outcome.newly_disputed and outcome.guild_id:
            review = f' Please review in <#{outcome.channel_id}>.' if outcome.channel_id else ''
            try:
                await self.announcer.notify_dispute(
                    outcome.guild_id, f'⚠️ Match {outcome.match_id} is disputed.{review}'
                )
            except DeliveryError as e:
                self.logger.warning(f"Could not send dispute notice for match {outcome.match_id}: {e}")

    async def refresh_message(self, match_id: int) -> None:
        """Re-render the match message from its current state"""
        if self.announcer is None:
            return
        async with self.db.get_session() as session:
            ctx = await self.load_context(match_id, session)
            match = ctx.match
            if not match.channel_id or not match.message_id:
                return
            ref = MessageRef(channel_id=match.channel_id, message_id=match.message_id)
            content = build_match_message(
                match.id,
                ctx.player_a.discord_id,
                ctx.player_b.discord_id,
                ctx.tournament_name,
                ctx.match_format,
                status=STATE_LABELS[match.state],
            )
        try:
            await self.announcer.update_match_message(ref, content)
        except DeliveryError as e:
            self.logger.warning(f"Could not refresh message for match {match_id}: {e}")

    # ------------------------------------------------------------------
    # Admin result commands
    # ------------------------------------------------------------------

    async def force_result(
        self,
        match_id: int,
        admin_id: int,
        winner_discord_id: int,
        score_text: Optional[str] = None,
        forfeit: bool = False,
    ) -> OperationResult:
        """
        Record an admin-decided result.

        A match that already has a confirmed result must be voided first.
        Forfeits are recorded as a shutout in the guild's match format.
        """
        async with self.db.transaction() as session:
            try:
                ctx = await self.load_context(match_id, session)
            except ValidationError as e:
                return OperationResult.fail(e.user_message)
            match = ctx.match

            if match.state == MatchState.CANCELLED:
                return OperationResult.fail('This match was cancelled. Create a new match for the fixture instead.')

            winner = ctx.player_by_discord_id(winner_discord_id)
            if winner is None:
                return OperationResult.fail('Winner must be one of the two players in this match.')

            await session.execute(
                delete(Result).where(Result.match_id == match_id, Result.confirmed_at.is_(None))
            )
            confirmed = await session.execute(
                select(Result.id).where(Result.match_id == match_id, Result.confirmed_at.is_not(None)).limit(1)
            )
            if confirmed.scalar_one_or_none() is not None:
                return OperationResult.fail(
                    'This match already has a confirmed result. Use /admin_void_match first if you need to change it.'
                )

            if forfeit:
                winner_games, loser_games = shutout_score(ctx.match_format)
            else:
                parsed = parse_score_text(score_text or '', ctx.match_format)
                if parsed is None:
                    allowed = ', '.join(f'{w}-{l}' for w, l in MatchFormats.SCORE_TABLES[ctx.match_format].values())
                    return OperationResult.fail(f'Invalid score. Use {allowed}.')
                winner_games, loser_games = parsed

            winner_is_a = winner.id == match.player_a_id
            score_a, score_b = (winner_games, loser_games) if winner_is_a else (loser_games, winner_games)

            result = await self._replace_result(session, match, winner.id, score_a, score_b,
                                                reporter_id=admin_id, confirmer_id=admin_id, is_forfeit=forfeit)
            self._transition(match, MatchState.CONFIRMED)
            await self._set_fixture_status(session, match.fixture_id, FixtureStatus.CONFIRMED)
            await session.flush()
            await AuditService.record(session, self.league_id, admin_id, AuditActions.ADMIN_FORCE_RESULT, {
                'match_id': match_id,
                'winner': winner_discord_id,
                'score_a': score_a,
                'score_b': score_b,
                'is_forfeit': forfeit,
                'result_id': result.id,
            })

        self.logger.info(f"Admin {admin_id} forced result on match {match_id}: {score_a}-{score_b}")
        suffix = ' (FORFEIT)' if forfeit else ''
        return OperationResult.ok(
            f'Forced result recorded: {mention(winner_discord_id)} wins {score_a}-{score_b}{suffix}. '
            f'(result_id={result.id})',
            data=result,
        )

    async def void_match(self, match_id: int, admin_id: int) -> OperationResult:
        """Delete results, reopen the fixture and cancel the match, atomically"""
        async with self.db.transaction() as session:
            match = await session.get(Match, match_id)
            if match is None:
                return OperationResult.fail('Match not found.')
            if match.state == MatchState.CANCELLED:
                return OperationResult.fail(f'Match {match_id} is already cancelled.')

            await self.cancel_match(match_id, session, actor_id=admin_id, reason='voided by admin')
            await session.execute(delete(AdminMatchOverride).where(AdminMatchOverride.match_id == match_id))
            await AuditService.record(session, self.league_id, admin_id, AuditActions.ADMIN_VOID_MATCH,
                                      {'match_id': match_id})

        return OperationResult.ok(f'Match {match_id} voided and fixture reopened.')

    async def mark_disputed(self, match_id: int, admin_id: int, reason: Optional[str] = None) -> OperationResult:
        """Flag a non-terminal match for staff review"""
        reason = (reason or 'Manual admin dispute').strip()
        async with self.db.transaction() as session:
            match = await session.get(Match, match_id)
            if match is None:
                return OperationResult.fail('Match not found.')
            if match.state in (MatchState.CONFIRMED, MatchState.CANCELLED):
                return OperationResult.fail(
                    f'Match {match_id} is {match.state.value}; only open matches can be disputed. '
                    'Use /admin_void_match to reopen a confirmed fixture.'
                )
            self._transition(match, MatchState.DISPUTED)
            await AuditService.record(session, self.league_id, admin_id, AuditActions.ADMIN_DISPUTE,
                                      {'match_id': match_id, 'reason': reason})
            guild_id, channel_id = match.guild_id, match.channel_id

        if self.announcer is not None and guild_id:
            review = f' Review channel: <#{channel_id}>' if channel_id else ''
            try:
                await self.announcer.notify_dispute(
                    guild_id, f'⚠️ Admin marked match {match_id} as disputed. Reason: {reason}.{review}'
                )
            except DeliveryError as e:
                self.logger.warning(f"Could not send dispute notice for match {match_id}: {e}")

        return OperationResult.ok(f'Match {match_id} marked as disputed.')
