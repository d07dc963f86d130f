"""
Match Events Module

Inbound interactions on match messages and reset prompts, parsed into typed
events and routed through a dispatch table keyed by event type. The Discord
layer only translates raw reactions into events and applies the returned
DispatchResult (remove the reaction, tell the user something).
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Type

from league_bot.constants import ReactionEmoji
from league_bot.operations.admin_operations import AdminOperations
from league_bot.operations.match_operations import MatchOperations, ReconcileOutcome
from league_bot.operations.matchmaking import Matchmaker
from league_bot.operations.override_operations import OverrideOperations
from league_bot.utils.exceptions import LeagueOperationError, OverrideOwnershipError
from league_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class MatchEvent:
    """A reaction added to or removed from a match message."""
    match_id: int
    user_id: int
    is_admin: bool
    added: bool


@dataclass(frozen=True)
class WinnerSelected(MatchEvent):
    side: str = 'A'


@dataclass(frozen=True)
class ScoreSelected(MatchEvent):
    score_code: int = 0


@dataclass(frozen=True)
class OverrideToggled(MatchEvent):
    pass


@dataclass(frozen=True)
class RematchVoted(MatchEvent):
    pass


@dataclass(frozen=True)
class ResetDecision:
    """The requester's answer on a reset DM prompt."""
    message_id: int
    user_id: int
    confirm: bool


@dataclass
class DispatchResult:
    remove_reaction: bool = False
    outcome: Optional[ReconcileOutcome] = None
    message: Optional[str] = None


def parse_reaction(emoji: str, match_id: int, user_id: int, is_admin: bool, added: bool) -> Optional[MatchEvent]:
    """Map a reaction on a match message to its event; None for foreign emoji"""
    base = dict(match_id=match_id, user_id=user_id, is_admin=is_admin, added=added)
    if emoji == ReactionEmoji.SIDE_A:
        return WinnerSelected(side='A', **base)
    if emoji == ReactionEmoji.SIDE_B:
        return WinnerSelected(side='B', **base)
    if emoji in ReactionEmoji.SCORE_CODES:
        return ScoreSelected(score_code=ReactionEmoji.SCORE_CODES.index(emoji), **base)
    if emoji == ReactionEmoji.ADMIN_OVERRIDE:
        return OverrideToggled(**base)
    if emoji == ReactionEmoji.REMATCH:
        return RematchVoted(**base)
    return None


def parse_reset_reaction(emoji: str, message_id: int, user_id: int) -> Optional[ResetDecision]:
    if emoji == ReactionEmoji.CONFIRM:
        return ResetDecision(message_id=message_id, user_id=user_id, confirm=True)
    if emoji == ReactionEmoji.CANCEL:
        return ResetDecision(message_id=message_id, user_id=user_id, confirm=False)
    return None


class MatchEventDispatcher:
    """Routes parsed events to the engine operation that owns them"""

    def __init__(self, match_ops: MatchOperations, override_ops: OverrideOperations,
                 matchmaker: Matchmaker, admin_ops: AdminOperations):
        self.match_ops = match_ops
        self.override_ops = override_ops
        self.matchmaker = matchmaker
        self.admin_ops = admin_ops
        self.logger = logger
        self._handlers: Dict[Type, Callable[..., Awaitable[DispatchResult]]] = {
            WinnerSelected: self._on_winner,
            ScoreSelected: self._on_score,
            OverrideToggled: self._on_override,
            RematchVoted: self._on_rematch,
            ResetDecision: self._on_reset,
        }

    async def dispatch(self, event) -> DispatchResult:
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"No handler for {type(event).__name__}")
        try:
            return await handler(event)
        except LeagueOperationError as e:
            self.logger.info(f"{type(event).__name__} rejected: {e}")
            added = getattr(event, 'added', True)
            return DispatchResult(remove_reaction=added, message=e.user_message if added else None)

    async def _admin_selection(self, event: MatchEvent, **selection) -> Optional[DispatchResult]:
        """
        Route an admin's winner/score reaction to their override. Returns None
        when the admin holds no override, so the reaction counts as a report.
        """
        if not event.is_admin:
            return None

        if event.added:
            if 'side' in selection:
                outcome = await self.override_ops.select_winner(event.match_id, event.user_id, selection['side'])
            else:
                outcome = await self.override_ops.select_score(event.match_id, event.user_id,
                                                               selection['score_code'])
            if outcome is not None:
                return DispatchResult(outcome=outcome)
        else:
            outcome = await self.override_ops.release(
                event.match_id, event.user_id,
                winner_side=selection.get('side'), score_code=selection.get('score_code'),
            )
            if outcome is not None:
                return DispatchResult(outcome=outcome)

        owner = await self.override_ops.active_owner(event.match_id)
        if owner is not None and owner != event.user_id:
            if not await self._is_participant(event.match_id, event.user_id):
                raise OverrideOwnershipError(event.match_id, owner)
        return None

    async def _is_participant(self, match_id: int, user_id: int) -> bool:
        async with self.match_ops.db.get_session() as session:
            ctx = await self.match_ops.load_context(match_id, session)
            return ctx.is_participant(user_id)

    async def _on_winner(self, event: WinnerSelected) -> DispatchResult:
        handled = await self._admin_selection(event, side=event.side)
        if handled is not None:
            return handled
        if not event.added:
            # Reports are edited by reacting again, not by withdrawing
            return DispatchResult()
        outcome = await self.match_ops.submit_report(event.match_id, event.user_id, winner_side=event.side)
        return DispatchResult(outcome=outcome)

    async def _on_score(self, event: ScoreSelected) -> DispatchResult:
        handled = await self._admin_selection(event, score_code=event.score_code)
        if handled is not None:
            return handled
        if not event.added:
            return DispatchResult()
        outcome = await self.match_ops.submit_report(event.match_id, event.user_id, score_code=event.score_code)
        return DispatchResult(outcome=outcome)

    async def _on_override(self, event: OverrideToggled) -> DispatchResult:
        if not event.is_admin:
            if not event.added:
                return DispatchResult()
            return DispatchResult(remove_reaction=True, message='❌ Only admins can override a match.')
        if event.added:
            outcome = await self.override_ops.arm(event.match_id, event.user_id)
            return DispatchResult(
                outcome=outcome,
                message=f'❗ Override armed on Match {event.match_id}. React with the winner and score.',
            )
        outcome = await self.override_ops.release(event.match_id, event.user_id, disarm=True)
        return DispatchResult(outcome=outcome)

    async def _on_rematch(self, event: RematchVoted) -> DispatchResult:
        result = await self.matchmaker.vote_rematch(event.match_id, event.user_id, added=event.added)
        if not result.success:
            if not event.added:
                return DispatchResult()
            return DispatchResult(remove_reaction=True, message=f'❌ {result.message}')
        return DispatchResult(message=result.message)

    async def _on_reset(self, event: ResetDecision) -> DispatchResult:
        if event.confirm:
            result = await self.admin_ops.confirm_reset(event.user_id, message_id=event.message_id)
        else:
            result = await self.admin_ops.cancel_reset(event.user_id, message_id=event.message_id)
        return DispatchResult(remove_reaction=not result.success, message=result.message)
