"""
Audit trail service.

Entries are insert-only. Callers already inside a transaction use
``AuditService.record`` with their session so the entry commits or rolls
back together with the change it describes.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from league_bot.database.models import AuditLogEntry
from league_bot.services.base import BaseService

logger = logging.getLogger(__name__)


class AuditActions:
    """Action type names written to the audit log"""
    SIGNUP_UPSERT = 'signup_upsert'
    PLAYER_STATUS = 'player_status_update'
    FIXTURES_GENERATED = 'fixtures_generated'
    MATCH_CREATED = 'match_created'
    MATCH_CONFIRMED = 'match_confirmed'
    MATCH_DISPUTED = 'match_disputed'
    MATCH_ROLLBACK = 'match_announce_rollback'
    MATCHMAKING_CHANNEL_MISSING = 'matchmaking_channel_missing'
    CLAIM_CONFLICT = 'fixture_claim_conflict'
    REMATCH_CREATED = 'rematch_created'
    ADMIN_OVERRIDE = 'admin_override_update'
    ADMIN_FORCE_RESULT = 'admin_force_result'
    ADMIN_VOID_MATCH = 'admin_void_match'
    ADMIN_DISPUTE = 'admin_mark_disputed'
    ADMIN_VS = 'admin_vs_match'
    ADMIN_POINTS = 'admin_points_update'
    ADMIN_TOURNAMENT = 'admin_tournament_settings_update'
    ADMIN_GUILD_SETTINGS = 'admin_guild_settings_update'
    ADMIN_ROLES = 'admin_roles_update'
    RESET_REQUESTED = 'admin_reset_requested'
    RESET_CONFIRMED = 'admin_reset_confirmed'
    RESET_CANCELLED = 'admin_reset_cancelled'


class AuditService(BaseService):
    """Writes and reads audit log entries"""

    def __init__(self, session_factory, league_id: int):
        super().__init__(session_factory)
        self.league_id = league_id

    @staticmethod
    async def record(
        session: AsyncSession,
        league_id: int,
        actor_id: Optional[int],
        action_type: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """Add an entry to an open session; the caller owns the commit"""
        entry = AuditLogEntry(
            league_id=league_id,
            actor_id=actor_id,
            action_type=action_type,
            payload=json.dumps(payload, default=str) if payload is not None else None,
        )
        session.add(entry)
        logger.debug(f"Audit {action_type} by {actor_id}: {payload}")
        return entry

    async def entries(self, action_type: Optional[str] = None, limit: int = 50) -> List[AuditLogEntry]:
        """Most recent entries first"""
        async with self.get_session() as session:
            stmt = select(AuditLogEntry).where(AuditLogEntry.league_id == self.league_id)
            if action_type:
                stmt = stmt.where(AuditLogEntry.action_type == action_type)
            stmt = stmt.order_by(AuditLogEntry.id.desc()).limit(limit)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @staticmethod
    def decode_payload(entry: AuditLogEntry) -> Dict[str, Any]:
        if not entry.payload:
            return {}
        try:
            return json.loads(entry.payload)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON payload on audit entry {entry.id}")
            return {}
