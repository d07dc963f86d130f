"""
Expiring coordination store.

Keeps short-lived state keyed by (key, member): destructive reset tokens and
rematch votes. Expiry is enforced on read, and expired rows are purged
opportunistically by the housekeeping loop.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from league_bot.database.models import PendingConfirmation
from league_bot.services.base import BaseService

logger = logging.getLogger(__name__)


class ConfirmationStore(BaseService):
    """Key/member scoped values with a time-to-live"""

    @staticmethod
    def reset_key(token: str) -> str:
        return f'reset:{token}'

    @staticmethod
    def reset_message_key(message_id: int) -> str:
        return f'reset_message:{message_id}'

    @staticmethod
    def rematch_key(match_id: int) -> str:
        return f'rematch:{match_id}'

    async def put(
        self,
        key: str,
        member_id: int,
        ttl_seconds: int,
        payload: Optional[Dict[str, Any]] = None,
        session: Optional[AsyncSession] = None,
        now: Optional[datetime] = None,
    ) -> PendingConfirmation:
        """Insert or refresh a member's entry under key"""
        now = now or datetime.utcnow()

        async def _put(s: AsyncSession) -> PendingConfirmation:
            result = await s.execute(
                select(PendingConfirmation).where(
                    PendingConfirmation.key == key,
                    PendingConfirmation.member_id == member_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = PendingConfirmation(key=key, member_id=member_id)
                s.add(row)
            row.payload = json.dumps(payload) if payload is not None else None
            row.created_at = now
            row.expires_at = now + timedelta(seconds=ttl_seconds)
            await s.flush()
            return row

        return await self.in_session(_put, session)

    async def get(
        self,
        key: str,
        member_id: int,
        session: Optional[AsyncSession] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Dict[str, Any]]:
        """Payload for a live entry, or None when absent or expired"""
        async def _get(s: AsyncSession) -> Optional[Dict[str, Any]]:
            result = await s.execute(
                select(PendingConfirmation).where(
                    PendingConfirmation.key == key,
                    PendingConfirmation.member_id == member_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None or row.is_expired(now):
                return None
            return json.loads(row.payload) if row.payload else {}

        return await self.in_session(_get, session)

    async def members(
        self,
        key: str,
        session: Optional[AsyncSession] = None,
        now: Optional[datetime] = None,
    ) -> List[int]:
        """Member ids holding live entries under key"""
        now = now or datetime.utcnow()

        async def _members(s: AsyncSession) -> List[int]:
            result = await s.execute(
                select(PendingConfirmation.member_id).where(
                    PendingConfirmation.key == key,
                    PendingConfirmation.expires_at > now,
                )
            )
            return sorted(result.scalars().all())

        return await self.in_session(_members, session)

    async def entries(self, key: str, session: Optional[AsyncSession] = None) -> List[PendingConfirmation]:
        """All rows under key, expired ones included"""
        async def _entries(s: AsyncSession) -> List[PendingConfirmation]:
            result = await s.execute(
                select(PendingConfirmation)
                .where(PendingConfirmation.key == key)
                .order_by(PendingConfirmation.created_at)
            )
            return list(result.scalars().all())

        return await self.in_session(_entries, session)

    @staticmethod
    def decode(row: PendingConfirmation) -> Dict[str, Any]:
        return json.loads(row.payload) if row.payload else {}

    async def remove(
        self,
        key: str,
        member_id: Optional[int] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """Delete one member's entry, or every entry under key when member_id is None"""
        async def _remove(s: AsyncSession) -> int:
            stmt = delete(PendingConfirmation).where(PendingConfirmation.key == key)
            if member_id is not None:
                stmt = stmt.where(PendingConfirmation.member_id == member_id)
            result = await s.execute(stmt)
            return result.rowcount

        return await self.in_session(_remove, session)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()

        async def _purge() -> int:
            async with self.get_session() as session:
                result = await session.execute(
                    delete(PendingConfirmation).where(PendingConfirmation.expires_at <= now)
                )
                return result.rowcount

        purged = await self.execute_with_retry(_purge)
        if purged:
            logger.info(f"Purged {purged} expired confirmations")
        return purged
