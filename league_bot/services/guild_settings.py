"""
Per-guild settings service.

Channels, match format, tournament name and timezone for each guild. A row
is created with defaults on first access.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from league_bot.config import Config
from league_bot.constants import MatchFormats
from league_bot.database.models import GuildSettings
from league_bot.services.base import BaseService

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    'results_channel_id',
    'admin_channel_id',
    'standings_channel_id',
    'dispute_channel_id',
    'activity_channel_id',
    'match_format',
    'tournament_name',
    'timezone',
)


class GuildSettingsService(BaseService):

    async def get_or_create(self, guild_id: int, session: Optional[AsyncSession] = None) -> GuildSettings:
        async def _get(s: AsyncSession) -> GuildSettings:
            row = await s.get(GuildSettings, guild_id)
            if row is None:
                row = GuildSettings(
                    guild_id=guild_id,
                    results_channel_id=Config.MATCH_CHANNEL_ID or None,
                    match_format=MatchFormats.DEFAULT,
                    tournament_name=Config.LEAGUE_NAME,
                    timezone=Config.DEFAULT_TIMEZONE,
                )
                s.add(row)
                await s.flush()
                logger.info(f"Created default settings for guild {guild_id}")
            return row

        return await self.in_session(_get, session)

    async def update(self, guild_id: int, patch: Dict[str, Any],
                     session: Optional[AsyncSession] = None) -> GuildSettings:
        """
        Merge a partial update into the guild's settings.

        Raises:
            ValueError: On unknown fields or an unsupported match format
        """
        unknown = set(patch) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown guild settings: {', '.join(sorted(unknown))}")
        if 'match_format' in patch and not MatchFormats.is_valid(str(patch['match_format']).upper()):
            raise ValueError(f"Match format must be one of: {', '.join(MatchFormats.SCORE_TABLES)}")

        async def _update(s: AsyncSession) -> GuildSettings:
            row = await self.get_or_create(guild_id, session=s)
            for key, value in patch.items():
                if key == 'match_format':
                    value = str(value).upper()
                setattr(row, key, value)
            await s.flush()
            return row

        return await self.in_session(_update, session)

    async def match_format(self, guild_id: Optional[int], session: Optional[AsyncSession] = None) -> str:
        if guild_id is None:
            return MatchFormats.DEFAULT
        row = await self.get_or_create(guild_id, session=session)
        return row.match_format if MatchFormats.is_valid(row.match_format) else MatchFormats.DEFAULT
