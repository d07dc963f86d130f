"""
Message delivery collaborator.

The engine only talks to Discord through ``MatchAnnouncer``. Every method
either succeeds or raises ``DeliveryError``; callers decide whether to
compensate.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import discord

from league_bot.config import Config
from league_bot.constants import ReactionEmoji
from league_bot.services.guild_settings import GuildSettingsService
from league_bot.utils.exceptions import DeliveryError
from league_bot.utils.messages import build_match_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageRef:
    channel_id: int
    message_id: int


@dataclass(frozen=True)
class MatchAnnouncement:
    match_id: int
    guild_id: int
    player_a_discord_id: int
    player_b_discord_id: int
    leg_number: int
    match_format: str
    tournament_name: str


class MatchAnnouncer(ABC):

    @abstractmethod
    async def resolve_channel(self, guild_id: int) -> Optional[int]:
        """Channel id match announcements go to, or None when unconfigured or unreachable"""

    @abstractmethod
    async def announce_match(self, channel_id: int, announcement: MatchAnnouncement) -> MessageRef:
        """Post the match message with its reaction affordances"""

    @abstractmethod
    async def update_match_message(self, ref: MessageRef, content: str) -> None:
        pass

    @abstractmethod
    async def notify_dispute(self, guild_id: int, content: str) -> None:
        pass

    @abstractmethod
    async def notify_activity(self, guild_id: int, content: str) -> None:
        pass

    @abstractmethod
    async def send_direct_message(self, user_id: int, content: str,
                                  reactions: Sequence[str] = ()) -> Optional[MessageRef]:
        pass


class DiscordMatchAnnouncer(MatchAnnouncer):
    """discord.py implementation resolving channels from guild settings"""

    def __init__(self, bot: discord.Client, settings_service: GuildSettingsService):
        self.bot = bot
        self.settings_service = settings_service

    async def _fetch_text_channel(self, channel_id: Optional[int]):
        if not channel_id:
            return None
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id)
            except (discord.NotFound, discord.Forbidden):
                return None
            except discord.HTTPException as e:
                logger.warning(f"Could not fetch channel {channel_id}: {e}")
                return None
        if not isinstance(channel, discord.abc.Messageable):
            return None
        return channel

    async def resolve_channel(self, guild_id: int) -> Optional[int]:
        settings = await self.settings_service.get_or_create(guild_id)
        channel_id = settings.results_channel_id or Config.MATCH_CHANNEL_ID
        channel = await self._fetch_text_channel(channel_id)
        return channel.id if channel else None

    async def announce_match(self, channel_id: int, announcement: MatchAnnouncement) -> MessageRef:
        channel = await self._fetch_text_channel(channel_id)
        if channel is None:
            raise DeliveryError(f"Channel {channel_id} is not available")

        content = build_match_message(
            announcement.match_id,
            announcement.player_a_discord_id,
            announcement.player_b_discord_id,
            announcement.tournament_name,
            announcement.match_format,
            details=f'Leg {announcement.leg_number}',
        )
        try:
            message = await channel.send(content)
        except discord.HTTPException as e:
            raise DeliveryError(f"Failed to announce match {announcement.match_id}: {e}") from e

        try:
            for emoji in ([ReactionEmoji.SIDE_A, ReactionEmoji.SIDE_B]
                          + ReactionEmoji.score_emoji_for_format(announcement.match_format)
                          + [ReactionEmoji.ADMIN_OVERRIDE, ReactionEmoji.REMATCH]):
                await message.add_reaction(emoji)
        except discord.HTTPException as e:
            # The match is about to be rolled back; do not leave a dead announcement behind
            try:
                await message.delete()
            except discord.HTTPException as delete_error:
                logger.warning(f"Could not delete half-posted message {message.id}: {delete_error}")
            raise DeliveryError(f"Failed to add reactions for match {announcement.match_id}: {e}") from e

        return MessageRef(channel_id=channel.id, message_id=message.id)

    async def update_match_message(self, ref: MessageRef, content: str) -> None:
        channel = await self._fetch_text_channel(ref.channel_id)
        if channel is None:
            raise DeliveryError(f"Channel {ref.channel_id} is not available")
        try:
            message = await channel.fetch_message(ref.message_id)
            await message.edit(content=content)
        except discord.HTTPException as e:
            raise DeliveryError(f"Failed to update message {ref.message_id}: {e}") from e

    async def _send_to_setting(self, guild_id: int, channel_id: Optional[int], content: str) -> None:
        channel = await self._fetch_text_channel(channel_id)
        if channel is None:
            logger.debug(f"No notification channel configured for guild {guild_id}")
            return
        try:
            await channel.send(content)
        except discord.HTTPException as e:
            raise DeliveryError(f"Failed to notify guild {guild_id}: {e}") from e

    async def notify_dispute(self, guild_id: int, content: str) -> None:
        settings = await self.settings_service.get_or_create(guild_id)
        await self._send_to_setting(guild_id, settings.dispute_target_channel_id, content)

    async def notify_activity(self, guild_id: int, content: str) -> None:
        settings = await self.settings_service.get_or_create(guild_id)
        await self._send_to_setting(guild_id, settings.activity_channel_id or settings.admin_channel_id, content)

    async def send_direct_message(self, user_id: int, content: str,
                                  reactions: Sequence[str] = ()) -> Optional[MessageRef]:
        try:
            user = self.bot.get_user(user_id) or await self.bot.fetch_user(user_id)
            message = await user.send(content)
            for emoji in reactions:
                await message.add_reaction(emoji)
        except discord.HTTPException as e:
            raise DeliveryError(f"Failed to DM user {user_id}: {e}") from e
        return MessageRef(channel_id=message.channel.id, message_id=message.id)
