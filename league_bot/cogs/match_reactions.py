"""
Match Reactions Cog

Translates raw reaction add/remove events on match messages and reset DM
prompts into engine events, and applies what the dispatcher returns:
removing a rejected reaction and telling the user why.
"""

from typing import Optional

import discord
from discord.ext import commands

from league_bot.operations.match_events import parse_reaction, parse_reset_reaction
from league_bot.utils.logger import setup_logger
from league_bot.utils.permissions import member_is_admin

logger = setup_logger(__name__)


class MatchReactionsCog(commands.Cog):
    """Reaction-driven match reporting"""

    def __init__(self, bot):
        self.bot = bot
        self.logger = logger

    async def _resolve_member(self, payload: discord.RawReactionActionEvent) -> Optional[discord.abc.User]:
        if payload.member is not None:
            return payload.member
        if payload.guild_id:
            guild = self.bot.get_guild(payload.guild_id)
            if guild is not None:
                member = guild.get_member(payload.user_id)
                if member is not None:
                    return member
        return self.bot.get_user(payload.user_id)

    async def _remove_reaction(self, payload: discord.RawReactionActionEvent, user: discord.abc.Snowflake):
        try:
            channel = self.bot.get_channel(payload.channel_id) or await self.bot.fetch_channel(payload.channel_id)
            message = await channel.fetch_message(payload.message_id)
            await message.remove_reaction(payload.emoji, user)
        except discord.HTTPException as e:
            self.logger.debug(f"Could not remove reaction on {payload.message_id}: {e}")

    async def _notify(self, user_id: int, content: str):
        try:
            user = self.bot.get_user(user_id) or await self.bot.fetch_user(user_id)
            await user.send(content)
        except discord.HTTPException as e:
            self.logger.debug(f"Could not DM {user_id}: {e}")

    async def _handle(self, payload: discord.RawReactionActionEvent, added: bool):
        if self.bot.user and payload.user_id == self.bot.user.id:
            return

        emoji = str(payload.emoji)

        if await self.bot.admin_ops.is_reset_prompt(payload.message_id):
            if not added:
                return
            event = parse_reset_reaction(emoji, payload.message_id, payload.user_id)
            if event is None:
                return
            result = await self.bot.dispatcher.dispatch(event)
            if result.message:
                await self._notify(payload.user_id, result.message)
            return

        match = await self.bot.match_ops.get_match_by_message(payload.message_id)
        if match is None:
            return

        member = await self._resolve_member(payload)
        is_admin = await member_is_admin(self.bot, member, payload.guild_id)
        event = parse_reaction(emoji, match.id, payload.user_id, is_admin, added)
        if event is None:
            if added and member is not None:
                await self._remove_reaction(payload, member)
            return

        result = await self.bot.dispatcher.dispatch(event)
        if result.remove_reaction and added and member is not None:
            await self._remove_reaction(payload, member)
        if result.message:
            await self._notify(payload.user_id, result.message)

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        try:
            await self._handle(payload, added=True)
        except Exception as e:
            self.logger.error(f"Error handling reaction add on {payload.message_id}: {e}", exc_info=True)

    @commands.Cog.listener()
    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent):
        try:
            await self._handle(payload, added=False)
        except Exception as e:
            self.logger.error(f"Error handling reaction remove on {payload.message_id}: {e}", exc_info=True)


async def setup(bot):
    await bot.add_cog(MatchReactionsCog(bot))
