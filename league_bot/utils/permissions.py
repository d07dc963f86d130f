"""
Admin privilege checks for slash commands and reactions.

A member is a league admin when they hold Discord's Administrator
permission, are the configured bot owner, or carry one of the admin roles
configured for the guild.
"""

from typing import Optional

import discord
from discord import app_commands

from league_bot.config import Config


async def member_is_admin(bot, member: Optional[discord.abc.User], guild_id: Optional[int]) -> bool:
    if member is None:
        return False
    if Config.OWNER_DISCORD_ID and member.id == Config.OWNER_DISCORD_ID:
        return True
    if not isinstance(member, discord.Member):
        return False
    native = member.guild_permissions.administrator
    role_ids = [role.id for role in member.roles]
    return await bot.admin_role_ops.is_admin(guild_id, native, role_ids)


def league_admin_only():
    """app_commands check raising CheckFailure for non-admins"""
    async def predicate(interaction: discord.Interaction) -> bool:
        return await member_is_admin(interaction.client, interaction.user, interaction.guild_id)
    return app_commands.check(predicate)
