"""
Centralized embeds for consistent command replies across the league bot.
"""

import discord

from league_bot.constants import UIConstants


class ErrorEmbeds:
    """Embed factory for rejected commands."""

    @staticmethod
    def not_signed_up(member: discord.abc.User = None) -> discord.Embed:
        who = member.mention if member else 'This user'
        return discord.Embed(
            title="Not Signed Up",
            description=f"{who} is not signed up in the league.\n\nUse `/signup` to join.",
            color=UIConstants.ERROR_COLOR
        )

    @staticmethod
    def invalid_input(message: str) -> discord.Embed:
        return discord.Embed(
            title="Invalid Input",
            description=message,
            color=UIConstants.ERROR_COLOR
        )


def result_embed(title: str, result) -> discord.Embed:
    """Embed for an OperationResult"""
    color = UIConstants.SUCCESS_COLOR if result.success else UIConstants.ERROR_COLOR
    prefix = '✅' if result.success else '❌'
    return discord.Embed(title=f'{prefix} {title}', description=result.message[:4000], color=color)
