"""
Reset Confirmation Modal

Typed phrase in front of the largest reset scopes. Passing the modal only
stages the reset; the requester still has to confirm the staged token.
"""

import discord
from typing import Callable, Awaitable

from league_bot.constants import ResetLevels
from league_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

# Levels that wipe signups need the phrase before a token is even issued
GUARDED_LEVELS = (ResetLevels.EVERYTHING,)


def confirmation_phrase(level: str) -> str:
    return f'RESET {level.upper()}'


class ResetConfirmationModal(discord.ui.Modal):
    def __init__(self, level: str, on_confirmed: Callable[[discord.Interaction, str], Awaitable[None]]):
        super().__init__(title=f'Reset {level.title()}', timeout=300)
        self.level = level
        self.phrase = confirmation_phrase(level)
        self.on_confirmed = on_confirmed

        self.phrase_input = discord.ui.TextInput(
            label=f'Type "{self.phrase}" to continue',
            placeholder=self.phrase,
            required=True,
            max_length=len(self.phrase) + 10,
        )
        self.add_item(self.phrase_input)

    async def on_submit(self, interaction: discord.Interaction):
        typed = ' '.join(self.phrase_input.value.split())
        if typed.upper() != self.phrase:
            logger.info(f"Reset '{self.level}' phrase mismatch from {interaction.user.id}")
            await interaction.response.send_message(
                f'❌ Phrase did not match `{self.phrase}`. Reset not requested.', ephemeral=True)
            return

        await self.on_confirmed(interaction, self.level)

    async def on_error(self, interaction: discord.Interaction, error: Exception):
        logger.error(f"Reset modal failed for level '{self.level}': {error}", exc_info=True)
        message = '❌ An error occurred. Reset not requested.'
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)
