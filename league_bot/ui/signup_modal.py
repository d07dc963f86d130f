"""
Signup modal collecting the player's profile details.
"""

import discord

from league_bot.services.profile_store import ProfileEncryptionError
from league_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class SignupModal(discord.ui.Modal):
    """Real name, tag, email and phone; stored encrypted"""

    def __init__(self, player_ops, title: str = 'League Signup'):
        super().__init__(title=title[:45], timeout=600)
        self.player_ops = player_ops

        self.real_name = discord.ui.TextInput(label='Real name', max_length=80, required=True)
        self.tag = discord.ui.TextInput(label='Tekken tag / IGN', max_length=40, required=True)
        self.email = discord.ui.TextInput(label='Email', max_length=120, required=True)
        self.phone = discord.ui.TextInput(label='Phone number', max_length=40, required=True)
        for item in (self.real_name, self.tag, self.email, self.phone):
            self.add_item(item)

    async def on_submit(self, interaction: discord.Interaction):
        user = interaction.user
        try:
            result = await self.player_ops.signup(
                discord_id=user.id,
                real_name=self.real_name.value,
                tag=self.tag.value,
                email=self.email.value,
                phone=self.phone.value,
                username=user.name,
                display_name=getattr(user, 'display_name', None),
            )
        except ProfileEncryptionError as e:
            logger.error(f"Signup for {user.id} failed: {e}")
            await interaction.response.send_message(
                '❌ Signups are not available right now. Please contact an admin.', ephemeral=True
            )
            return

        prefix = '✅' if result.success else '❌'
        await interaction.response.send_message(f'{prefix} {result.message}', ephemeral=True)

    async def on_error(self, interaction: discord.Interaction, error: Exception):
        logger.error(f"Signup modal error for {interaction.user.id}: {error}", exc_info=True)
        if interaction.response.is_done():
            await interaction.followup.send('❌ An error occurred.', ephemeral=True)
        else:
            await interaction.response.send_message('❌ An error occurred.', ephemeral=True)
