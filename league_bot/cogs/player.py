"""
Player commands: signup, attendance, the ready queue and read-only league
views (standings, table, matches, left to play).
"""

import discord
from discord.ext import commands
from discord import app_commands

from league_bot.config import Config
from league_bot.constants import UIConstants
from league_bot.services.profile_store import ProfileEncryptionError
from league_bot.ui.signup_modal import SignupModal
from league_bot.utils.error_embeds import ErrorEmbeds
from league_bot.utils.messages import build_left_to_play, build_matches_list, build_standings_list
from league_bot.views.standings import StandingsTableView
import logging

logger = logging.getLogger(__name__)


class PlayerCog(commands.Cog):
    """League commands available to every player."""

    def __init__(self, bot):
        self.bot = bot

    async def _run_matchmaker(self, guild_id: int):
        """Best-effort pairing right after /ready; the periodic tick retries anyway"""
        try:
            await self.bot.matchmaker.run_tick(guild_id)
        except Exception as e:
            logger.warning(f"Immediate matchmaking after /ready failed: {e}", exc_info=True)

    @app_commands.command(name="signup", description="Register or update your league profile")
    async def signup(self, interaction: discord.Interaction):
        settings = await self.bot.settings_service.get_or_create(interaction.guild_id) if interaction.guild_id else None
        title = f"{settings.tournament_name if settings else Config.LEAGUE_NAME} Signup"
        await interaction.response.send_modal(SignupModal(self.bot.player_ops, title=title))

    @app_commands.command(name="my_data", description="Show the details you signed up with")
    async def my_data(self, interaction: discord.Interaction):
        try:
            profile = await self.bot.player_ops.get_profile(interaction.user.id)
        except ProfileEncryptionError as e:
            logger.error(f"Could not read profile for {interaction.user.id}: {e}")
            await interaction.response.send_message("❌ Your profile could not be read. Please contact an admin.",
                                                    ephemeral=True)
            return

        if profile is None:
            await interaction.response.send_message(embed=ErrorEmbeds.not_signed_up(interaction.user), ephemeral=True)
            return

        await self.bot.player_ops.touch_display_name(interaction.user.id, getattr(interaction.user, 'display_name', None))
        await interaction.response.send_message('\n'.join([
            f'Real name: {profile.real_name}',
            f'Tekken tag: {profile.tag}',
            f'Email: {profile.email_masked}',
            f'Phone: {profile.phone_masked}',
            f'Status: {profile.status}',
            f'Discord: {getattr(interaction.user, "display_name", interaction.user.name)}',
        ]), ephemeral=True)

    @app_commands.command(name="checkin", description="Check in for today")
    async def checkin(self, interaction: discord.Interaction):
        result = await self.bot.queue_ops.check_in(interaction.user.id)
        prefix = '✅' if result.success else '❌'
        await interaction.response.send_message(f'{prefix} {result.message}', ephemeral=True)

    @app_commands.command(name="ready", description="Join the ready queue to get paired for a match")
    async def ready(self, interaction: discord.Interaction):
        result = await self.bot.queue_ops.ready(interaction.user.id)
        prefix = '✅' if result.success else '❌'
        await interaction.response.send_message(f'{prefix} {result.message}', ephemeral=True)
        if result.success and interaction.guild_id:
            await self._run_matchmaker(interaction.guild_id)

    @app_commands.command(name="unready", description="Leave the ready queue")
    async def unready(self, interaction: discord.Interaction):
        result = await self.bot.queue_ops.unready(interaction.user.id)
        await interaction.response.send_message(result.message, ephemeral=True)

    @app_commands.command(name="queue", description="Show who is waiting for a match")
    async def queue(self, interaction: discord.Interaction):
        snapshot = await self.bot.queue_ops.queue_snapshot()
        if not snapshot:
            await interaction.response.send_message('Ready queue is currently empty.')
            return
        lines = [f'{index}. {tag or discord_id} (<@{discord_id}>)'
                 for index, (discord_id, tag, _) in enumerate(snapshot, start=1)]
        await interaction.response.send_message(f'**Ready Queue ({len(snapshot)})**\n' + '\n'.join(lines))

    @app_commands.command(name="standings", description="League standings")
    async def standings(self, interaction: discord.Interaction):
        rows = await self.bot.standings_service.get_standings()
        await interaction.response.send_message(build_standings_list(rows))

    @app_commands.command(name="table", description="Full league table with attendance")
    async def table(self, interaction: discord.Interaction):
        await interaction.response.defer()
        rows = await self.bot.standings_service.get_standings()
        completion = await self.bot.standings_service.get_completion_stats()
        checkins = await self.bot.queue_ops.checkin_counts()
        async with self.bot.db.get_session() as session:
            league = await self.bot.db.get_league(session)
            season_days = league.season_days

        view = StandingsTableView(rows, season_days, checkins, completion)
        if view.pages > 1:
            await interaction.followup.send(view.render(), view=view)
        else:
            await interaction.followup.send(view.render())

    @app_commands.command(name="matches", description="Recent matches")
    @app_commands.describe(member="Only show matches for this player")
    async def matches(self, interaction: discord.Interaction, member: discord.Member = None):
        player_id = None
        if member is not None:
            player = await self.bot.player_ops.get_by_discord_id(member.id)
            if player is None:
                await interaction.response.send_message(embed=ErrorEmbeds.not_signed_up(member), ephemeral=True)
                return
            player_id = player.id
        rows = await self.bot.match_ops.list_matches(limit=UIConstants.MATCH_LIST_LIMIT, player_id=player_id)
        await interaction.response.send_message(build_matches_list(rows, member.id if member else None)[:2000])

    @app_commands.command(name="left", description="DM yourself the opponents you still have to play")
    async def left(self, interaction: discord.Interaction):
        player = await self.bot.player_ops.get_by_discord_id(interaction.user.id)
        if player is None:
            await interaction.response.send_message('You must /signup before using /left.', ephemeral=True)
            return

        report = build_left_to_play(await self.bot.fixture_ops.left_to_play(player.id))
        try:
            await interaction.user.send(report[:2000])
        except discord.HTTPException:
            await interaction.response.send_message(
                'I could not DM you. Please enable DMs from server members and try again.', ephemeral=True)
            return
        await interaction.response.send_message('I sent your remaining matches report to your DMs.', ephemeral=True)

    @app_commands.command(name="tournament_settings", description="Show the tournament settings")
    async def tournament_settings(self, interaction: discord.Interaction):
        await interaction.response.send_message(await self.bot.admin_ops.tournament_settings_summary(), ephemeral=True)

    @app_commands.command(name="help", description="How the league works")
    async def help(self, interaction: discord.Interaction):
        await interaction.response.send_message('\n'.join([
            '**League Commands**',
            '• /signup: register or update your league profile',
            '• /my_data: view your saved details (masked)',
            '• /checkin: check in for today',
            '• /ready: join the ready queue; /unready to leave',
            '• /queue: who is waiting for a match',
            '• /standings and /table: league standings',
            '• /matches: recent matches',
            '• /left: your remaining opponents (DM)',
            '',
            '**Reporting a match**',
            '1) Both players react 🇦 or 🇧 for the winner.',
            '2) Both players react the score emoji.',
            '3) Matching reports confirm the result; mismatches are flagged for admins.',
            'React 🔁 after confirmation to play the next leg right away.',
        ]), ephemeral=True)


async def setup(bot):
    await bot.add_cog(PlayerCog(bot))
