"""
Admin Cog - league administration slash commands.

Every command is gated by ``league_admin_only``: Discord administrators, the
bot owner, or members holding a configured admin role.
"""

from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from league_bot.constants import MatchFormats, ReactionEmoji, ResetLevels
from league_bot.database.models import PlayerStatus
from league_bot.services.audit import AuditService
from league_bot.ui.admin_confirmation_modal import GUARDED_LEVELS, ResetConfirmationModal
from league_bot.utils.error_embeds import ErrorEmbeds, result_embed
from league_bot.utils.exceptions import DeliveryError
from league_bot.utils.logger import setup_logger
from league_bot.utils.messages import build_left_to_play, build_matches_list
from league_bot.utils.permissions import league_admin_only
from league_bot.utils.time_utils import is_valid_timezone

logger = setup_logger(__name__)


async def _reply(interaction: discord.Interaction, result, ephemeral: bool = True):
    prefix = '✅' if result.success else '❌'
    content = f'{prefix} {result.message}'[:2000]
    if interaction.response.is_done():
        await interaction.followup.send(content, ephemeral=ephemeral)
    else:
        await interaction.response.send_message(content, ephemeral=ephemeral)


class AdminCog(commands.Cog):
    """League administration"""

    settings_group = app_commands.Group(name="bot_settings", description="Admin: per-server bot settings")

    def __init__(self, bot):
        self.bot = bot
        self.logger = logger

    # ------------------------------------------------------------------
    # Points, settings, status
    # ------------------------------------------------------------------

    @app_commands.command(name="points", description="Admin: set the league points scheme")
    @app_commands.describe(win="Points for a played win", loss="Points for a played loss",
                           no_show="Points for a forfeit win", sweep_bonus="Bonus for a 3-0 win")
    @league_admin_only()
    async def points(self, interaction: discord.Interaction, win: int, loss: int, no_show: int, sweep_bonus: int):
        result = await self.bot.admin_ops.update_points(interaction.user.id, win, loss, no_show, sweep_bonus)
        await _reply(interaction, result)

    @app_commands.command(name="admin_status", description="Admin: league health and queue snapshot")
    @league_admin_only()
    async def admin_status(self, interaction: discord.Interaction):
        result = await self.bot.admin_ops.league_status()
        await interaction.response.send_message(result.message, ephemeral=True)

    @app_commands.command(name="admin_tournament_settings", description="Admin: show tournament settings")
    @league_admin_only()
    async def admin_tournament_settings(self, interaction: discord.Interaction):
        await interaction.response.send_message(await self.bot.admin_ops.tournament_settings_summary(), ephemeral=True)

    @app_commands.command(name="admin_setup_tournament", description="Admin: update tournament settings")
    @app_commands.describe(
        max_players="No. of players (2-1024)",
        timeslot_count="No. of timeslots (1-24)",
        timeslot_duration_minutes="Duration of each timeslot in minutes (15-1440)",
        timeslot_starts="Comma-separated HH:MM start times",
        total_tournament_days="Total tournament days (1-365)",
        minimum_showup_percent="Minimum show up % (0-100)",
        tournament_start_date="Start date (YYYY-MM-DD)",
    )
    @league_admin_only()
    async def admin_setup_tournament(
        self,
        interaction: discord.Interaction,
        max_players: Optional[int] = None,
        timeslot_count: Optional[int] = None,
        timeslot_duration_minutes: Optional[int] = None,
        timeslot_starts: Optional[str] = None,
        total_tournament_days: Optional[int] = None,
        minimum_showup_percent: Optional[float] = None,
        tournament_start_date: Optional[str] = None,
    ):
        result = await self.bot.admin_ops.update_tournament_settings(
            interaction.user.id,
            max_players=max_players,
            timeslot_count=timeslot_count,
            timeslot_duration_minutes=timeslot_duration_minutes,
            time_slot_starts_raw=timeslot_starts,
            total_tournament_days=total_tournament_days,
            minimum_showup_percent=minimum_showup_percent,
            tournament_start_date_raw=tournament_start_date,
        )
        await _reply(interaction, result)

    @app_commands.command(name="admin_generate_fixtures", description="Admin: create any missing fixtures")
    @league_admin_only()
    async def admin_generate_fixtures(self, interaction: discord.Interaction):
        result = await self.bot.admin_ops.generate_fixtures(interaction.user.id)
        await _reply(interaction, result)

    @app_commands.command(name="admin_audit", description="Admin: recent audit log entries")
    @app_commands.describe(action="Only show this action type", limit="Number of entries (max 25)")
    @league_admin_only()
    async def admin_audit(self, interaction: discord.Interaction, action: Optional[str] = None, limit: int = 10):
        entries = await self.bot.audit_service.entries(action_type=action, limit=max(1, min(limit, 25)))
        if not entries:
            await interaction.response.send_message('No audit entries found.', ephemeral=True)
            return
        lines = [
            f'#{e.id} {e.created_at:%Y-%m-%d %H:%M} {e.action_type} by {e.actor_id or "system"}: '
            f'{AuditService.decode_payload(e)}'
            for e in entries
        ]
        await interaction.response.send_message('\n'.join(lines)[:2000], ephemeral=True)

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    @app_commands.command(name="admin_player_status", description="Admin: disqualify, withdraw or reactivate a player")
    @app_commands.choices(status=[
        app_commands.Choice(name=s.value, value=s.value) for s in PlayerStatus
    ])
    @league_admin_only()
    async def admin_player_status(self, interaction: discord.Interaction, player: discord.Member,
                                  status: app_commands.Choice[str]):
        result = await self.bot.player_ops.set_status(player.id, PlayerStatus(status.value), interaction.user.id)
        await _reply(interaction, result)

    @app_commands.command(name="admin_player_matches", description="Admin: one player's matches")
    @league_admin_only()
    async def admin_player_matches(self, interaction: discord.Interaction, player: discord.Member):
        record = await self.bot.player_ops.get_by_discord_id(player.id)
        if record is None:
            await interaction.response.send_message(embed=ErrorEmbeds.not_signed_up(player), ephemeral=True)
            return
        rows = await self.bot.match_ops.list_matches(limit=30, player_id=record.id)
        await interaction.response.send_message(build_matches_list(rows, player.id)[:2000], ephemeral=True)

    @app_commands.command(name="admin_player_left", description="Admin: one player's remaining opponents")
    @league_admin_only()
    async def admin_player_left(self, interaction: discord.Interaction, player: discord.Member):
        record = await self.bot.player_ops.get_by_discord_id(player.id)
        if record is None:
            await interaction.response.send_message('That user is not signed up in the league.', ephemeral=True)
            return
        left = await self.bot.fixture_ops.left_to_play(record.id)
        await interaction.response.send_message(build_left_to_play(left)[:2000], ephemeral=True)

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    @app_commands.command(name="admin_vs", description="Admin: create a match between two players")
    @league_admin_only()
    async def admin_vs(self, interaction: discord.Interaction, player_a: discord.Member, player_b: discord.Member):
        await interaction.response.defer(ephemeral=True)
        result = await self.bot.matchmaker.create_match_for_pair(
            interaction.guild_id, player_a.id, player_b.id, interaction.user.id)
        await _reply(interaction, result)

    @app_commands.command(name="admin_force_result", description="Admin: record a match result")
    @app_commands.describe(match_id="Match number", winner="Winning player",
                           score="Score such as 3-1", forfeit="Record as a forfeit win")
    @league_admin_only()
    async def admin_force_result(self, interaction: discord.Interaction, match_id: int, winner: discord.Member,
                                 score: Optional[str] = None, forfeit: bool = False):
        result = await self.bot.match_ops.force_result(match_id, interaction.user.id, winner.id,
                                                       score_text=score, forfeit=forfeit)
        await _reply(interaction, result)
        if result.success:
            await self.bot.match_ops.refresh_message(match_id)

    @app_commands.command(name="admin_void_match", description="Admin: void a match and reopen its fixture")
    @league_admin_only()
    async def admin_void_match(self, interaction: discord.Interaction, match_id: int):
        result = await self.bot.match_ops.void_match(match_id, interaction.user.id)
        await _reply(interaction, result)
        if result.success:
            await self.bot.match_ops.refresh_message(match_id)

    @app_commands.command(name="admin_dispute_match", description="Admin: flag a match as disputed")
    @league_admin_only()
    async def admin_dispute_match(self, interaction: discord.Interaction, match_id: int,
                                  reason: Optional[str] = None):
        result = await self.bot.match_ops.mark_disputed(match_id, interaction.user.id, reason)
        await _reply(interaction, result)
        if result.success:
            await self.bot.match_ops.refresh_message(match_id)

    # ------------------------------------------------------------------
    # Resets
    # ------------------------------------------------------------------

    async def _stage_reset(self, interaction: discord.Interaction, level: str):
        result = await self.bot.admin_ops.request_reset(level, interaction.user.id, interaction.guild_id)
        if not result.success:
            await _reply(interaction, result)
            return

        token = result.data
        prompt = (f'{result.message}\n\nReact {ReactionEmoji.CONFIRM} to confirm or '
                  f'{ReactionEmoji.CANCEL} to cancel.')
        try:
            ref = await self.bot.announcer.send_direct_message(
                interaction.user.id, prompt, reactions=(ReactionEmoji.CONFIRM, ReactionEmoji.CANCEL))
            if ref is not None:
                await self.bot.admin_ops.bind_reset_message(token, ref.message_id, interaction.user.id)
        except DeliveryError as e:
            self.logger.warning(f"Could not DM reset prompt to {interaction.user.id}: {e}")

        if interaction.guild_id:
            try:
                await self.bot.announcer.notify_activity(
                    interaction.guild_id,
                    f'⚠️ Reset ({level}) requested by {interaction.user.mention}. Awaiting requester confirmation.')
            except DeliveryError as e:
                self.logger.warning(f"Could not post reset notice: {e}")

        await _reply(interaction, result)

    @app_commands.command(name="admin_reset", description="Admin: reset checkins, league state, or everything")
    @app_commands.choices(level=[app_commands.Choice(name=level, value=level) for level in ResetLevels.ALL])
    @league_admin_only()
    async def admin_reset(self, interaction: discord.Interaction, level: app_commands.Choice[str]):
        if level.value in GUARDED_LEVELS:
            await interaction.response.send_modal(ResetConfirmationModal(level.value, self._stage_reset))
            return
        await self._stage_reset(interaction, level.value)

    @app_commands.command(name="admin_reset_league", description="Admin: reset fixtures + matches + results")
    @league_admin_only()
    async def admin_reset_league(self, interaction: discord.Interaction):
        await self._stage_reset(interaction, ResetLevels.LEAGUE)

    @app_commands.command(name="admin_reset_confirm", description="Admin: confirm a pending reset with its token")
    @league_admin_only()
    async def admin_reset_confirm(self, interaction: discord.Interaction, token: str):
        result = await self.bot.admin_ops.confirm_reset(interaction.user.id, token=token.strip())
        await _reply(interaction, result)

    # ------------------------------------------------------------------
    # /bot_settings
    # ------------------------------------------------------------------

    async def _update_settings(self, interaction: discord.Interaction, patch: dict):
        result = await self.bot.admin_ops.update_guild_settings(interaction.guild_id, interaction.user.id, patch)
        await _reply(interaction, result)

    @settings_group.command(name="view", description="Show this server's bot settings")
    @league_admin_only()
    async def settings_view(self, interaction: discord.Interaction):
        summary = await self.bot.admin_ops.guild_settings_summary(interaction.guild_id)
        await interaction.response.send_message(summary, ephemeral=True)

    @settings_group.command(name="set_results_channel", description="Channel where matches are posted")
    @league_admin_only()
    async def set_results_channel(self, interaction: discord.Interaction, channel: discord.TextChannel):
        await self._update_settings(interaction, {'results_channel_id': channel.id})

    @settings_group.command(name="set_admin_channel", description="Channel for admin notices")
    @league_admin_only()
    async def set_admin_channel(self, interaction: discord.Interaction, channel: discord.TextChannel):
        await self._update_settings(interaction, {'admin_channel_id': channel.id})

    @settings_group.command(name="set_standings_channel", description="Channel for standings posts")
    @league_admin_only()
    async def set_standings_channel(self, interaction: discord.Interaction, channel: discord.TextChannel):
        await self._update_settings(interaction, {'standings_channel_id': channel.id})

    @settings_group.command(name="set_dispute_channel", description="Channel for dispute alerts")
    @league_admin_only()
    async def set_dispute_channel(self, interaction: discord.Interaction, channel: discord.TextChannel):
        await self._update_settings(interaction, {'dispute_channel_id': channel.id})

    @settings_group.command(name="set_activity_channel", description="Channel for league activity")
    @league_admin_only()
    async def set_activity_channel(self, interaction: discord.Interaction, channel: discord.TextChannel):
        await self._update_settings(interaction, {'activity_channel_id': channel.id})

    @settings_group.command(name="set_match_format", description="First-to format for new matches")
    @app_commands.choices(match_format=[
        app_commands.Choice(name=fmt, value=fmt) for fmt in MatchFormats.SCORE_TABLES
    ])
    @league_admin_only()
    async def set_match_format(self, interaction: discord.Interaction, match_format: app_commands.Choice[str]):
        await self._update_settings(interaction, {'match_format': match_format.value})

    @settings_group.command(name="set_tournament_name", description="Name shown on match posts")
    @league_admin_only()
    async def set_tournament_name(self, interaction: discord.Interaction, name: str):
        await self._update_settings(interaction, {'tournament_name': name.strip()[:200]})

    @settings_group.command(name="set_timezone", description="IANA timezone, e.g. Asia/Qatar")
    @league_admin_only()
    async def set_timezone(self, interaction: discord.Interaction, tz: str):
        tz = tz.strip()
        if not is_valid_timezone(tz):
            await interaction.response.send_message(embed=ErrorEmbeds.invalid_input(f'Unknown timezone: {tz}'),
                                                    ephemeral=True)
            return
        await self._update_settings(interaction, {'timezone': tz})

    @settings_group.command(name="set_admin_roles", description="Roles allowed to run admin commands")
    @league_admin_only()
    async def set_admin_roles(self, interaction: discord.Interaction, role_1: discord.Role,
                              role_2: Optional[discord.Role] = None, role_3: Optional[discord.Role] = None,
                              role_4: Optional[discord.Role] = None, role_5: Optional[discord.Role] = None):
        roles = [r for r in (role_1, role_2, role_3, role_4, role_5) if r is not None]
        result = await self.bot.admin_role_ops.set_admin_roles(
            interaction.guild_id, [r.id for r in roles], interaction.user.id)
        await interaction.response.send_message(embed=result_embed('Admin roles', result), ephemeral=True)


async def setup(bot):
    await bot.add_cog(AdminCog(bot))
