import asyncio
import logging
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from league_bot.config import Config
from league_bot.database.database import Database
from league_bot.operations.admin_operations import AdminOperations, AdminRoleOperations
from league_bot.operations.fixture_operations import FixtureOperations
from league_bot.operations.match_events import MatchEventDispatcher
from league_bot.operations.match_operations import MatchOperations
from league_bot.operations.matchmaking import Matchmaker
from league_bot.operations.override_operations import OverrideOperations
from league_bot.operations.player_operations import PlayerOperations
from league_bot.operations.queue_operations import QueueOperations
from league_bot.services.audit import AuditService
from league_bot.services.confirmation_store import ConfirmationStore
from league_bot.services.delivery import DiscordMatchAnnouncer
from league_bot.services.guild_settings import GuildSettingsService
from league_bot.services.standings import StandingsService
from league_bot.utils.exceptions import LeagueOperationError
from league_bot.utils.logger import setup_logger

LEAGUE_COGS = (
    'league_bot.cogs.player',
    'league_bot.cogs.admin',
    'league_bot.cogs.match_reactions',
    'league_bot.cogs.housekeeping',
)


class LeagueBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.reactions = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.db: Optional[Database] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up League Bot...")

        # Initialize database
        self.db = Database()
        await self.db.initialize()

        self._build_services()

        # Load cogs
        await self.load_cogs()

        # Sync slash commands
        await self._sync_commands()

        self.logger.info("League Bot setup complete!")

    def _build_services(self):
        """Wire the engine operations shared by every cog"""
        session_factory = self.db.session_factory
        self.settings_service = GuildSettingsService(session_factory)
        self.confirmation_store = ConfirmationStore(session_factory)
        self.audit_service = AuditService(session_factory, self.db.league_id)
        self.standings_service = StandingsService(session_factory, self.db.league_id)
        self.announcer = DiscordMatchAnnouncer(self, self.settings_service)

        self.player_ops = PlayerOperations(self.db)
        self.fixture_ops = FixtureOperations(self.db)
        self.queue_ops = QueueOperations(self.db)
        self.match_ops = MatchOperations(self.db, self.announcer)
        self.override_ops = OverrideOperations(self.db, self.match_ops)
        self.matchmaker = Matchmaker(
            self.db, self.announcer,
            fixture_ops=self.fixture_ops,
            queue_ops=self.queue_ops,
            match_ops=self.match_ops,
            confirmation_store=self.confirmation_store,
        )
        self.admin_ops = AdminOperations(
            self.db,
            confirmation_store=self.confirmation_store,
            settings_service=self.settings_service,
            fixture_ops=self.fixture_ops,
        )
        self.admin_role_ops = AdminRoleOperations(self.db)
        self.dispatcher = MatchEventDispatcher(self.match_ops, self.override_ops, self.matchmaker, self.admin_ops)

    async def load_cogs(self):
        """Load the league cogs; a broken cog is logged and skipped"""
        for cog in LEAGUE_COGS:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except commands.ExtensionError as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Push slash commands to the configured guilds, or globally when none are set"""
        if not self.tree.get_commands():
            self.logger.warning("No slash commands registered; skipping sync")
            return

        guild_ids = Config.get_guild_ids()
        if not guild_ids:
            # Global propagation can take up to an hour
            synced = await self.tree.sync()
            self.logger.info(f"Synced {len(synced)} command(s) globally")
            return

        for guild_id in guild_ids:
            guild = discord.Object(id=guild_id)
            self.tree.copy_global_to(guild=guild)
            try:
                synced = await self.tree.sync(guild=guild)
            except discord.Forbidden:
                self.logger.error(f"Missing applications.commands scope in guild {guild_id}")
            except discord.HTTPException as e:
                self.logger.error(f"Sync to guild {guild_id} failed ({e.status}): {e.text}")
            else:
                self.logger.info(f"Synced {len(synced)} command(s) to guild {guild_id}")

    async def on_ready(self):
        self.logger.info(f'{self.user} connected; serving {len(self.guilds)} guild(s)')
        await self.change_presence(activity=discord.Game(name=f"{Config.LEAGUE_NAME} | /help"))

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Turn slash command failures into a short ephemeral reply"""
        command_name = interaction.command.name if interaction.command else 'unknown'
        original = getattr(error, 'original', error)

        if isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"/{command_name} refused for {interaction.user.id}")
            reply = "❌ Admin only."
        elif isinstance(error, app_commands.CommandOnCooldown):
            reply = f"❌ Slow down. Try again in {error.retry_after:.0f}s."
        elif isinstance(original, LeagueOperationError):
            self.logger.warning(f"/{command_name} rejected: {original}")
            reply = f"❌ {original.user_message}"
        else:
            self.logger.error(f"/{command_name} failed: {error}", exc_info=error)
            reply = "❌ Something went wrong. The admins have been notified."

        try:
            if interaction.response.is_done():
                await interaction.followup.send(reply, ephemeral=True)
            else:
                await interaction.response.send_message(reply, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Could not deliver error reply for /{command_name}: {e}")

    async def close(self):
        self.logger.info("Shutting down League Bot...")
        if self.db:
            await self.db.close()
        await super().close()


async def main():
    Config.validate()
    bot = LeagueBot()
    async with bot:
        await bot.start(Config.DISCORD_TOKEN)


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted, exiting")


if __name__ == "__main__":
    run()
