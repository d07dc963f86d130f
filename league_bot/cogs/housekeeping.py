"""
Housekeeping Cog - Background Tasks

Runs the periodic matchmaker tick for every guild the bot is in and purges
expired confirmation entries (reset tokens, rematch votes).
"""

from discord.ext import commands, tasks

from league_bot.config import Config
from league_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class HousekeepingCog(commands.Cog):
    """Background matchmaking and cleanup tasks"""

    def __init__(self, bot):
        self.bot = bot
        self.logger = logger

        interval = Config.matchmaker_interval()
        if str(Config.MATCHMAKER_INTERVAL_SECONDS).strip() != str(interval):
            self.logger.warning(
                f"Invalid MATCHMAKER_INTERVAL_SECONDS={Config.MATCHMAKER_INTERVAL_SECONDS!r}; "
                f"using {interval}s"
            )
        self.matchmaker_tick.change_interval(seconds=interval)
        self.matchmaker_tick.start()
        self.logger.info(f"HousekeepingCog: matchmaker running every {interval}s")

    def cog_unload(self):
        """Stop background tasks when cog is unloaded"""
        self.matchmaker_tick.cancel()
        self.logger.info("HousekeepingCog: Background tasks stopped")

    @tasks.loop(seconds=Config.MATCHMAKER_DEFAULT_INTERVAL)
    async def matchmaker_tick(self):
        """Pair ready players in every guild, then drop expired confirmations"""
        for guild in self.bot.guilds:
            try:
                report = await self.bot.matchmaker.run_tick(guild.id)
                if report.created_count or report.rollbacks or report.claim_conflicts:
                    self.logger.info(
                        f"Matchmaker guild {guild.id}: created={report.created_count} "
                        f"conflicts={report.claim_conflicts} rollbacks={report.rollbacks}"
                    )
            except Exception as e:
                self.logger.error(f"Error in matchmaker tick for guild {guild.id}: {e}", exc_info=True)

        try:
            purged = await self.bot.confirmation_store.purge_expired()
            if purged:
                self.logger.info(f"Purged {purged} expired confirmations")
        except Exception as e:
            self.logger.error(f"Error purging expired confirmations: {e}", exc_info=True)

    @matchmaker_tick.before_loop
    async def before_matchmaker_tick(self):
        """Wait for bot to be ready before the first tick"""
        await self.bot.wait_until_ready()


async def setup(bot):
    await bot.add_cog(HousekeepingCog(bot))
