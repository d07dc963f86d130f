import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Config:
    """Bot configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = _int_env('DISCORD_GUILD_ID', 0)
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = _int_env('OWNER_DISCORD_ID', 0)

    # Fallback results channel when a guild has not configured one
    MATCH_CHANNEL_ID = _int_env('MATCH_CHANNEL_ID', 0)

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///league.db')

    # Bot settings
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # League settings
    LEAGUE_ID = 1  # Single-league deployment; column kept for future multi-tenancy
    LEAGUE_NAME = os.getenv('LEAGUE_NAME', 'Tekken League')
    DEFAULT_TIMEZONE = os.getenv('DEFAULT_TIMEZONE', 'Asia/Qatar')

    # Matchmaker scheduling (seconds)
    MATCHMAKER_INTERVAL_SECONDS = os.getenv('MATCHMAKER_INTERVAL_SECONDS', '30')
    MATCHMAKER_DEFAULT_INTERVAL = 30
    MATCHMAKER_MIN_INTERVAL = 5

    # Expiring confirmation windows (seconds)
    RESET_CONFIRMATION_SECONDS = 300
    REMATCH_VOTE_SECONDS = _int_env('REMATCH_VOTE_SECONDS', 3600)

    # 64 hex chars (32 bytes) for AES-256-GCM profile encryption
    ENCRYPTION_KEY_HEX = os.getenv('ENCRYPTION_KEY_HEX')

    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []

    @classmethod
    def matchmaker_interval(cls) -> int:
        """
        Resolve the matchmaker tick interval.

        Values that are not integers or are below the floor fall back to the
        default rather than running a hot loop.
        """
        try:
            interval = int(str(cls.MATCHMAKER_INTERVAL_SECONDS).strip())
        except (TypeError, ValueError):
            return cls.MATCHMAKER_DEFAULT_INTERVAL
        if interval < cls.MATCHMAKER_MIN_INTERVAL:
            return cls.MATCHMAKER_DEFAULT_INTERVAL
        return interval

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if cls.ENCRYPTION_KEY_HEX is not None and len(cls.ENCRYPTION_KEY_HEX) != 64:
            raise ValueError("ENCRYPTION_KEY_HEX must be 64 hex characters (32 bytes)")
