from typing import Optional
from contextlib import asynccontextmanager

from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from league_bot.config import Config
from league_bot.database.models import Base, League
from league_bot.utils.logger import setup_logger

# Milliseconds a writer waits on a locked sqlite file before OperationalError
SQLITE_BUSY_TIMEOUT_MS = 5000


def to_async_url(database_url: str) -> str:
    """Rewrite a plain sqlite URL to the aiosqlite driver"""
    if database_url.startswith('sqlite:///'):
        return database_url.replace('sqlite:///', 'sqlite+aiosqlite:///', 1)
    return database_url


def _sqlite_on_connect(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS};")
    cursor.close()


class Database:
    """Engine and session scopes for one league's sqlite store."""

    def __init__(self, database_url: Optional[str] = None, league_id: Optional[int] = None):
        self.logger = setup_logger(__name__)
        self.database_url = to_async_url(database_url or Config.DATABASE_URL)
        self.league_id = league_id or Config.LEAGUE_ID
        self.engine = None
        self.async_session = None

    @property
    def session_factory(self):
        return self.async_session

    async def initialize(self):
        """Open the engine, create missing tables and seed the league row"""
        self.engine = create_async_engine(self.database_url, echo=Config.DEBUG)
        if self.engine.dialect.name == 'sqlite':
            event.listen(self.engine.sync_engine, 'connect', _sqlite_on_connect)

        self.async_session = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logger.info(f"Database ready at {self.engine.url.render_as_string(hide_password=True)}")

        await self.ensure_league()

    async def ensure_league(self):
        async with self.transaction() as session:
            if await session.get(League, self.league_id) is None:
                session.add(League(
                    id=self.league_id,
                    name=Config.LEAGUE_NAME,
                    timezone=Config.DEFAULT_TIMEZONE,
                ))
                self.logger.info(f"Created league row {self.league_id} ({Config.LEAGUE_NAME})")

    async def get_league(self, session: AsyncSession) -> League:
        result = await session.execute(select(League).where(League.id == self.league_id))
        return result.scalar_one()

    @asynccontextmanager
    async def _scope(self, commit: bool):
        async with self.async_session() as session:
            try:
                yield session
                if commit:
                    await session.commit()
            except Exception:
                await session.rollback()
                raise

    def get_session(self):
        """Session for reads or caller-managed commits; nothing is committed on exit"""
        return self._scope(commit=False)

    def transaction(self):
        """
        Session committed on clean exit and rolled back if anything raises.

        Pass the yielded session to every operation that must land together,
        e.g. claiming a fixture, dequeuing both players and creating the match.
        """
        return self._scope(commit=True)

    async def close(self):
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.logger.info("Database connection closed")
