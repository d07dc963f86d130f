"""
Shared fixtures: a fresh SQLite league database per test, the operations
classes wired the way the bot wires them, and a fake announcer standing in
for Discord.
"""

import itertools
import random
from typing import List, Optional, Sequence

import pytest
import pytest_asyncio

from league_bot.database.database import Database
from league_bot.database.models import Player
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
from league_bot.services.delivery import MatchAnnouncement, MatchAnnouncer, MessageRef
from league_bot.services.guild_settings import GuildSettingsService
from league_bot.services.profile_store import ProfileCipher
from league_bot.services.standings import StandingsService
from league_bot.utils.exceptions import DeliveryError

GUILD_ID = 555
CHANNEL_ID = 777
TEST_KEY_HEX = '0123456789abcdef' * 4


class FakeAnnouncer(MatchAnnouncer):
    """Records every delivery; ``fail_announce`` makes match posts fail"""

    def __init__(self, channel_id: Optional[int] = CHANNEL_ID):
        self.channel_id = channel_id
        self.fail_announce = False
        self.announcements: List[MatchAnnouncement] = []
        self.updates: List[tuple] = []
        self.disputes: List[tuple] = []
        self.activity: List[tuple] = []
        self.direct_messages: List[tuple] = []
        self._message_ids = itertools.count(9000)

    async def resolve_channel(self, guild_id: int) -> Optional[int]:
        return self.channel_id

    async def announce_match(self, channel_id: int, announcement: MatchAnnouncement) -> MessageRef:
        if self.fail_announce:
            raise DeliveryError('channel rejected the post')
        self.announcements.append(announcement)
        return MessageRef(channel_id=channel_id, message_id=next(self._message_ids))

    async def update_match_message(self, ref: MessageRef, content: str) -> None:
        self.updates.append((ref, content))

    async def notify_dispute(self, guild_id: int, content: str) -> None:
        self.disputes.append((guild_id, content))

    async def notify_activity(self, guild_id: int, content: str) -> None:
        self.activity.append((guild_id, content))

    async def send_direct_message(self, user_id: int, content: str,
                                  reactions: Sequence[str] = ()) -> Optional[MessageRef]:
        message_id = next(self._message_ids)
        self.direct_messages.append((user_id, content, tuple(reactions), message_id))
        return MessageRef(channel_id=user_id, message_id=message_id)


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(database_url=f"sqlite:///{tmp_path / 'league.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def announcer():
    return FakeAnnouncer()


@pytest.fixture
def confirmation_store(db):
    return ConfirmationStore(db.session_factory)


@pytest.fixture
def settings_service(db):
    return GuildSettingsService(db.session_factory)


@pytest.fixture
def audit_service(db):
    return AuditService(db.session_factory, db.league_id)


@pytest.fixture
def standings_service(db):
    return StandingsService(db.session_factory, db.league_id)


@pytest.fixture
def player_ops(db):
    return PlayerOperations(db, cipher=ProfileCipher(TEST_KEY_HEX))


@pytest.fixture
def fixture_ops(db):
    return FixtureOperations(db)


@pytest.fixture
def queue_ops(db):
    return QueueOperations(db)


@pytest.fixture
def match_ops(db, announcer):
    return MatchOperations(db, announcer)


@pytest.fixture
def override_ops(db, match_ops):
    return OverrideOperations(db, match_ops)


@pytest.fixture
def matchmaker(db, announcer, fixture_ops, queue_ops, match_ops, confirmation_store):
    return Matchmaker(db, announcer, fixture_ops=fixture_ops, queue_ops=queue_ops, match_ops=match_ops,
                      confirmation_store=confirmation_store, rng=random.Random(7))


@pytest.fixture
def admin_ops(db, confirmation_store, settings_service, fixture_ops):
    return AdminOperations(db, confirmation_store=confirmation_store,
                           settings_service=settings_service, fixture_ops=fixture_ops)


@pytest.fixture
def admin_role_ops(db):
    return AdminRoleOperations(db)


@pytest.fixture
def dispatcher(match_ops, override_ops, matchmaker, admin_ops):
    return MatchEventDispatcher(match_ops, override_ops, matchmaker, admin_ops)


@pytest.fixture
def signup(player_ops):
    """Sign up players P1..Pn with discord ids 1001.. and return their rows"""
    async def _signup(count: int, start: int = 1) -> List[Player]:
        players = []
        for n in range(start, start + count):
            result = await player_ops.signup(
                discord_id=1000 + n,
                real_name=f'Player {n}',
                tag=f'P{n}',
                email=f'player{n}@example.com',
                phone=f'+974 5555 {n:04d}',
            )
            assert result.success, result.message
            players.append(result.data)
        return players
    return _signup


@pytest.fixture
def make_ready(queue_ops):
    async def _ready(*players: Player) -> None:
        for player in players:
            assert (await queue_ops.check_in(player.discord_id)).success
            result = await queue_ops.ready(player.discord_id)
            assert result.success, result.message
    return _ready


@pytest.fixture
def open_match(db, fixture_ops, match_ops):
    """Claim the next fixture between two players and create its match without announcing"""
    async def _open(player_x: Player, player_y: Player, guild_id: int = GUILD_ID):
        async with db.transaction() as session:
            fixture = await fixture_ops.next_unplayed_fixture(player_x.id, player_y.id, session=session)
            assert fixture is not None
            assert await fixture_ops.claim_fixture(fixture.id, session)
            match = await match_ops.create_match(fixture, guild_id, session)
        return match
    return _open


@pytest.fixture
def play(match_ops):
    """Both players report the same winner side and score code"""
    async def _play(match, player_a: Player, player_b: Player, side: str = 'A', code: int = 0):
        await match_ops.submit_report(match.id, player_a.discord_id, winner_side=side, score_code=code)
        return await match_ops.submit_report(match.id, player_b.discord_id, winner_side=side, score_code=code)
    return _play
