"""
Player Operations Module

Player lifecycle for the league: signup with encrypted profile fields,
profile lookup, display name tracking and admin status changes
(disqualify, withdraw, reactivate).

Disqualification is applied retroactively by the standings calculator;
this module only records the status change.
"""

from dataclasses import dataclass
from typing import Optional
from contextlib import asynccontextmanager

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from league_bot.data_models.results import OperationResult
from league_bot.database.models import League, Player, PlayerStatus, ReadyQueueEntry
from league_bot.services.audit import AuditActions, AuditService
from league_bot.services.profile_store import ProfileCipher
from league_bot.utils.logger import setup_logger
from league_bot.utils.validation import (
    clean_text, is_valid_email, is_valid_phone, mask_email, mask_phone,
)

logger = setup_logger(__name__)


@dataclass(frozen=True)
class PlayerProfile:
    """Decrypted profile; only ever shown to the player themselves."""
    discord_id: int
    tag: str
    status: str
    real_name: Optional[str]
    email_masked: str
    phone_masked: str


class PlayerOperations:
    """Business logic for player signup and status management"""

    def __init__(self, database, cipher: Optional[ProfileCipher] = None):
        self.db = database
        self.league_id = database.league_id
        self._cipher = cipher
        self.logger = logger

    @property
    def cipher(self) -> ProfileCipher:
        # Created lazily so the bot can start without a key until someone signs up
        if self._cipher is None:
            self._cipher = ProfileCipher()
        return self._cipher

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        if session:
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session

    async def get_by_discord_id(self, discord_id: int, session: Optional[AsyncSession] = None) -> Optional[Player]:
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Player).where(Player.league_id == self.league_id, Player.discord_id == discord_id)
            )
            return result.scalar_one_or_none()

    async def signup(
        self,
        discord_id: int,
        real_name: str,
        tag: str,
        email: str,
        phone: str,
        username: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> OperationResult:
        """
        Create or update a player's signup.

        Validation failures return a failed result without touching the
        database. New signups are refused once the league is full.

        Raises:
            ProfileEncryptionError: If no encryption key is configured
        """
        real_name = clean_text(real_name)
        tag = clean_text(tag)
        email = clean_text(email).lower()
        phone = clean_text(phone)

        if not real_name or not tag:
            return OperationResult.fail('Real name and Tekken tag are required.')
        if not is_valid_email(email):
            return OperationResult.fail('Invalid email format.')
        if not is_valid_phone(phone):
            return OperationResult.fail('Invalid phone format. Include country code if possible.')

        cipher = self.cipher

        async with self.db.transaction() as session:
            result = await session.execute(select(Player).where(Player.discord_id == discord_id))
            player = result.scalar_one_or_none()

            if player is None:
                league = await session.get(League, self.league_id)
                signed_up = await session.scalar(
                    select(func.count(Player.id)).where(
                        Player.league_id == self.league_id,
                        Player.status != PlayerStatus.WITHDRAWN,
                    )
                )
                if league and signed_up >= league.max_players:
                    return OperationResult.fail(
                        f'The league is full ({league.max_players} players). Contact an admin.'
                    )
                player = Player(
                    league_id=self.league_id,
                    discord_id=discord_id,
                    username_at_signup=username,
                    display_name_at_signup=display_name,
                    status=PlayerStatus.ACTIVE,
                )
                session.add(player)
                created = True
            else:
                created = False

            player.real_name_enc = cipher.encrypt(real_name)
            player.email_enc = cipher.encrypt(email)
            player.phone_enc = cipher.encrypt(phone)
            player.tag = tag
            player.display_name_last_seen = display_name or player.display_name_last_seen

            await session.flush()
            await AuditService.record(session, self.league_id, discord_id, AuditActions.SIGNUP_UPSERT,
                                      {'tag': tag, 'created': created})

        self.logger.info(f"Signup {'created' if created else 'updated'} for {discord_id} as {tag}")
        return OperationResult.ok(
            'Signup saved. Use /checkin daily and /ready when you are free to play.',
            data=player,
        )

    async def get_profile(self, discord_id: int) -> Optional[PlayerProfile]:
        """Decrypted profile with masked contact details"""
        player = await self.get_by_discord_id(discord_id)
        if player is None:
            return None
        return PlayerProfile(
            discord_id=player.discord_id,
            tag=player.tag,
            status=player.status.value,
            real_name=self.cipher.decrypt(player.real_name_enc),
            email_masked=mask_email(self.cipher.decrypt(player.email_enc)),
            phone_masked=mask_phone(self.cipher.decrypt(player.phone_enc)),
        )

    async def touch_display_name(self, discord_id: int, display_name: Optional[str]) -> None:
        if not display_name:
            return
        async with self.db.transaction() as session:
            result = await session.execute(
                select(Player).where(Player.league_id == self.league_id, Player.discord_id == discord_id)
            )
            player = result.scalar_one_or_none()
            if player and player.display_name_last_seen != display_name:
                player.display_name_last_seen = display_name

    async def set_status(self, discord_id: int, status: PlayerStatus, admin_id: int) -> OperationResult:
        """
        Change a player's status.

        Withdrawn and disqualified players leave the ready queue. Fixture
        history is kept either way.
        """
        async with self.db.transaction() as session:
            result = await session.execute(
                select(Player).where(Player.league_id == self.league_id, Player.discord_id == discord_id)
            )
            player = result.scalar_one_or_none()
            if player is None:
                return OperationResult.fail('That user is not signed up.')

            previous = player.status
            if previous == status:
                return OperationResult.ok(f'{player.tag} is already {status.value}.', data=player)

            player.status = status
            if status != PlayerStatus.ACTIVE:
                await session.execute(
                    delete(ReadyQueueEntry).where(
                        ReadyQueueEntry.league_id == self.league_id,
                        ReadyQueueEntry.discord_id == discord_id,
                    )
                )

            await AuditService.record(session, self.league_id, admin_id, AuditActions.PLAYER_STATUS, {
                'discord_id': discord_id,
                'from': previous.value,
                'to': status.value,
            })

        self.logger.info(f"Player {discord_id} status {previous.value} -> {status.value} by {admin_id}")
        return OperationResult.ok(f'{player.tag} is now {status.value}.', data=player)
