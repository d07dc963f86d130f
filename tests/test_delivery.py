"""
Discord announcer against mocked channels and messages.
"""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from league_bot.constants import MatchFormats, ReactionEmoji
from league_bot.services.delivery import DiscordMatchAnnouncer, MatchAnnouncement, MessageRef
from league_bot.utils.exceptions import DeliveryError

from conftest import CHANNEL_ID, GUILD_ID


def _http_error() -> discord.HTTPException:
    return discord.HTTPException(MagicMock(status=403, reason='Forbidden'), 'Missing Permissions')


def _announcer(channel) -> DiscordMatchAnnouncer:
    bot = MagicMock()
    bot.get_channel = MagicMock(return_value=channel)
    return DiscordMatchAnnouncer(bot, settings_service=MagicMock())


def _channel_with_message():
    message = AsyncMock(spec=discord.Message)
    message.id = 4242
    channel = AsyncMock(spec=discord.TextChannel)
    channel.id = CHANNEL_ID
    channel.send = AsyncMock(return_value=message)
    return channel, message


ANNOUNCEMENT = MatchAnnouncement(
    match_id=1, guild_id=GUILD_ID, player_a_discord_id=1001, player_b_discord_id=1002,
    leg_number=1, match_format=MatchFormats.FT3, tournament_name='Test League',
)


async def test_announce_adds_every_reaction():
    channel, message = _channel_with_message()

    ref = await _announcer(channel).announce_match(CHANNEL_ID, ANNOUNCEMENT)

    assert ref == MessageRef(channel_id=CHANNEL_ID, message_id=4242)
    expected = 4 + len(ReactionEmoji.score_emoji_for_format(MatchFormats.FT3))
    assert message.add_reaction.await_count == expected
    message.delete.assert_not_awaited()


async def test_failed_reactions_remove_posted_message():
    channel, message = _channel_with_message()
    message.add_reaction.side_effect = _http_error()

    with pytest.raises(DeliveryError):
        await _announcer(channel).announce_match(CHANNEL_ID, ANNOUNCEMENT)

    message.delete.assert_awaited_once()


async def test_failed_cleanup_still_reports_delivery_error():
    channel, message = _channel_with_message()
    message.add_reaction.side_effect = _http_error()
    message.delete.side_effect = _http_error()

    with pytest.raises(DeliveryError):
        await _announcer(channel).announce_match(CHANNEL_ID, ANNOUNCEMENT)


async def test_failed_send_posts_nothing():
    channel, message = _channel_with_message()
    channel.send.side_effect = _http_error()

    with pytest.raises(DeliveryError):
        await _announcer(channel).announce_match(CHANNEL_ID, ANNOUNCEMENT)

    message.add_reaction.assert_not_awaited()
