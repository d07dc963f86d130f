"""
Standings calculator.

Builds the league table from confirmed results, applying disqualification
overrides across every fixture (past and future), and reports schedule
completion per player.
"""

import logging
from typing import Dict, List

from sqlalchemy import select, or_, func
from sqlalchemy.ext.asyncio import AsyncSession

from league_bot.constants import MatchFormats
from league_bot.data_models.standings import CompletionStats, PlayerCompletion, StandingRow
from league_bot.database.models import (
    Fixture, FixtureStatus, League, Match, Player, PlayerStatus, Result,
)
from league_bot.services.base import BaseService
from league_bot.utils.points import calc_match_points, rules_from_league

logger = logging.getLogger(__name__)


class _Tally:
    __slots__ = ('player', 'points', 'wins', 'losses', 'games_won', 'games_lost')

    def __init__(self, player: Player):
        self.player = player
        self.points = 0
        self.wins = 0
        self.losses = 0
        self.games_won = 0
        self.games_lost = 0

    def sort_key(self):
        diff = self.games_won - self.games_lost
        tag = self.player.tag or ''
        return (-self.points, -diff, -self.games_won, tag.casefold(), tag)


async def compute_standings(session: AsyncSession, league_id: int) -> List[StandingRow]:
    """
    Compute the ordered league table.

    Active and disqualified players are listed; withdrawn players are not.
    A fixture between a disqualified and a non-disqualified player always
    counts as a shutout forfeit win for the non-disqualified side, whether or
    not it was played. Fixtures between two disqualified players are ignored.
    Every other fixture contributes its confirmed result, if any.
    """
    league = await session.get(League, league_id)
    rules = rules_from_league(league) if league else None

    result = await session.execute(
        select(Player).where(
            Player.league_id == league_id,
            Player.status.in_([PlayerStatus.ACTIVE, PlayerStatus.DISQUALIFIED]),
        )
    )
    tallies: Dict[int, _Tally] = {p.id: _Tally(p) for p in result.scalars().all()}
    dq_ids = {pid for pid, t in tallies.items() if t.player.status == PlayerStatus.DISQUALIFIED}

    confirmed_rows = await session.execute(
        select(Match.fixture_id, Result)
        .select_from(Match)
        .join(Result, Result.match_id == Match.id)
        .where(Match.league_id == league_id, Result.confirmed_at.is_not(None))
        .order_by(Result.id)
    )
    # Latest confirmed result wins if a fixture was ever confirmed twice
    confirmed_by_fixture = {fixture_id: res for fixture_id, res in confirmed_rows.all()}

    fixtures = await session.execute(select(Fixture).where(Fixture.league_id == league_id))

    win_games, _ = MatchFormats.SCORE_TABLES[MatchFormats.FT3][0]

    for fixture in fixtures.scalars().all():
        a = tallies.get(fixture.player_a_id)
        b = tallies.get(fixture.player_b_id)
        if a is None or b is None:
            continue

        a_dq = fixture.player_a_id in dq_ids
        b_dq = fixture.player_b_id in dq_ids
        if a_dq and b_dq:
            continue

        if a_dq != b_dq:
            winner, loser = (b, a) if a_dq else (a, b)
            winner.games_won += win_games
            loser.games_lost += win_games
            winner.wins += 1
            loser.losses += 1
            points_a, points_b = calc_match_points(
                win_games if not a_dq else 0,
                win_games if a_dq else 0,
                winner_is_a=not a_dq,
                is_forfeit=True,
                rules=rules,
            )
            a.points += points_a
            b.points += points_b
            continue

        res = confirmed_by_fixture.get(fixture.id)
        if res is None:
            continue

        a.games_won += res.score_a
        a.games_lost += res.score_b
        b.games_won += res.score_b
        b.games_lost += res.score_a

        winner_is_a = res.winner_id == fixture.player_a_id
        if winner_is_a:
            a.wins += 1
            b.losses += 1
        else:
            b.wins += 1
            a.losses += 1

        points_a, points_b = calc_match_points(
            res.score_a, res.score_b, winner_is_a=winner_is_a,
            is_forfeit=bool(res.is_forfeit), rules=rules,
        )
        a.points += points_a
        b.points += points_b

    ordered = sorted(tallies.values(), key=_Tally.sort_key)
    return [
        StandingRow(
            rank=index,
            player_id=t.player.id,
            discord_id=t.player.discord_id,
            tag=t.player.tag,
            name=t.player.display_name_last_seen or t.player.tag,
            status=t.player.status.value,
            points=t.points,
            wins=t.wins,
            losses=t.losses,
            games_won=t.games_won,
            games_lost=t.games_lost,
        )
        for index, t in enumerate(ordered, start=1)
    ]


async def completion_stats(session: AsyncSession, league_id: int) -> CompletionStats:
    """Per active player count of confirmed fixtures against required = (active - 1) * 2"""
    result = await session.execute(
        select(Player).where(Player.league_id == league_id, Player.status == PlayerStatus.ACTIVE)
    )
    players = list(result.scalars().all())
    count = len(players)
    required = (count - 1) * 2 if count > 1 else 0

    by_player = {}
    for player in players:
        done = await session.scalar(
            select(func.count(Fixture.id)).where(
                Fixture.league_id == league_id,
                Fixture.status == FixtureStatus.CONFIRMED,
                or_(Fixture.player_a_id == player.id, Fixture.player_b_id == player.id),
            )
        )
        by_player[player.id] = PlayerCompletion(
            player_id=player.id,
            discord_id=player.discord_id,
            completed=done or 0,
            required=required,
        )

    return CompletionStats(required_per_player=required, by_player=by_player)


async def has_completed_schedule(session: AsyncSession, league_id: int, player_id: int) -> bool:
    stats = await completion_stats(session, league_id)
    entry = stats.for_player(player_id)
    return bool(entry and entry.is_complete)


class StandingsService(BaseService):
    """Session-owning wrapper used by the Discord layer"""

    def __init__(self, session_factory, league_id: int):
        super().__init__(session_factory)
        self.league_id = league_id

    async def get_standings(self) -> List[StandingRow]:
        async with self.get_session() as session:
            return await compute_standings(session, self.league_id)

    async def get_completion_stats(self) -> CompletionStats:
        async with self.get_session() as session:
            return await completion_stats(session, self.league_id)
