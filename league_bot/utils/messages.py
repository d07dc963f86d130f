"""
Shared message builders for the League Discord Bot.

Plain-text renderings of matches, standings and settings, kept free of
Discord objects so the engine and tests can use them directly.
"""

import math
from typing import Dict, List, Optional, Sequence

from league_bot.constants import LeagueDefaults, MatchFormats, ReactionEmoji, UIConstants
from league_bot.data_models.standings import CompletionStats, LeftToPlay, StandingRow
from league_bot.utils.points import PointRules


def mention(discord_id: Optional[int]) -> str:
    return f'<@{discord_id}>' if discord_id else 'unknown'


def score_guide(match_format: str) -> str:
    table = MatchFormats.SCORE_TABLES.get(match_format, MatchFormats.SCORE_TABLES[MatchFormats.DEFAULT])
    parts = [
        f'{ReactionEmoji.SCORE_CODES[code]} = winner {games[0]}-{games[1]}'
        for code, games in sorted(table.items())
    ]
    return 'Score reactions: ' + ', '.join(parts)


def build_match_message(
    match_id: int,
    player_a_discord_id: int,
    player_b_discord_id: int,
    tournament_name: str,
    match_format: str,
    status: str = 'Pending',
    details: str = '',
) -> str:
    lines = [
        f'**{tournament_name or "Tekken League"}**',
        f'Match {match_id}',
        f'Player A: {mention(player_a_discord_id)} vs Player B: {mention(player_b_discord_id)}',
        f'Status: {status}',
        f'Step 1 Winner: react {ReactionEmoji.SIDE_A} or {ReactionEmoji.SIDE_B}',
        f'Step 2 Score ({match_format}): {score_guide(match_format)}',
        f'Admin override: react {ReactionEmoji.ADMIN_OVERRIDE} then submit winner + score reactions to force final result',
        f'Second leg: both players react {ReactionEmoji.REMATCH} after confirmation',
        details,
    ]
    return '\n'.join(line for line in lines if line)


def build_matches_list(rows: Sequence, for_discord_id: Optional[int] = None) -> str:
    """rows: (match_id, a_discord_id, b_discord_id, state, score_a, score_b)"""
    if not rows:
        return (f'No matches found yet for {mention(for_discord_id)}.' if for_discord_id
                else 'No matches created yet.')

    lines = []
    for match_id, a_id, b_id, state, score_a, score_b in rows:
        score = '-' if score_a is None or score_b is None else f'{score_a}-{score_b}'
        lines.append(f'#{match_id} | {mention(a_id)} vs {mention(b_id)} | {state} | score: {score}')

    title = (f'**Matches for {mention(for_discord_id)} (latest {len(rows)})**' if for_discord_id
             else f'**Recent Matches (latest {len(rows)})**')
    return title + '\n' + '\n'.join(lines)


def build_left_to_play(left: LeftToPlay) -> str:
    if not left.entries:
        return '**Left to Play**\nYou have completed all scheduled matches.'

    lines = []
    for index, entry in enumerate(left.entries, start=1):
        rank_text = f'#{entry.standings_rank}' if entry.standings_rank else 'N/A'
        lines.append(
            f'{index}. {entry.opponent_tag} ({mention(entry.opponent_discord_id)}) - '
            f'{entry.matches_left} left (standings {rank_text})'
        )
    return '**Left to Play**\n' + '\n'.join(lines)


def build_standings_list(standings: List[StandingRow]) -> str:
    if not standings:
        return '**Standings**\nNo active players yet. Use /signup to join the league.'
    return '**Standings**\n' + '\n'.join(f'{row.rank}. {row.tag}' for row in standings)


def build_standings_table(
    standings: List[StandingRow],
    season_days: int,
    checkins_by_discord_id: Dict[int, int],
    completion: Optional[CompletionStats] = None,
    limit: int = UIConstants.STANDINGS_TABLE_ROWS,
    offset: int = 0,
) -> str:
    """Fixed-width league table with attendance columns"""
    if not standings:
        return '**Table**\nNo active players yet. Use /signup to join the league.'

    season_days = max(1, int(season_days or LeagueDefaults.SEASON_DAYS))
    allowance = LeagueDefaults.MISSED_CHECKIN_ALLOWANCE
    min_checkins = max(0, season_days - allowance)

    rows = []
    for row in standings[offset:offset + limit]:
        checkins = checkins_by_discord_id.get(row.discord_id, 0)
        missed = max(0, season_days - checkins)
        show_pct = max(0, min(100, round((season_days - missed) / season_days * 100)))
        entry = completion.for_player(row.player_id) if completion else None
        remaining = max(0, allowance - missed)
        allowance_text = f'EXEMPT ({remaining}/{allowance})' if entry and entry.is_complete else f'{remaining}/{allowance}'
        rows.append({
            'rank': str(row.rank),
            'player': row.tag,
            'pts': str(row.points),
            'gp': str(row.played),
            'w': str(row.wins),
            'l': str(row.losses),
            'diff': str(row.diff),
            'gw': str(row.games_won),
            'show': f'{show_pct}%',
            'allowance': allowance_text,
        })

    cols = [
        ('rank', '#'), ('player', 'PLAYER'), ('pts', 'PTS'), ('gp', 'GP'), ('w', 'W'),
        ('l', 'L'), ('diff', 'DIFF'), ('gw', 'GW'), ('show', 'SHOW%'), ('allowance', 'ALLOW'),
    ]
    widths = {key: max([len(header)] + [len(r[key]) for r in rows]) for key, header in cols}

    def pad(key: str, text: str) -> str:
        # Player names read left-aligned, numbers right-aligned
        return text.ljust(widths[key]) if key == 'player' else text.rjust(widths[key])

    border = '+' + '+'.join('-' * (widths[key] + 2) for key, _ in cols) + '+'
    header = '| ' + ' | '.join(pad(key, title) for key, title in cols) + ' |'
    body = '\n'.join('| ' + ' | '.join(pad(key, r[key]) for key, _ in cols) + ' |' for r in rows)

    legend = '\n'.join([
        'Legend:',
        '#=Rank | PLAYER=Tag | PTS=Points | GP=Games played | W=Wins | L=Losses | DIFF=Game diff | '
        'GW=Games won | SHOW%=Starts at 100% and drops each missed check-in day | ALLOW=Missed check-in allowance left',
        f'Check-in allowance: up to {allowance} missed days ({min_checkins}/{season_days} minimum). '
        'Players who finish all required fixtures early are exempt from further check-ins.',
        '',
    ])
    extra = ''
    if len(standings) > offset + limit:
        extra = f'\nShowing {offset + 1}-{offset + len(rows)} of {len(standings)} players.'
    return f'**Table**\n{legend}```\n{border}\n{header}\n{border}\n{body}\n{border}\n```{extra}'


def build_tournament_settings(league, rules: PointRules) -> str:
    season_days = league.season_days or 0
    percent = league.eligibility_min_percent or 0
    allowance = LeagueDefaults.MISSED_CHECKIN_ALLOWANCE
    min_attendance = math.ceil(season_days * percent)
    effective_min = max(min_attendance, max(0, season_days - allowance))
    max_missed = max(0, season_days - effective_min)
    drop_per_day = f'{100 / season_days:.2f}' if season_days > 0 else '0.00'

    return '\n'.join([
        '**Tournament Settings**',
        f'League: {league.name}',
        f'Timezone: {league.timezone}',
        f'No. of Players (max): {league.max_players}',
        f'No. of Timeslots: {league.timeslot_count}',
        f'Duration of Time slots: {league.timeslot_duration_minutes} minutes',
        f'Start of each time slot: {league.timeslot_starts or "not set"}',
        f'Tournament start date: {league.tournament_start_date or "not set"}',
        f'Total tournament days: {season_days}',
        f'SHOW% behavior: starts at 100% and drops by {drop_per_day}% per missed day',
        f'Minimum show up % required (eligibility threshold): {round(percent * 100)}%',
        f'Minimum check-in days required: {effective_min} (includes max {allowance} missed check-ins allowance)',
        f'Maximum missed check-in days allowed: {max_missed}',
        'If a player finishes all required fixtures early, no further check-ins are required.',
        f'Points: win={rules.win}, loss={rules.loss}, no-show={rules.no_show}, 3-0 sweep bonus={rules.sweep_bonus}',
    ])
