"""
Standings data models.

Immutable data transfer objects for the league table and schedule progress.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class StandingRow:
    """Single league table row."""
    rank: int
    player_id: int
    discord_id: int
    tag: str
    name: str
    status: str
    points: int
    wins: int
    losses: int
    games_won: int
    games_lost: int

    @property
    def diff(self) -> int:
        return self.games_won - self.games_lost

    @property
    def played(self) -> int:
        return self.wins + self.losses


@dataclass(frozen=True)
class PlayerCompletion:
    """Confirmed fixtures for one active player against the per-player requirement."""
    player_id: int
    discord_id: int
    completed: int
    required: int

    @property
    def percent(self) -> float:
        return self.completed / self.required if self.required else 0.0

    @property
    def is_complete(self) -> bool:
        return self.required > 0 and self.completed >= self.required


@dataclass(frozen=True)
class CompletionStats:
    required_per_player: int
    by_player: Dict[int, PlayerCompletion] = field(default_factory=dict)

    def for_player(self, player_id: int) -> Optional[PlayerCompletion]:
        return self.by_player.get(player_id)


@dataclass(frozen=True)
class LeftToPlayEntry:
    """An opponent with fixtures still open against a player."""
    opponent_id: int
    opponent_discord_id: int
    opponent_tag: str
    matches_left: int
    standings_rank: Optional[int]


@dataclass(frozen=True)
class LeftToPlay:
    player_id: int
    entries: List[LeftToPlayEntry]

    @property
    def total_left(self) -> int:
        return sum(entry.matches_left for entry in self.entries)
