from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, Float,
    ForeignKey, BigInteger, Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from datetime import datetime
from enum import Enum
from typing import Optional

from league_bot.constants import LeagueDefaults, MatchFormats, PointDefaults

Base = declarative_base()


class PlayerStatus(Enum):
    ACTIVE = "active"
    DISQUALIFIED = "disqualified"
    WITHDRAWN = "withdrawn"


class FixtureStatus(Enum):
    UNPLAYED = "unplayed"
    LOCKED_IN_MATCH = "locked_in_match"
    CONFIRMED = "confirmed"


class MatchState(Enum):
    """Lifecycle of a played fixture under the dual-report protocol"""
    PENDING = "pending"        # Created, no reports yet
    REPORTED = "reported"      # At least one report, not both complete
    DISPUTED = "disputed"      # Both reports complete and disagree
    CONFIRMED = "confirmed"    # Result recorded
    CANCELLED = "cancelled"    # Voided or rolled back


# States that keep a player out of the ready queue
BLOCKING_MATCH_STATES = frozenset({MatchState.PENDING, MatchState.REPORTED, MatchState.DISPUTED})

# Transitions reachable through player reports, admin commands and void.
# Self-transitions cover idempotent reconciliation.
MATCH_TRANSITIONS = {
    MatchState.PENDING: frozenset({
        MatchState.PENDING, MatchState.REPORTED, MatchState.DISPUTED,
        MatchState.CONFIRMED, MatchState.CANCELLED,
    }),
    MatchState.REPORTED: frozenset({
        MatchState.REPORTED, MatchState.DISPUTED, MatchState.CONFIRMED, MatchState.CANCELLED,
    }),
    MatchState.DISPUTED: frozenset({
        MatchState.REPORTED, MatchState.DISPUTED, MatchState.CONFIRMED, MatchState.CANCELLED,
    }),
    MatchState.CONFIRMED: frozenset({MatchState.CONFIRMED, MatchState.CANCELLED}),
    MatchState.CANCELLED: frozenset(),
}

# Extra transitions only an admin override (armed, changed or released) can cause:
# the result is re-derived from whatever the players reported.
OVERRIDE_TRANSITIONS = {
    MatchState.CONFIRMED: frozenset({MatchState.PENDING, MatchState.REPORTED, MatchState.DISPUTED}),
    MatchState.DISPUTED: frozenset({MatchState.PENDING}),
}


def can_transition(current: MatchState, target: MatchState, override: bool = False) -> bool:
    if target in MATCH_TRANSITIONS.get(current, frozenset()):
        return True
    return override and target in OVERRIDE_TRANSITIONS.get(current, frozenset())


class League(Base):
    __tablename__ = 'leagues'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    timezone = Column(String(64), nullable=False, default='Asia/Qatar')

    # Season and eligibility
    season_days = Column(Integer, nullable=False, default=LeagueDefaults.SEASON_DAYS)
    attendance_min_days = Column(Integer, nullable=False, default=LeagueDefaults.ATTENDANCE_MIN_DAYS)
    eligibility_min_percent = Column(Float, nullable=False, default=LeagueDefaults.ELIGIBILITY_MIN_PERCENT)
    max_players = Column(Integer, nullable=False, default=LeagueDefaults.MAX_PLAYERS)

    # Play windows
    timeslot_count = Column(Integer, nullable=False, default=LeagueDefaults.TIMESLOT_COUNT)
    timeslot_duration_minutes = Column(Integer, nullable=False, default=LeagueDefaults.TIMESLOT_DURATION_MINUTES)
    timeslot_starts = Column(String(200), nullable=False, default=LeagueDefaults.TIMESLOT_STARTS)
    tournament_start_date = Column(String(10), nullable=True)  # YYYY-MM-DD

    # Points scheme
    points_win = Column(Integer, nullable=False, default=PointDefaults.WIN)
    points_loss = Column(Integer, nullable=False, default=PointDefaults.LOSS)
    points_no_show = Column(Integer, nullable=False, default=PointDefaults.NO_SHOW)
    points_sweep_bonus = Column(Integer, nullable=False, default=PointDefaults.SWEEP_BONUS)

    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<League(id={self.id}, name='{self.name}')>"


class Player(Base):
    __tablename__ = 'players'

    id = Column(Integer, primary_key=True)
    league_id = Column(Integer, ForeignKey('leagues.id'), nullable=False)
    discord_id = Column(BigInteger, unique=True, nullable=False)
    username_at_signup = Column(String(100))
    display_name_at_signup = Column(String(100))
    display_name_last_seen = Column(String(100))

    # Profile fields are stored encrypted (iv:ciphertext:tag)
    real_name_enc = Column(Text, nullable=False)
    email_enc = Column(Text, nullable=False)
    phone_enc = Column(Text, nullable=False)
    tag = Column(String(100), nullable=False)

    status = Column(SQLEnum(PlayerStatus), nullable=False, default=PlayerStatus.ACTIVE)
    signup_at = Column(DateTime, default=func.now())

    __table_args__ = (
        Index('idx_players_league_status', 'league_id', 'status'),
    )

    def __repr__(self):
        return f"<Player(id={self.id}, tag='{self.tag}', status={self.status.value})>"


class Attendance(Base):
    """One row per player per league-local calendar day they checked in"""
    __tablename__ = 'attendance'

    league_id = Column(Integer, primary_key=True)
    discord_id = Column(BigInteger, primary_key=True)
    date = Column(String(10), primary_key=True)  # YYYY-MM-DD in the league timezone
    checked_in_at = Column(DateTime, default=func.now())


class Fixture(Base):
    """
    A scheduled leg between two players.

    Pairs are stored normalised (player_a_id < player_b_id) so each unordered
    pair and leg exists at most once per league for all time.
    """
    __tablename__ = 'fixtures'

    id = Column(Integer, primary_key=True)
    league_id = Column(Integer, ForeignKey('leagues.id'), nullable=False)
    player_a_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    player_b_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    leg_number = Column(Integer, nullable=False)
    status = Column(SQLEnum(FixtureStatus), nullable=False, default=FixtureStatus.UNPLAYED)
    created_at = Column(DateTime, default=func.now())
    confirmed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint('league_id', 'player_a_id', 'player_b_id', 'leg_number', name='uq_fixture_pair_leg'),
        CheckConstraint('player_a_id < player_b_id', name='ck_fixture_pair_normalised'),
        CheckConstraint('leg_number IN (1, 2)', name='ck_fixture_leg_number'),
        Index('idx_fixtures_league_status', 'league_id', 'status'),
    )

    def __repr__(self):
        return (f"<Fixture(id={self.id}, {self.player_a_id} vs {self.player_b_id}, "
                f"leg={self.leg_number}, status={self.status.value})>")


class ReadyQueueEntry(Base):
    __tablename__ = 'ready_queue'

    league_id = Column(Integer, primary_key=True)
    discord_id = Column(BigInteger, primary_key=True)
    enqueued_at = Column(DateTime, nullable=False, default=func.now())


class Match(Base):
    """A single playing of a fixture, carrying the Discord message that drives reporting"""
    __tablename__ = 'matches'

    id = Column(Integer, primary_key=True)
    league_id = Column(Integer, ForeignKey('leagues.id'), nullable=False)
    fixture_id = Column(Integer, ForeignKey('fixtures.id'), nullable=False)
    player_a_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    player_b_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    state = Column(SQLEnum(MatchState), nullable=False, default=MatchState.PENDING)

    # Discord integration
    guild_id = Column(BigInteger, nullable=True)
    channel_id = Column(BigInteger, nullable=True)
    message_id = Column(BigInteger, nullable=True, index=True)

    created_at = Column(DateTime, default=func.now())
    ended_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_matches_fixture_state', 'fixture_id', 'state'),
        Index('idx_matches_players_state', 'league_id', 'player_a_id', 'player_b_id', 'state'),
    )

    def player_for_side(self, side: str) -> Optional[int]:
        if side == 'A':
            return self.player_a_id
        if side == 'B':
            return self.player_b_id
        return None

    def __repr__(self):
        return f"<Match(id={self.id}, fixture={self.fixture_id}, state={self.state.value})>"


class MatchReport(Base):
    """One participant's claim about a match, editable until reconciliation confirms it"""
    __tablename__ = 'match_reports'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False)
    reporter_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    winner_side = Column(String(1), nullable=True)  # 'A' or 'B'
    score_code = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('match_id', 'reporter_id', name='uq_report_per_player_match'),
    )

    @property
    def is_complete(self) -> bool:
        return self.winner_side is not None and self.score_code is not None


class Result(Base):
    __tablename__ = 'results'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False)
    winner_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    score_a = Column(Integer, nullable=False)
    score_b = Column(Integer, nullable=False)
    is_forfeit = Column(Boolean, nullable=False, default=False)

    # Discord ids of the acting users; admins may not be players
    reporter_id = Column(BigInteger, nullable=False)
    confirmer_id = Column(BigInteger, nullable=True)
    reported_at = Column(DateTime, default=func.now())
    confirmed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_results_match_confirmed', 'match_id', 'confirmed_at'),
    )

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_at is not None


class AdminMatchOverride(Base):
    """Admin-owned reporting slot for a match; a single admin owns it at a time"""
    __tablename__ = 'admin_match_overrides'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False, unique=True)
    admin_id = Column(BigInteger, nullable=False)
    winner_side = Column(String(1), nullable=True)
    score_code = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=False)
    winner_selected = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    @property
    def is_decisive(self) -> bool:
        return (self.active and self.winner_selected
                and self.winner_side is not None and self.score_code is not None)


class PendingConfirmation(Base):
    """
    Short-lived coordination state such as reset tokens and rematch votes.

    Rows past expires_at are treated as absent on read.
    """
    __tablename__ = 'pending_confirmations'

    id = Column(Integer, primary_key=True)
    key = Column(String(100), nullable=False)
    member_id = Column(BigInteger, nullable=False)
    payload = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint('key', 'member_id', name='uq_pending_confirmation_member'),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at


class AuditLogEntry(Base):
    """Append-only record of material actions"""
    __tablename__ = 'audit_log'

    id = Column(Integer, primary_key=True)
    league_id = Column(Integer, nullable=False)
    actor_id = Column(BigInteger, nullable=True)
    action_type = Column(String(64), nullable=False)
    payload = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        Index('idx_audit_action_ts', 'league_id', 'action_type', 'created_at'),
    )

    def __repr__(self):
        return f"<AuditLogEntry(id={self.id}, action='{self.action_type}', actor={self.actor_id})>"


class AdminRole(Base):
    """Role ids granting admin privilege; a null guild_id applies to every guild"""
    __tablename__ = 'admin_roles'

    id = Column(Integer, primary_key=True)
    league_id = Column(Integer, nullable=False)
    guild_id = Column(BigInteger, nullable=True)
    role_id = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('league_id', 'guild_id', 'role_id', name='uq_admin_role'),
    )


class GuildSettings(Base):
    __tablename__ = 'guild_settings'

    guild_id = Column(BigInteger, primary_key=True)
    results_channel_id = Column(BigInteger, nullable=True)
    admin_channel_id = Column(BigInteger, nullable=True)
    standings_channel_id = Column(BigInteger, nullable=True)
    dispute_channel_id = Column(BigInteger, nullable=True)
    activity_channel_id = Column(BigInteger, nullable=True)
    match_format = Column(String(8), nullable=False, default=MatchFormats.DEFAULT)
    tournament_name = Column(String(200), nullable=True)
    timezone = Column(String(64), nullable=False, default='Asia/Qatar')
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    @property
    def dispute_target_channel_id(self) -> Optional[int]:
        return self.dispute_channel_id or self.admin_channel_id
