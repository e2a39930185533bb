"""SQLite storage layer for tkdmatch.

Provides ORM models, a transactional session scope and the repository
pattern for data persistence. Repositories only flush; the caller's
`DatabaseManager.transaction()` block commits or rolls back everything
written inside it as one unit.
"""

import json
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import NullPool

from tkdmatch.models import (
    DEFAULT_TIE_BREAK,
    ActionSource,
    ActionType,
    Competitor,
    Match,
    MatchAction,
    MatchConfiguration,
    MatchResult,
    MatchRules,
    MatchState,
    MedalType,
    MedalWinner,
    Phase,
    Pool,
    PoolStanding,
    ResultStatus,
    ResultType,
    ScheduleStatus,
    TieBreakCriterion,
    VictoryType,
    utc_now,
)

Base = declarative_base()


def _enum_or_none(enum_cls, value):
    return enum_cls(value) if value is not None else None


def _value_or_none(value):
    return value.value if hasattr(value, "value") else value


# ============================================================================
# ORM Models
# ============================================================================


class EventORM(Base):
    """Event table.

    One weight category / discipline contest. Competitors, pools and matches
    belong to exactly one event.
    """

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    discipline = Column(String(10), nullable=False, default="TKW_K")  # TKW_K, TKW_P, ...
    division = Column(String(20), nullable=True)  # SENIORS, JUNIORS, CADETS, KIDS, OLYMPIC
    competition_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utc_now)

    competitors = relationship("CompetitorORM", back_populates="event")


class SessionORM(Base):
    """Competition session (a block of matches on the schedule)."""

    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=utc_now)


class CompetitorORM(Base):
    """Competitor table."""

    __tablename__ = "competitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    print_name = Column(String(100), nullable=False)
    short_name = Column(String(50), nullable=True)
    country = Column(String(3), nullable=False)  # ISO-3
    seed = Column(Integer, nullable=True)  # 1 = strongest
    rank = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    event = relationship("EventORM", back_populates="competitors")

    def to_domain(self) -> Competitor:
        return Competitor(
            id=self.id,
            event_id=self.event_id,
            print_name=self.print_name,
            short_name=self.short_name,
            country=self.country,
            seed=self.seed,
            rank=self.rank,
        )


class PoolORM(Base):
    """Pool table."""

    __tablename__ = "pools"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    name = Column(String(50), nullable=False)
    max_athletes = Column(Integer, nullable=False)
    matches_per_athlete = Column(Integer, nullable=True)
    points_for_win = Column(Integer, nullable=False, default=3)
    points_for_draw = Column(Integer, nullable=False, default=1)
    points_for_loss = Column(Integer, nullable=False, default=0)
    qualifying_places = Column(Integer, nullable=False, default=2)
    # Ordered tie-break stages as JSON: ["POINTS_DIFFERENCE", "POINTS_FOR"]
    tie_break_json = Column(
        Text, nullable=False, default=lambda: json.dumps([c.value for c in DEFAULT_TIE_BREAK])
    )
    created_at = Column(DateTime, default=utc_now)

    @property
    def tie_break_criteria(self) -> list[TieBreakCriterion]:
        """Get tie-break stages from JSON."""
        return [TieBreakCriterion(c) for c in json.loads(self.tie_break_json)]

    @tie_break_criteria.setter
    def tie_break_criteria(self, value: list[TieBreakCriterion]):
        """Set tie-break stages as JSON."""
        self.tie_break_json = json.dumps([_value_or_none(c) for c in value])

    def to_domain(self) -> Pool:
        return Pool(
            id=self.id,
            event_id=self.event_id,
            name=self.name,
            max_athletes=self.max_athletes,
            matches_per_athlete=self.matches_per_athlete,
            points_for_win=self.points_for_win,
            points_for_draw=self.points_for_draw,
            points_for_loss=self.points_for_loss,
            qualifying_places=self.qualifying_places,
            tie_break_criteria=self.tie_break_criteria,
        )


class PoolCompetitorORM(Base):
    """Pool membership. Insertion order is the pool's competitor order."""

    __tablename__ = "pool_competitors"
    __table_args__ = (UniqueConstraint("pool_id", "competitor_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    pool_id = Column(Integer, ForeignKey("pools.id"), nullable=False)
    competitor_id = Column(Integer, ForeignKey("competitors.id"), nullable=False)


class PoolMatchORM(Base):
    """Link between a pool and one of its matches."""

    __tablename__ = "pool_matches"
    __table_args__ = (UniqueConstraint("pool_id", "match_order"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    pool_id = Column(Integer, ForeignKey("pools.id"), nullable=False)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, unique=True)
    match_order = Column(Integer, nullable=False)

    match = relationship("MatchORM")


class PoolStandingORM(Base):
    """Pool standing table."""

    __tablename__ = "pool_standings"
    __table_args__ = (UniqueConstraint("pool_id", "competitor_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    pool_id = Column(Integer, ForeignKey("pools.id"), nullable=False)
    competitor_id = Column(Integer, ForeignKey("competitors.id"), nullable=False)
    matches_played = Column(Integer, nullable=False, default=0)
    wins = Column(Integer, nullable=False, default=0)
    draws = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    points_for = Column(Integer, nullable=False, default=0)
    points_against = Column(Integer, nullable=False, default=0)
    points_difference = Column(Integer, nullable=False, default=0)
    total_points = Column(Integer, nullable=False, default=0)
    rank = Column(Integer, nullable=True)
    qualified = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    def to_domain(self) -> PoolStanding:
        return PoolStanding(
            competitor_id=self.competitor_id,
            pool_id=self.pool_id,
            matches_played=self.matches_played,
            wins=self.wins,
            draws=self.draws,
            losses=self.losses,
            points_for=self.points_for,
            points_against=self.points_against,
            points_difference=self.points_difference,
            total_points=self.total_points,
            rank=self.rank,
            qualified=self.qualified,
        )


class MatchORM(Base):
    """Match table."""

    __tablename__ = "matches"
    # Bracket slots are unique per event; pool matches have no reference
    __table_args__ = (UniqueConstraint("event_id", "position_reference"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=True)
    mat = Column(Integer, nullable=False, default=1)
    number = Column(String(10), nullable=False)
    phase = Column(String(5), nullable=False)  # F, SF, QF, R16, ..., BMC, GMC, RP
    position_reference = Column(String(10), nullable=True)  # QF-1
    schedule_status = Column(String(20), nullable=False, default=ScheduleStatus.SCHEDULED.value)
    result_status = Column(String(20), nullable=False, default=ResultStatus.UNCONFIRMED.value)
    result_decision = Column(String(5), nullable=True)
    round = Column(Integer, nullable=True)
    round_time = Column(String(5), nullable=True)
    home_score = Column(Integer, nullable=False, default=0)
    away_score = Column(Integer, nullable=False, default=0)
    home_penalties = Column(Integer, nullable=False, default=0)
    away_penalties = Column(Integer, nullable=False, default=0)
    scheduled_start = Column(DateTime, nullable=True)
    estimated_start = Column(DateTime, nullable=True)
    actual_start = Column(DateTime, nullable=True)
    home_competitor_id = Column(Integer, ForeignKey("competitors.id"), nullable=False)
    away_competitor_id = Column(Integer, ForeignKey("competitors.id"), nullable=False)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    home_competitor = relationship("CompetitorORM", foreign_keys=[home_competitor_id])
    away_competitor = relationship("CompetitorORM", foreign_keys=[away_competitor_id])

    def to_domain(self) -> Match:
        return Match(
            id=self.id,
            event_id=self.event_id,
            session_id=self.session_id,
            mat=self.mat,
            number=self.number,
            phase=Phase(self.phase),
            position_reference=self.position_reference,
            home_competitor_id=self.home_competitor_id,
            away_competitor_id=self.away_competitor_id,
            state=MatchState(
                schedule_status=ScheduleStatus(self.schedule_status),
                result_status=ResultStatus(self.result_status),
                round=self.round,
                round_time=self.round_time,
                home_score=self.home_score,
                away_score=self.away_score,
                home_penalties=self.home_penalties,
                away_penalties=self.away_penalties,
                actual_start=self.actual_start,
                scheduled_start=self.scheduled_start,
                result_decision=_enum_or_none(VictoryType, self.result_decision),
            ),
        )

    def apply_state(self, state: MatchState) -> None:
        """Copy a state machine snapshot onto the row."""
        self.schedule_status = state.schedule_status.value
        self.result_status = state.result_status.value
        self.round = state.round
        self.round_time = state.round_time
        self.home_score = state.home_score
        self.away_score = state.away_score
        self.home_penalties = state.home_penalties
        self.away_penalties = state.away_penalties
        self.actual_start = state.actual_start
        self.scheduled_start = state.scheduled_start
        self.result_decision = _value_or_none(state.result_decision)


class MatchConfigurationORM(Base):
    """Match configuration table (one per match)."""

    __tablename__ = "match_configurations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, unique=True)
    rules = Column(String(20), nullable=False)
    rounds = Column(Integer, nullable=False)
    round_time = Column(String(5), nullable=False)
    rest_time = Column(String(5), nullable=False)
    injury_time = Column(String(5), nullable=False)
    body_threshold = Column(Integer, nullable=False)
    head_threshold = Column(Integer, nullable=False)
    home_video_replay_quota = Column(Integer, nullable=False)
    away_video_replay_quota = Column(Integer, nullable=False)
    golden_point_enabled = Column(Boolean, nullable=False)
    golden_point_time = Column(String(5), nullable=False)
    max_difference = Column(Integer, nullable=False)
    max_penalties = Column(Integer, nullable=False)

    def to_domain(self) -> MatchConfiguration:
        return MatchConfiguration(
            rules=MatchRules(self.rules),
            rounds=self.rounds,
            round_time=self.round_time,
            rest_time=self.rest_time,
            injury_time=self.injury_time,
            body_threshold=self.body_threshold,
            head_threshold=self.head_threshold,
            home_video_replay_quota=self.home_video_replay_quota,
            away_video_replay_quota=self.away_video_replay_quota,
            golden_point_enabled=self.golden_point_enabled,
            golden_point_time=self.golden_point_time,
            max_difference=self.max_difference,
            max_penalties=self.max_penalties,
        )

    def apply(self, config: MatchConfiguration) -> None:
        self.rules = config.rules.value
        self.rounds = config.rounds
        self.round_time = config.round_time
        self.rest_time = config.rest_time
        self.injury_time = config.injury_time
        self.body_threshold = config.body_threshold
        self.head_threshold = config.head_threshold
        self.home_video_replay_quota = config.home_video_replay_quota
        self.away_video_replay_quota = config.away_video_replay_quota
        self.golden_point_enabled = config.golden_point_enabled
        self.golden_point_time = config.golden_point_time
        self.max_difference = config.max_difference
        self.max_penalties = config.max_penalties


class MatchActionORM(Base):
    """Append-only action log. Score and penalty columns are deltas."""

    __tablename__ = "match_actions"
    __table_args__ = (UniqueConstraint("match_id", "position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    action = Column(String(30), nullable=False)
    hitlevel = Column(Integer, nullable=True)
    round = Column(Integer, nullable=True)
    round_time = Column(String(5), nullable=True)
    position = Column(Integer, nullable=False)  # Server-assigned, strictly increasing
    source_position = Column(Integer, nullable=True)  # Caller ordering, metadata only
    home_score = Column(Integer, nullable=False, default=0)
    away_score = Column(Integer, nullable=False, default=0)
    home_penalties = Column(Integer, nullable=False, default=0)
    away_penalties = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=True)
    source = Column(String(4), nullable=True)  # HOME, AWAY, CR
    competitor_id = Column(Integer, ForeignKey("competitors.id"), nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utc_now)

    def to_domain(self) -> MatchAction:
        return MatchAction(
            id=self.id,
            match_id=self.match_id,
            action=ActionType(self.action),
            hitlevel=self.hitlevel,
            round=self.round,
            round_time=self.round_time,
            position=self.position,
            source_position=self.source_position,
            home_score=self.home_score,
            away_score=self.away_score,
            home_penalties=self.home_penalties,
            away_penalties=self.away_penalties,
            description=self.description,
            source=_enum_or_none(ActionSource, self.source),
            competitor_id=self.competitor_id,
            timestamp=self.timestamp,
        )


class MatchResultORM(Base):
    """Match result table."""

    __tablename__ = "match_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    status = Column(String(20), nullable=False)
    round = Column(Integer, nullable=True)
    position = Column(Integer, nullable=False)
    decision = Column(String(5), nullable=True)
    home_type = Column(String(5), nullable=True)
    away_type = Column(String(5), nullable=True)
    home_score = Column(Integer, nullable=False)
    away_score = Column(Integer, nullable=False)
    home_penalties = Column(Integer, nullable=False, default=0)
    away_penalties = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=True)
    winner_id = Column(Integer, ForeignKey("competitors.id"), nullable=True)
    loser_id = Column(Integer, ForeignKey("competitors.id"), nullable=True)
    timestamp = Column(DateTime, default=utc_now)

    def to_domain(self) -> MatchResult:
        return MatchResult(
            id=self.id,
            match_id=self.match_id,
            status=ResultStatus(self.status),
            round=self.round,
            position=self.position,
            decision=_enum_or_none(VictoryType, self.decision),
            home_type=_enum_or_none(ResultType, self.home_type),
            away_type=_enum_or_none(ResultType, self.away_type),
            home_score=self.home_score,
            away_score=self.away_score,
            home_penalties=self.home_penalties,
            away_penalties=self.away_penalties,
            description=self.description,
            winner_id=self.winner_id,
            loser_id=self.loser_id,
        )


class MedalWinnerORM(Base):
    """Medal winner table. A competitor holds at most one medal."""

    __tablename__ = "medal_winners"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    competitor_id = Column(Integer, ForeignKey("competitors.id"), nullable=False, unique=True)
    medal_type = Column(String(10), nullable=False)
    position = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utc_now)

    competitor = relationship("CompetitorORM")

    def to_domain(self) -> MedalWinner:
        return MedalWinner(
            id=self.id,
            event_id=self.event_id,
            competitor_id=self.competitor_id,
            medal_type=MedalType(self.medal_type),
            position=self.position,
        )


class MatchRefereeAssignmentORM(Base):
    """Referee panel of a match."""

    __tablename__ = "match_referee_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, unique=True)
    ref_cr_id = Column(Integer, nullable=True)  # Centre referee
    ref_j1_id = Column(Integer, nullable=True)
    ref_j2_id = Column(Integer, nullable=True)
    ref_j3_id = Column(Integer, nullable=True)
    ref_rj_id = Column(Integer, nullable=True)  # Review judge
    ref_ta_id = Column(Integer, nullable=True)  # Technical assistant
    assigned_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class MatchEquipmentAssignmentORM(Base):
    """PSS sensors worn by one competitor in a match."""

    __tablename__ = "match_equipment_assignments"
    __table_args__ = (UniqueConstraint("match_id", "competitor_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    competitor_id = Column(Integer, ForeignKey("competitors.id"), nullable=False)
    chest_sensor_id = Column(String(50), nullable=False)
    head_sensor_id = Column(String(50), nullable=False)
    device_type = Column(String(10), nullable=True)  # KPNP, DAEDO


# ============================================================================
# Database Manager
# ============================================================================


class DatabaseManager:
    """Manages SQLite database connection and sessions."""

    def __init__(self, db_path: str = ".tkdmatch/tkdmatch.sqlite"):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Use NullPool for SQLite to avoid connection pool issues
        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            poolclass=NullPool,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        # Every transaction takes the SQLite write lock when it starts, so a
        # check-then-insert cannot interleave with another connection, even
        # from another process on the same file.
        @event.listens_for(self.engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(self.engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self):
        """Drop all tables (use with caution!)."""
        Base.metadata.drop_all(self.engine)

    def get_session(self):
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def transaction(self) -> Iterator:
        """Session scope committing on success and rolling back on any error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# ============================================================================
# Repository Pattern
# ============================================================================


class EventRepository:
    """Repository for Event and Session operations."""

    def __init__(self, session):
        self.session = session

    def create(self, name: str, discipline: str = "TKW_K", division: str = None,
               competition_id: int = None) -> EventORM:
        """Create a new event."""
        event = EventORM(
            name=name, discipline=discipline, division=division, competition_id=competition_id
        )
        self.session.add(event)
        self.session.flush()
        return event

    def get_by_id(self, event_id: int) -> Optional[EventORM]:
        """Get event by ID."""
        return self.session.query(EventORM).filter(EventORM.id == event_id).first()

    def get_by_competition(self, competition_id: int) -> list[EventORM]:
        """Get all events of a competition."""
        return (
            self.session.query(EventORM)
            .filter(EventORM.competition_id == competition_id)
            .order_by(EventORM.id)
            .all()
        )

    def create_session(self, name: str) -> SessionORM:
        """Create a new competition session."""
        session_orm = SessionORM(name=name)
        self.session.add(session_orm)
        self.session.flush()
        return session_orm

    def get_session_by_id(self, session_id: int) -> Optional[SessionORM]:
        """Get competition session by ID."""
        return self.session.query(SessionORM).filter(SessionORM.id == session_id).first()


class CompetitorRepository:
    """Repository for Competitor operations."""

    def __init__(self, session):
        self.session = session

    def create(self, event_id: int, print_name: str, country: str, seed: int = None,
               short_name: str = None, rank: int = None) -> CompetitorORM:
        """Create a new competitor.

        Args:
            event_id: Event the competitor is entered in
            print_name: Display name
            country: ISO-3 country code
            seed: Optional seed (1 = strongest)

        Returns:
            Created CompetitorORM instance with auto-generated ID
        """
        competitor = CompetitorORM(
            event_id=event_id,
            print_name=print_name,
            short_name=short_name,
            country=country,
            seed=seed,
            rank=rank,
        )
        self.session.add(competitor)
        self.session.flush()
        return competitor

    def get_by_id(self, competitor_id: int) -> Optional[CompetitorORM]:
        """Get competitor by ID."""
        return self.session.query(CompetitorORM).filter(CompetitorORM.id == competitor_id).first()

    def get_by_event(self, event_id: int) -> list[CompetitorORM]:
        """Get all competitors of an event in registration order."""
        return (
            self.session.query(CompetitorORM)
            .filter(CompetitorORM.event_id == event_id)
            .order_by(CompetitorORM.id)
            .all()
        )

    def get_countries(self, competitor_ids: list[int]) -> dict[int, str]:
        """Map competitor IDs to country codes."""
        if not competitor_ids:
            return {}
        rows = (
            self.session.query(CompetitorORM.id, CompetitorORM.country)
            .filter(CompetitorORM.id.in_(competitor_ids))
            .all()
        )
        return {row[0]: row[1] for row in rows}


class PoolRepository:
    """Repository for Pool, membership and pool match link operations."""

    def __init__(self, session):
        self.session = session

    def create(self, pool: Pool) -> PoolORM:
        """Create a new pool from its domain model."""
        pool_orm = PoolORM(
            event_id=pool.event_id,
            name=pool.name,
            max_athletes=pool.max_athletes,
            matches_per_athlete=pool.matches_per_athlete,
            points_for_win=pool.points_for_win,
            points_for_draw=pool.points_for_draw,
            points_for_loss=pool.points_for_loss,
            qualifying_places=pool.qualifying_places,
        )
        pool_orm.tie_break_criteria = pool.tie_break_criteria
        self.session.add(pool_orm)
        self.session.flush()
        return pool_orm

    def get_by_id(self, pool_id: int) -> Optional[PoolORM]:
        """Get pool by ID."""
        return self.session.query(PoolORM).filter(PoolORM.id == pool_id).first()

    def add_competitor(self, pool_id: int, competitor_id: int) -> PoolCompetitorORM:
        """Add a competitor to a pool."""
        membership = PoolCompetitorORM(pool_id=pool_id, competitor_id=competitor_id)
        self.session.add(membership)
        self.session.flush()
        return membership

    def get_membership(self, pool_id: int, competitor_id: int) -> Optional[PoolCompetitorORM]:
        """Get the membership row of a competitor in a pool."""
        return (
            self.session.query(PoolCompetitorORM)
            .filter(
                PoolCompetitorORM.pool_id == pool_id,
                PoolCompetitorORM.competitor_id == competitor_id,
            )
            .first()
        )

    def get_competitors(self, pool_id: int) -> list[CompetitorORM]:
        """Get the pool's competitors in membership order."""
        return (
            self.session.query(CompetitorORM)
            .join(PoolCompetitorORM, PoolCompetitorORM.competitor_id == CompetitorORM.id)
            .filter(PoolCompetitorORM.pool_id == pool_id)
            .order_by(PoolCompetitorORM.id)
            .all()
        )

    def count_competitors(self, pool_id: int) -> int:
        """Number of competitors in a pool."""
        return (
            self.session.query(func.count(PoolCompetitorORM.id))
            .filter(PoolCompetitorORM.pool_id == pool_id)
            .scalar()
        )

    def remove_competitor(self, pool_id: int, competitor_id: int) -> int:
        """Delete a membership row."""
        return (
            self.session.query(PoolCompetitorORM)
            .filter(
                PoolCompetitorORM.pool_id == pool_id,
                PoolCompetitorORM.competitor_id == competitor_id,
            )
            .delete()
        )

    def link_match(self, pool_id: int, match_id: int, match_order: int) -> PoolMatchORM:
        """Attach a match to a pool."""
        link = PoolMatchORM(pool_id=pool_id, match_id=match_id, match_order=match_order)
        self.session.add(link)
        self.session.flush()
        return link

    def count_matches(self, pool_id: int) -> int:
        """Number of matches linked to a pool."""
        return (
            self.session.query(func.count(PoolMatchORM.id))
            .filter(PoolMatchORM.pool_id == pool_id)
            .scalar()
        )

    def get_matches(self, pool_id: int, schedule_status: str = None) -> list[MatchORM]:
        """Get the pool's matches in match order.

        Args:
            pool_id: Pool ID
            schedule_status: Optional schedule status filter

        Returns:
            List of MatchORM instances
        """
        query = (
            self.session.query(MatchORM)
            .join(PoolMatchORM, PoolMatchORM.match_id == MatchORM.id)
            .filter(PoolMatchORM.pool_id == pool_id)
        )
        if schedule_status is not None:
            query = query.filter(MatchORM.schedule_status == schedule_status)
        return query.order_by(PoolMatchORM.match_order).all()

    def get_competitor_matches(self, pool_id: int, competitor_id: int) -> list[MatchORM]:
        """Get the pool's matches involving one competitor."""
        return [
            m for m in self.get_matches(pool_id)
            if competitor_id in (m.home_competitor_id, m.away_competitor_id)
        ]

    def delete_links_by_match(self, match_id: int) -> int:
        """Delete the pool link of a match."""
        return self.session.query(PoolMatchORM).filter(PoolMatchORM.match_id == match_id).delete()


class StandingRepository:
    """Repository for PoolStanding operations."""

    def __init__(self, session):
        self.session = session

    def create_initial(self, pool_id: int, competitor_id: int) -> PoolStandingORM:
        """Create a zeroed standing row for a new pool member."""
        standing = PoolStandingORM(pool_id=pool_id, competitor_id=competitor_id)
        self.session.add(standing)
        self.session.flush()
        return standing

    def get_by_pool(self, pool_id: int) -> list[PoolStandingORM]:
        """Get all standings for a pool ordered by rank."""
        return (
            self.session.query(PoolStandingORM)
            .filter(PoolStandingORM.pool_id == pool_id)
            .order_by(
                PoolStandingORM.rank,
                PoolStandingORM.total_points.desc(),
                PoolStandingORM.points_difference.desc(),
                PoolStandingORM.id,
            )
            .all()
        )

    def get_by_pool_and_competitor(self, pool_id: int, competitor_id: int) -> Optional[PoolStandingORM]:
        """Get standing for a competitor in a specific pool."""
        return (
            self.session.query(PoolStandingORM)
            .filter(
                PoolStandingORM.pool_id == pool_id,
                PoolStandingORM.competitor_id == competitor_id,
            )
            .first()
        )

    def save(self, standing: PoolStanding) -> PoolStandingORM:
        """Write a computed standing, creating the row if it is missing."""
        row = self.get_by_pool_and_competitor(standing.pool_id, standing.competitor_id)
        if row is None:
            row = PoolStandingORM(pool_id=standing.pool_id, competitor_id=standing.competitor_id)
            self.session.add(row)
        row.matches_played = standing.matches_played
        row.wins = standing.wins
        row.draws = standing.draws
        row.losses = standing.losses
        row.points_for = standing.points_for
        row.points_against = standing.points_against
        row.points_difference = standing.points_difference
        row.total_points = standing.total_points
        row.rank = standing.rank
        row.qualified = standing.qualified
        self.session.flush()
        return row

    def delete(self, pool_id: int, competitor_id: int) -> int:
        """Delete a competitor's standing in a pool."""
        return (
            self.session.query(PoolStandingORM)
            .filter(
                PoolStandingORM.pool_id == pool_id,
                PoolStandingORM.competitor_id == competitor_id,
            )
            .delete()
        )


class MatchRepository:
    """Repository for Match and MatchConfiguration operations."""

    def __init__(self, session):
        self.session = session

    def create(self, event_id: int, home_competitor_id: int, away_competitor_id: int,
               phase: Phase, number: str, mat: int = 1, session_id: int = None,
               position_reference: str = None, scheduled_start: datetime = None) -> MatchORM:
        """Create a new match in its initial state (scheduled, unconfirmed).

        Returns:
            Created MatchORM instance
        """
        match_orm = MatchORM(
            event_id=event_id,
            session_id=session_id,
            mat=mat,
            number=number,
            phase=phase.value,
            position_reference=position_reference,
            schedule_status=ScheduleStatus.SCHEDULED.value,
            result_status=ResultStatus.UNCONFIRMED.value,
            home_competitor_id=home_competitor_id,
            away_competitor_id=away_competitor_id,
            scheduled_start=scheduled_start,
        )
        self.session.add(match_orm)
        self.session.flush()
        return match_orm

    def get_by_id(self, match_id: int) -> Optional[MatchORM]:
        """Get match by ID."""
        return self.session.query(MatchORM).filter(MatchORM.id == match_id).first()

    def get_by_event(self, event_id: int) -> list[MatchORM]:
        """Get all matches of an event ordered by mat and number."""
        return (
            self.session.query(MatchORM)
            .filter(MatchORM.event_id == event_id)
            .order_by(MatchORM.mat, MatchORM.number)
            .all()
        )

    def count_bracket_matches(self, event_id: int) -> int:
        """Number of event matches that are not linked to a pool."""
        pool_match_ids = self.session.query(PoolMatchORM.match_id)
        return (
            self.session.query(func.count(MatchORM.id))
            .filter(MatchORM.event_id == event_id, ~MatchORM.id.in_(pool_match_ids))
            .scalar()
        )

    def delete(self, match_orm: MatchORM) -> None:
        """Delete a match row. Dependents must already be gone."""
        self.session.delete(match_orm)
        self.session.flush()

    def create_configuration(self, match_id: int, config: MatchConfiguration) -> MatchConfigurationORM:
        """Attach a configuration to a match."""
        config_orm = MatchConfigurationORM(match_id=match_id)
        config_orm.apply(config)
        self.session.add(config_orm)
        self.session.flush()
        return config_orm

    def get_configuration(self, match_id: int) -> Optional[MatchConfigurationORM]:
        """Get a match's configuration."""
        return (
            self.session.query(MatchConfigurationORM)
            .filter(MatchConfigurationORM.match_id == match_id)
            .first()
        )

    def delete_configuration(self, match_id: int) -> int:
        """Delete a match's configuration."""
        return (
            self.session.query(MatchConfigurationORM)
            .filter(MatchConfigurationORM.match_id == match_id)
            .delete()
        )


class ActionRepository:
    """Repository for the match action log."""

    def __init__(self, session):
        self.session = session

    def next_position(self, match_id: int) -> int:
        """Next server-assigned position for a match."""
        current = (
            self.session.query(func.max(MatchActionORM.position))
            .filter(MatchActionORM.match_id == match_id)
            .scalar()
        )
        return (current or 0) + 1

    def find_duplicate(self, match_id: int, action: ActionType, timestamp: datetime,
                       window: timedelta, competitor_id: int = None) -> Optional[MatchActionORM]:
        """Find an action of the same type logged within `window` of `timestamp`.

        Actions whose type carries no side (ADJUST_SCORE, MATCH_START, ...)
        also have to match on competitor_id.
        """
        query = self.session.query(MatchActionORM).filter(
            MatchActionORM.match_id == match_id,
            MatchActionORM.action == action.value,
            MatchActionORM.timestamp >= timestamp - window,
            MatchActionORM.timestamp <= timestamp + window,
        )
        if action.side is None:
            if competitor_id is None:
                query = query.filter(MatchActionORM.competitor_id.is_(None))
            else:
                query = query.filter(MatchActionORM.competitor_id == competitor_id)
        return query.first()

    def create(self, match_id: int, action: MatchAction, position: int) -> MatchActionORM:
        """Append an action to the log."""
        action_orm = MatchActionORM(
            match_id=match_id,
            action=action.action.value,
            hitlevel=action.hitlevel,
            round=action.round,
            round_time=action.round_time,
            position=position,
            source_position=action.source_position,
            home_score=action.home_score,
            away_score=action.away_score,
            home_penalties=action.home_penalties,
            away_penalties=action.away_penalties,
            description=action.description,
            source=_value_or_none(action.source),
            competitor_id=action.competitor_id,
            timestamp=action.timestamp or utc_now(),
        )
        self.session.add(action_orm)
        self.session.flush()
        return action_orm

    def get_by_match(self, match_id: int) -> list[MatchActionORM]:
        """Get a match's actions in log order."""
        return (
            self.session.query(MatchActionORM)
            .filter(MatchActionORM.match_id == match_id)
            .order_by(MatchActionORM.position)
            .all()
        )

    def delete_by_match(self, match_id: int) -> int:
        """Delete a match's action log."""
        return self.session.query(MatchActionORM).filter(MatchActionORM.match_id == match_id).delete()


class ResultRepository:
    """Repository for MatchResult operations."""

    def __init__(self, session):
        self.session = session

    def next_position(self, match_id: int) -> int:
        """Next result position for a match."""
        current = (
            self.session.query(func.max(MatchResultORM.position))
            .filter(MatchResultORM.match_id == match_id)
            .scalar()
        )
        return (current or 0) + 1

    def create(self, match_id: int, result: MatchResult) -> MatchResultORM:
        """Store a result snapshot."""
        result_orm = MatchResultORM(
            match_id=match_id,
            status=result.status.value,
            round=result.round,
            position=result.position,
            decision=_value_or_none(result.decision),
            home_type=_value_or_none(result.home_type),
            away_type=_value_or_none(result.away_type),
            home_score=result.home_score,
            away_score=result.away_score,
            home_penalties=result.home_penalties,
            away_penalties=result.away_penalties,
            description=result.description,
            winner_id=result.winner_id,
            loser_id=result.loser_id,
        )
        self.session.add(result_orm)
        self.session.flush()
        return result_orm

    def get_by_match(self, match_id: int) -> list[MatchResultORM]:
        """Get a match's results, latest first."""
        return (
            self.session.query(MatchResultORM)
            .filter(MatchResultORM.match_id == match_id)
            .order_by(MatchResultORM.position.desc(), MatchResultORM.id.desc())
            .all()
        )

    def latest_official(self, match_id: int) -> Optional[MatchResultORM]:
        """Get the highest-position official result of a match."""
        return (
            self.session.query(MatchResultORM)
            .filter(
                MatchResultORM.match_id == match_id,
                MatchResultORM.status == ResultStatus.OFFICIAL.value,
            )
            .order_by(MatchResultORM.position.desc(), MatchResultORM.id.desc())
            .first()
        )

    def delete_by_match(self, match_id: int) -> int:
        """Delete a match's results."""
        return self.session.query(MatchResultORM).filter(MatchResultORM.match_id == match_id).delete()


class MedalRepository:
    """Repository for MedalWinner operations."""

    def __init__(self, session):
        self.session = session

    def get_by_competitor(self, competitor_id: int) -> Optional[MedalWinnerORM]:
        """Get the medal of a competitor, if any."""
        return (
            self.session.query(MedalWinnerORM)
            .filter(MedalWinnerORM.competitor_id == competitor_id)
            .first()
        )

    def create(self, medal: MedalWinner) -> MedalWinnerORM:
        """Store a medal."""
        medal_orm = MedalWinnerORM(
            event_id=medal.event_id,
            competitor_id=medal.competitor_id,
            medal_type=medal.medal_type.value,
            position=medal.position,
        )
        self.session.add(medal_orm)
        self.session.flush()
        return medal_orm

    def get_by_events(self, event_ids: list[int]) -> list[MedalWinnerORM]:
        """Get all medals of the given events."""
        if not event_ids:
            return []
        return (
            self.session.query(MedalWinnerORM)
            .filter(MedalWinnerORM.event_id.in_(event_ids))
            .order_by(MedalWinnerORM.event_id, MedalWinnerORM.position)
            .all()
        )


class AssignmentRepository:
    """Repository for referee and equipment assignments."""

    def __init__(self, session):
        self.session = session

    def get_referees(self, match_id: int) -> Optional[MatchRefereeAssignmentORM]:
        """Get the referee panel of a match."""
        return (
            self.session.query(MatchRefereeAssignmentORM)
            .filter(MatchRefereeAssignmentORM.match_id == match_id)
            .first()
        )

    def save_referees(self, match_id: int, referees: dict[str, Optional[int]]) -> MatchRefereeAssignmentORM:
        """Create or replace the referee panel of a match.

        Args:
            match_id: Match ID
            referees: Mapping of role ("cr", "j1", "j2", "j3", "rj", "ta") to participant ID
        """
        assignment = self.get_referees(match_id)
        if assignment is None:
            assignment = MatchRefereeAssignmentORM(match_id=match_id)
            self.session.add(assignment)
        for role in ("cr", "j1", "j2", "j3", "rj", "ta"):
            setattr(assignment, f"ref_{role}_id", referees.get(role))
        self.session.flush()
        return assignment

    def save_equipment(self, match_id: int, competitor_id: int, chest_sensor_id: str,
                       head_sensor_id: str, device_type: str = None) -> MatchEquipmentAssignmentORM:
        """Create or replace the sensors of one competitor in a match."""
        assignment = (
            self.session.query(MatchEquipmentAssignmentORM)
            .filter(
                MatchEquipmentAssignmentORM.match_id == match_id,
                MatchEquipmentAssignmentORM.competitor_id == competitor_id,
            )
            .first()
        )
        if assignment is None:
            assignment = MatchEquipmentAssignmentORM(match_id=match_id, competitor_id=competitor_id)
            self.session.add(assignment)
        assignment.chest_sensor_id = chest_sensor_id
        assignment.head_sensor_id = head_sensor_id
        assignment.device_type = device_type
        self.session.flush()
        return assignment

    def delete_by_match(self, match_id: int) -> int:
        """Delete every assignment of a match."""
        count = (
            self.session.query(MatchRefereeAssignmentORM)
            .filter(MatchRefereeAssignmentORM.match_id == match_id)
            .delete()
        )
        count += (
            self.session.query(MatchEquipmentAssignmentORM)
            .filter(MatchEquipmentAssignmentORM.match_id == match_id)
            .delete()
        )
        return count
