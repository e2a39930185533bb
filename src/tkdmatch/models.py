"""Data models for tkdmatch.

Domain model hierarchy:
- Event contains Competitors, Pools and Matches
- Pool contains Competitors (round robin) and its Matches
- Match contains an append-only log of MatchActions and MatchResults
- Official finals results produce MedalWinners
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utc_now() -> datetime:
    """Current time as naive UTC, the form every stored timestamp uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC."""
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Phase(str, Enum):
    """Bracket round tag of a match."""

    FINAL = "F"
    SEMIFINAL = "SF"
    QUARTERFINAL = "QF"
    ROUND_OF_16 = "R16"
    ROUND_OF_32 = "R32"
    ROUND_OF_64 = "R64"
    ROUND_OF_128 = "R128"
    BRONZE_MEDAL_CONTEST = "BMC"
    GOLD_MEDAL_CONTEST = "GMC"
    REPECHAGE = "RP"


class ScheduleStatus(str, Enum):
    """Logistical state of a match."""

    SCHEDULED = "SCHEDULED"
    GETTING_READY = "GETTING_READY"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    DELAYED = "DELAYED"
    CANCELLED = "CANCELLED"
    POSTPONED = "POSTPONED"
    RESCHEDULED = "RESCHEDULED"
    INTERRUPTED = "INTERRUPTED"


class ResultStatus(str, Enum):
    """Adjudication confidence of a match outcome."""

    LIVE = "LIVE"
    INTERMEDIATE = "INTERMEDIATE"
    UNCONFIRMED = "UNCONFIRMED"  # Initial state, and again after MATCH_END
    UNOFFICIAL = "UNOFFICIAL"
    OFFICIAL = "OFFICIAL"
    PROTESTED = "PROTESTED"


# Result statuses compatible with scheduleStatus=FINISHED
TERMINAL_RESULT_STATUSES = frozenset(
    {
        ResultStatus.UNCONFIRMED,
        ResultStatus.UNOFFICIAL,
        ResultStatus.OFFICIAL,
        ResultStatus.PROTESTED,
    }
)


class ActionType(str, Enum):
    """Canonical scoring/timing actions, independent of the scoring device."""

    MATCH_LOADED = "MATCH_LOADED"
    MATCH_START = "MATCH_START"
    ROUND_START = "ROUND_START"
    MATCH_TIME = "MATCH_TIME"
    MATCH_TIMEOUT = "MATCH_TIMEOUT"
    MATCH_RESUME = "MATCH_RESUME"
    ROUND_END = "ROUND_END"
    MATCH_END = "MATCH_END"
    SCORE_HOME_PUNCH = "SCORE_HOME_PUNCH"
    SCORE_HOME_KICK = "SCORE_HOME_KICK"
    SCORE_HOME_TKICK = "SCORE_HOME_TKICK"
    SCORE_HOME_SKICK = "SCORE_HOME_SKICK"
    SCORE_HOME_HEAD = "SCORE_HOME_HEAD"
    SCORE_HOME_THEAD = "SCORE_HOME_THEAD"
    PENALTY_HOME = "PENALTY_HOME"
    SCORE_AWAY_PUNCH = "SCORE_AWAY_PUNCH"
    SCORE_AWAY_KICK = "SCORE_AWAY_KICK"
    SCORE_AWAY_TKICK = "SCORE_AWAY_TKICK"
    SCORE_AWAY_SKICK = "SCORE_AWAY_SKICK"
    SCORE_AWAY_HEAD = "SCORE_AWAY_HEAD"
    SCORE_AWAY_THEAD = "SCORE_AWAY_THEAD"
    PENALTY_AWAY = "PENALTY_AWAY"
    INVALIDATE_SCORE = "INVALIDATE_SCORE"
    ADJUST_SCORE = "ADJUST_SCORE"
    ADJUST_PENALTY = "ADJUST_PENALTY"
    VR_HOME_REQUEST = "VR_HOME_REQUEST"
    VR_HOME_ACCEPTED = "VR_HOME_ACCEPTED"
    VR_HOME_REJECTED = "VR_HOME_REJECTED"
    VR_AWAY_REQUEST = "VR_AWAY_REQUEST"
    VR_AWAY_ACCEPTED = "VR_AWAY_ACCEPTED"
    VR_AWAY_REJECTED = "VR_AWAY_REJECTED"

    @property
    def is_scoring(self) -> bool:
        """Score, penalty, invalidation and adjustment actions."""
        return (
            self.value.startswith(("SCORE_", "PENALTY_", "ADJUST_"))
            or self is ActionType.INVALIDATE_SCORE
        )

    @property
    def is_correction(self) -> bool:
        """Actions still accepted once a match is finished."""
        return self.value.startswith(("ADJUST_", "VR_")) or self is ActionType.INVALIDATE_SCORE

    @property
    def side(self) -> Optional["Side"]:
        """Competitor side encoded in the action name, if any."""
        if "_HOME" in self.value:
            return Side.HOME
        if "_AWAY" in self.value:
            return Side.AWAY
        return None


class Side(str, Enum):
    """Home or away corner."""

    HOME = "HOME"
    AWAY = "AWAY"


class ActionSource(str, Enum):
    """Who produced an action."""

    HOME = "HOME"
    AWAY = "AWAY"
    CR = "CR"  # Computer referee (PSS)


class VictoryType(str, Enum):
    """Decision code of a result."""

    PTF = "PTF"  # Final score
    PTG = "PTG"  # Point gap
    GDP = "GDP"  # Golden point
    RSC = "RSC"  # Referee stops contest
    SUP = "SUP"  # Superiority
    WDR = "WDR"  # Withdrawal
    DSQ = "DSQ"  # Disqualification
    PUN = "PUN"  # Punitive declaration
    DQB = "DQB"  # Disqualification for unsportsmanlike behaviour


class ResultType(str, Enum):
    """Outcome for one side of a result."""

    WIN = "WIN"
    LOSS = "LOSS"
    TIE = "TIE"


class MedalType(str, Enum):
    """Medal colours."""

    GOLD = "GOLD"
    SILVER = "SILVER"
    BRONZE = "BRONZE"


MEDAL_POSITIONS = {MedalType.GOLD: 1, MedalType.SILVER: 2, MedalType.BRONZE: 3}


class ScheduleCommand(str, Enum):
    """Administrative schedule commands."""

    FINISH = "finish"
    DELAY = "delay"
    CANCEL = "cancel"
    POSTPONE = "postpone"
    RESCHEDULE = "reschedule"
    INTERRUPT = "interrupt"


class TieBreakCriterion(str, Enum):
    """Pool standings tie-break stages."""

    POINTS_DIFFERENCE = "POINTS_DIFFERENCE"
    HEAD_TO_HEAD = "HEAD_TO_HEAD"
    POINTS_FOR = "POINTS_FOR"
    POINTS_AGAINST = "POINTS_AGAINST"
    WINS = "WINS"
    RANDOM = "RANDOM"


DEFAULT_TIE_BREAK = [TieBreakCriterion.POINTS_DIFFERENCE, TieBreakCriterion.POINTS_FOR]


class MatchRules(str, Enum):
    """Match rule preset."""

    CONVENTIONAL = "CONVENTIONAL"
    BESTOF3 = "BESTOF3"


# ============================================================================
# Core Domain Models
# ============================================================================


@dataclass
class Competitor:
    """Competitor entered in one event.

    A competitor is an athlete (or team) with its seeding information.
    """

    id: int
    event_id: int
    print_name: str
    country: str  # ISO-3 country code (KOR, FRA, ESP, etc.)
    short_name: Optional[str] = None
    seed: Optional[int] = None  # 1 = strongest
    rank: Optional[int] = None

    def __str__(self) -> str:
        """String representation."""
        seed_str = f"[{self.seed}] " if self.seed else ""
        return f"{seed_str}{self.print_name} ({self.country})"


@dataclass
class MatchState:
    """Mutable part of a match driven by the state machine."""

    schedule_status: ScheduleStatus = ScheduleStatus.SCHEDULED
    result_status: ResultStatus = ResultStatus.UNCONFIRMED
    round: Optional[int] = None
    round_time: Optional[str] = None
    home_score: int = 0
    away_score: int = 0
    home_penalties: int = 0
    away_penalties: int = 0
    actual_start: Optional[datetime] = None
    scheduled_start: Optional[datetime] = None
    result_decision: Optional[VictoryType] = None


@dataclass
class Match:
    """A contest between a home and an away competitor."""

    id: int
    event_id: int
    home_competitor_id: int
    away_competitor_id: int
    phase: Phase
    number: str
    mat: int = 1
    session_id: Optional[int] = None
    position_reference: Optional[str] = None
    state: MatchState = field(default_factory=MatchState)

    @property
    def is_finished(self) -> bool:
        """Check if match is finished."""
        return self.state.schedule_status == ScheduleStatus.FINISHED

    def side_of(self, competitor_id: int) -> Optional[Side]:
        """Return the side of a competitor in this match."""
        if competitor_id == self.home_competitor_id:
            return Side.HOME
        if competitor_id == self.away_competitor_id:
            return Side.AWAY
        return None

    def __str__(self) -> str:
        """String representation."""
        return (
            f"Match {self.number} ({self.phase.value}): C{self.home_competitor_id} "
            f"{self.state.home_score}-{self.state.away_score} C{self.away_competitor_id}"
        )


@dataclass
class MatchAction:
    """One entry of a match's action log.

    Score and penalty fields are deltas applied to the running totals.
    """

    action: ActionType
    round: Optional[int] = None
    round_time: Optional[str] = None
    home_score: int = 0
    away_score: int = 0
    home_penalties: int = 0
    away_penalties: int = 0
    hitlevel: Optional[int] = None
    source: Optional[ActionSource] = None
    competitor_id: Optional[int] = None
    description: Optional[str] = None
    timestamp: Optional[datetime] = None
    source_position: Optional[int] = None  # Caller ordering, metadata only
    position: Optional[int] = None  # Server-assigned
    match_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class MatchResult:
    """A verdict snapshot for a match at one adjudication status."""

    status: ResultStatus
    home_score: int
    away_score: int
    home_penalties: int = 0
    away_penalties: int = 0
    decision: Optional[VictoryType] = None
    home_type: Optional[ResultType] = None
    away_type: Optional[ResultType] = None
    round: Optional[int] = None
    position: Optional[int] = None  # Highest position is the latest
    description: Optional[str] = None
    winner_id: Optional[int] = None
    loser_id: Optional[int] = None
    match_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class MatchConfiguration:
    """Rules preset attached to every match."""

    rules: MatchRules
    rounds: int = 3
    round_time: str = "02:00"
    rest_time: str = "01:00"
    injury_time: str = "01:00"
    body_threshold: int = 20
    head_threshold: int = 10
    home_video_replay_quota: int = 1
    away_video_replay_quota: int = 1
    golden_point_enabled: bool = True
    golden_point_time: str = "01:00"
    max_difference: int = 20
    max_penalties: int = 10


# ============================================================================
# Bracket Models
# ============================================================================


@dataclass
class BracketPairing:
    """A first-round pairing of two bracket indices.

    Index values at or beyond the competitor count are byes.
    """

    index: int  # 0-based pairing number
    home_index: int
    away_index: int
    home: Optional[Competitor] = None
    away: Optional[Competitor] = None

    @property
    def is_bye(self) -> bool:
        """Only one of the two slots is filled."""
        return (self.home is None) != (self.away is None)

    @property
    def is_playable(self) -> bool:
        """Both slots are filled."""
        return self.home is not None and self.away is not None


@dataclass
class BracketSlot:
    """A first-round slot in the bracket slot graph."""

    position_reference: str  # "QF-1"
    pairing: BracketPairing
    next_reference: Optional[str] = None  # Slot fed by this one in the next round
    pending_advance: Optional[Competitor] = None  # Lone competitor awaiting walkover

    def __str__(self) -> str:
        """String representation."""
        if self.pending_advance is not None:
            return f"{self.position_reference}: BYE -> {self.pending_advance.print_name}"
        if self.pairing.is_playable:
            return f"{self.position_reference}: {self.pairing.home.print_name} vs {self.pairing.away.print_name}"
        return f"{self.position_reference}: empty"


# ============================================================================
# Pool Models
# ============================================================================


@dataclass
class Pool:
    """A round-robin group of competitors within one event."""

    id: int
    event_id: int
    name: str
    max_athletes: int
    matches_per_athlete: Optional[int] = None
    points_for_win: int = 3
    points_for_draw: int = 1
    points_for_loss: int = 0
    qualifying_places: int = 2
    tie_break_criteria: list[TieBreakCriterion] = field(
        default_factory=lambda: list(DEFAULT_TIE_BREAK)
    )


@dataclass
class PoolStanding:
    """Standing of a competitor within a pool.

    Tracks every metric the tie-break stages can use.
    """

    competitor_id: int
    pool_id: int
    matches_played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    # Scored points, not standings points
    points_for: int = 0
    points_against: int = 0
    points_difference: int = 0
    # Standings points from the pool's win/draw/loss values
    total_points: int = 0
    rank: Optional[int] = None
    qualified: bool = False

    def __str__(self) -> str:
        """String representation."""
        pos = f"#{self.rank}" if self.rank else "unranked"
        return (
            f"{pos} C{self.competitor_id}: {self.total_points}pts "
            f"{self.wins}W-{self.draws}D-{self.losses}L ({self.points_difference:+d})"
        )


@dataclass
class PoolMatchRecord:
    """Input to the standings calculator: a pool match and its results."""

    match_id: int
    home_competitor_id: int
    away_competitor_id: int
    schedule_status: ScheduleStatus
    results: list[MatchResult] = field(default_factory=list)

    def latest_official_result(self) -> Optional[MatchResult]:
        """Highest-position result with official status, if any."""
        official = [r for r in self.results if r.status == ResultStatus.OFFICIAL]
        if not official:
            return None
        return max(official, key=lambda r: (r.position or 0, r.id or 0))


# ============================================================================
# Medal Models
# ============================================================================


@dataclass
class MedalWinner:
    """Medal awarded to a competitor."""

    event_id: int
    competitor_id: int
    medal_type: MedalType
    position: int
    id: Optional[int] = None


@dataclass
class MedalTableRow:
    """Medal count of one country across a competition."""

    country: str
    gold: int = 0
    silver: int = 0
    bronze: int = 0

    @property
    def total(self) -> int:
        """Total medals."""
        return self.gold + self.silver + self.bronze
