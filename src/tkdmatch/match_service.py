"""Match operations: bracket generation, scoring actions, results, commands.

Every public method runs in one `DatabaseManager.transaction()`: either all
of its rows are written or none are. Telemetry is emitted after commit.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from tkdmatch.bracket import generate_bracket_pairings, position_reference
from tkdmatch.exceptions import (
    ConflictStateError,
    DuplicateEventError,
    InvalidInputError,
    NotFoundError,
)
from tkdmatch.match_config import configuration_from_pss, default_configuration
from tkdmatch.match_state import apply_action, apply_command, apply_result, resolve_winner
from tkdmatch.medals import award_medals
from tkdmatch.models import (
    Match,
    MatchAction,
    MatchConfiguration,
    MatchResult,
    ResultStatus,
    ScheduleCommand,
    naive_utc,
    utc_now,
)
from tkdmatch.pss import MatchConfigData
from tkdmatch.storage import (
    ActionRepository,
    AssignmentRepository,
    CompetitorRepository,
    EventRepository,
    MatchRepository,
    PoolRepository,
    ResultRepository,
)
from tkdmatch.telemetry import LoggingTelemetry, TelemetrySink
from tkdmatch.validation import (
    ensure_valid,
    validate_result,
    validate_result_position,
    validate_round_time,
)

logger = logging.getLogger(__name__)

REFEREE_ROLES = ("cr", "j1", "j2", "j3", "rj", "ta")


def load_match(session, match_id: int):
    """Get a match row or raise NotFoundError."""
    match_orm = MatchRepository(session).get_by_id(match_id)
    if match_orm is None:
        raise NotFoundError("Match", match_id)
    return match_orm


def create_match_with_configuration(session, event, **match_fields):
    """Create a match and its default configuration for the event."""
    match_repo = MatchRepository(session)
    match_orm = match_repo.create(event_id=event.id, **match_fields)
    match_repo.create_configuration(
        match_orm.id, default_configuration(event.discipline, event.division)
    )
    return match_orm


def delete_match_rows(session, match_orm) -> None:
    """Delete a match and every row depending on it."""
    match_id = match_orm.id
    ActionRepository(session).delete_by_match(match_id)
    ResultRepository(session).delete_by_match(match_id)
    AssignmentRepository(session).delete_by_match(match_id)
    PoolRepository(session).delete_links_by_match(match_id)
    match_repo = MatchRepository(session)
    match_repo.delete_configuration(match_id)
    match_repo.delete(match_orm)


class MatchService:
    """Transactional match operations."""

    def __init__(
        self,
        db_manager,
        telemetry: Optional[TelemetrySink] = None,
        duplicate_window_ms: int = 1000,
        base_match_number: int = 101,
    ):
        """Initialize match service.

        Args:
            db_manager: DatabaseManager instance
            telemetry: Sink for committed updates (logs by default)
            duplicate_window_ms: Window for dropping re-delivered actions
            base_match_number: Number of the first generated bracket match
        """
        self.db = db_manager
        self.telemetry = telemetry if telemetry is not None else LoggingTelemetry()
        self.duplicate_window = timedelta(milliseconds=duplicate_window_ms)
        self.base_match_number = base_match_number

    # ------------------------------------------------------------------
    # Bracket
    # ------------------------------------------------------------------

    def generate_bracket(
        self,
        event_id: int,
        session_id: Optional[int] = None,
        mat: int = 1,
        base_match_number: Optional[int] = None,
    ) -> list[Match]:
        """Create the first-round bracket matches of an event.

        Pairings with a bye produce no match.

        Args:
            event_id: Event whose competitors are drawn
            session_id: Competition session of the matches
            mat: Mat number
            base_match_number: First match number (defaults to the service's)

        Returns:
            List of created Match objects in pairing order

        Raises:
            NotFoundError: Unknown event or session
            ConflictStateError: The event already has bracket matches
            InvalidInputError: Fewer than 2 or more than 128 competitors
        """
        number = base_match_number if base_match_number is not None else self.base_match_number

        with self.db.transaction() as session:
            event_repo = EventRepository(session)
            event = event_repo.get_by_id(event_id)
            if event is None:
                raise NotFoundError("Event", event_id)
            if session_id is not None and event_repo.get_session_by_id(session_id) is None:
                raise NotFoundError("Session", session_id)
            if MatchRepository(session).count_bracket_matches(event_id) > 0:
                raise ConflictStateError(f"Event {event_id} already has bracket matches")

            competitors = [c.to_domain() for c in CompetitorRepository(session).get_by_event(event_id)]
            phase, bracket_size, pairings = generate_bracket_pairings(competitors)

            created = []
            try:
                for pairing in pairings:
                    if not pairing.is_playable:
                        continue
                    match_orm = create_match_with_configuration(
                        session,
                        event,
                        home_competitor_id=pairing.home.id,
                        away_competitor_id=pairing.away.id,
                        phase=phase,
                        number=str(number),
                        mat=mat,
                        session_id=session_id,
                        position_reference=position_reference(phase, pairing.index),
                    )
                    created.append(match_orm.to_domain())
                    number += 1
            except IntegrityError as e:
                raise ConflictStateError(f"Event {event_id} already has bracket matches") from e

        logger.info(
            "Event %s: %s bracket of size %d, %d matches created",
            event_id,
            phase.value,
            bracket_size,
            len(created),
        )
        return created

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_match(self, match_id: int) -> Match:
        """Get a match snapshot."""
        with self.db.transaction() as session:
            return load_match(session, match_id).to_domain()

    def get_actions(self, match_id: int) -> list[MatchAction]:
        """Get a match's action log in position order."""
        with self.db.transaction() as session:
            load_match(session, match_id)
            return [a.to_domain() for a in ActionRepository(session).get_by_match(match_id)]

    def get_results(self, match_id: int) -> list[MatchResult]:
        """Get a match's results, latest first."""
        with self.db.transaction() as session:
            load_match(session, match_id)
            return [r.to_domain() for r in ResultRepository(session).get_by_match(match_id)]

    def get_configuration(self, match_id: int) -> Optional[MatchConfiguration]:
        """Get a match's configuration."""
        with self.db.transaction() as session:
            load_match(session, match_id)
            config_orm = MatchRepository(session).get_configuration(match_id)
            return config_orm.to_domain() if config_orm else None

    # ------------------------------------------------------------------
    # Actions, results, commands
    # ------------------------------------------------------------------

    def record_action(self, match_id: int, action: MatchAction) -> MatchAction:
        """Append a scoring or timing action and apply it to the match.

        The action's position is assigned here; a caller-supplied position is
        kept as `source_position` only.

        Returns:
            The stored MatchAction

        Raises:
            NotFoundError: Unknown match
            DuplicateEventError: Same action already logged within the
                duplicate window (nothing written)
            ConflictStateError: Match state rejects the action
            InvalidInputError: Bad clock value or foreign competitor
        """
        if action.round_time is not None:
            ensure_valid(validate_round_time(action.round_time))
        incoming = replace(
            action,
            match_id=match_id,
            timestamp=naive_utc(action.timestamp) or utc_now(),
            source_position=action.source_position if action.source_position is not None else action.position,
            position=None,
        )

        with self.db.transaction() as session:
            match_orm = load_match(session, match_id)
            match = match_orm.to_domain()
            if incoming.competitor_id is not None and match.side_of(incoming.competitor_id) is None:
                raise InvalidInputError(
                    f"Competitor {incoming.competitor_id} is not in match {match_id}"
                )

            action_repo = ActionRepository(session)
            duplicate = action_repo.find_duplicate(
                match_id,
                incoming.action,
                incoming.timestamp,
                self.duplicate_window,
                competitor_id=incoming.competitor_id,
            )
            if duplicate is not None:
                logger.warning(
                    "Duplicate %s ignored for match %s (already logged at position %s)",
                    incoming.action.value,
                    match_id,
                    duplicate.position,
                )
                raise DuplicateEventError(
                    f"{incoming.action.value} already recorded for match {match_id}"
                )

            new_state = apply_action(match.state, incoming)
            action_orm = action_repo.create(match_id, incoming, action_repo.next_position(match_id))
            match_orm.apply_state(new_state)
            session.flush()

            recorded = action_orm.to_domain()
            updated = match_orm.to_domain()

        self.telemetry.action_recorded(recorded)
        self.telemetry.match_updated(updated)
        return recorded

    def submit_result(self, match_id: int, result: MatchResult) -> MatchResult:
        """Store a result and apply it to the match.

        Winner and loser come from home_type/away_type, falling back to the
        scores. An official result awards medals for finals and bronze
        medal contests in the same transaction.

        Returns:
            The stored MatchResult

        Raises:
            NotFoundError: Unknown match
            InvalidInputError: Inconsistent payload
            ConflictStateError: Match state rejects the result
        """
        ensure_valid(validate_result_position(result.position))

        with self.db.transaction() as session:
            match_orm = load_match(session, match_id)
            match = match_orm.to_domain()
            ensure_valid(
                validate_result(result, match.home_competitor_id, match.away_competitor_id)
            )

            winner_id, loser_id = result.winner_id, result.loser_id
            if winner_id is None:
                winner_id, loser_id = resolve_winner(
                    result, match.home_competitor_id, match.away_competitor_id
                )
            elif loser_id is None:
                loser_id = (
                    match.away_competitor_id
                    if winner_id == match.home_competitor_id
                    else match.home_competitor_id
                )

            new_state = apply_result(match.state, result)

            result_repo = ResultRepository(session)
            stored = replace(
                result,
                match_id=match_id,
                position=result.position or result_repo.next_position(match_id),
                winner_id=winner_id,
                loser_id=loser_id,
            )
            result_orm = result_repo.create(match_id, stored)
            match_orm.apply_state(new_state)
            session.flush()
            updated = match_orm.to_domain()

            if stored.status == ResultStatus.OFFICIAL:
                award_medals(session, updated, winner_id, loser_id)

            saved = result_orm.to_domain()

        logger.info(
            "Match %s result %s %d-%d (winner %s)",
            match_id,
            saved.status.value,
            saved.home_score,
            saved.away_score,
            saved.winner_id,
        )
        self.telemetry.match_updated(updated)
        return saved

    def apply_command(
        self,
        match_id: int,
        command: ScheduleCommand,
        scheduled_start: Optional[datetime] = None,
    ) -> Match:
        """Apply an administrative schedule command.

        Raises:
            NotFoundError: Unknown match
            ConflictStateError: Match is finished
        """
        with self.db.transaction() as session:
            match_orm = load_match(session, match_id)
            new_state = apply_command(match_orm.to_domain().state, command, scheduled_start)
            match_orm.apply_state(new_state)
            session.flush()
            updated = match_orm.to_domain()

        logger.info("Match %s: %s -> %s", match_id, command.value, updated.state.schedule_status.value)
        self.telemetry.match_updated(updated)
        return updated

    def delete_match(self, match_id: int) -> None:
        """Delete a match with its actions, results, assignments, pool link and configuration."""
        with self.db.transaction() as session:
            delete_match_rows(session, load_match(session, match_id))
        logger.info("Match %s deleted", match_id)

    # ------------------------------------------------------------------
    # Configuration and assignments
    # ------------------------------------------------------------------

    def update_configuration_from_pss(self, data: MatchConfigData) -> MatchConfiguration:
        """Create or update a match configuration from a match:config event."""
        with self.db.transaction() as session:
            match_orm = load_match(session, data.match_id)
            event = EventRepository(session).get_by_id(match_orm.event_id)
            match_repo = MatchRepository(session)
            config_orm = match_repo.get_configuration(match_orm.id)
            existing = config_orm.to_domain() if config_orm else None
            config = configuration_from_pss(existing, data, event.discipline if event else "TKW_K")
            if config_orm is None:
                config_orm = match_repo.create_configuration(match_orm.id, config)
            else:
                config_orm.apply(config)
                session.flush()
            saved = config_orm.to_domain()

        logger.info("Configuration stored for match %s", data.match_id)
        return saved

    def assign_referees(self, match_id: int, **referees: Optional[int]) -> dict[str, Optional[int]]:
        """Set the referee panel of a match.

        Args:
            match_id: Match ID
            **referees: Participant IDs by role (cr, j1, j2, j3, rj, ta)

        Returns:
            Dictionary of role to participant ID
        """
        unknown = set(referees) - set(REFEREE_ROLES)
        if unknown:
            raise InvalidInputError(f"Unknown referee roles: {', '.join(sorted(unknown))}")

        with self.db.transaction() as session:
            load_match(session, match_id)
            assignment = AssignmentRepository(session).save_referees(match_id, referees)
            return {role: getattr(assignment, f"ref_{role}_id") for role in REFEREE_ROLES}

    def assign_equipment(
        self,
        match_id: int,
        competitor_id: int,
        chest_sensor_id: str,
        head_sensor_id: str,
        device_type: Optional[str] = None,
    ) -> None:
        """Set the PSS sensors worn by a competitor of the match."""
        with self.db.transaction() as session:
            match = load_match(session, match_id).to_domain()
            if match.side_of(competitor_id) is None:
                raise InvalidInputError(f"Competitor {competitor_id} is not in match {match_id}")
            AssignmentRepository(session).save_equipment(
                match_id, competitor_id, chest_sensor_id, head_sensor_id, device_type
            )
