"""Pool operations: membership, round-robin match generation, standings."""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from tkdmatch.exceptions import ConflictStateError, InvalidInputError, NotFoundError
from tkdmatch.match_service import create_match_with_configuration, delete_match_rows
from tkdmatch.models import (
    Match,
    Phase,
    Pool,
    PoolMatchRecord,
    PoolStanding,
    ScheduleStatus,
    TieBreakCriterion,
)
from tkdmatch.pool_builder import generate_round_robin_pairings, pool_match_number
from tkdmatch.standings import calculate_standings
from tkdmatch.storage import (
    CompetitorRepository,
    EventRepository,
    PoolRepository,
    ResultRepository,
    StandingRepository,
)

logger = logging.getLogger(__name__)

# Pool matches carry a generic phase tag
POOL_PHASE = Phase.ROUND_OF_16

_LOCKED_STATUSES = (ScheduleStatus.RUNNING.value, ScheduleStatus.FINISHED.value)


def _load_pool(session, pool_id: int):
    pool_orm = PoolRepository(session).get_by_id(pool_id)
    if pool_orm is None:
        raise NotFoundError("Pool", pool_id)
    return pool_orm


class PoolService:
    """Transactional pool operations."""

    def __init__(
        self,
        db_manager,
        default_tie_break: Optional[list[TieBreakCriterion]] = None,
    ):
        self.db = db_manager
        self.default_tie_break = default_tie_break

    def create_pool(
        self,
        event_id: int,
        name: str,
        max_athletes: int,
        matches_per_athlete: Optional[int] = None,
        points_for_win: int = 3,
        points_for_draw: int = 1,
        points_for_loss: int = 0,
        qualifying_places: int = 2,
        tie_break_criteria: Optional[list[TieBreakCriterion]] = None,
    ) -> Pool:
        """Create an empty pool in an event.

        Raises:
            NotFoundError: Unknown event
            InvalidInputError: Pool size or qualifying places out of range
        """
        if max_athletes < 2:
            raise InvalidInputError(f"A pool needs room for at least 2 athletes, got {max_athletes}")
        if not 0 <= qualifying_places <= max_athletes:
            raise InvalidInputError(
                f"qualifying_places must be between 0 and {max_athletes}, got {qualifying_places}"
            )

        pool = Pool(
            id=0,
            event_id=event_id,
            name=name,
            max_athletes=max_athletes,
            matches_per_athlete=matches_per_athlete,
            points_for_win=points_for_win,
            points_for_draw=points_for_draw,
            points_for_loss=points_for_loss,
            qualifying_places=qualifying_places,
        )
        criteria = tie_break_criteria or self.default_tie_break
        if criteria:
            pool.tie_break_criteria = list(criteria)

        with self.db.transaction() as session:
            if EventRepository(session).get_by_id(event_id) is None:
                raise NotFoundError("Event", event_id)
            created = PoolRepository(session).create(pool).to_domain()

        logger.info("Pool %s '%s' created in event %s", created.id, name, event_id)
        return created

    def get_pool(self, pool_id: int) -> Pool:
        """Get a pool."""
        with self.db.transaction() as session:
            return _load_pool(session, pool_id).to_domain()

    def add_competitor(self, pool_id: int, competitor_id: int) -> PoolStanding:
        """Add a competitor to a pool together with a zeroed standing.

        Returns:
            The new PoolStanding

        Raises:
            NotFoundError: Unknown pool or competitor
            InvalidInputError: Competitor entered in another event
            ConflictStateError: Already a member, or the pool is full
        """
        with self.db.transaction() as session:
            pool_orm = _load_pool(session, pool_id)
            competitor = CompetitorRepository(session).get_by_id(competitor_id)
            if competitor is None:
                raise NotFoundError("Competitor", competitor_id)
            if competitor.event_id != pool_orm.event_id:
                raise InvalidInputError(
                    f"Competitor {competitor_id} is not entered in event {pool_orm.event_id}"
                )

            pool_repo = PoolRepository(session)
            if pool_repo.get_membership(pool_id, competitor_id) is not None:
                raise ConflictStateError(f"Competitor {competitor_id} is already in pool {pool_id}")
            if pool_repo.count_competitors(pool_id) >= pool_orm.max_athletes:
                raise ConflictStateError(f"Pool {pool_id} is full ({pool_orm.max_athletes} athletes)")

            pool_repo.add_competitor(pool_id, competitor_id)
            standing = StandingRepository(session).create_initial(pool_id, competitor_id).to_domain()

        logger.info("Competitor %s added to pool %s", competitor_id, pool_id)
        return standing

    def remove_competitor(self, pool_id: int, competitor_id: int) -> int:
        """Remove a competitor from a pool.

        The competitor's pool matches that are neither running nor finished
        are deleted along with the standing and the membership.

        Returns:
            Number of deleted matches

        Raises:
            NotFoundError: Unknown pool or membership
            ConflictStateError: The competitor has running or finished pool matches
        """
        with self.db.transaction() as session:
            _load_pool(session, pool_id)
            pool_repo = PoolRepository(session)
            if pool_repo.get_membership(pool_id, competitor_id) is None:
                raise NotFoundError("Pool competitor", f"{pool_id}/{competitor_id}")

            matches = pool_repo.get_competitor_matches(pool_id, competitor_id)
            locked = [m for m in matches if m.schedule_status in _LOCKED_STATUSES]
            if locked:
                raise ConflictStateError(
                    f"Competitor {competitor_id} has {len(locked)} running or finished "
                    f"matches in pool {pool_id}"
                )

            for match_orm in matches:
                delete_match_rows(session, match_orm)
            StandingRepository(session).delete(pool_id, competitor_id)
            pool_repo.remove_competitor(pool_id, competitor_id)

        logger.info(
            "Competitor %s removed from pool %s (%d matches deleted)",
            competitor_id,
            pool_id,
            len(matches),
        )
        return len(matches)

    def generate_pool_matches(
        self, pool_id: int, session_id: Optional[int] = None, mat: int = 1
    ) -> list[Match]:
        """Create the round-robin matches of a pool.

        Returns:
            List of created Match objects in match order

        Raises:
            NotFoundError: Unknown pool or session
            ConflictStateError: The pool already has matches (nothing created)
            InvalidInputError: Fewer than 2 competitors
        """
        with self.db.transaction() as session:
            pool_orm = _load_pool(session, pool_id)
            pool_repo = PoolRepository(session)
            if pool_repo.count_matches(pool_id) > 0:
                raise ConflictStateError(f"Pool {pool_id} already has matches")

            event_repo = EventRepository(session)
            if session_id is not None and event_repo.get_session_by_id(session_id) is None:
                raise NotFoundError("Session", session_id)
            event = event_repo.get_by_id(pool_orm.event_id)

            competitors = [c.to_domain() for c in pool_repo.get_competitors(pool_id)]
            pairings = generate_round_robin_pairings(competitors, pool_orm.matches_per_athlete)

            created = []
            try:
                for order, (home, away) in enumerate(pairings, start=1):
                    match_orm = create_match_with_configuration(
                        session,
                        event,
                        home_competitor_id=home.id,
                        away_competitor_id=away.id,
                        phase=POOL_PHASE,
                        number=pool_match_number(pool_id, order),
                        mat=mat,
                        session_id=session_id,
                    )
                    pool_repo.link_match(pool_id, match_orm.id, order)
                    created.append(match_orm.to_domain())
            except IntegrityError as e:
                raise ConflictStateError(f"Pool {pool_id} already has matches") from e

        logger.info("Pool %s: %d matches created", pool_id, len(created))
        return created

    def recompute_standings(self, pool_id: int) -> list[PoolStanding]:
        """Recompute and store the standings of a pool from its official results.

        Returns:
            List of PoolStanding objects in rank order
        """
        with self.db.transaction() as session:
            pool = _load_pool(session, pool_id).to_domain()
            pool_repo = PoolRepository(session)
            result_repo = ResultRepository(session)

            competitor_ids = [c.id for c in pool_repo.get_competitors(pool_id)]
            records = [
                PoolMatchRecord(
                    match_id=m.id,
                    home_competitor_id=m.home_competitor_id,
                    away_competitor_id=m.away_competitor_id,
                    schedule_status=ScheduleStatus(m.schedule_status),
                    results=[r.to_domain() for r in result_repo.get_by_match(m.id)],
                )
                for m in pool_repo.get_matches(pool_id)
            ]

            standings = calculate_standings(pool, competitor_ids, records)
            standing_repo = StandingRepository(session)
            for standing in standings:
                standing_repo.save(standing)

        logger.info("Pool %s standings recomputed (%d competitors)", pool_id, len(standings))
        return standings

    def get_standings(self, pool_id: int) -> list[PoolStanding]:
        """Get the stored standings of a pool in rank order."""
        with self.db.transaction() as session:
            _load_pool(session, pool_id)
            return [s.to_domain() for s in StandingRepository(session).get_by_pool(pool_id)]
