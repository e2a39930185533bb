"""Medal awarding and medal table."""

import logging
from typing import Optional

from tkdmatch.exceptions import NotFoundError
from tkdmatch.models import (
    MEDAL_POSITIONS,
    Match,
    MedalTableRow,
    MedalType,
    MedalWinner,
    Phase,
)
from tkdmatch.storage import CompetitorRepository, EventRepository, MedalRepository

logger = logging.getLogger(__name__)


def medals_for_result(
    match: Match, winner_id: Optional[int], loser_id: Optional[int]
) -> list[MedalWinner]:
    """Medals earned by an official result.

    - Final: winner GOLD, loser SILVER
    - Bronze medal contest: winner BRONZE
    - Any other phase, or no winner: nothing

    Args:
        match: Match the result belongs to
        winner_id: Winning competitor
        loser_id: Losing competitor

    Returns:
        List of MedalWinner objects (not yet stored)
    """
    if winner_id is None:
        if match.phase in (Phase.FINAL, Phase.BRONZE_MEDAL_CONTEST):
            logger.warning("Official result of match %s has no winner, no medal awarded", match.id)
        return []

    awards = []
    if match.phase == Phase.FINAL:
        awards.append((winner_id, MedalType.GOLD))
        if loser_id is not None:
            awards.append((loser_id, MedalType.SILVER))
    elif match.phase == Phase.BRONZE_MEDAL_CONTEST:
        awards.append((winner_id, MedalType.BRONZE))

    return [
        MedalWinner(
            event_id=match.event_id,
            competitor_id=competitor_id,
            medal_type=medal_type,
            position=MEDAL_POSITIONS[medal_type],
        )
        for competitor_id, medal_type in awards
    ]


def award_medals(
    session, match: Match, winner_id: Optional[int], loser_id: Optional[int]
) -> list[MedalWinner]:
    """Store the medals of an official result inside the caller's transaction.

    A competitor who already holds a medal is skipped.

    Returns:
        List of MedalWinner objects actually created
    """
    medal_repo = MedalRepository(session)
    created = []
    for medal in medals_for_result(match, winner_id, loser_id):
        existing = medal_repo.get_by_competitor(medal.competitor_id)
        if existing is not None:
            logger.info(
                "Competitor %s already holds %s, skipping %s",
                medal.competitor_id,
                existing.medal_type,
                medal.medal_type.value,
            )
            continue
        created.append(medal_repo.create(medal).to_domain())
        logger.info(
            "Awarded %s to competitor %s (event %s)",
            medal.medal_type.value,
            medal.competitor_id,
            medal.event_id,
        )
    return created


def compute_medal_table(
    medals: list[MedalWinner], country_by_competitor: dict[int, str]
) -> list[MedalTableRow]:
    """Count medals per country.

    Sorted by gold, then silver, then bronze (descending), then country code.
    """
    rows: dict[str, MedalTableRow] = {}
    for medal in medals:
        country = country_by_competitor.get(medal.competitor_id)
        if country is None:
            logger.warning("No country for medal winner %s", medal.competitor_id)
            continue
        row = rows.setdefault(country, MedalTableRow(country=country))
        if medal.medal_type == MedalType.GOLD:
            row.gold += 1
        elif medal.medal_type == MedalType.SILVER:
            row.silver += 1
        else:
            row.bronze += 1

    return sorted(rows.values(), key=lambda r: (-r.gold, -r.silver, -r.bronze, r.country))


class MedalService:
    """Read side of medals."""

    def __init__(self, db_manager):
        self.db = db_manager

    def event_medals(self, event_id: int) -> list[MedalWinner]:
        """Medals of one event ordered by position."""
        with self.db.transaction() as session:
            if EventRepository(session).get_by_id(event_id) is None:
                raise NotFoundError("Event", event_id)
            return [m.to_domain() for m in MedalRepository(session).get_by_events([event_id])]

    def medal_table(self, competition_id: int) -> list[MedalTableRow]:
        """Medal table of every event of a competition."""
        with self.db.transaction() as session:
            events = EventRepository(session).get_by_competition(competition_id)
            medals = [
                m.to_domain()
                for m in MedalRepository(session).get_by_events([e.id for e in events])
            ]
            countries = CompetitorRepository(session).get_countries(
                [m.competitor_id for m in medals]
            )
        return compute_medal_table(medals, countries)
