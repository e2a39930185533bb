"""Pool standings calculator with a configurable tie-break pipeline."""

import logging
import random
from itertools import groupby
from typing import Callable, Optional

from tkdmatch.models import (
    DEFAULT_TIE_BREAK,
    Pool,
    PoolMatchRecord,
    PoolStanding,
    ScheduleStatus,
    TieBreakCriterion,
)

logger = logging.getLogger(__name__)

# (home_id, away_id, home_score, away_score) of a counted match
ScoredMatch = tuple[int, int, int, int]


def collect_scored_matches(matches: list[PoolMatchRecord]) -> list[ScoredMatch]:
    """Keep finished matches that have an official result.

    Returns:
        List of (home_id, away_id, home_score, away_score) from the latest
        official result of each match
    """
    scored = []
    for match in matches:
        if match.schedule_status != ScheduleStatus.FINISHED:
            continue
        result = match.latest_official_result()
        if result is None:
            logger.debug("Match %s finished without official result, ignored", match.match_id)
            continue
        scored.append(
            (match.home_competitor_id, match.away_competitor_id, result.home_score, result.away_score)
        )
    return scored


def _mini_league_points(
    pool: Pool, subset: set[int], scored: list[ScoredMatch]
) -> dict[int, int]:
    """Standings points earned only in matches among `subset`."""
    points = {cid: 0 for cid in subset}
    for home_id, away_id, home_score, away_score in scored:
        if home_id not in subset or away_id not in subset:
            continue
        if home_score > away_score:
            points[home_id] += pool.points_for_win
            points[away_id] += pool.points_for_loss
        elif away_score > home_score:
            points[away_id] += pool.points_for_win
            points[home_id] += pool.points_for_loss
        else:
            points[home_id] += pool.points_for_draw
            points[away_id] += pool.points_for_draw
    return points


def _stage_key(
    criterion: TieBreakCriterion,
    tied: list[PoolStanding],
    pool: Pool,
    scored: list[ScoredMatch],
    draw: dict[int, float],
) -> Callable[[PoolStanding], float]:
    """Build the sort key of one tie-break stage for a tied subset (smaller is better)."""
    if criterion == TieBreakCriterion.POINTS_DIFFERENCE:
        return lambda s: -s.points_difference
    if criterion == TieBreakCriterion.POINTS_FOR:
        return lambda s: -s.points_for
    if criterion == TieBreakCriterion.POINTS_AGAINST:
        return lambda s: s.points_against
    if criterion == TieBreakCriterion.WINS:
        return lambda s: -s.wins
    if criterion == TieBreakCriterion.HEAD_TO_HEAD:
        mini = _mini_league_points(pool, {s.competitor_id for s in tied}, scored)
        return lambda s: -mini[s.competitor_id]
    if criterion == TieBreakCriterion.RANDOM:
        return lambda s: draw[s.competitor_id]
    raise ValueError(f"Unknown tie-break criterion: {criterion}")


def break_ties(
    tied: list[PoolStanding],
    criteria: list[TieBreakCriterion],
    pool: Pool,
    scored: list[ScoredMatch],
    draw: dict[int, float],
) -> list[PoolStanding]:
    """Order a tied subset with the remaining tie-break stages.

    Each stage only sees the competitors still tied after the earlier
    stages. Ties surviving every stage keep their incoming order.
    """
    if len(tied) <= 1 or not criteria:
        return tied

    key = _stage_key(criteria[0], tied, pool, scored, draw)
    ordered = sorted(tied, key=key)
    result = []
    for _, still_tied in groupby(ordered, key=key):
        result.extend(break_ties(list(still_tied), criteria[1:], pool, scored, draw))
    return result


def calculate_standings(
    pool: Pool,
    competitor_ids: list[int],
    matches: list[PoolMatchRecord],
    criteria: Optional[list[TieBreakCriterion]] = None,
) -> list[PoolStanding]:
    """Calculate pool standings from scratch.

    Scoring:
    - Only finished matches with an official result count
    - Win/draw/loss by comparing the official scores
    - Standings points from the pool's win/draw/loss values

    Args:
        pool: Pool with its points and qualifying configuration
        competitor_ids: Pool members in membership order
        matches: Pool matches with their results
        criteria: Tie-break stages (defaults to the pool's, then
            POINTS_DIFFERENCE, POINTS_FOR)

    Returns:
        List of PoolStanding objects sorted by rank (1 = best)
    """
    if criteria is None:
        criteria = pool.tie_break_criteria or list(DEFAULT_TIE_BREAK)

    standings = {
        cid: PoolStanding(competitor_id=cid, pool_id=pool.id) for cid in competitor_ids
    }
    scored = collect_scored_matches(matches)

    for home_id, away_id, home_score, away_score in scored:
        for own_id, own_score, other_score in (
            (home_id, home_score, away_score),
            (away_id, away_score, home_score),
        ):
            standing = standings.get(own_id)
            if standing is None:
                logger.warning("Competitor %s is not a member of pool %s", own_id, pool.id)
                continue
            standing.matches_played += 1
            standing.points_for += own_score
            standing.points_against += other_score
            if own_score > other_score:
                standing.wins += 1
                standing.total_points += pool.points_for_win
            elif own_score < other_score:
                standing.losses += 1
                standing.total_points += pool.points_for_loss
            else:
                standing.draws += 1
                standing.total_points += pool.points_for_draw

    for standing in standings.values():
        standing.points_difference = standing.points_for - standing.points_against

    # Reproducible draw for the RANDOM stage
    rng = random.Random(pool.id)
    draw = {cid: rng.random() for cid in sorted(competitor_ids)}

    # Membership order is the base order, sorted() keeps it for full ties
    by_points = sorted(standings.values(), key=lambda s: -s.total_points)
    final_standings = []
    for _, group in groupby(by_points, key=lambda s: s.total_points):
        final_standings.extend(break_ties(list(group), list(criteria), pool, scored, draw))

    for rank, standing in enumerate(final_standings, start=1):
        standing.rank = rank
        standing.qualified = rank <= pool.qualifying_places

    return final_standings
