"""Pool round-robin pairing generator."""

import logging
from typing import Optional

from tkdmatch.exceptions import InvalidInputError
from tkdmatch.models import Competitor

logger = logging.getLogger(__name__)


def generate_round_robin_fixtures(pool_size: int) -> list[tuple[int, int]]:
    """Generate every pairing of a pool in index order.

    For 4 competitors:
        (1,2), (1,3), (1,4), (2,3), (2,4), (3,4)

    Args:
        pool_size: Number of competitors in the pool

    Returns:
        List of (competitor_num1, competitor_num2) tuples (1-indexed)
    """
    if pool_size < 2:
        raise InvalidInputError(f"Pool size must be at least 2, got {pool_size}")

    fixtures = []
    for i in range(1, pool_size + 1):
        for j in range(i + 1, pool_size + 1):
            fixtures.append((i, j))
    return fixtures


def cap_fixtures(
    fixtures: list[tuple[int, int]], matches_per_athlete: int
) -> list[tuple[int, int]]:
    """Keep a fixture only while neither side has reached the cap.

    Greedy single pass in fixture order. This is an approximation: some
    competitors may end below the cap even when a schedule reaching it
    exists.

    Examples:
        >>> cap_fixtures([(1, 2), (1, 3), (1, 4), (2, 3), (2, 4), (3, 4)], 1)
        [(1, 2), (3, 4)]
    """
    played: dict[int, int] = {}
    kept = []
    for a, b in fixtures:
        if played.get(a, 0) >= matches_per_athlete or played.get(b, 0) >= matches_per_athlete:
            continue
        kept.append((a, b))
        played[a] = played.get(a, 0) + 1
        played[b] = played.get(b, 0) + 1
    return kept


def generate_round_robin_pairings(
    competitors: list[Competitor],
    matches_per_athlete: Optional[int] = None,
) -> list[tuple[Competitor, Competitor]]:
    """Pair the competitors of a pool.

    Args:
        competitors: Pool competitors in membership order
        matches_per_athlete: Optional cap on matches per competitor

    Returns:
        List of (home, away) competitor tuples in match order

    Raises:
        InvalidInputError: With fewer than 2 competitors or a cap below 1
    """
    if len(competitors) < 2:
        raise InvalidInputError(
            f"Need at least 2 competitors for pool matches, got {len(competitors)}"
        )
    if matches_per_athlete is not None and matches_per_athlete < 1:
        raise InvalidInputError(
            f"matches_per_athlete must be at least 1, got {matches_per_athlete}"
        )

    fixtures = generate_round_robin_fixtures(len(competitors))
    if matches_per_athlete is not None:
        fixtures = cap_fixtures(fixtures, matches_per_athlete)
        logger.debug(
            "Cap of %d matches per athlete keeps %d fixtures",
            matches_per_athlete,
            len(fixtures),
        )

    return [(competitors[a - 1], competitors[b - 1]) for a, b in fixtures]


def pool_match_number(pool_id: int, sequence: int) -> str:
    """Build a pool match number ("P0012-03")."""
    return f"P{pool_id:04d}-{sequence:02d}"
