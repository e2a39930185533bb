"""Validation rules for taekwondo match input.

This module checks clock values and result payloads before they reach the
state machine. Rules return (is_valid, error_message) tuples; the
`ensure_*` helpers raise InvalidInputError for service code.
"""

import re
from typing import Optional

from tkdmatch.exceptions import InvalidInputError
from tkdmatch.models import MatchResult, ResultType

_CLOCK_RE = re.compile(r"^(\d{2}):(\d{2})$")

# Consistent (home_type, away_type) combinations
_COMPLEMENTARY_TYPES = {
    (ResultType.WIN, ResultType.LOSS),
    (ResultType.LOSS, ResultType.WIN),
    (ResultType.TIE, ResultType.TIE),
}


def validate_round_time(value: str) -> tuple[bool, str]:
    """Validate an "MM:SS" clock value.

    Examples:
        >>> validate_round_time("02:00")
        (True, '')
        >>> validate_round_time("1:30")
        (False, "Clock value must be MM:SS, got '1:30'")
        >>> validate_round_time("01:75")
        (False, "Seconds must be below 60, got '01:75'")
    """
    match = _CLOCK_RE.match(value or "")
    if not match:
        return False, f"Clock value must be MM:SS, got '{value}'"
    if int(match.group(2)) >= 60:
        return False, f"Seconds must be below 60, got '{value}'"
    return True, ""


def seconds_to_clock(seconds: int) -> str:
    """Format a duration in seconds as "MM:SS".

    Examples:
        >>> seconds_to_clock(90)
        '01:30'
    """
    if seconds < 0:
        raise InvalidInputError(f"Duration cannot be negative, got {seconds}")
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


def validate_result(
    result: MatchResult, home_competitor_id: int, away_competitor_id: int
) -> tuple[bool, str]:
    """Validate a result payload against its match.

    Rules:
    - Scores and penalties cannot be negative
    - home_type and away_type, when both given, must agree (WIN/LOSS, TIE/TIE)
    - winner_id/loser_id, when given, must be the match's competitors

    Args:
        result: Submitted result
        home_competitor_id: Home competitor of the match
        away_competitor_id: Away competitor of the match

    Returns:
        Tuple of (is_valid, error_message)
    """
    for name in ("home_score", "away_score", "home_penalties", "away_penalties"):
        if getattr(result, name) < 0:
            return False, f"{name} cannot be negative"

    if result.home_type is not None and result.away_type is not None:
        if (result.home_type, result.away_type) not in _COMPLEMENTARY_TYPES:
            return (
                False,
                f"Inconsistent result types: home {result.home_type.value}, away {result.away_type.value}",
            )

    participants = (home_competitor_id, away_competitor_id)
    if result.winner_id is not None and result.winner_id not in participants:
        return False, "Winner must be one of the two competitors of the match"
    if result.loser_id is not None and result.loser_id not in participants:
        return False, "Loser must be one of the two competitors of the match"
    if result.winner_id is not None and result.winner_id == result.loser_id:
        return False, "Winner and loser must be different competitors"

    return True, ""


def validate_result_position(position: Optional[int]) -> tuple[bool, str]:
    """Validate an optional caller-supplied result position."""
    if position is not None and position < 1:
        return False, f"Result position must be positive, got {position}"
    return True, ""


def ensure_valid(check: tuple[bool, str]) -> None:
    """Raise InvalidInputError for a failed rule."""
    is_valid, error_msg = check
    if not is_valid:
        raise InvalidInputError(error_msg)
