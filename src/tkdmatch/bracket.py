"""Single-elimination bracket generator."""

import logging
import math
from typing import Optional

from tkdmatch.exceptions import InvalidInputError
from tkdmatch.models import BracketPairing, BracketSlot, Competitor, Phase

logger = logging.getLogger(__name__)

MAX_BRACKET_SIZE = 128

# First-round phase by bracket size
PHASE_BY_SIZE = {
    2: Phase.FINAL,
    4: Phase.SEMIFINAL,
    8: Phase.QUARTERFINAL,
    16: Phase.ROUND_OF_16,
    32: Phase.ROUND_OF_32,
    64: Phase.ROUND_OF_64,
    128: Phase.ROUND_OF_128,
}

NEXT_PHASE = {
    Phase.ROUND_OF_128: Phase.ROUND_OF_64,
    Phase.ROUND_OF_64: Phase.ROUND_OF_32,
    Phase.ROUND_OF_32: Phase.ROUND_OF_16,
    Phase.ROUND_OF_16: Phase.QUARTERFINAL,
    Phase.QUARTERFINAL: Phase.SEMIFINAL,
    Phase.SEMIFINAL: Phase.FINAL,
}


def next_power_of_2(n: int) -> int:
    """Return the next power of 2 >= n.

    Examples:
        >>> next_power_of_2(5)
        8
        >>> next_power_of_2(8)
        8
        >>> next_power_of_2(15)
        16
    """
    if n <= 0:
        return 1
    return 2 ** math.ceil(math.log2(n))


def get_phase_for_size(bracket_size: int) -> Phase:
    """Get the first-round Phase for a given bracket size.

    Args:
        bracket_size: Power of 2 between 2 and 128

    Returns:
        Phase of the first round

    Raises:
        InvalidInputError: If no phase exists for the size
    """
    phase = PHASE_BY_SIZE.get(bracket_size)
    if phase is None:
        raise InvalidInputError(
            f"No bracket phase for size {bracket_size} (max {MAX_BRACKET_SIZE})"
        )
    return phase


def sort_by_seed(competitors: list[Competitor]) -> list[Competitor]:
    """Sort competitors by seed ascending, unseeded last.

    The sort is stable, so equal or missing seeds keep their input order.
    """
    return sorted(competitors, key=lambda c: (c.seed is None, c.seed or 0))


def position_reference(phase: Phase, index: int) -> str:
    """Build the bracket position reference of a 0-based pairing ("QF-1")."""
    return f"{phase.value}-{index + 1}"


def generate_bracket_pairings(
    competitors: list[Competitor],
) -> tuple[Phase, int, list[BracketPairing]]:
    """Pair seeded competitors for the first round of a knockout bracket.

    Pairing i joins bracket index i with index bracket_size - 1 - i, so the
    strongest seed meets the weakest slot. Indices at or beyond the
    competitor count are byes.

    Args:
        competitors: Competitors of one event, in registration order

    Returns:
        Tuple of (first-round phase, bracket size, pairings)

    Raises:
        InvalidInputError: With fewer than 2 or more than 128 competitors
    """
    count = len(competitors)
    if count < 2:
        raise InvalidInputError(f"Need at least 2 competitors for a bracket, got {count}")
    if count > MAX_BRACKET_SIZE:
        raise InvalidInputError(
            f"Too many competitors for a bracket: {count} (max {MAX_BRACKET_SIZE})"
        )

    ordered = sort_by_seed(competitors)
    bracket_size = next_power_of_2(count)
    phase = get_phase_for_size(bracket_size)

    def at(index: int) -> Optional[Competitor]:
        return ordered[index] if index < count else None

    pairings = []
    for i in range(bracket_size // 2):
        away_index = bracket_size - 1 - i
        pairings.append(
            BracketPairing(
                index=i,
                home_index=i,
                away_index=away_index,
                home=at(i),
                away=at(away_index),
            )
        )

    logger.debug(
        "Bracket for %d competitors: size %d, phase %s, %d playable pairings",
        count,
        bracket_size,
        phase.value,
        sum(1 for p in pairings if p.is_playable),
    )
    return phase, bracket_size, pairings


def build_slot_graph(phase: Phase, pairings: list[BracketPairing]) -> list[BracketSlot]:
    """Model the first round as explicit slots linked to the next round.

    Slots 2k and 2k+1 feed slot k of the next phase. A slot whose pairing is
    a bye carries its lone competitor as a pending advance; nothing is moved
    until `advance_byes` is called.

    Args:
        phase: First-round phase
        pairings: Pairings from `generate_bracket_pairings`

    Returns:
        List of BracketSlot objects in pairing order
    """
    next_phase = NEXT_PHASE.get(phase)
    slots = []
    for pairing in pairings:
        next_reference = (
            position_reference(next_phase, pairing.index // 2) if next_phase else None
        )
        pending = None
        if pairing.is_bye:
            pending = pairing.home if pairing.home is not None else pairing.away
        slots.append(
            BracketSlot(
                position_reference=position_reference(phase, pairing.index),
                pairing=pairing,
                next_reference=next_reference,
                pending_advance=pending,
            )
        )
    return slots


def advance_byes(slots: list[BracketSlot]) -> list[tuple[str, Competitor]]:
    """Resolve pending bye advancements.

    Opt-in step: bracket generation never calls it.

    Args:
        slots: Slot graph from `build_slot_graph`

    Returns:
        List of (next-round position reference, advancing competitor), in
        slot order. Byes in a final have nowhere to advance and are skipped.
    """
    advancements = []
    for slot in slots:
        if slot.pending_advance is None or slot.next_reference is None:
            continue
        logger.info(
            "Walkover: %s advances from %s to %s",
            slot.pending_advance.print_name,
            slot.position_reference,
            slot.next_reference,
        )
        advancements.append((slot.next_reference, slot.pending_advance))
        slot.pending_advance = None
    return advancements
