"""Outgoing telemetry for live displays."""

import logging
from typing import Protocol

from tkdmatch.models import Match, MatchAction

logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    """Receiver of match updates after they are committed."""

    def match_updated(self, match: Match) -> None:
        ...

    def action_recorded(self, action: MatchAction) -> None:
        ...


class LoggingTelemetry:
    """Telemetry sink writing updates to the log."""

    def match_updated(self, match: Match) -> None:
        state = match.state
        logger.info(
            "Match %s: %s/%s %d-%d (round %s %s)",
            match.id,
            state.schedule_status.value,
            state.result_status.value,
            state.home_score,
            state.away_score,
            state.round,
            state.round_time or "",
        )

    def action_recorded(self, action: MatchAction) -> None:
        logger.info("Match %s action #%s: %s", action.match_id, action.position, action.action.value)


class NullTelemetry:
    """Telemetry sink that drops everything."""

    def match_updated(self, match: Match) -> None:
        pass

    def action_recorded(self, action: MatchAction) -> None:
        pass
