"""Live scoring ingest.

Feeds PSS transport events into the match service. The ingest never
raises: every event ends as recorded, duplicate or rejected, and rejected
events are logged with their raw payload so they can be replayed.
"""

import json
import logging
from enum import Enum
from typing import Any, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from tkdmatch.exceptions import DuplicateEventError, TkdMatchError
from tkdmatch.models import (
    ActionSource,
    ActionType,
    MatchAction,
    MatchResult,
    ResultStatus,
    Side,
    VictoryType,
)
from tkdmatch.pss import (
    MatchActionData,
    MatchConfigData,
    MatchStartData,
    MatchStopData,
    PssEventName,
    map_device_action,
    parse_pss_message,
)

logger = logging.getLogger(__name__)


class IngestOutcome(str, Enum):
    """Outcome of one transport event."""

    RECORDED = "RECORDED"
    DUPLICATE = "DUPLICATE"
    REJECTED = "REJECTED"


class ScoringIngest:
    """Entry point for PSS events, whatever the transport."""

    def __init__(self, match_service):
        self.matches = match_service

    def ingest(self, raw: Union[str, bytes, dict[str, Any]]) -> IngestOutcome:
        """Process one transport event.

        Args:
            raw: JSON text or decoded message

        Returns:
            IngestOutcome
        """
        try:
            message = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            event, data = parse_pss_message(message)
            if event == PssEventName.MATCH_START:
                self._on_start(data)
            elif event == PssEventName.MATCH_STOP:
                self._on_stop(data)
            elif event == PssEventName.MATCH_ACTION:
                self._on_action(data)
            else:
                self._on_config(data)
        except DuplicateEventError as e:
            logger.warning("Duplicate PSS event ignored: %s", e)
            return IngestOutcome.DUPLICATE
        except (TkdMatchError, ValueError) as e:
            logger.error("PSS event rejected: %s | raw=%s", e, _raw_text(raw))
            return IngestOutcome.REJECTED
        except SQLAlchemyError as e:
            logger.error("PSS event not stored: %s | raw=%s", e, _raw_text(raw))
            return IngestOutcome.REJECTED
        return IngestOutcome.RECORDED

    def _on_start(self, data: MatchStartData) -> None:
        self.matches.record_action(
            data.match_id,
            MatchAction(
                action=ActionType.MATCH_START,
                source=ActionSource.CR,
                timestamp=data.timestamp,
            ),
        )

    def _on_stop(self, data: MatchStopData) -> None:
        self.matches.record_action(
            data.match_id,
            MatchAction(
                action=ActionType.MATCH_END,
                source=ActionSource.CR,
                timestamp=data.timestamp,
            ),
        )
        self.matches.submit_result(
            data.match_id,
            MatchResult(
                status=ResultStatus.UNCONFIRMED,
                home_score=data.home_score,
                away_score=data.away_score,
                decision=_decision(data.result_type),
            ),
        )

    def _on_action(self, data: MatchActionData) -> None:
        match = self.matches.get_match(data.match_id)
        side = match.side_of(data.competitor_id)
        if side is None:
            raise ValueError(f"Competitor {data.competitor_id} is not in match {data.match_id}")

        action_type = map_device_action(data.action_type, side, data.points)
        action = MatchAction(
            action=action_type,
            round=data.round_number,
            round_time=data.round_time,
            source=ActionSource.CR,
            competitor_id=data.competitor_id,
            timestamp=data.timestamp,
            description=data.action_type,
        )

        if action_type.value.startswith("PENALTY_"):
            penalties = data.points if data.points is not None else 1
            if side == Side.HOME:
                action.home_penalties = penalties
            else:
                action.away_penalties = penalties
        else:
            points = data.points or 0
            if side == Side.HOME:
                action.home_score = points
            else:
                action.away_score = points

        self.matches.record_action(data.match_id, action)

    def _on_config(self, data: MatchConfigData) -> None:
        self.matches.update_configuration_from_pss(data)


def _decision(result_type: Optional[str]) -> VictoryType:
    """Victory type of a match:stop event, final score by default."""
    if result_type:
        try:
            return VictoryType(result_type.upper())
        except ValueError:
            logger.warning("Unknown result type '%s', using PTF", result_type)
    return VictoryType.PTF


def _raw_text(raw: Any) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        return raw
    try:
        return json.dumps(raw, default=str)
    except (TypeError, ValueError):
        return repr(raw)
