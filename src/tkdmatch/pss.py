"""Protector Scoring System (PSS) transport schemas and action mapping.

The PSS sends JSON messages of the form ``{"event": ..., "data": {...}}``.
Field names on the wire are camelCase; the models expose snake_case.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tkdmatch.exceptions import ActionMappingError, InvalidInputError
from tkdmatch.models import ActionType, Side, naive_utc

logger = logging.getLogger(__name__)


class PssEventName(str, Enum):
    """Transport event names."""

    MATCH_START = "match:start"
    MATCH_STOP = "match:stop"
    MATCH_ACTION = "match:action"
    MATCH_CONFIG = "match:config"


class DeviceActionCode(str, Enum):
    """Action codes emitted by the scoring device."""

    PUNCH = "punch"
    KICK = "kick"
    TKICK = "tkick"  # Turning kick to the trunk
    SKICK = "skick"  # Spinning kick
    HEAD = "head"
    THEAD = "thead"  # Turning kick to the head
    GAMJEOM = "gamjeom"  # Penalty


# ============================================================================
# Transport schemas
# ============================================================================


class PssData(BaseModel):
    """Fields shared by every PSS event."""

    model_config = ConfigDict(populate_by_name=True)

    match_id: int = Field(alias="matchId")
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def to_naive_utc(cls, value: datetime) -> datetime:
        """Store every timestamp as naive UTC."""
        return naive_utc(value)


class MatchStartData(PssData):
    """Data of a match:start event."""

    pass


class MatchStopData(PssData):
    """Data of a match:stop event."""

    home_score: int = Field(alias="homeScore", ge=0)
    away_score: int = Field(alias="awayScore", ge=0)
    result_type: Optional[str] = Field(default=None, alias="resultType")


class MatchActionData(PssData):
    """Data of a match:action event."""

    action_type: str = Field(alias="actionType")
    competitor_id: int = Field(alias="competitorId")
    round_number: int = Field(alias="roundNumber", ge=0)
    points: Optional[int] = None
    round_time: Optional[str] = Field(default=None, alias="roundTime")


class MatchConfigData(PssData):
    """Data of a match:config event. Durations are in seconds."""

    round_duration: int = Field(alias="roundDuration", ge=0)
    number_of_rounds: int = Field(alias="numberOfRounds", ge=1)
    break_duration: int = Field(alias="breakDuration", ge=0)
    kye_shi_duration: int = Field(alias="kyeShiDuration", ge=0)
    golden_point_enabled: Optional[bool] = Field(default=None, alias="goldenPointEnabled")
    golden_point_duration: Optional[int] = Field(default=None, alias="goldenPointDuration", ge=0)
    sensor_thresholds: Optional[dict[str, int]] = Field(default=None, alias="sensorThresholds")


PssEventData = Union[MatchStartData, MatchStopData, MatchActionData, MatchConfigData]

DATA_MODELS = {
    PssEventName.MATCH_START: MatchStartData,
    PssEventName.MATCH_STOP: MatchStopData,
    PssEventName.MATCH_ACTION: MatchActionData,
    PssEventName.MATCH_CONFIG: MatchConfigData,
}


class PssMessage(BaseModel):
    """Envelope of a PSS message."""

    event: PssEventName
    data: dict[str, Any]


def parse_pss_message(raw: Any) -> tuple[PssEventName, PssEventData]:
    """Validate a decoded PSS message.

    Args:
        raw: Decoded JSON object

    Returns:
        Tuple of (event name, typed event data)

    Raises:
        InvalidInputError: If the envelope or the data does not validate
    """
    try:
        envelope = PssMessage.model_validate(raw)
        data = DATA_MODELS[envelope.event].model_validate(envelope.data)
    except ValidationError as e:
        raise InvalidInputError(f"Invalid PSS message: {e}")
    return envelope.event, data


# ============================================================================
# Device action mapping
# ============================================================================


def _score_action(side: Side, technique: str) -> ActionType:
    return ActionType(f"SCORE_{side.value}_{technique}")


_TECHNIQUES = {
    DeviceActionCode.PUNCH: "PUNCH",
    DeviceActionCode.KICK: "KICK",
    DeviceActionCode.TKICK: "TKICK",
    DeviceActionCode.SKICK: "SKICK",
    DeviceActionCode.HEAD: "HEAD",
    DeviceActionCode.THEAD: "THEAD",
}


def map_device_action(code: str, side: Side, points: Optional[int] = None) -> ActionType:
    """Map a device action code to a canonical action.

    Every DeviceActionCode has a mapping. Unknown codes that carry points
    fall back to ADJUST_SCORE so the score stays right; unknown codes
    without points are rejected.

    Args:
        code: Raw device code ("kick", "gamjeom", ...)
        side: Side of the competitor the action belongs to
        points: Points carried by the event, if any

    Returns:
        Canonical ActionType

    Raises:
        ActionMappingError: Unknown code without points
    """
    try:
        device_code = DeviceActionCode(code.lower())
    except ValueError:
        if points is None:
            raise ActionMappingError(code)
        logger.warning("Unknown PSS action '%s', recorded as ADJUST_SCORE", code)
        return ActionType.ADJUST_SCORE

    if device_code == DeviceActionCode.GAMJEOM:
        return ActionType(f"PENALTY_{side.value}")
    return _score_action(side, _TECHNIQUES[device_code])
