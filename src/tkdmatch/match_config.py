"""Match configuration presets."""

from dataclasses import replace
from typing import Optional

from tkdmatch.models import MatchConfiguration, MatchRules
from tkdmatch.pss import MatchConfigData
from tkdmatch.validation import seconds_to_clock

KYORUGI = "TKW_K"


def default_configuration(discipline: str, division: Optional[str] = None) -> MatchConfiguration:
    """Build the default configuration of a new match.

    Kyorugi uses conventional rules, every other discipline best of 3.

    Division adjustments:
    - JUNIORS, CADETS: 01:30 rounds
    - KIDS: 2 rounds of 01:00
    - OLYMPIC: two video replays per side

    Args:
        discipline: Event discipline ("TKW_K", "TKW_P", ...)
        division: Optional event division

    Returns:
        MatchConfiguration
    """
    rules = MatchRules.CONVENTIONAL if discipline == KYORUGI else MatchRules.BESTOF3
    config = MatchConfiguration(rules=rules)

    division = (division or "").upper()
    if division in ("JUNIORS", "CADETS"):
        config.round_time = "01:30"
    elif division == "KIDS":
        config.rounds = 2
        config.round_time = "01:00"
    elif division == "OLYMPIC":
        config.home_video_replay_quota = 2
        config.away_video_replay_quota = 2

    return config


def configuration_from_pss(
    existing: Optional[MatchConfiguration],
    data: MatchConfigData,
    discipline: str = KYORUGI,
) -> MatchConfiguration:
    """Apply a match:config event on top of a configuration.

    Fields the device does not send keep their current value (or the
    discipline default when the match has no configuration yet).
    """
    base = existing if existing is not None else default_configuration(discipline)
    config = replace(
        base,
        rounds=data.number_of_rounds,
        round_time=seconds_to_clock(data.round_duration),
        rest_time=seconds_to_clock(data.break_duration),
        injury_time=seconds_to_clock(data.kye_shi_duration),
    )
    if data.golden_point_enabled is not None:
        config.golden_point_enabled = data.golden_point_enabled
    if data.golden_point_duration is not None:
        config.golden_point_time = seconds_to_clock(data.golden_point_duration)
    thresholds = data.sensor_thresholds or {}
    if "body" in thresholds:
        config.body_threshold = thresholds["body"]
    if "head" in thresholds:
        config.head_threshold = thresholds["head"]
    return config
