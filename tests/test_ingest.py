"""Tests for the live scoring ingest."""

import json

import pytest

from tkdmatch.ingest import IngestOutcome, ScoringIngest
from tkdmatch.match_service import MatchService
from tkdmatch.models import ActionType, ResultStatus, ScheduleStatus, VictoryType


@pytest.fixture
def service(db):
    return MatchService(db)


@pytest.fixture
def ingest(service):
    return ScoringIngest(service)


@pytest.fixture
def match(service, make_event):
    event_id, _ = make_event(count=2)
    return service.generate_bracket(event_id)[0]


def message(event, match_id, timestamp, **data):
    return {"event": event, "data": {"matchId": match_id, "timestamp": timestamp, **data}}


def action(match_id, competitor_id, code, timestamp, points=None):
    data = {"actionType": code, "competitorId": competitor_id, "roundNumber": 1, "roundTime": "01:30"}
    if points is not None:
        data["points"] = points
    return message("match:action", match_id, timestamp, **data)


def test_full_match_flow(ingest, service, match):
    home, away = match.home_competitor_id, match.away_competitor_id

    assert ingest.ingest(message("match:start", match.id, "2026-05-01T10:00:00Z")) == IngestOutcome.RECORDED
    assert ingest.ingest(action(match.id, home, "head", "2026-05-01T10:00:20Z", points=3)) == IngestOutcome.RECORDED
    assert ingest.ingest(action(match.id, away, "gamjeom", "2026-05-01T10:00:40Z")) == IngestOutcome.RECORDED

    current = service.get_match(match.id)
    assert current.state.home_score == 3
    assert current.state.away_penalties == 1
    assert current.state.schedule_status == ScheduleStatus.RUNNING

    stop = message("match:stop", match.id, "2026-05-01T10:06:00Z", homeScore=12, awayScore=4, resultType="ptf")
    assert ingest.ingest(json.dumps(stop)) == IngestOutcome.RECORDED

    finished = service.get_match(match.id)
    assert finished.state.schedule_status == ScheduleStatus.FINISHED
    assert finished.state.result_status == ResultStatus.UNCONFIRMED
    assert (finished.state.home_score, finished.state.away_score) == (12, 4)

    result = service.get_results(match.id)[0]
    assert result.status == ResultStatus.UNCONFIRMED
    assert result.decision == VictoryType.PTF
    assert result.winner_id == home

    actions = service.get_actions(match.id)
    assert [a.action for a in actions] == [
        ActionType.MATCH_START,
        ActionType.SCORE_HOME_HEAD,
        ActionType.PENALTY_AWAY,
        ActionType.MATCH_END,
    ]
    assert actions[1].description == "head"


def test_redelivered_action_is_duplicate(ingest, service, match):
    home = match.home_competitor_id
    ingest.ingest(message("match:start", match.id, "2026-05-01T10:00:00Z"))

    first = action(match.id, home, "kick", "2026-05-01T10:00:10.000Z", points=2)
    again = action(match.id, home, "kick", "2026-05-01T10:00:10.300Z", points=2)

    assert ingest.ingest(first) == IngestOutcome.RECORDED
    assert ingest.ingest(again) == IngestOutcome.DUPLICATE
    assert service.get_match(match.id).state.home_score == 2


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        b'{"event": "match:pause", "data": {}}',
        {"event": "match:start", "data": {"matchId": 999, "timestamp": "2026-05-01T10:00:00Z"}},
    ],
)
def test_bad_events_are_rejected(ingest, raw, caplog):
    assert ingest.ingest(raw) == IngestOutcome.REJECTED
    assert "rejected" in caplog.text


def test_foreign_competitor_is_rejected(ingest, service, match):
    ingest.ingest(message("match:start", match.id, "2026-05-01T10:00:00Z"))
    assert ingest.ingest(action(match.id, 999, "kick", "2026-05-01T10:00:10Z", points=2)) == IngestOutcome.REJECTED
    assert len(service.get_actions(match.id)) == 1


def test_unknown_code_without_points_is_rejected(ingest, match):
    raw = action(match.id, match.home_competitor_id, "spin360", "2026-05-01T10:00:10Z")
    assert ingest.ingest(raw) == IngestOutcome.REJECTED


def test_unknown_code_for_both_sides_is_not_a_duplicate(ingest, service, match):
    home, away = match.home_competitor_id, match.away_competitor_id
    ingest.ingest(message("match:start", match.id, "2026-05-01T10:00:00Z"))

    assert ingest.ingest(action(match.id, home, "spin360", "2026-05-01T10:00:10.000Z", points=4)) == IngestOutcome.RECORDED
    assert ingest.ingest(action(match.id, away, "spin360", "2026-05-01T10:00:10.500Z", points=3)) == IngestOutcome.RECORDED
    assert ingest.ingest(action(match.id, away, "spin360", "2026-05-01T10:00:10.800Z", points=3)) == IngestOutcome.DUPLICATE

    state = service.get_match(match.id).state
    assert (state.home_score, state.away_score) == (4, 3)
    assert [a.action for a in service.get_actions(match.id)][1:] == [ActionType.ADJUST_SCORE] * 2


def test_config_event_updates_configuration(ingest, service, match):
    raw = message(
        "match:config",
        match.id,
        "2026-05-01T09:55:00Z",
        roundDuration=90,
        numberOfRounds=2,
        breakDuration=30,
        kyeShiDuration=60,
        goldenPointEnabled=False,
    )
    assert ingest.ingest(raw) == IngestOutcome.RECORDED

    config = service.get_configuration(match.id)
    assert (config.rounds, config.round_time, config.rest_time) == (2, "01:30", "00:30")
    assert config.golden_point_enabled is False
