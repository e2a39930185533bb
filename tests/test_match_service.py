"""Tests for the transactional match service."""

import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from tkdmatch.exceptions import (
    ConflictStateError,
    DuplicateEventError,
    InvalidInputError,
    NotFoundError,
)
from tkdmatch.match_service import MatchService
from tkdmatch.models import (
    ActionType,
    MatchAction,
    MatchResult,
    MatchRules,
    Phase,
    ResultStatus,
    ResultType,
    ScheduleCommand,
    ScheduleStatus,
)
from tkdmatch.storage import (
    ActionRepository,
    AssignmentRepository,
    MatchRepository,
    MedalRepository,
    ResultRepository,
)

T0 = datetime(2026, 5, 1, 10, 0, 0)


@pytest.fixture
def telemetry():
    return MagicMock()


@pytest.fixture
def service(db, telemetry):
    return MatchService(db, telemetry=telemetry)


@pytest.fixture
def match(service, make_event):
    """A generated final between two competitors."""
    event_id, _ = make_event(count=2)
    return service.generate_bracket(event_id)[0]


class TestGenerateBracket:
    """Test cases for MatchService.generate_bracket."""

    def test_five_competitors_creates_one_match(self, service, make_event, make_session, db):
        event_id, ids = make_event(count=5)
        session_id = make_session()

        matches = service.generate_bracket(event_id, session_id, mat=2)

        assert len(matches) == 1
        created = matches[0]
        assert created.phase == Phase.QUARTERFINAL
        assert created.number == "101"
        assert created.position_reference == "QF-4"
        assert created.mat == 2
        assert created.session_id == session_id
        assert (created.home_competitor_id, created.away_competitor_id) == (ids[3], ids[4])
        assert created.state.schedule_status == ScheduleStatus.SCHEDULED
        assert created.state.result_status == ResultStatus.UNCONFIRMED

        config = service.get_configuration(created.id)
        assert config.rules == MatchRules.CONVENTIONAL

    def test_numbers_are_sequential_from_base(self, service, make_event):
        event_id, _ = make_event(count=8)
        matches = service.generate_bracket(event_id, base_match_number=301)
        assert [m.number for m in matches] == ["301", "302", "303", "304"]
        assert [m.position_reference for m in matches] == ["QF-1", "QF-2", "QF-3", "QF-4"]

    def test_division_preset_applied(self, service, make_event):
        event_id, _ = make_event(count=2, discipline="TKW_P", division="KIDS")
        created = service.generate_bracket(event_id)[0]
        config = service.get_configuration(created.id)
        assert config.rules == MatchRules.BESTOF3
        assert config.rounds == 2

    def test_second_generation_is_a_conflict(self, service, make_event, db):
        event_id, _ = make_event(count=4)
        service.generate_bracket(event_id)
        with pytest.raises(ConflictStateError):
            service.generate_bracket(event_id)
        with db.transaction() as session:
            assert len(MatchRepository(session).get_by_event(event_id)) == 2

    def test_concurrent_generation_from_two_services(self, db, make_event, monkeypatch):
        event_id, _ = make_event(count=4)

        # Widen the gap between the "no matches yet" check and the inserts
        count_bracket_matches = MatchRepository.count_bracket_matches

        def slow_count(repo, event_id):
            count = count_bracket_matches(repo, event_id)
            time.sleep(0.2)
            return count

        monkeypatch.setattr(MatchRepository, "count_bracket_matches", slow_count)

        barrier = threading.Barrier(2)
        created, conflicts, errors = [], [], []

        def generate():
            service = MatchService(db, telemetry=MagicMock())
            barrier.wait()
            try:
                created.append(service.generate_bracket(event_id))
            except ConflictStateError as e:
                conflicts.append(e)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=generate) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert len(created) == 1
        assert len(conflicts) == 1
        with db.transaction() as session:
            assert len(MatchRepository(session).get_by_event(event_id)) == 2

    def test_duplicate_slot_is_a_conflict(self, service, make_event, db, monkeypatch):
        event_id, _ = make_event(count=4)
        service.generate_bracket(event_id)

        monkeypatch.setattr(MatchRepository, "count_bracket_matches", lambda repo, event_id: 0)
        with pytest.raises(ConflictStateError):
            service.generate_bracket(event_id)

        monkeypatch.undo()
        with db.transaction() as session:
            assert len(MatchRepository(session).get_by_event(event_id)) == 2

    def test_unknown_event_or_session(self, service, make_event):
        with pytest.raises(NotFoundError):
            service.generate_bracket(999)
        event_id, _ = make_event(count=2)
        with pytest.raises(NotFoundError):
            service.generate_bracket(event_id, session_id=999)

    def test_single_competitor_creates_nothing(self, service, make_event, db):
        event_id, _ = make_event(count=1)
        with pytest.raises(InvalidInputError):
            service.generate_bracket(event_id)
        with db.transaction() as session:
            assert MatchRepository(session).get_by_event(event_id) == []


class TestRecordAction:
    """Test cases for MatchService.record_action."""

    def test_positions_are_server_assigned(self, service, match, telemetry):
        first = service.record_action(match.id, MatchAction(ActionType.MATCH_START, timestamp=T0))
        second = service.record_action(
            match.id,
            MatchAction(
                ActionType.SCORE_HOME_KICK,
                home_score=2,
                timestamp=T0 + timedelta(seconds=5),
                position=57,
            ),
        )
        assert (first.position, second.position) == (1, 2)
        assert second.source_position == 57

        current = service.get_match(match.id)
        assert current.state.home_score == 2
        assert current.state.result_status == ResultStatus.LIVE
        assert telemetry.action_recorded.call_count == 2
        assert telemetry.match_updated.call_count == 2

    def test_duplicate_within_window_is_dropped(self, service, match, db):
        service.record_action(match.id, MatchAction(ActionType.MATCH_START, timestamp=T0))
        service.record_action(
            match.id, MatchAction(ActionType.SCORE_AWAY_PUNCH, away_score=1, timestamp=T0 + timedelta(seconds=2))
        )
        with pytest.raises(DuplicateEventError):
            service.record_action(
                match.id,
                MatchAction(
                    ActionType.SCORE_AWAY_PUNCH,
                    away_score=1,
                    timestamp=T0 + timedelta(seconds=2, milliseconds=400),
                ),
            )

        assert len(service.get_actions(match.id)) == 2
        assert service.get_match(match.id).state.away_score == 1

    def test_same_action_outside_window_is_kept(self, service, match):
        service.record_action(match.id, MatchAction(ActionType.MATCH_START, timestamp=T0))
        for seconds in (10, 12):
            service.record_action(
                match.id,
                MatchAction(ActionType.SCORE_HOME_PUNCH, home_score=1, timestamp=T0 + timedelta(seconds=seconds)),
            )
        assert service.get_match(match.id).state.home_score == 2

    def test_aware_timestamp_stored_as_naive_utc(self, service, match):
        kst = timezone(timedelta(hours=9))
        recorded = service.record_action(
            match.id, MatchAction(ActionType.MATCH_START, timestamp=datetime(2026, 5, 1, 19, 0, 0, tzinfo=kst))
        )
        assert recorded.timestamp == T0
        with pytest.raises(DuplicateEventError):
            service.record_action(match.id, MatchAction(ActionType.MATCH_START, timestamp=T0))

    def test_sideless_actions_deduplicated_per_competitor(self, service, match):
        home, away = match.home_competitor_id, match.away_competitor_id
        service.record_action(match.id, MatchAction(ActionType.MATCH_START, timestamp=T0))
        at = T0 + timedelta(seconds=5)

        service.record_action(
            match.id, MatchAction(ActionType.ADJUST_SCORE, home_score=2, competitor_id=home, timestamp=at)
        )
        service.record_action(
            match.id,
            MatchAction(
                ActionType.ADJUST_SCORE,
                away_score=1,
                competitor_id=away,
                timestamp=at + timedelta(milliseconds=200),
            ),
        )
        with pytest.raises(DuplicateEventError):
            service.record_action(
                match.id,
                MatchAction(
                    ActionType.ADJUST_SCORE,
                    home_score=2,
                    competitor_id=home,
                    timestamp=at + timedelta(milliseconds=400),
                ),
            )

        state = service.get_match(match.id).state
        assert (state.home_score, state.away_score) == (2, 1)

    def test_match_end_finishes_unconfirmed(self, service, match):
        service.record_action(match.id, MatchAction(ActionType.MATCH_START, timestamp=T0))
        service.record_action(match.id, MatchAction(ActionType.MATCH_END, timestamp=T0 + timedelta(minutes=6)))
        state = service.get_match(match.id).state
        assert state.schedule_status == ScheduleStatus.FINISHED
        assert state.result_status == ResultStatus.UNCONFIRMED

    def test_rejected_action_writes_nothing(self, service, match):
        service.apply_command(match.id, ScheduleCommand.CANCEL)
        with pytest.raises(ConflictStateError):
            service.record_action(match.id, MatchAction(ActionType.MATCH_START, timestamp=T0))
        assert service.get_actions(match.id) == []

    def test_foreign_competitor_rejected(self, service, match):
        with pytest.raises(InvalidInputError):
            service.record_action(match.id, MatchAction(ActionType.SCORE_HOME_KICK, competitor_id=999))

    def test_bad_round_time_rejected(self, service, match):
        with pytest.raises(InvalidInputError):
            service.record_action(match.id, MatchAction(ActionType.MATCH_TIME, round_time="2:00"))

    def test_unknown_match(self, service):
        with pytest.raises(NotFoundError):
            service.record_action(999, MatchAction(ActionType.MATCH_START))


class TestSubmitResult:
    """Test cases for MatchService.submit_result."""

    def test_official_final_awards_gold_and_silver(self, service, match, db):
        result = service.submit_result(
            match.id,
            MatchResult(
                ResultStatus.OFFICIAL, 3, 8, home_type=ResultType.LOSS, away_type=ResultType.WIN
            ),
        )
        assert result.winner_id == match.away_competitor_id
        assert result.loser_id == match.home_competitor_id
        assert result.position == 1

        state = service.get_match(match.id).state
        assert state.schedule_status == ScheduleStatus.FINISHED
        assert state.result_status == ResultStatus.OFFICIAL

        with db.transaction() as session:
            repo = MedalRepository(session)
            gold = repo.get_by_competitor(match.away_competitor_id)
            silver = repo.get_by_competitor(match.home_competitor_id)
            assert (gold.medal_type, gold.position) == ("GOLD", 1)
            assert (silver.medal_type, silver.position) == ("SILVER", 2)

    def test_resubmitting_official_creates_no_duplicate_medal(self, service, match, db):
        service.submit_result(match.id, MatchResult(ResultStatus.OFFICIAL, 8, 3))
        second = service.submit_result(match.id, MatchResult(ResultStatus.OFFICIAL, 9, 3))
        assert second.position == 2
        with db.transaction() as session:
            medals = MedalRepository(session).get_by_events([match.event_id])
            assert len(medals) == 2

    def test_explicit_winner_derives_loser(self, service, match):
        result = service.submit_result(
            match.id, MatchResult(ResultStatus.UNOFFICIAL, 0, 0, winner_id=match.home_competitor_id)
        )
        assert result.loser_id == match.away_competitor_id

    def test_official_cannot_go_back_to_unofficial(self, service, match):
        service.submit_result(match.id, MatchResult(ResultStatus.OFFICIAL, 8, 3))
        with pytest.raises(ConflictStateError):
            service.submit_result(match.id, MatchResult(ResultStatus.UNOFFICIAL, 8, 3))
        assert len(service.get_results(match.id)) == 1

    def test_intermediate_result_keeps_schedule_status(self, service, match):
        service.record_action(match.id, MatchAction(ActionType.MATCH_START, timestamp=T0))
        stored = service.submit_result(match.id, MatchResult(ResultStatus.INTERMEDIATE, 6, 4, round=1))
        assert stored.status == ResultStatus.INTERMEDIATE
        assert stored.winner_id == match.home_competitor_id

        state = service.get_match(match.id).state
        assert state.schedule_status == ScheduleStatus.RUNNING
        assert state.result_status == ResultStatus.INTERMEDIATE
        assert (state.home_score, state.away_score) == (6, 4)

    def test_protest_before_official_is_a_conflict(self, service, match, db):
        service.submit_result(match.id, MatchResult(ResultStatus.UNOFFICIAL, 8, 3))
        with pytest.raises(ConflictStateError):
            service.submit_result(match.id, MatchResult(ResultStatus.PROTESTED, 8, 3))
        assert [r.status for r in service.get_results(match.id)] == [ResultStatus.UNOFFICIAL]

        service.submit_result(match.id, MatchResult(ResultStatus.OFFICIAL, 8, 3))
        protested = service.submit_result(match.id, MatchResult(ResultStatus.PROTESTED, 8, 3))
        assert protested.position == 3

    def test_inconsistent_payload_rejected(self, service, match):
        with pytest.raises(InvalidInputError):
            service.submit_result(
                match.id,
                MatchResult(ResultStatus.OFFICIAL, 1, 0, home_type=ResultType.WIN, away_type=ResultType.WIN),
            )


class TestCommandsAndDeletion:
    """Test cases for commands, assignments and cascading deletion."""

    def test_commands(self, service, match):
        start = datetime(2026, 5, 2, 9, 0)
        updated = service.apply_command(match.id, ScheduleCommand.RESCHEDULE, start)
        assert updated.state.schedule_status == ScheduleStatus.RESCHEDULED
        assert updated.state.scheduled_start == start

        finished = service.apply_command(match.id, ScheduleCommand.FINISH)
        assert finished.state.schedule_status == ScheduleStatus.FINISHED
        with pytest.raises(ConflictStateError):
            service.apply_command(match.id, ScheduleCommand.DELAY)

    def test_assignments(self, service, match):
        panel = service.assign_referees(match.id, cr=11, j1=12, j2=13)
        assert panel == {"cr": 11, "j1": 12, "j2": 13, "j3": None, "rj": None, "ta": None}

        service.assign_equipment(match.id, match.home_competitor_id, "CH-1", "HD-1", "KPNP")
        with pytest.raises(InvalidInputError):
            service.assign_equipment(match.id, 999, "CH-2", "HD-2")
        with pytest.raises(InvalidInputError):
            service.assign_referees(match.id, coach=5)

    def test_delete_removes_all_dependents(self, service, match, db):
        service.record_action(match.id, MatchAction(ActionType.MATCH_START, timestamp=T0))
        service.submit_result(match.id, MatchResult(ResultStatus.UNOFFICIAL, 2, 1))
        service.assign_referees(match.id, cr=1)
        service.assign_equipment(match.id, match.home_competitor_id, "CH-1", "HD-1")

        service.delete_match(match.id)

        with db.transaction() as session:
            assert MatchRepository(session).get_by_id(match.id) is None
            assert MatchRepository(session).get_configuration(match.id) is None
            assert ActionRepository(session).get_by_match(match.id) == []
            assert ResultRepository(session).get_by_match(match.id) == []
            assert AssignmentRepository(session).get_referees(match.id) is None
        with pytest.raises(NotFoundError):
            service.delete_match(match.id)
