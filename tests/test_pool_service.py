"""Tests for pool membership, match generation and stored standings."""

import threading
import time

import pytest

from tkdmatch.exceptions import ConflictStateError, InvalidInputError, NotFoundError
from tkdmatch.match_service import MatchService
from tkdmatch.models import (
    ActionType,
    MatchAction,
    MatchResult,
    ResultStatus,
    TieBreakCriterion,
)
from tkdmatch.pool_service import POOL_PHASE, PoolService
from tkdmatch.storage import MatchRepository, PoolRepository


@pytest.fixture
def pools(db):
    return PoolService(db)


@pytest.fixture
def matches(db):
    return MatchService(db)


@pytest.fixture
def filled_pool(pools, make_event):
    """A pool of 3 competitors: returns (pool, [competitor_ids])."""
    event_id, ids = make_event(count=3)
    pool = pools.create_pool(event_id, "Pool A", max_athletes=4)
    for competitor_id in ids:
        pools.add_competitor(pool.id, competitor_id)
    return pool, ids


class TestMembership:
    """Test cases for adding and removing pool competitors."""

    def test_create_pool_defaults(self, pools, make_event):
        event_id, _ = make_event(count=2)
        pool = pools.create_pool(event_id, "Pool A", max_athletes=4)
        assert pool.points_for_win == 3
        assert pool.tie_break_criteria == [
            TieBreakCriterion.POINTS_DIFFERENCE,
            TieBreakCriterion.POINTS_FOR,
        ]
        assert pools.get_pool(pool.id).name == "Pool A"

    def test_create_pool_invalid(self, pools, make_event):
        event_id, _ = make_event(count=2)
        with pytest.raises(InvalidInputError):
            pools.create_pool(event_id, "Too small", max_athletes=1)
        with pytest.raises(InvalidInputError):
            pools.create_pool(event_id, "Bad quota", max_athletes=3, qualifying_places=4)
        with pytest.raises(NotFoundError):
            pools.create_pool(999, "Orphan", max_athletes=3)

    def test_add_creates_zero_standing(self, pools, make_event):
        event_id, ids = make_event(count=2)
        pool = pools.create_pool(event_id, "Pool A", max_athletes=2)
        standing = pools.add_competitor(pool.id, ids[0])
        assert standing.competitor_id == ids[0]
        assert (standing.matches_played, standing.total_points, standing.rank) == (0, 0, None)

    def test_add_rejections(self, pools, make_event):
        event_id, ids = make_event(count=3)
        other_event, other_ids = make_event(count=1, name="F -49kg")
        pool = pools.create_pool(event_id, "Pool A", max_athletes=2)
        pools.add_competitor(pool.id, ids[0])

        with pytest.raises(ConflictStateError):
            pools.add_competitor(pool.id, ids[0])
        with pytest.raises(InvalidInputError):
            pools.add_competitor(pool.id, other_ids[0])
        with pytest.raises(NotFoundError):
            pools.add_competitor(pool.id, 999)

        pools.add_competitor(pool.id, ids[1])
        with pytest.raises(ConflictStateError, match="full"):
            pools.add_competitor(pool.id, ids[2])

    def test_remove_deletes_pending_matches(self, pools, filled_pool, db):
        pool, ids = filled_pool
        pools.generate_pool_matches(pool.id)

        deleted = pools.remove_competitor(pool.id, ids[0])

        assert deleted == 2
        with db.transaction() as session:
            repo = PoolRepository(session)
            assert repo.count_matches(pool.id) == 1
            assert repo.get_membership(pool.id, ids[0]) is None
        assert [s.competitor_id for s in pools.get_standings(pool.id)] == [ids[1], ids[2]]

    def test_remove_blocked_by_running_match(self, pools, matches, filled_pool):
        pool, ids = filled_pool
        created = pools.generate_pool_matches(pool.id)
        matches.record_action(created[0].id, MatchAction(ActionType.MATCH_START))

        with pytest.raises(ConflictStateError):
            pools.remove_competitor(pool.id, ids[0])
        assert len(pools.get_standings(pool.id)) == 3

    def test_remove_unknown_member(self, pools, filled_pool):
        pool, _ = filled_pool
        with pytest.raises(NotFoundError):
            pools.remove_competitor(pool.id, 999)


class TestGeneratePoolMatches:
    """Test cases for PoolService.generate_pool_matches."""

    def test_full_round_robin(self, pools, filled_pool, matches):
        pool, ids = filled_pool
        created = pools.generate_pool_matches(pool.id, mat=3)

        assert [(m.home_competitor_id, m.away_competitor_id) for m in created] == [
            (ids[0], ids[1]),
            (ids[0], ids[2]),
            (ids[1], ids[2]),
        ]
        assert [m.number for m in created] == [
            f"P{pool.id:04d}-01",
            f"P{pool.id:04d}-02",
            f"P{pool.id:04d}-03",
        ]
        assert all(m.phase == POOL_PHASE and m.mat == 3 for m in created)
        assert matches.get_configuration(created[0].id) is not None

    def test_second_generation_writes_nothing(self, pools, filled_pool, db):
        pool, _ = filled_pool
        pools.generate_pool_matches(pool.id)
        with pytest.raises(ConflictStateError):
            pools.generate_pool_matches(pool.id)
        with db.transaction() as session:
            assert PoolRepository(session).count_matches(pool.id) == 3

    def test_pool_matches_do_not_block_bracket(self, pools, matches, filled_pool, db):
        pool, _ = filled_pool
        pools.generate_pool_matches(pool.id)
        bracket = matches.generate_bracket(pool.event_id)
        assert len(bracket) == 1
        with db.transaction() as session:
            assert MatchRepository(session).count_bracket_matches(pool.event_id) == 1

    def test_capped_matches_per_athlete(self, pools, make_event):
        event_id, ids = make_event(count=4)
        pool = pools.create_pool(event_id, "Pool B", max_athletes=4, matches_per_athlete=2)
        for competitor_id in ids:
            pools.add_competitor(pool.id, competitor_id)
        assert len(pools.generate_pool_matches(pool.id)) == 3

    def test_concurrent_generation_from_two_services(self, db, pools, make_event, monkeypatch):
        event_id, ids = make_event(count=4)
        pool = pools.create_pool(event_id, "Pool D", max_athletes=4)
        for competitor_id in ids:
            pools.add_competitor(pool.id, competitor_id)

        count_matches = PoolRepository.count_matches

        def slow_count(repo, pool_id):
            count = count_matches(repo, pool_id)
            time.sleep(0.2)
            return count

        monkeypatch.setattr(PoolRepository, "count_matches", slow_count)

        barrier = threading.Barrier(2)
        created, conflicts, errors = [], [], []

        def generate():
            service = PoolService(db)
            barrier.wait()
            try:
                created.append(service.generate_pool_matches(pool.id))
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
        monkeypatch.undo()
        with db.transaction() as session:
            assert PoolRepository(session).count_matches(pool.id) == 6
            assert len(MatchRepository(session).get_by_event(event_id)) == 6

    def test_duplicate_match_order_is_a_conflict(self, pools, filled_pool, db, monkeypatch):
        pool, _ = filled_pool
        pools.generate_pool_matches(pool.id)

        monkeypatch.setattr(PoolRepository, "count_matches", lambda repo, pool_id: 0)
        with pytest.raises(ConflictStateError):
            pools.generate_pool_matches(pool.id)

        monkeypatch.undo()
        with db.transaction() as session:
            assert PoolRepository(session).count_matches(pool.id) == 3
            assert len(MatchRepository(session).get_by_event(pool.event_id)) == 3

    def test_needs_two_competitors(self, pools, make_event):
        event_id, ids = make_event(count=1)
        pool = pools.create_pool(event_id, "Pool C", max_athletes=3)
        pools.add_competitor(pool.id, ids[0])
        with pytest.raises(InvalidInputError):
            pools.generate_pool_matches(pool.id)


class TestRecomputeStandings:
    """Test cases for PoolService.recompute_standings."""

    def test_official_results_rank_pool(self, pools, matches, filled_pool):
        pool, (a, b, c) = filled_pool
        ab, ac, bc = pools.generate_pool_matches(pool.id)
        matches.submit_result(ab.id, MatchResult(ResultStatus.OFFICIAL, 10, 5))
        matches.submit_result(ac.id, MatchResult(ResultStatus.OFFICIAL, 8, 7))
        # Not official: ignored
        matches.submit_result(bc.id, MatchResult(ResultStatus.UNOFFICIAL, 12, 0))

        standings = pools.recompute_standings(pool.id)

        assert [s.competitor_id for s in standings] == [a, c, b]
        leader = standings[0]
        assert (leader.matches_played, leader.wins, leader.total_points) == (2, 2, 6)
        assert (leader.points_for, leader.points_against, leader.points_difference) == (18, 12, 6)
        assert leader.rank == 1 and leader.qualified
        assert standings[1].points_difference == -1
        assert standings[2].points_difference == -5
        assert not standings[2].qualified

    def test_recompute_is_idempotent(self, pools, matches, filled_pool):
        pool, _ = filled_pool
        ab, _, _ = pools.generate_pool_matches(pool.id)
        matches.submit_result(ab.id, MatchResult(ResultStatus.OFFICIAL, 3, 1))

        first = pools.recompute_standings(pool.id)
        second = pools.recompute_standings(pool.id)

        assert first == second
        assert pools.get_standings(pool.id) == second
