"""Shared fixtures: a fresh SQLite database per test and data factories."""

import pytest

from tkdmatch.storage import CompetitorRepository, DatabaseManager, EventRepository


@pytest.fixture
def db(tmp_path):
    """Create an empty database in the test's temporary directory."""
    manager = DatabaseManager(str(tmp_path / "tkdmatch.sqlite"))
    manager.create_tables()
    return manager


@pytest.fixture
def make_event(db):
    """Factory creating an event with competitors.

    Returns (event_id, [competitor_ids]) with competitor i seeded i+1 unless
    explicit seeds are given.
    """

    def _make(
        count=4,
        seeds=None,
        countries=None,
        discipline="TKW_K",
        division=None,
        competition_id=None,
        name="M -68kg",
    ):
        with db.transaction() as session:
            event = EventRepository(session).create(
                name, discipline=discipline, division=division, competition_id=competition_id
            )
            repo = CompetitorRepository(session)
            ids = []
            for i in range(count):
                seed = seeds[i] if seeds is not None else i + 1
                country = countries[i] if countries is not None else "KOR"
                ids.append(repo.create(event.id, f"Athlete {i + 1}", country, seed=seed).id)
            return event.id, ids

    return _make


@pytest.fixture
def make_session(db):
    """Factory creating a competition session, returns its ID."""

    def _make(name="Morning"):
        with db.transaction() as session:
            return EventRepository(session).create_session(name).id

    return _make
