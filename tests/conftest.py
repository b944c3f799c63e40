import pytest

from helpers.mocks import MockRepository, MockSessionFactory, make_db


@pytest.fixture
def repo():
    """Fresh in-memory repository for each test."""
    return MockRepository()


@pytest.fixture
def db():
    return make_db()


@pytest.fixture
def session_factory(db):
    return MockSessionFactory(db)


@pytest.fixture
def event(repo):
    return repo.add_event(expected_participants=10)
