"""Shared pytest fixtures."""

import pytest

from tests._fakes import FakeFeed, RecordingIndexer, RecordingNotifier
from triagebot.orm import Repository, User
from triagebot.services.database import DatabaseService
from triagebot.services.reconcile_service import ReconcileService


@pytest.fixture
async def db(tmp_path):
    """A fresh SQLite database per test."""
    service = DatabaseService(tmp_path / "triage.db")
    await service.initialize()
    yield service
    await service.close()


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
def indexer():
    return RecordingIndexer()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def reconciler(db, indexer, notifier):
    return ReconcileService(db, indexer, notifier)


@pytest.fixture
async def repository(db):
    """The octocat/hello repository row."""
    async with db.session() as session:
        repo = Repository(url="https://github.com/octocat/hello", owner="octocat", name="hello")
        session.add(repo)
    return repo


@pytest.fixture
async def slack_user(db):
    """A team member known by Slack id U123."""
    async with db.session() as session:
        user = User(github_username="maintainer", slack_id="U123")
        session.add(user)
    return user
