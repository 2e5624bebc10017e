"""Tests for SyncService: repo-list fan-out and per-repository isolation."""

import asyncio

import pytest
from sqlalchemy import select

from triagebot.config import RepoListError
from triagebot.orm import GithubItem, Repository, User
from triagebot.services.github_service import GitHubFetchError
from triagebot.services.sync_service import SyncService

from tests._fakes import make_item


def _write_repo_list(directory, name, uris):
    lines = ["repos:"] + [f"  - uri: {uri}" for uri in uris]
    (directory / name).write_text("\n".join(lines) + "\n")


@pytest.fixture
def repos_dir(tmp_path):
    directory = tmp_path / "repos"
    directory.mkdir()
    return directory


@pytest.fixture
def sync(db, feed, reconciler, repos_dir):
    return SyncService(db, feed, reconciler, repos_dir=repos_dir, max_concurrent_repos=2)


class TestSyncAll:
    """Test a full reconciliation pass."""

    async def test_syncs_every_repository(self, db, sync, feed, repos_dir):
        """Test all files and repositories are synced and reported."""
        _write_repo_list(repos_dir, "a.yaml", ["https://github.com/acme/one"])
        _write_repo_list(repos_dir, "b.yaml", ["https://github.com/acme/two", "https://github.com/acme/three"])
        feed.set_open("acme/one", [make_item("I_1", 1), make_item("PR_2", 2)])
        feed.set_open("acme/two", [make_item("I_3", 1)])

        report = await sync.sync_all()

        assert report.ok
        assert report.summary() == "ok"
        by_url = {r.url: r for r in report.results}
        assert by_url["https://github.com/acme/one"].synced == 2
        assert by_url["https://github.com/acme/one"].created == 2
        assert by_url["https://github.com/acme/two"].synced == 1
        assert by_url["https://github.com/acme/three"].synced == 0
        assert by_url["https://github.com/acme/three"].file == "b.yaml"

        async with db.session() as session:
            repos = (await session.execute(select(Repository))).scalars().all()
            assert {(r.owner, r.name) for r in repos} == {("acme", "one"), ("acme", "two"), ("acme", "three")}

    async def test_items_missing_from_feed_are_closed(self, db, sync, feed, repos_dir):
        """Test a second pass closes what disappeared from the open feed."""
        _write_repo_list(repos_dir, "a.yaml", ["https://github.com/acme/one"])
        feed.set_open("acme/one", [make_item("I_1", 1), make_item("I_2", 2)])
        await sync.sync_all()

        feed.set_open("acme/one", [make_item("I_1", 1)])
        report = await sync.sync_all()

        [result] = report.results
        assert result.synced == 1
        assert result.created == 0
        assert result.closed == 1
        async with db.session() as session:
            states = dict((await session.execute(select(GithubItem.node_id, GithubItem.state))).all())
        assert states == {"I_1": "open", "I_2": "closed"}

    async def test_failing_repository_is_isolated(self, db, sync, feed, repos_dir):
        """Test one failing repository doesn't discard its siblings' results."""
        _write_repo_list(
            repos_dir,
            "a.yaml",
            ["https://github.com/acme/broken", "https://github.com/acme/fine"],
        )
        feed.failing["acme/broken"] = GitHubFetchError("boom")
        feed.set_open("acme/fine", [make_item("I_1", 1)])

        report = await sync.sync_all()

        assert not report.ok
        [failure] = report.failures
        assert failure.url == "https://github.com/acme/broken"
        assert failure.error == "boom"
        assert "acme/broken" in report.summary()
        assert "1 of 2" in report.summary()

        async with db.session() as session:
            assert (await session.execute(select(GithubItem.node_id))).scalars().all() == ["I_1"]

    async def test_failed_feed_does_not_close_items(self, db, sync, feed, repos_dir):
        """Test a feed failure skips closed-item detection for that repository."""
        _write_repo_list(repos_dir, "a.yaml", ["https://github.com/acme/one"])
        feed.set_open("acme/one", [make_item("I_1", 1)])
        await sync.sync_all()

        feed.failing["acme/one"] = GitHubFetchError("rate limited")
        report = await sync.sync_all()

        assert not report.ok
        async with db.session() as session:
            state = (await session.execute(select(GithubItem.state))).scalar_one()
        assert state == "open"

    async def test_concurrency_is_bounded(self, sync, feed, repos_dir):
        """Test no more than max_concurrent_repos repositories run at once."""
        uris = [f"https://github.com/acme/r{n}" for n in range(5)]
        _write_repo_list(repos_dir, "a.yaml", uris)
        running = 0
        peak = 0

        async def slow_list_items(owner, name):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return
            yield

        feed.list_items = slow_list_items
        report = await sync.sync_all()

        assert report.ok
        assert len(report.results) == 5
        assert peak <= 2

    async def test_shared_new_author_is_created_once(self, db, feed, reconciler, repos_dir):
        """Test repositories syncing concurrently converge on one row for a new author."""
        names = [f"r{n}" for n in range(6)]
        _write_repo_list(repos_dir, "a.yaml", [f"https://github.com/acme/{name}" for name in names])
        for r, name in enumerate(names):
            feed.set_open(
                f"acme/{name}",
                [make_item(f"I_{r}_{n}", n, author="newcomer") for n in range(5)],
            )
        sync = SyncService(db, feed, reconciler, repos_dir=repos_dir, max_concurrent_repos=6)

        report = await sync.sync_all()

        assert report.ok, report.summary()
        async with db.session() as session:
            users = (await session.execute(select(User))).scalars().all()
            authors = set((await session.execute(select(GithubItem.author_id))).scalars())
        assert [u.github_username for u in users] == ["newcomer"]
        assert authors == {users[0].id}

    async def test_invalid_repo_list_aborts_before_work(self, sync, feed, repos_dir):
        """Test a malformed file raises an error naming it."""
        _write_repo_list(repos_dir, "a.yaml", ["https://github.com/acme/one"])
        (repos_dir / "b.yaml").write_text("repos:\n  - uri: https://github.com/only-owner\n")

        with pytest.raises(RepoListError, match="b.yaml"):
            await sync.sync_all()
