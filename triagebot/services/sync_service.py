"""Reconciliation pass over every configured repository."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Optional, Protocol

from ..config import RepoEntry, load_repo_lists
from .database import DatabaseService
from .github_service import RemoteItem
from .reconcile_service import ReconcileService
from .records import upsert_repository

logger = logging.getLogger(__name__)


class ItemFeed(Protocol):
    """Remote feed of issues and pull requests."""

    def list_items(self, owner: str, name: str) -> AsyncIterator[RemoteItem]: ...

    async def get_item(self, owner: str, name: str, node_id: str) -> Optional[RemoteItem]: ...


@dataclass
class RepositorySyncResult:
    """Outcome of syncing one repository."""

    file: str
    url: str
    ok: bool = True
    synced: int = 0
    created: int = 0
    closed: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "url": self.url,
            "ok": self.ok,
            "synced": self.synced,
            "created": self.created,
            "closed": self.closed,
            "error": self.error,
        }


@dataclass
class SyncReport:
    """Per-repository results of one reconciliation pass."""

    results: list[RepositorySyncResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failures(self) -> list[RepositorySyncResult]:
        return [r for r in self.results if not r.ok]

    def summary(self) -> str:
        """``"ok"``, or one line naming every failed repository."""
        if self.ok:
            return "ok"
        failed = "; ".join(f"{r.url}: {r.error}" for r in self.failures)
        return f"{len(self.failures)} of {len(self.results)} repositories failed: {failed}"


class SyncService:
    """Fans out over repo-list files and their repositories with a bounded worker pool."""

    def __init__(
        self,
        db: DatabaseService,
        feed: ItemFeed,
        reconciler: ReconcileService,
        repos_dir: str | Path,
        max_concurrent_repos: int = 4,
    ):
        self.db = db
        self.feed = feed
        self.reconciler = reconciler
        self.repos_dir = repos_dir
        self.max_concurrent_repos = max_concurrent_repos

    async def sync_all(self) -> SyncReport:
        """Sync every configured repository.

        Repo-list errors are raised before any repository is touched. A
        failing repository is recorded in its result and doesn't stop the others.
        """
        repo_lists = load_repo_lists(self.repos_dir)
        jobs = [(file, repo) for file, repos in repo_lists.items() for repo in repos]
        logger.info(
            "Syncing %d repositories from %d file(s), %d at a time",
            len(jobs),
            len(repo_lists),
            self.max_concurrent_repos,
        )

        semaphore = asyncio.Semaphore(self.max_concurrent_repos)

        async def run(file: str, repo: RepoEntry) -> RepositorySyncResult:
            async with semaphore:
                return await self.sync_repository(file, repo)

        results = await asyncio.gather(*(run(file, repo) for file, repo in jobs))
        report = SyncReport(results=list(results))

        if report.ok:
            logger.info("Sync done: %d repositories", len(report.results))
        else:
            logger.error("Sync finished with failures: %s", report.summary())
        return report

    async def sync_repository(self, file: str, repo: RepoEntry) -> RepositorySyncResult:
        """Run one reconciliation pass for a repository, capturing any failure."""
        result = RepositorySyncResult(file=file, url=repo.uri)
        logger.info("Syncing %s (%s)", repo.full_name, file)

        try:
            async with self.db.session() as session:
                repository = await upsert_repository(session, repo.uri, repo.owner, repo.name)

            open_ids: set[str] = set()
            async for item in self.feed.list_items(repo.owner, repo.name):
                upserted = await self.reconciler.upsert_item(repository, item)
                open_ids.add(item.node_id)
                result.synced += 1
                if upserted.created:
                    result.created += 1

            # Only after the open feed is exhausted
            closed = await self.reconciler.close_missing_items(self.feed, repository, open_ids)
            result.closed = len(closed)

        except Exception as e:
            logger.error("Sync failed for %s: %s", repo.full_name, e, exc_info=True)
            result.ok = False
            result.error = str(e) or e.__class__.__name__
            return result

        logger.info(
            "Done %s: %d synced (%d new), %d closed",
            repo.full_name,
            result.synced,
            result.created,
            result.closed,
        )
        return result
