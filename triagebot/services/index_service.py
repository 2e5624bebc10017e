"""Search indexing of action items (Elasticsearch-compatible _update API)."""

import asyncio
import logging
from typing import Any, Optional

import httpx
from sqlalchemy import select

from ..config import SearchConfig
from ..orm import ActionItem, GithubItem, Label, LabelOnItem, Participant, Repository, User
from .database import DatabaseService

logger = logging.getLogger(__name__)

# Merges the new document and bumps the resolution counter in one request
UPDATE_SCRIPT = (
    "def prev = ctx._source.times_resolved == null ? 0 : ctx._source.times_resolved;"
    "ctx._source.putAll(params.doc);"
    "ctx._source.times_resolved = prev + params.times_resolved;"
)


class IndexService:
    """Fire-and-forget indexer: ``index()`` schedules the work and returns at once."""

    def __init__(
        self,
        db: DatabaseService,
        config: SearchConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.config = config
        self._transport = transport
        self._pending: set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(config.max_concurrent_requests)
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def enabled(self) -> bool:
        return bool(self.config.url)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport, timeout=10.0)
        return self._client

    def index(self, action_item_id: str, times_resolved: int = 0) -> None:
        """Schedule (re)indexing of an action item.

        Scheduled requests wait on a semaphore, so at most
        ``max_concurrent_requests`` of them are in flight.
        """
        if not self.enabled:
            logger.debug("Search not configured, skipping index of %s", action_item_id)
            return
        task = asyncio.get_running_loop().create_task(
            self.index_now(action_item_id, times_resolved)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def index_now(self, action_item_id: str, times_resolved: int = 0) -> bool:
        """Index an action item and wait for the result. Errors are logged, not raised."""
        async with self._semaphore:
            return await self._send(action_item_id, times_resolved)

    async def _send(self, action_item_id: str, times_resolved: int) -> bool:
        try:
            document = await self.build_document(action_item_id)
            if document is None:
                logger.warning("Not indexing %s: action item not found", action_item_id)
                return False

            headers = {}
            if self.config.api_key is not None:
                headers["Authorization"] = f"ApiKey {self.config.api_key.get_secret_value()}"
            url = f"{self.config.url.rstrip('/')}/{self.config.index}/_update/{action_item_id}"
            body = {
                "script": {
                    "source": UPDATE_SCRIPT,
                    "lang": "painless",
                    "params": {"doc": document, "times_resolved": times_resolved},
                },
                "upsert": {**document, "times_resolved": times_resolved},
            }

            response = await self.client.post(url, json=body, headers=headers)
            response.raise_for_status()
            return True

        except Exception as e:
            logger.error("Failed to index action item %s: %s", action_item_id, e, exc_info=True)
            return False

    async def build_document(self, action_item_id: str) -> Optional[dict[str, Any]]:
        """Assemble the search document for an action item."""
        async with self.db.session() as session:
            action = await session.get(ActionItem, action_item_id)
            if action is None:
                return None

            document: dict[str, Any] = {
                "id": action.id,
                "status": action.status,
                "flag": action.flag,
                "total_replies": action.total_replies,
                "first_reply_on": _iso(action.first_reply_on),
                "last_reply_on": _iso(action.last_reply_on),
                "resolved_at": _iso(action.resolved_at),
                "assignee_id": action.assignee_id,
                "snoozed_until": _iso(action.snoozed_until),
                "snooze_count": action.snooze_count,
                "notes": action.notes,
            }

            result = await session.execute(
                select(Participant.login)
                .where(Participant.action_item_id == action.id)
                .order_by(Participant.login)
            )
            document["participants"] = list(result.scalars())

            result = await session.execute(
                select(GithubItem, Repository, User)
                .join(Repository, GithubItem.repository_id == Repository.id)
                .join(User, GithubItem.author_id == User.id)
                .where(GithubItem.action_item_id == action.id)
            )
            row = result.first()
            if row is None:
                return document

            github_item, repository, author = row
            result = await session.execute(
                select(Label.name)
                .join(LabelOnItem, LabelOnItem.label_id == Label.id)
                .where(LabelOnItem.github_item_id == github_item.id)
                .order_by(Label.name)
            )
            document.update(
                {
                    "node_id": github_item.node_id,
                    "title": github_item.title,
                    "body": github_item.body,
                    "number": github_item.number,
                    "state": github_item.state,
                    "type": github_item.type,
                    "repository": f"{repository.owner}/{repository.name}",
                    "url": _item_url(repository, github_item),
                    "author": author.github_username,
                    "labels": list(result.scalars()),
                    "created_at": _iso(github_item.github_created_at),
                    "updated_at": _iso(github_item.github_updated_at),
                    "last_assigned_on": _iso(github_item.last_assigned_on),
                }
            )
            return document

    async def aclose(self) -> None:
        """Wait for pending index requests and close the HTTP client."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _item_url(repository: Repository, github_item: GithubItem) -> str:
    kind = "pull" if github_item.type == "pull_request" else "issues"
    return f"{repository.url.rstrip('/')}/{kind}/{github_item.number}"
