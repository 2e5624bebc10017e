"""Merges remote GitHub items into local GithubItem/ActionItem records."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import select

from ..orm import ActionItem, ActionStatus, GithubItem, GithubState, Repository
from ..orm.base import as_utc, utcnow
from .database import DatabaseService
from .github_service import RemoteItem
from .records import replace_labels, replace_participants, resolve_author

logger = logging.getLogger(__name__)


class ItemSource(Protocol):
    """Single-item lookup on the remote feed."""

    async def get_item(self, owner: str, name: str, node_id: str) -> Optional[RemoteItem]: ...


class Indexer(Protocol):
    def index(self, action_item_id: str, times_resolved: int = 0) -> None: ...


class Notifier(Protocol):
    async def check_needs_notifying(self, action_item_id: str) -> bool: ...


@dataclass
class UpsertResult:
    """Outcome of merging one remote item."""

    github_item_id: str
    action_item_id: str
    created: bool
    labels: list[str]
    participants: list[str]


class ReconcileService:
    """Upserts open items and retires items that were closed on GitHub."""

    def __init__(self, db: DatabaseService, indexer: Indexer, notifier: Notifier):
        self.db = db
        self.indexer = indexer
        self.notifier = notifier

    async def upsert_item(self, repository: Repository, item: RemoteItem) -> UpsertResult:
        """Create or update the local records for one remote item.

        The item row, its action item, its labels and its participants are
        written in one transaction. The notifier runs only when the action
        item was just created; the indexer runs every time.
        """
        async with self.db.session() as session:
            result = await session.execute(
                select(GithubItem).where(GithubItem.node_id == item.node_id)
            )
            github_item = result.scalar_one_or_none()
            created = github_item is None

            if created:
                author = await resolve_author(session, item.author_login)
                action_item = ActionItem(status=ActionStatus.OPEN.value)
                session.add(action_item)
                await session.flush()

                github_item = GithubItem(
                    node_id=item.node_id,
                    author_id=author.id,
                    repository_id=repository.id,
                    action_item_id=action_item.id,
                    title=item.title,
                    body=item.body,
                    number=item.number,
                    state=item.state,
                    type=item.type.value,
                    github_created_at=item.created_at,
                    github_updated_at=item.updated_at,
                    last_assigned_on=item.last_assigned_on,
                )
                session.add(github_item)
            else:
                action_item = await self._action_item_for(session, github_item)
                # A transferred item keeps its node id but moves repository
                _update_fields(
                    github_item,
                    repository_id=repository.id,
                    title=item.title,
                    body=item.body,
                    state=item.state,
                    github_updated_at=item.updated_at,
                    last_assigned_on=item.last_assigned_on,
                )
                # Manual resolution is sticky: status follows resolved_at, not the remote state
                _update_fields(
                    action_item,
                    status=ActionStatus.CLOSED.value if action_item.resolved_at else ActionStatus.OPEN.value,
                )

            _copy_replies(action_item, item)
            await session.flush()

            labels = await replace_labels(session, github_item.id, item.labels)
            participants = await replace_participants(session, action_item.id, item.participants)

            upserted = UpsertResult(
                github_item_id=github_item.id,
                action_item_id=action_item.id,
                created=created,
                labels=labels,
                participants=participants,
            )

        logger.debug(
            "%s %s #%d (%s)",
            "Created" if created else "Updated",
            item.type.value,
            item.number,
            item.node_id,
        )

        if created:
            try:
                await self.notifier.check_needs_notifying(upserted.action_item_id)
            except Exception as e:
                logger.error("Notification check failed for %s: %s", upserted.action_item_id, e, exc_info=True)
        self.indexer.index(upserted.action_item_id)
        return upserted

    async def close_missing_items(
        self, source: ItemSource, repository: Repository, open_ids: set[str]
    ) -> list[str]:
        """Close items that are open locally but missing from the open feed.

        Must run after the repository's open feed has been fully processed.
        Ids are handled one at a time, in sorted order.

        Returns:
            The node ids that were closed.
        """
        async with self.db.session() as session:
            result = await session.execute(
                select(GithubItem.node_id).where(
                    GithubItem.repository_id == repository.id,
                    GithubItem.state == GithubState.OPEN.value,
                )
            )
            local_open = set(result.scalars())

        closed_ids = sorted(local_open - open_ids)
        if closed_ids:
            logger.info(
                "Closing %d item(s) no longer open on %s/%s",
                len(closed_ids),
                repository.owner,
                repository.name,
            )

        for node_id in closed_ids:
            item = await source.get_item(repository.owner, repository.name, node_id)
            action_item_id = await self._close_item(node_id, item)
            self.indexer.index(action_item_id, times_resolved=1)

        return closed_ids

    async def _close_item(self, node_id: str, item: Optional[RemoteItem]) -> str:
        async with self.db.session() as session:
            result = await session.execute(select(GithubItem).where(GithubItem.node_id == node_id))
            github_item = result.scalar_one()
            action_item = await self._action_item_for(session, github_item)

            github_item.state = GithubState.CLOSED.value
            action_item.status = ActionStatus.CLOSED.value

            if item is None:
                logger.warning("Item %s no longer exists on GitHub, closing it", node_id)
                action_item.resolved_at = utcnow()
                await session.flush()
                return action_item.id

            github_item.last_assigned_on = item.last_assigned_on
            if item.closed_at is not None:
                action_item.resolved_at = item.closed_at
            elif action_item.resolved_at is None:
                action_item.resolved_at = utcnow()
            _copy_replies(action_item, item)
            await session.flush()

            await replace_labels(session, github_item.id, item.labels)
            await replace_participants(session, action_item.id, item.participants)
            return action_item.id

    async def _action_item_for(self, session, github_item: GithubItem) -> ActionItem:
        """Load the item's action item, creating it if the link is missing."""
        if github_item.action_item_id is not None:
            action_item = await session.get(ActionItem, github_item.action_item_id)
            if action_item is not None:
                return action_item

        action_item = ActionItem(status=ActionStatus.OPEN.value)
        session.add(action_item)
        await session.flush()
        github_item.action_item_id = action_item.id
        return action_item


def _update_fields(record, **values) -> None:
    """Assign only the values that differ, so unchanged rows are not rewritten."""
    for key, value in values.items():
        current = getattr(record, key)
        if isinstance(current, datetime):
            current = as_utc(current)
        if current != value:
            setattr(record, key, value)


def _copy_replies(action_item: ActionItem, item: RemoteItem) -> None:
    _update_fields(
        action_item,
        total_replies=item.total_comments,
        first_reply_on=item.first_comment_at,
        last_reply_on=item.last_comment_at,
    )
