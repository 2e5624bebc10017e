"""Fakes for the external collaborators of the sync services.

Importable by any conftest.py or test file in the test suite.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from triagebot.orm import GithubItemType
from triagebot.services.github_service import RemoteItem

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_item(
    node_id: str = "I_1",
    number: int = 1,
    *,
    author: str = "octocat",
    labels: Optional[list[str]] = None,
    participants: Optional[list[str]] = None,
    comments: int = 0,
    state: str = "open",
    title: Optional[str] = None,
    updated_at: Optional[datetime] = None,
    closed_at: Optional[datetime] = None,
    last_assigned_on: Optional[datetime] = None,
) -> RemoteItem:
    """Build a RemoteItem with sensible defaults."""
    return RemoteItem(
        node_id=node_id,
        type=GithubItemType.ISSUE if node_id.startswith("I_") else GithubItemType.PULL_REQUEST,
        number=number,
        title=title or f"Item {number}",
        body=f"Body of item {number}",
        state=state,
        author_login=author,
        created_at=BASE_TIME,
        updated_at=updated_at or BASE_TIME + timedelta(hours=1),
        closed_at=closed_at,
        labels=list(labels or []),
        participants=list(participants if participants is not None else [author]),
        total_comments=comments,
        first_comment_at=BASE_TIME + timedelta(minutes=10) if comments else None,
        last_comment_at=BASE_TIME + timedelta(minutes=10 * comments) if comments else None,
        last_assigned_on=last_assigned_on,
    )


class FakeFeed:
    """In-memory feed: open items per ``owner/name`` plus detail lookups."""

    def __init__(self):
        self.open_items: dict[str, list[RemoteItem]] = {}
        self.details: dict[str, RemoteItem] = {}
        self.failing: dict[str, Exception] = {}
        self.get_calls: list[str] = []

    def set_open(self, full_name: str, items: list[RemoteItem]) -> None:
        self.open_items[full_name] = items

    async def list_items(self, owner: str, name: str):
        full_name = f"{owner}/{name}"
        if full_name in self.failing:
            raise self.failing[full_name]
        for item in self.open_items.get(full_name, []):
            yield item

    async def get_item(self, owner: str, name: str, node_id: str) -> Optional[RemoteItem]:
        self.get_calls.append(node_id)
        return self.details.get(node_id)


class RecordingIndexer:
    """Indexer that only records what it was asked to index."""

    def __init__(self):
        self.calls: list[tuple[str, int]] = []

    def index(self, action_item_id: str, times_resolved: int = 0) -> None:
        self.calls.append((action_item_id, times_resolved))


class RecordingNotifier:
    """Notifier that only records which action items were checked."""

    def __init__(self):
        self.calls: list[str] = []

    async def check_needs_notifying(self, action_item_id: str) -> bool:
        self.calls.append(action_item_id)
        return False
