"""Service layer for business logic and database operations."""

from .action_item_service import ActionItemService, ActionResult, Outcome
from .database import DatabaseService
from .github_service import GitHubFetchError, GitHubService, RemoteItem
from .index_service import IndexService
from .notification_service import NotificationService
from .reconcile_service import ReconcileService, UpsertResult
from .sync_service import RepositorySyncResult, SyncReport, SyncService

__all__ = [
    "ActionItemService",
    "ActionResult",
    "DatabaseService",
    "GitHubFetchError",
    "GitHubService",
    "IndexService",
    "NotificationService",
    "Outcome",
    "ReconcileService",
    "RemoteItem",
    "RepositorySyncResult",
    "SyncReport",
    "SyncService",
    "UpsertResult",
]
