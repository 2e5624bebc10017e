"""ORM models for database persistence."""

from .action_item import ActionFlag, ActionItem, ActionStatus, FollowUp, Participant, SlackMessage
from .base import Base, SqlalchemyBase
from .github_item import GithubItem, GithubItemType, GithubState, Label, LabelOnItem
from .repository import Repository, User

__all__ = [
    "ActionFlag",
    "ActionItem",
    "ActionStatus",
    "Base",
    "FollowUp",
    "GithubItem",
    "GithubItemType",
    "GithubState",
    "Label",
    "LabelOnItem",
    "Participant",
    "Repository",
    "SlackMessage",
    "SqlalchemyBase",
    "User",
]
