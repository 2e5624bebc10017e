"""ORM models for synced GitHub issues/pull requests and their labels."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase


class GithubState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class GithubItemType(str, Enum):
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"


class GithubItem(SqlalchemyBase):
    """Local copy of one remote issue or pull request."""

    __tablename__ = "github_items"
    __table_args__ = (
        Index("idx_github_items_node_id", "node_id", unique=True),
        Index("idx_github_items_repository_state", "repository_id", "state"),
    )

    node_id: Mapped[str] = mapped_column(String, nullable=False)  # GraphQL node id
    author_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    repository_id: Mapped[str] = mapped_column(
        String, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    action_item_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("action_items.id"), nullable=True, unique=True
    )

    title: Mapped[str] = mapped_column(String, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[str] = mapped_column(String, nullable=False, default=GithubState.OPEN.value)
    # Set once at creation, never recomputed
    type: Mapped[str] = mapped_column(String, nullable=False)

    github_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    github_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_assigned_on: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<GithubItem(id={self.id}, node_id={self.node_id}, "
            f"number={self.number}, state={self.state})>"
        )


class Label(SqlalchemyBase):
    """A label name, shared by every item carrying it."""

    __tablename__ = "labels"
    __table_args__ = (Index("idx_labels_name", "name", unique=True),)

    name: Mapped[str] = mapped_column(String, nullable=False)


class LabelOnItem(SqlalchemyBase):
    """Join row between a GithubItem and a Label."""

    __tablename__ = "labels_on_items"
    __table_args__ = (
        UniqueConstraint("github_item_id", "label_id", name="uq_labels_on_items_item_label"),
    )

    github_item_id: Mapped[str] = mapped_column(
        String, ForeignKey("github_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label_id: Mapped[str] = mapped_column(
        String, ForeignKey("labels.id", ondelete="CASCADE"), nullable=False
    )
