"""ORM models for the triage queue: action items, participants and follow-ups."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase


class ActionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    FOLLOW_UP = "followUp"


class ActionFlag(str, Enum):
    NONE = "none"
    RESOLVED = "resolved"
    IRRELEVANT = "irrelevant"


class ActionItem(SqlalchemyBase):
    """Triage record, backed by a GithubItem or standing alone as a follow-up target."""

    __tablename__ = "action_items"
    __table_args__ = (
        Index("idx_action_items_status", "status"),
        Index("idx_action_items_assignee_id", "assignee_id"),
    )

    status: Mapped[str] = mapped_column(String, nullable=False, default=ActionStatus.OPEN.value)
    flag: Mapped[str] = mapped_column(String, nullable=False, default=ActionFlag.NONE.value)

    # Reply bookkeeping mirrored from the remote item
    total_replies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_reply_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_reply_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    assignee_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("users.id"), nullable=True
    )
    assigned_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    snooze_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    snoozed_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    snoozed_by_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("users.id"), nullable=True
    )

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<ActionItem(id={self.id}, status={self.status}, flag={self.flag})>"


class Participant(SqlalchemyBase):
    """Current participant login on an action item's discussion."""

    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("action_item_id", "login", name="uq_participants_action_login"),
    )

    action_item_id: Mapped[str] = mapped_column(
        String, ForeignKey("action_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    login: Mapped[str] = mapped_column(String, nullable=False)


class FollowUp(SqlalchemyBase):
    """Dated link from a parent action item to the action item that follows it up."""

    __tablename__ = "follow_ups"
    __table_args__ = (
        UniqueConstraint("parent_id", "next_item_id", name="uq_follow_ups_parent_next"),
        Index("idx_follow_ups_parent_date", "parent_id", "date"),
    )

    parent_id: Mapped[str] = mapped_column(
        String, ForeignKey("action_items.id", ondelete="CASCADE"), nullable=False
    )
    next_item_id: Mapped[str] = mapped_column(
        String, ForeignKey("action_items.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SlackMessage(SqlalchemyBase):
    """Slack message posted about an action item."""

    __tablename__ = "slack_messages"
    __table_args__ = (Index("idx_slack_messages_ts", "ts"),)

    ts: Mapped[str] = mapped_column(String, nullable=False)  # Slack message timestamp id
    channel: Mapped[str] = mapped_column(String, nullable=False)
    action_item_id: Mapped[str] = mapped_column(
        String, ForeignKey("action_items.id", ondelete="CASCADE"), nullable=False
    )
