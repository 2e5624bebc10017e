"""Triage operations on existing action items."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import select

from ..orm import ActionFlag, ActionItem, ActionStatus, FollowUp, SlackMessage, User
from ..orm.base import as_utc, utcnow
from .database import DatabaseService

logger = logging.getLogger(__name__)

USER_NOT_FOUND = "User not found"
ACTION_ITEM_NOT_FOUND = "Action item not found"


class Outcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ActionResult:
    """Result of a triage operation. Failures are soft and leave nothing changed."""

    outcome: Outcome
    message: str = "ok"

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @classmethod
    def success(cls) -> "ActionResult":
        return cls(Outcome.OK)

    @classmethod
    def not_found(cls, message: str) -> "ActionResult":
        return cls(Outcome.NOT_FOUND, message)


class ActionItemService:
    """Assign, resolve, snooze, annotate and follow up action items.

    Acting users are identified by their Slack id.
    """

    def __init__(self, db: DatabaseService):
        self.db = db

    async def _find_user(self, session, slack_id: str) -> Optional[User]:
        result = await session.execute(select(User).where(User.slack_id == slack_id).limit(1))
        return result.scalar_one_or_none()

    async def assign(self, action_id: str, user_id: str) -> ActionResult:
        """Assign the action item to the user with Slack id ``user_id``."""
        async with self.db.session() as session:
            user = await self._find_user(session, user_id)
            if user is None:
                logger.info("Assign %s: unknown user %s", action_id, user_id)
                return ActionResult.not_found(USER_NOT_FOUND)

            action = await session.get(ActionItem, action_id)
            if action is None:
                logger.info("Assign: action item %s not found", action_id)
                return ActionResult.not_found(ACTION_ITEM_NOT_FOUND)

            action.assignee_id = user.id
            action.assigned_on = utcnow()

        logger.info("Assigned %s to %s", action_id, user_id)
        return ActionResult.success()

    async def resolve(self, action_id: str, reason: Optional[str]) -> ActionResult:
        """Close the action item as resolved."""
        return await self._close(action_id, ActionFlag.RESOLVED, reason)

    async def mark_irrelevant(self, action_id: str, reason: Optional[str]) -> ActionResult:
        """Close the action item as irrelevant."""
        return await self._close(action_id, ActionFlag.IRRELEVANT, reason)

    async def _close(self, action_id: str, flag: ActionFlag, reason: Optional[str]) -> ActionResult:
        async with self.db.session() as session:
            action = await session.get(ActionItem, action_id)
            if action is None:
                logger.info("Close: action item %s not found", action_id)
                return ActionResult.not_found(ACTION_ITEM_NOT_FOUND)

            action.status = ActionStatus.CLOSED.value
            action.flag = flag.value
            action.resolved_at = utcnow()
            action.reason = reason

        logger.info("Closed %s as %s", action_id, flag.value)
        return ActionResult.success()

    async def annotate(self, action_id: str, note: Optional[str]) -> ActionResult:
        """Overwrite the free-text notes."""
        async with self.db.session() as session:
            action = await session.get(ActionItem, action_id)
            if action is None:
                return ActionResult.not_found(ACTION_ITEM_NOT_FOUND)
            action.notes = note
        return ActionResult.success()

    async def snooze(
        self, action_id: str, until: datetime, reason: Optional[str], user_id: str
    ) -> ActionResult:
        """Hide the action item until ``until``; status is unchanged."""
        until = as_utc(until)
        async with self.db.session() as session:
            user = await self._find_user(session, user_id)
            if user is None:
                logger.info("Snooze %s: unknown user %s", action_id, user_id)
                return ActionResult.not_found(USER_NOT_FOUND)

            action = await session.get(ActionItem, action_id)
            if action is None:
                return ActionResult.not_found(ACTION_ITEM_NOT_FOUND)

            action.snooze_count = (action.snooze_count or 0) + 1
            action.snoozed_until = until
            action.snoozed_by_id = user.id
            action.reason = reason

        logger.info("Snoozed %s until %s", action_id, until.isoformat())
        return ActionResult.success()

    async def follow_up(
        self, action_id: str, date: datetime, reason: Optional[str], user_id: str
    ) -> ActionResult:
        """Schedule a follow-up of ``action_id`` at ``date``.

        A parent has at most one pending (future-dated) follow-up: if its
        latest link is still in the future, that link and its target are
        moved to the new date. Otherwise a new follow-up action item and link
        are created, leaving past links as history.
        """
        date = as_utc(date)
        async with self.db.session() as session:
            parent = await session.get(ActionItem, action_id)
            if parent is None:
                logger.info("Follow-up: action item %s not found", action_id)
                return ActionResult.not_found(ACTION_ITEM_NOT_FOUND)

            user = await self._find_user(session, user_id)
            if user is None:
                logger.info("Follow-up %s: unknown user %s", action_id, user_id)
                return ActionResult.not_found(USER_NOT_FOUND)

            result = await session.execute(
                select(FollowUp)
                .where(FollowUp.parent_id == action_id)
                .order_by(FollowUp.date.desc())
                .limit(1)
            )
            latest = result.scalar_one_or_none()

            target = None
            if latest is not None and as_utc(latest.date) > utcnow():
                target = await session.get(ActionItem, latest.next_item_id)

            if target is None:
                target = ActionItem(status=ActionStatus.FOLLOW_UP.value)
                session.add(target)
                await session.flush()
                session.add(FollowUp(parent_id=parent.id, next_item_id=target.id, date=date))
                logger.info("Created follow-up %s for %s at %s", target.id, action_id, date.isoformat())
            else:
                latest.date = date
                logger.info("Moved follow-up %s for %s to %s", target.id, action_id, date.isoformat())

            target.status = ActionStatus.FOLLOW_UP.value
            target.total_replies = 0
            target.snoozed_until = date
            target.snoozed_by_id = user.id
            target.assignee_id = parent.assignee_id
            target.notes = reason or ""

        return ActionResult.success()

    async def get_slack_action_item(self, slack_id: str) -> Optional[str]:
        """Return the id of the action item a Slack message was posted for."""
        async with self.db.session() as session:
            result = await session.execute(
                select(SlackMessage.action_item_id).where(SlackMessage.ts == slack_id).limit(1)
            )
            return result.scalar_one_or_none()
