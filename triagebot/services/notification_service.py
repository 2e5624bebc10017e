"""Slack notifications for newly synced action items."""

import logging
from typing import Optional

from slack_sdk.web.async_client import AsyncWebClient
from sqlalchemy import select

from ..config import SlackConfig
from ..orm import ActionItem, ActionStatus, GithubItem, Repository, SlackMessage, User
from ..orm.base import as_utc, utcnow
from .database import DatabaseService

logger = logging.getLogger(__name__)


class NotificationService:
    """Posts new outside-contributor items to a Slack channel."""

    def __init__(
        self,
        db: DatabaseService,
        config: SlackConfig,
        client: Optional[AsyncWebClient] = None,
    ):
        self.db = db
        self.config = config
        self._client = client

    async def check_needs_notifying(self, action_item_id: str) -> bool:
        """Notify the channel about an action item if it needs attention.

        An item needs notifying when it is open, not snoozed, raised by someone
        without a Slack identity (an outside contributor), and not already
        posted. The posted message is recorded so it can be traced back.

        Returns:
            True if a message was posted.
        """
        if not self.config.enabled:
            logger.debug("Slack not configured, skipping notification for %s", action_item_id)
            return False

        async with self.db.session() as session:
            action = await session.get(ActionItem, action_item_id)
            if action is None or action.status != ActionStatus.OPEN.value:
                return False
            if action.snoozed_until is not None and as_utc(action.snoozed_until) > utcnow():
                return False

            result = await session.execute(
                select(SlackMessage.id).where(SlackMessage.action_item_id == action_item_id).limit(1)
            )
            if result.scalar_one_or_none() is not None:
                return False

            result = await session.execute(
                select(GithubItem, Repository, User)
                .join(Repository, GithubItem.repository_id == Repository.id)
                .join(User, GithubItem.author_id == User.id)
                .where(GithubItem.action_item_id == action_item_id)
            )
            row = result.first()
            if row is None:
                return False
            github_item, repository, author = row
            if author.slack_id:
                logger.debug("Skipping notification for team member %s", author.github_username)
                return False

        kind = "PR" if github_item.type == "pull_request" else "Issue"
        text = (
            f"New {kind} in {repository.owner}/{repository.name} by {author.github_username}: "
            f"#{github_item.number} {github_item.title}"
        )
        ts = await self._post_message(text)

        async with self.db.session() as session:
            session.add(SlackMessage(ts=ts, channel=self.config.channel, action_item_id=action_item_id))

        logger.info("Notified %s about %s (ts=%s)", self.config.channel, action_item_id, ts)
        return True

    @property
    def client(self) -> AsyncWebClient:
        if self._client is None:
            self._client = AsyncWebClient(
                token=self.config.bot_token.get_secret_value(),
                base_url=self.config.api_url.rstrip("/") + "/",
            )
        return self._client

    async def _post_message(self, text: str) -> str:
        """Post to the channel and return the message ts.

        Raises:
            SlackApiError: If Slack rejects the message.
        """
        response = await self.client.chat_postMessage(
            channel=self.config.channel, text=text, unfurl_links=False
        )
        return response["ts"]
