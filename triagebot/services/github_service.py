"""GitHub GraphQL feed of issues and pull requests."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Optional

import httpx
import jwt

from ..config import GitHubConfig
from ..orm.base import as_utc
from ..orm.github_item import GithubItemType

logger = logging.getLogger(__name__)


class GitHubFetchError(Exception):
    """The GitHub API could not be reached or answered with errors."""


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


# Largest `first:` GitHub accepts on a nested connection
MAX_LABELS = 100
MAX_PARTICIPANTS = 100


def _connection_values(node: dict[str, Any], connection: str, key: str) -> list[str]:
    """Values of a nested connection, warning when GitHub returned only part of it."""
    data = node.get(connection) or {}
    nodes = [n for n in data.get("nodes") or [] if n]
    total = data.get("totalCount")
    if total is not None and total > len(nodes):
        logger.warning(
            "%s %s has %d %s, only the first %d were fetched",
            node.get("__typename") or "Item",
            node.get("id"),
            total,
            connection,
            len(nodes),
        )
    return [n[key] for n in nodes]


@dataclass
class RemoteItem:
    """An issue or pull request as reported by GitHub."""

    node_id: str
    type: GithubItemType
    number: int
    title: str
    body: str
    state: str
    author_login: str
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None
    labels: list[str] = field(default_factory=list)
    participants: list[str] = field(default_factory=list)
    total_comments: int = 0
    first_comment_at: Optional[datetime] = None
    last_comment_at: Optional[datetime] = None
    last_assigned_on: Optional[datetime] = None

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> "RemoteItem":
        """Build from a GraphQL Issue/PullRequest node."""
        typename = node.get("__typename")
        if typename == "PullRequest":
            item_type = GithubItemType.PULL_REQUEST
        elif typename == "Issue":
            item_type = GithubItemType.ISSUE
        else:
            # Issue node ids start with "I_", pull requests with "PR_"
            item_type = (
                GithubItemType.ISSUE if node["id"].startswith("I_") else GithubItemType.PULL_REQUEST
            )

        comments = node.get("comments") or {}
        first_comments = comments.get("nodes") or []
        last_comments = (node.get("lastComment") or {}).get("nodes") or []
        assignments = (node.get("timelineItems") or {}).get("nodes") or []
        author = node.get("author") or {}

        return cls(
            node_id=node["id"],
            type=item_type,
            number=node["number"],
            title=node["title"],
            body=node.get("bodyText") or "",
            state=(node.get("state") or "OPEN").lower(),
            # Deleted accounts come back as a null author
            author_login=author.get("login") or "ghost",
            created_at=_parse_datetime(node["createdAt"]),
            updated_at=_parse_datetime(node["updatedAt"]),
            closed_at=_parse_datetime(node.get("closedAt")),
            labels=_connection_values(node, "labels", "name"),
            participants=_connection_values(node, "participants", "login"),
            total_comments=comments.get("totalCount") or 0,
            first_comment_at=_parse_datetime(first_comments[0]["createdAt"]) if first_comments else None,
            last_comment_at=_parse_datetime(last_comments[-1]["createdAt"]) if last_comments else None,
            last_assigned_on=_parse_datetime(assignments[-1].get("createdAt")) if assignments else None,
        )


ITEM_FIELDS = """
    id
    number
    title
    bodyText
    state
    createdAt
    updatedAt
    closedAt
    author { login }
    labels(first: %(max_labels)d) { totalCount nodes { name } }
    comments(first: 1) { totalCount nodes { createdAt } }
    lastComment: comments(last: 1) { nodes { createdAt } }
    participants(first: %(max_participants)d) { totalCount nodes { login } }
    timelineItems(last: 1, itemTypes: [ASSIGNED_EVENT]) {
        nodes { ... on AssignedEvent { createdAt } }
    }
""" % {"max_labels": MAX_LABELS, "max_participants": MAX_PARTICIPANTS}

LIST_QUERY = """
query($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    %(connection)s(states: OPEN, first: $first, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes { __typename ... on %(typename)s { %(fields)s } }
    }
  }
}
"""

NODE_QUERY = """
query($id: ID!) {
  node(id: $id) {
    __typename
    ... on Issue { %(fields)s }
    ... on PullRequest { %(fields)s }
  }
}
""" % {"fields": ITEM_FIELDS}

# (connection, typename) pairs listed for every repository, issues first
OPEN_ITEM_CONNECTIONS = (("issues", "Issue"), ("pullRequests", "PullRequest"))


class GitHubService:
    """Reads issues and pull requests through the GitHub GraphQL API."""

    def __init__(self, config: GitHubConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize GitHub service.

        Args:
            config: GitHub credentials and paging settings.
            transport: Optional httpx transport (used by tests).
        """
        self.config = config
        self._transport = transport
        self._token_cache: Optional[tuple[str, datetime]] = None
        logger.debug("GitHubService initialized for %s", config.api_url)

    def _generate_jwt(self) -> str:
        """
        Generate JWT for GitHub App authentication.

        Returns:
            Signed JWT token.
        """
        # GitHub's max JWT lifetime is 10 minutes
        now = int(time.time())
        payload = {
            "iat": now - 60,  # allow for clock drift
            "exp": now + (10 * 60),
            "iss": self.config.app_id,
        }
        return jwt.encode(payload, self.config.private_key.get_secret_value(), algorithm="RS256")

    async def _get_token(self) -> str:
        """
        Get an API token: the static token, or an App installation token (cached).

        Raises:
            GitHubFetchError: If the installation token can't be fetched.
        """
        if self.config.token is not None:
            return self.config.token.get_secret_value()

        if self._token_cache:
            token, expiry = self._token_cache
            if datetime.now() < expiry:
                return token

        logger.debug("Fetching new installation access token...")
        url = f"{self.config.api_url}/app/installations/{self.config.installation_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {self._generate_jwt()}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        async with httpx.AsyncClient(transport=self._transport, timeout=self.config.timeout) as client:
            try:
                response = await client.post(url, headers=headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise GitHubFetchError(
                    f"Failed to fetch installation token (HTTP {e.response.status_code})"
                ) from e
            except httpx.HTTPError as e:
                raise GitHubFetchError(f"Failed to fetch installation token: {e}") from e

        token = response.json()["token"]
        # Tokens expire in 1 hour, refresh early
        self._token_cache = (token, datetime.now() + timedelta(minutes=50))
        logger.info("Fetched new installation access token (valid for 50 minutes)")
        return token

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Run one GraphQL query and return its ``data``."""
        token = await self._get_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
        }

        async with httpx.AsyncClient(transport=self._transport, timeout=self.config.timeout) as client:
            try:
                response = await client.post(
                    f"{self.config.api_url}/graphql",
                    headers=headers,
                    json={"query": query, "variables": variables},
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise GitHubFetchError(
                    f"GraphQL request failed (HTTP {e.response.status_code}): {e.response.text}"
                ) from e
            except httpx.HTTPError as e:
                raise GitHubFetchError(f"GraphQL request failed: {e}") from e

        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(err.get("message", "unknown error") for err in payload["errors"])
            raise GitHubFetchError(f"GraphQL errors: {messages}")
        return payload.get("data") or {}

    async def list_items(self, owner: str, name: str) -> AsyncIterator[RemoteItem]:
        """
        Yield every open issue, then every open pull request of a repository.

        Args:
            owner: Repository owner login.
            name: Repository name.

        Raises:
            GitHubFetchError: If a page can't be fetched or the repository doesn't exist.
        """
        for connection, typename in OPEN_ITEM_CONNECTIONS:
            query = LIST_QUERY % {"connection": connection, "typename": typename, "fields": ITEM_FIELDS}
            cursor = None
            while True:
                data = await self._graphql(
                    query,
                    {"owner": owner, "name": name, "first": self.config.page_size, "after": cursor},
                )
                repository = data.get("repository")
                if repository is None:
                    raise GitHubFetchError(f"Repository {owner}/{name} not found")

                page = repository[connection]
                for node in page["nodes"]:
                    if node:
                        yield RemoteItem.from_node(node)

                logger.debug(
                    "Fetched %d %s from %s/%s", len(page["nodes"]), connection, owner, name
                )
                if not page["pageInfo"]["hasNextPage"]:
                    break
                cursor = page["pageInfo"]["endCursor"]

    async def get_item(self, owner: str, name: str, node_id: str) -> Optional[RemoteItem]:
        """
        Fetch one issue or pull request by node id.

        Returns:
            The item, or None if GitHub no longer has it.
        """
        logger.debug("Fetching %s from %s/%s", node_id, owner, name)
        try:
            data = await self._graphql(NODE_QUERY, {"id": node_id})
        except GitHubFetchError as e:
            # Deleted or transferred nodes are reported as NOT_FOUND errors
            if "Could not resolve to a node" in str(e):
                return None
            raise

        node = data.get("node")
        if not node:
            return None
        return RemoteItem.from_node(node)
