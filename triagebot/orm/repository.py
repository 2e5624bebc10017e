"""Repository and User models."""

from typing import Optional

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase


class Repository(SqlalchemyBase):
    """A configured GitHub repository, keyed by its URL."""

    __tablename__ = "repositories"
    __table_args__ = (Index("idx_repositories_url", "url", unique=True),)

    url: Mapped[str] = mapped_column(String, nullable=False)
    owner: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)

    def __repr__(self) -> str:
        return f"<Repository(id={self.id}, {self.owner}/{self.name})>"


class User(SqlalchemyBase):
    """A person known by their GitHub login, their Slack id, or both."""

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_github_username", "github_username", unique=True),
        Index("idx_users_slack_id", "slack_id"),
    )

    # Placeholder users only carry the GitHub login
    github_username: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    slack_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, github={self.github_username}, slack={self.slack_id})>"
