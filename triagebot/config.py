"""Configuration management for the triage bot."""

import os
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator, model_validator


class GitHubConfig(BaseModel):
    """GitHub API access.

    Either a static ``token`` or the GitHub App triple
    (``app_id``, ``private_key``, ``installation_id``) must be given.
    """

    token: Optional[SecretStr] = Field(default=None, description="Personal or installation token")
    app_id: Optional[str] = None
    private_key: Optional[SecretStr] = Field(default=None, description="PEM private key of the App")
    installation_id: Optional[str] = None
    api_url: str = "https://api.github.com"
    page_size: int = Field(default=50, ge=1, le=100)
    timeout: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _check_credentials(self) -> "GitHubConfig":
        app_fields = (self.app_id, self.private_key, self.installation_id)
        if self.token is None and not all(app_fields):
            raise ValueError("github needs either 'token' or app_id/private_key/installation_id")
        return self


class DatabaseConfig(BaseModel):
    """SQLite persistence settings."""

    path: str = Field(default="~/.triagebot/triage.db", description="Path to SQLite database file")


class SyncConfig(BaseModel):
    """Reconciliation pass settings."""

    repos_dir: str = Field(default="config/repos", description="Directory of repo-list YAML files")
    max_concurrent_repos: int = Field(default=4, ge=1, description="Repositories synced at once")


class SearchConfig(BaseModel):
    """Elasticsearch-compatible index for action items. Disabled without a URL."""

    url: Optional[str] = None
    index: str = "action-items"
    api_key: Optional[SecretStr] = None
    max_concurrent_requests: int = Field(default=4, ge=1, description="Index requests in flight at once")


class SlackConfig(BaseModel):
    """Slack notifications for new action items. Disabled without a token."""

    bot_token: Optional[SecretStr] = None
    channel: Optional[str] = None
    api_url: str = "https://slack.com/api"

    @property
    def enabled(self) -> bool:
        return self.bot_token is not None and bool(self.channel)


class ServerConfig(BaseModel):
    """RPC server bind settings."""

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)


class Config(BaseModel):
    """Root configuration model."""

    github: GitHubConfig
    database: DatabaseConfig = DatabaseConfig()
    sync: SyncConfig = SyncConfig()
    search: SearchConfig = SearchConfig()
    slack: SlackConfig = SlackConfig()
    server: ServerConfig = ServerConfig()


class RepoListError(ValueError):
    """A repo-list file could not be read or validated."""

    def __init__(self, file: str, detail: str):
        self.file = file
        self.detail = detail
        super().__init__(f"Invalid repo list '{file}': {detail}")


class RepoEntry(BaseModel):
    """One configured repository, e.g. ``https://github.com/owner/name``."""

    uri: str

    @field_validator("uri")
    @classmethod
    def _validate_uri(cls, v: str) -> str:
        segments = [s for s in urlparse(v).path.split("/") if s]
        if len(segments) < 2:
            raise ValueError(f"'{v}' does not name an owner and a repository")
        return v

    @property
    def owner(self) -> str:
        return [s for s in urlparse(self.uri).path.split("/") if s][0]

    @property
    def name(self) -> str:
        name = [s for s in urlparse(self.uri).path.split("/") if s][1]
        return name.removesuffix(".git")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class RepoList(BaseModel):
    """Contents of one repo-list file."""

    repos: list[RepoEntry]


def _expand_env_vars(obj):
    """Replace ``${VAR_NAME}`` strings with the environment value."""
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        env_var = obj[2:-1]
        value = os.getenv(env_var)
        if value is None:
            raise ValueError(f"Environment variable '{env_var}' is not set")
        return value
    return obj


def load_config(config_path: str | Path = "config.yaml") -> Config:
    """Load and validate configuration from YAML file.

    Supports ${VAR_NAME} syntax for environment variable expansion.

    Args:
        config_path: Path to the configuration file.

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValidationError: If config is invalid.
        ValueError: If referenced environment variable is not set.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            "Copy config.example.yaml to config.yaml and fill in your values."
        )

    with path.open() as f:
        raw_config = yaml.safe_load(f) or {}

    return Config(**_expand_env_vars(raw_config))


def load_repo_lists(repos_dir: str | Path) -> dict[str, list[RepoEntry]]:
    """Load every repo-list file in a directory.

    Args:
        repos_dir: Directory holding ``*.yaml``/``*.yml`` files with a ``repos`` list.

    Returns:
        Mapping of file name to its repositories, in sorted file order.

    Raises:
        FileNotFoundError: If the directory doesn't exist.
        RepoListError: If a file is not valid YAML or doesn't match the schema.
    """
    directory = Path(repos_dir).expanduser()
    if not directory.is_dir():
        raise FileNotFoundError(f"Repo list directory not found: {directory}")

    files = sorted(p for p in directory.iterdir() if p.suffix in (".yaml", ".yml"))
    repo_lists: dict[str, list[RepoEntry]] = {}
    for path in files:
        try:
            with path.open() as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RepoListError(path.name, f"not valid YAML ({e})") from e

        if not isinstance(raw, dict):
            raise RepoListError(path.name, "expected a mapping with a 'repos' list")

        try:
            repo_lists[path.name] = RepoList(**raw).repos
        except ValidationError as e:
            raise RepoListError(path.name, str(e)) from e

    return repo_lists
