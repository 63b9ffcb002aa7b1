"""
User identity domain models

A UserIdentity maps one person to their accounts on each upstream service,
optionally with a per-user token that overrides the operator's credentials.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

CONTRACTOR_LEVEL = "contractor"


@dataclass(frozen=True)
class GitAccount:
    """GitHub or GitLab account, token optional."""

    username: str | None = None
    token: str | None = None

    def credentials(self) -> dict[str, str | None] | None:
        if not self.username:
            return None
        return {"username": self.username, "token": self.token}


@dataclass(frozen=True)
class JiraAccount:
    """Jira account keyed by email, PAT optional."""

    email: str | None = None
    pat: str | None = None

    def credentials(self) -> dict[str, str | None] | None:
        if not self.email:
            return None
        return {"email": self.email, "pat": self.pat}


@dataclass(frozen=True)
class UserIdentity:
    """
    One leaderboard participant.

    Attributes:
        id: Display identifier
        github: GitHub account (None if the user has none)
        gitlab: GitLab account (None if the user has none)
        jira: Jira account (None if the user has none)
        level: Career level ("P1".."P4", "contractor", ...) or None
    """

    id: str
    github: GitAccount | None = None
    gitlab: GitAccount | None = None
    jira: JiraAccount | None = None
    level: str | None = None

    @property
    def github_username(self) -> str | None:
        return self.github.username if self.github else None

    @property
    def gitlab_username(self) -> str | None:
        return self.gitlab.username if self.gitlab else None

    @property
    def jira_email(self) -> str | None:
        return self.jira.email if self.jira else None

    @property
    def has_token_override(self) -> bool:
        """True if any service carries a per-user token or PAT."""
        return bool(
            (self.github and self.github.token)
            or (self.gitlab and self.gitlab.token)
            or (self.jira and self.jira.pat)
        )

    def summary(self) -> dict[str, Any]:
        """User block of a LeaderboardEntry (no secrets)."""
        return {
            "id": self.id,
            "githubUsername": self.github_username,
            "gitlabUsername": self.gitlab_username,
            "jiraEmail": self.jira_email,
            "level": self.level,
        }


def _account_value(raw: Mapping[str, Any], nested_key: str, nested_field: str, flat_key: str) -> str | None:
    nested = raw.get(nested_key)
    if isinstance(nested, Mapping):
        return nested.get(nested_field) or None
    if isinstance(nested, str) and nested:
        return nested
    return raw.get(flat_key) or None


def _secret(raw: Mapping[str, Any], nested_key: str, nested_field: str) -> str | None:
    nested = raw.get(nested_key)
    if isinstance(nested, Mapping):
        return nested.get(nested_field) or None
    return None


def normalize_user(raw: Mapping[str, Any]) -> UserIdentity:
    """
    Build a UserIdentity from any of the user-directory shapes.

    Accepted shapes:
        {"id": "u1", "github": {"username": "..", "token": ".."}, "jira": {"email": ".."}}
        {"username": "u1", "githubUsername": "..", "gitlabUsername": "..", "jiraEmail": ".."}
        {"name": "u1", "github": "..", "gitlab": "..", "jira": ".."}

    Raises:
        ValueError: If the record is not a mapping
    """
    if not isinstance(raw, Mapping):
        raise ValueError(f"User record must be an object, got {type(raw).__name__}")

    user_id = raw.get("id") or raw.get("username") or raw.get("name") or raw.get("userId") or "unknown"

    github_username = _account_value(raw, "github", "username", "githubUsername")
    gitlab_username = _account_value(raw, "gitlab", "username", "gitlabUsername")
    jira_email = _account_value(raw, "jira", "email", "jiraEmail")

    github = GitAccount(github_username, _secret(raw, "github", "token")) if github_username else None
    gitlab = GitAccount(gitlab_username, _secret(raw, "gitlab", "token")) if gitlab_username else None
    jira = JiraAccount(jira_email, _secret(raw, "jira", "pat")) if jira_email else None

    level = raw.get("level")
    return UserIdentity(
        id=str(user_id),
        github=github,
        gitlab=gitlab,
        jira=jira,
        level=str(level) if level is not None else None,
    )
