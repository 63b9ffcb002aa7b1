"""
Leaderboard and benchmark domain models

Provides:
    - LeaderboardEntry: one user's stats across all services for one date range
    - MetricAverages: peer averages for the ten leaderboard metrics
    - Benchmarks: organization-wide (FTE) and per-level (P1-P4) averages
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from eng_dashboard.domain.users import CONTRACTOR_LEVEL

StatsResult = dict[str, Any]

SERVICES = ("github", "gitlab", "jira")

METRIC_NAMES = (
    "created",
    "reviews",
    "comments",
    "commentsPerMonth",
    "velocity",
    "storyPoints",
    "resolved",
    "avgResolutionTime",
    "ctoiFixed",
    "ctoiParticipated",
)

LEVEL_BUCKETS = ("p1", "p2", "p3", "p4")


@dataclass(frozen=True)
class LeaderboardEntry:
    """
    One row of the leaderboard.

    A service is None when the user has no account for it; a failed fetch is
    also None for that service with the reason in ``errors``.

    Attributes:
        user: Summary block from UserIdentity.summary()
        github: GitHub StatsResult or None
        gitlab: GitLab StatsResult or None
        jira: Jira StatsResult or None
        review_stats: {"github": ReviewStats, "gitlab": ReviewStats} or None
        errors: Service name (or "general") -> error message
    """

    user: dict[str, Any]
    github: StatsResult | None = None
    gitlab: StatsResult | None = None
    jira: StatsResult | None = None
    review_stats: dict[str, Any] | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        return self.user.get("id")

    @property
    def level(self) -> str | None:
        return self.user.get("level")

    @property
    def is_contractor(self) -> bool:
        return (self.level or "").lower() == CONTRACTOR_LEVEL

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "user": self.user,
            "github": self.github,
            "gitlab": self.gitlab,
            "jira": self.jira,
            "errors": dict(self.errors),
        }
        if self.review_stats is not None:
            data["reviewStats"] = self.review_stats
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LeaderboardEntry":
        return cls(
            user=dict(data.get("user") or {}),
            github=data.get("github"),
            gitlab=data.get("gitlab"),
            jira=data.get("jira"),
            review_stats=data.get("reviewStats"),
            errors=dict(data.get("errors") or {}),
        )


@dataclass(frozen=True)
class MetricAverages:
    """Peer averages; None means no qualifying data, never zero."""

    created: float | None = None
    reviews: float | None = None
    comments: float | None = None
    commentsPerMonth: float | None = None
    velocity: float | None = None
    storyPoints: float | None = None
    resolved: float | None = None
    avgResolutionTime: float | None = None
    ctoiFixed: float | None = None
    ctoiParticipated: float | None = None

    def to_dict(self) -> dict[str, float | None]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class Benchmarks:
    """Benchmark buckets keyed the way the dashboard reads them."""

    fte: MetricAverages
    p1: MetricAverages
    p2: MetricAverages
    p3: MetricAverages
    p4: MetricAverages

    def bucket(self, name: str) -> MetricAverages:
        return getattr(self, name.lower())

    def to_dict(self) -> dict[str, dict[str, float | None]]:
        return {name: self.bucket(name).to_dict() for name in ("fte", *LEVEL_BUCKETS)}
