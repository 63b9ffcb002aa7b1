#!/usr/bin/env python3
"""
Upstream Service Adapter Contract

The per-service adapters (GitHub GraphQL, GitLab REST, Jira JQL, Adobe
Analytics reports) live outside this package. The aggregation core talks to
them only through the abstract classes below.

Conventions every adapter must follow:
- ``credentials=None`` means "use the operator identity configured process-wide"
- A StatsResult is a JSON-serializable dict of counts, monthly breakdowns and
  averages, or ``{"error": "<message>"}`` instead
- HTTP 429 is surfaced as an exception whose ``response`` carries status 429
  or whose message contains "429" (RateLimitedError satisfies both)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from eng_dashboard.domain.date_range import DateRange

Credentials = dict[str, Any]


class ServiceAdapter(ABC):
    """Common contract: aggregate stats for one identity."""

    name: str = "service"

    @abstractmethod
    async def get_stats(self, date_range: DateRange | None, credentials: Credentials | None = None) -> dict[str, Any]:
        """
        Aggregate stats for one identity and date range.

        Args:
            date_range: Window to aggregate (None = adapter default)
            credentials: Per-user override, None for the operator identity

        Returns:
            StatsResult dict
        """
        pass


class GitHostingAdapter(ServiceAdapter):
    """GitHub / GitLab: stats, review comments and the PR/MR page list."""

    @abstractmethod
    async def get_review_comments(
        self, date_range: DateRange | None, credentials: Credentials | None = None
    ) -> dict[str, Any]:
        """
        Review-comment statistics.

        Returns:
            ReviewStats dict: totalComments, prsReviewed / mrsReviewed,
            avgCommentsPerPR / avgCommentsPerMR, avgReviewsPerMonth, byRepo
        """
        pass

    @abstractmethod
    async def get_items_for_page(self, date_range: DateRange | None) -> list[dict[str, Any]]:
        """Operator's PRs (GitHub) or MRs (GitLab) for the list page."""
        pass


class IssueTrackerAdapter(ServiceAdapter):
    """Jira: stats, the issue list, epic rollups and CTOI participation."""

    @abstractmethod
    async def get_issues_for_page(self, date_range: DateRange | None) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def get_projects_by_epic(self, date_range: DateRange | None) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_ctoi_stats(self, date_range: DateRange | None) -> dict[str, Any]:
        pass


class AnalyticsAdapter(ABC):
    """Adobe Analytics: site-wide traffic and per-project click analytics."""

    name: str = "analytics"

    @abstractmethod
    async def get_analytics_data(self, date_range: DateRange | None) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_project_analytics(self, project_key: str) -> dict[str, Any] | None:
        """Analytics for one configured project, None if the project is disabled."""
        pass


@dataclass
class AdapterSet:
    """The adapters one process talks to."""

    github: GitHostingAdapter
    gitlab: GitHostingAdapter
    jira: IssueTrackerAdapter
    analytics: AnalyticsAdapter | None = None


EMPTY_GITHUB_REVIEW_STATS: dict[str, Any] = {
    "totalComments": 0,
    "prsReviewed": 0,
    "avgCommentsPerPR": 0,
    "avgReviewsPerMonth": 0,
    "byRepo": [],
}

EMPTY_GITLAB_REVIEW_STATS: dict[str, Any] = {
    "totalComments": 0,
    "mrsReviewed": 0,
    "avgCommentsPerMR": 0,
    "avgReviewsPerMonth": 0,
    "byRepo": [],
}


def empty_review_stats(service: str) -> dict[str, Any]:
    """Zeroed ReviewStats used when a review-comment fetch fails."""
    template = EMPTY_GITHUB_REVIEW_STATS if service == "github" else EMPTY_GITLAB_REVIEW_STATS
    return {**template, "byRepo": []}
