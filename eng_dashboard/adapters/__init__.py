"""
Adapter contract for the upstream services (GitHub, GitLab, Jira, Adobe Analytics)
"""

from .base import (
    AdapterSet,
    AnalyticsAdapter,
    Credentials,
    GitHostingAdapter,
    IssueTrackerAdapter,
    ServiceAdapter,
    empty_review_stats,
)

__all__ = [
    "AdapterSet",
    "AnalyticsAdapter",
    "Credentials",
    "GitHostingAdapter",
    "IssueTrackerAdapter",
    "ServiceAdapter",
    "empty_review_stats",
]
