"""
Cache key conventions

Keys are shared with the read endpoints, so the formats are fixed:
``<prefix>:<rangeJSON>`` where rangeJSON is DateRange.cache_key() or ``null``.
"""

from collections.abc import Iterable

from eng_dashboard.domain.date_range import DateRange, range_key

STATS = "stats"
STATS_GIT = "stats-git"
STATS_JIRA = "stats-jira"
LEADERBOARD = "leaderboard"
BENCHMARKS = "benchmarks"
CTOI_STATS = "ctoi-stats"
PRS = "prs"
MRS = "mrs"
ISSUES = "issues"
PROJECTS = "projects-v3"
PROJECT_ANALYTICS = "project-analytics"
ADOBE_ANALYTICS = "adobe-analytics"


def ranged(prefix: str, date_range: DateRange | None) -> str:
    return f"{prefix}:{range_key(date_range)}"


def leaderboard_key(user_ids: Iterable[str], date_range: DateRange | None) -> str:
    return f"{LEADERBOARD}:{','.join(sorted(user_ids))}:{range_key(date_range)}"


def project_analytics_key(project_key: str) -> str:
    return f"{PROJECT_ANALYTICS}:{project_key}"
