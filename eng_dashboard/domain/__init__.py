"""
Domain Models - Type-safe data structures for dashboard aggregation

This package contains dataclasses representing business domain concepts:
    - date_range: DateRange, fiscal-year and rolling windows
    - users: UserIdentity, GitAccount, JiraAccount
    - leaderboard: LeaderboardEntry, MetricAverages, Benchmarks

Usage:
    from eng_dashboard.domain import DateRange, UserIdentity

    date_range = DateRange.from_strings("2025-09-01", None)
    print(date_range.cache_key())
"""

from .date_range import DateRange, fiscal_year_ranges, range_key, rolling_range
from .leaderboard import METRIC_NAMES, Benchmarks, LeaderboardEntry, MetricAverages
from .users import GitAccount, JiraAccount, UserIdentity, normalize_user

__all__ = [
    # Date ranges
    "DateRange",
    "fiscal_year_ranges",
    "range_key",
    "rolling_range",
    # Users
    "UserIdentity",
    "GitAccount",
    "JiraAccount",
    "normalize_user",
    # Leaderboard
    "LeaderboardEntry",
    "MetricAverages",
    "Benchmarks",
    "METRIC_NAMES",
]
