"""
Data Collectors - Fetch per-user stats from upstream services

This package contains:
    - leaderboard_fetcher: rate-limit-aware batch fetch of every user's stats
    - user_directory: resolve the list of leaderboard users
"""

__all__ = []
