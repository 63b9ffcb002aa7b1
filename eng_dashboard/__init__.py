"""
Engineering dashboard aggregation core.

Caches, batch-fetches and benchmarks engineering-activity data (GitHub PRs,
GitLab MRs, Jira issues, analytics clicks) for a personal dashboard.
"""

__version__ = "1.0.0"
