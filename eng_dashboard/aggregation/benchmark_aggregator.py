#!/usr/bin/env python3
"""
Benchmark Aggregation

Peer averages over a leaderboard: one organization-wide bucket (FTE) and one
bucket per career level (P1-P4).

Pure calculation functions operate on LeaderboardEntry objects (or their
dict form); BenchmarkAggregator adds the cached, leaderboard-backed lookup.
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from eng_dashboard.cache import keys
from eng_dashboard.cache.ttl_cache import TTLCache
from eng_dashboard.collectors.leaderboard_fetcher import BatchLeaderboardFetcher
from eng_dashboard.core.logging_config import get_logger
from eng_dashboard.domain.date_range import DateRange
from eng_dashboard.domain.leaderboard import LEVEL_BUCKETS, METRIC_NAMES, Benchmarks, LeaderboardEntry, MetricAverages
from eng_dashboard.domain.users import UserIdentity

logger = get_logger(__name__)

BENCHMARKS_TTL = 300


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return value


def _first_number(source: Mapping[str, Any] | None, *names: str) -> float:
    """First non-zero number among ``names``; 0 counts as missing."""
    if not source:
        return 0
    for name in names:
        value = _number(source.get(name))
        if value:
            return value
    return 0


def _with_fallback(
    primary: Mapping[str, Any], primary_name: str, fallback: Mapping[str, Any], fallback_name: str
) -> float:
    if primary.get(primary_name) is not None:
        return _number(primary[primary_name])
    return _first_number(fallback, fallback_name)


def _months(items: Any) -> set[str]:
    if not isinstance(items, list):
        return set()
    return {item["month"] for item in items if isinstance(item, Mapping) and item.get("month")}


def round_half_up(value: float, digits: int = 1) -> float:
    """Round half away from zero (2.25 -> 2.3), unlike built-in round()."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def _as_entry(entry: "LeaderboardEntry | Mapping[str, Any]") -> LeaderboardEntry:
    if isinstance(entry, LeaderboardEntry):
        return entry
    return LeaderboardEntry.from_dict(entry)


def extract_metrics(entry: "LeaderboardEntry | Mapping[str, Any]") -> dict[str, float]:
    """
    Ten leaderboard metrics for one entry; missing data reads as 0.

    Args:
        entry: LeaderboardEntry or its to_dict() form

    Returns:
        Dict keyed by METRIC_NAMES
    """
    entry = _as_entry(entry)
    github = entry.github or {}
    gitlab = entry.gitlab or {}
    jira = entry.jira or {}
    review_stats = entry.review_stats or {}
    github_reviews = review_stats.get("github") or {}
    gitlab_reviews = review_stats.get("gitlab") or {}

    created = _first_number(github, "created", "total") + _first_number(gitlab, "created", "total")

    reviews = _with_fallback(github_reviews, "prsReviewed", github, "reviews") + _with_fallback(
        gitlab_reviews, "mrsReviewed", gitlab, "reviews"
    )
    comments = _with_fallback(github_reviews, "totalComments", github, "totalComments") + _with_fallback(
        gitlab_reviews, "totalComments", gitlab, "totalComments"
    )

    months = _months(github.get("monthlyPRs")) | _months(gitlab.get("monthlyMRs"))
    comments_per_month = comments / len(months) if months else 0

    velocity = _first_number(jira.get("velocity") or {}, "combinedAverageVelocity", "averageVelocity")
    ctoi = jira.get("ctoi") or {}

    return {
        "created": created,
        "reviews": reviews,
        "comments": comments,
        "commentsPerMonth": comments_per_month,
        "velocity": velocity,
        "storyPoints": _first_number(jira, "totalStoryPoints", "storyPoints"),
        "resolved": _first_number(jira, "resolved"),
        "avgResolutionTime": _first_number(jira, "avgResolutionTime"),
        "ctoiFixed": _first_number(ctoi, "fixed"),
        "ctoiParticipated": _first_number(ctoi, "participated"),
    }


def average_positive(values: Iterable[float]) -> float | None:
    """
    Mean of the strictly positive values, rounded half-up to one decimal.

    Zeros mean "no data" and are excluded from both sum and count, so
    [10, 0, 20] averages to 15.0. Returns None when nothing qualifies.
    """
    positive = [value for value in values if value > 0]
    if not positive:
        return None
    return round_half_up(sum(positive) / len(positive))


def compute_averages(entries: Sequence[LeaderboardEntry]) -> MetricAverages:
    """Per-metric average_positive() over ``entries``."""
    extracted = [extract_metrics(entry) for entry in entries]
    return MetricAverages(**{name: average_positive(m[name] for m in extracted) for name in METRIC_NAMES})


def level_bucket_members(entries: Sequence[LeaderboardEntry], bucket: str) -> list[LeaderboardEntry]:
    """Entries whose level matches ``bucket`` (case-insensitive), contractors never included."""
    members = []
    for entry in entries:
        if entry.is_contractor:
            continue
        if (entry.level or "").lower() == bucket.lower():
            members.append(entry)
    return members


def compute_benchmarks(leaderboard: Sequence["LeaderboardEntry | Mapping[str, Any]"]) -> Benchmarks:
    """
    FTE and P1-P4 benchmarks for a leaderboard.

    FTE covers every entry, contractors included. Level buckets exclude
    contractors.
    """
    entries = [_as_entry(entry) for entry in leaderboard]
    buckets = {bucket: compute_averages(level_bucket_members(entries, bucket)) for bucket in LEVEL_BUCKETS}
    return Benchmarks(fte=compute_averages(entries), **buckets)


class BenchmarkAggregator:
    """Cached benchmarks for a user set and date range."""

    def __init__(self, cache: TTLCache, fetcher: BatchLeaderboardFetcher, ttl_seconds: int = BENCHMARKS_TTL):
        self.cache = cache
        self.fetcher = fetcher
        self.ttl_seconds = ttl_seconds

    def compute(self, leaderboard: Sequence["LeaderboardEntry | Mapping[str, Any]"]) -> Benchmarks:
        return compute_benchmarks(leaderboard)

    async def get_benchmarks(
        self,
        users: Sequence[UserIdentity],
        date_range: DateRange | None = None,
        skip_cache: bool = False,
    ) -> Benchmarks:
        """
        Benchmarks for ``users`` over ``date_range``.

        Served from ``benchmarks:<range>`` when cached; otherwise computed
        from the fetcher's leaderboard and cached.

        Args:
            users: Leaderboard participants
            date_range: Window to aggregate
            skip_cache: Recompute even if cached (the leaderboard is refetched too)
        """
        cache_key = keys.ranged(keys.BENCHMARKS, date_range)

        async def build() -> Benchmarks:
            leaderboard = await self.fetcher.fetch(users, date_range, skip_cache=skip_cache)
            benchmarks = self.compute(leaderboard)
            logger.info(f"Benchmarks computed from {len(leaderboard)} leaderboard entries ({date_range})")
            return benchmarks

        if skip_cache:
            self.cache.delete(cache_key)
        return await self.cache.get_or_fetch(cache_key, build, self.ttl_seconds)
