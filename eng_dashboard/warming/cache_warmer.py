#!/usr/bin/env python3
"""
Background Cache Warmer

Keeps the dashboard's most-requested cache entries hot so user requests are
served from memory instead of fanning out to GitHub, GitLab and Jira.

Each run, for the current and the previous fiscal year (sequentially):
    1. Combined stats (all services concurrently) -> stats / stats-git / stats-jira
    2. List pages one at a time -> prs, mrs, issues, projects-v3, ctoi-stats
    3. Leaderboard for every directory user, then the benchmarks derived from it

Then, independent of the date ranges:
    4. Per-project analytics and the rolling site-wide analytics windows

Rate limiting: the first 429 seen anywhere in the run stops the leaderboard
step for the rest of the run. Cheap single-identity steps keep going.

Usage:
    warmer = CacheWarmer(cache, adapters, fetcher, UserDirectory.from_config())
    warmer.start()          # first run after startup delay, then every interval
    ...
    await warmer.stop()
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, date, datetime
from typing import Any

from eng_dashboard.adapters.base import AdapterSet, empty_review_stats
from eng_dashboard.aggregation.benchmark_aggregator import BenchmarkAggregator
from eng_dashboard.cache import keys
from eng_dashboard.cache.ttl_cache import TTLCache
from eng_dashboard.collectors.leaderboard_fetcher import BatchLeaderboardFetcher
from eng_dashboard.collectors.user_directory import UserDirectory
from eng_dashboard.core.logging_config import get_logger
from eng_dashboard.core.run_metrics import WarmRunTracker, track_warm_run
from eng_dashboard.domain.date_range import DateRange, fiscal_year_ranges, rolling_range
from eng_dashboard.domain.users import UserIdentity
from eng_dashboard.secure_config import WarmerConfig
from eng_dashboard.utils.concurrency import RateLimitSignal, gather_settled_map
from eng_dashboard.utils.error_handling import error_message, log_and_continue

logger = get_logger(__name__)

RUN_NAME = "cache-warm"

ANALYTICS_WINDOWS = ("last6months", "last12months")

# Longer than the default 600s interval so entries never lapse between runs.
# Issues churn fastest and get the shortest lifetime.
DEFAULT_TTLS: dict[str, int] = {
    keys.STATS: 900,
    keys.STATS_GIT: 900,
    keys.STATS_JIRA: 900,
    keys.PRS: 900,
    keys.MRS: 900,
    keys.ISSUES: 720,
    keys.PROJECTS: 900,
    keys.CTOI_STATS: 900,
    keys.LEADERBOARD: 900,
    keys.BENCHMARKS: 900,
    keys.PROJECT_ANALYTICS: 1800,
    keys.ADOBE_ANALYTICS: 1800,
}


class CacheWarmer:
    """
    Periodic, rate-limit-aware cache population.

    Never raises to its scheduler: every step failure is logged and recorded
    on the run's WarmRunTracker.
    """

    def __init__(
        self,
        cache: TTLCache,
        adapters: AdapterSet,
        fetcher: BatchLeaderboardFetcher,
        user_directory: UserDirectory,
        aggregator: BenchmarkAggregator | None = None,
        config: WarmerConfig | None = None,
        ttls: Mapping[str, int] | None = None,
        today: Callable[[], date] = date.today,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize cache warmer.

        Args:
            cache: Shared TTL cache to populate
            adapters: Upstream service adapters
            fetcher: Leaderboard fetcher
            user_directory: Source of leaderboard users (anything with async get_users())
            aggregator: Benchmark aggregator (default: built on cache and fetcher)
            config: Schedule and analytics settings (default: WarmerConfig())
            ttls: Per-prefix TTL overrides merged over DEFAULT_TTLS
            today: Date source, injectable for tests
            sleep: Delay function, injectable for tests
        """
        self.cache = cache
        self.adapters = adapters
        self.fetcher = fetcher
        self.user_directory = user_directory
        self.aggregator = aggregator or BenchmarkAggregator(cache, fetcher)
        self.config = config or WarmerConfig()
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._today = today
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    # Scheduling

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the first run after the startup delay, then every interval."""
        if not self.config.enabled:
            logger.info("Cache warming disabled (CACHE_WARM_ENABLED=false)")
            return
        if self.running:
            return

        logger.info(
            f"Cache warming scheduled: first run in {self.config.startup_delay_seconds}s, "
            f"then every {self.config.interval_seconds}s"
        )
        self._task = asyncio.get_running_loop().create_task(self._run_forever())

    async def _run_forever(self) -> None:
        await self._sleep(self.config.startup_delay_seconds)
        while True:
            await self.warm_once()
            await self._sleep(self.config.interval_seconds)

    async def stop(self) -> None:
        """Cancel the scheduled task and wait for it to unwind."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Cache warming stopped")

    # One run

    async def warm_once(self) -> WarmRunTracker:
        """
        Run one full warm pass.

        Returns:
            Tracker with the steps that succeeded, failed or were skipped
        """
        with track_warm_run(RUN_NAME) as tracker:
            signal = RateLimitSignal()
            try:
                users = await self._load_users(tracker)
                for date_range in fiscal_year_ranges(self._today()):
                    await self._warm_range(date_range, users, signal, tracker)
                await self._warm_analytics(signal, tracker)
            except Exception as e:
                log_and_continue(logger, e, context={"run": RUN_NAME}, error_type="Cache warm run")
                tracker.record_step("run", success=False, error=e)
            signal.finish()
        return tracker

    async def _load_users(self, tracker: WarmRunTracker) -> list[UserIdentity]:
        try:
            users = await self.user_directory.get_users()
        except Exception as e:
            log_and_continue(logger, e, context={"step": "users"}, error_type="User directory load")
            tracker.record_step("users", success=False, error=e)
            return []
        tracker.record_step("users", success=True)
        return users

    async def _warm_range(
        self,
        date_range: DateRange,
        users: list[UserIdentity],
        signal: RateLimitSignal,
        tracker: WarmRunTracker,
    ) -> None:
        logger.info(f"Warming cache for {date_range}")

        await self._warm_stats(date_range, signal, tracker)

        github, gitlab, jira = self.adapters.github, self.adapters.gitlab, self.adapters.jira
        list_steps: list[tuple[str, Callable[[], Awaitable[Any]]]] = [
            (keys.PRS, lambda: github.get_items_for_page(date_range)),
            (keys.MRS, lambda: gitlab.get_items_for_page(date_range)),
            (keys.ISSUES, lambda: jira.get_issues_for_page(date_range)),
            (keys.PROJECTS, lambda: jira.get_projects_by_epic(date_range)),
            (keys.CTOI_STATS, lambda: jira.get_ctoi_stats(date_range)),
        ]
        for prefix, load in list_steps:
            await self._warm_value(keys.ranged(prefix, date_range), self.ttls[prefix], load, signal, tracker)

        await self._warm_leaderboard(date_range, users, signal, tracker)

    def _observe(self, error: Any, source: str, signal: RateLimitSignal, tracker: WarmRunTracker) -> None:
        if signal.observe(error, source):
            tracker.record_rate_limit_hit()

    async def _warm_value(
        self,
        cache_key: str,
        ttl: int,
        load: Callable[[], Awaitable[Any]],
        signal: RateLimitSignal,
        tracker: WarmRunTracker,
    ) -> Any:
        """Load one value and cache it; failures are logged and recorded, never raised."""
        try:
            value = await load()
        except Exception as e:
            self._observe(e, cache_key, signal, tracker)
            log_and_continue(logger, e, context={"cache_key": cache_key}, error_type=f"Cache warm of {cache_key}")
            tracker.record_step(cache_key, success=False, error=e)
            return None

        if value is None:
            logger.debug(f"Nothing to cache for {cache_key}")
        else:
            self.cache.set(cache_key, value, ttl)
        tracker.record_step(cache_key, success=True)
        return value

    async def _warm_stats(self, date_range: DateRange, signal: RateLimitSignal, tracker: WarmRunTracker) -> None:
        outcomes = await gather_settled_map(
            {
                "github": self.adapters.github.get_stats(date_range),
                "gitlab": self.adapters.gitlab.get_stats(date_range),
                "jira": self.adapters.jira.get_stats(date_range),
                "githubReviews": self.adapters.github.get_review_comments(date_range),
                "gitlabReviews": self.adapters.gitlab.get_review_comments(date_range),
            }
        )

        results: dict[str, Any] = {}
        for service in ("github", "gitlab", "jira"):
            outcome = outcomes[service]
            source = f"{service}:{date_range}"
            if outcome.ok:
                results[service] = outcome.value
                if isinstance(outcome.value, Mapping) and outcome.value.get("error"):
                    self._observe(str(outcome.value["error"]), source, signal, tracker)
                    tracker.record_step(f"{service}-stats", success=False)
                continue

            self._observe(outcome.error, source, signal, tracker)
            log_and_continue(
                logger,
                outcome.error,
                context={"service": service, "date_range": str(date_range)},
                error_type=f"{service} stats warm",
            )
            tracker.record_step(f"{service}-stats", success=False, error=outcome.error)
            results[service] = {"error": error_message(outcome.error)}

        review_stats: dict[str, Any] = {}
        for service in ("github", "gitlab"):
            outcome = outcomes[f"{service}Reviews"]
            if outcome.ok and outcome.value is not None:
                review_stats[service] = outcome.value
                continue
            if outcome.error is not None:
                self._observe(outcome.error, f"{service}-reviews:{date_range}", signal, tracker)
                logger.debug(f"{service} review comments failed for {date_range}: {outcome.error}")
            review_stats[service] = empty_review_stats(service)

        timestamp = datetime.now(UTC).isoformat()

        stats_key = keys.ranged(keys.STATS, date_range)
        self.cache.set(
            stats_key,
            {"github": results["github"], "gitlab": results["gitlab"], "jira": results["jira"], "timestamp": timestamp},
            self.ttls[keys.STATS],
        )
        tracker.record_step(stats_key, success=True)

        git_key = keys.ranged(keys.STATS_GIT, date_range)
        self.cache.set(
            git_key,
            {
                "github": results["github"],
                "gitlab": results["gitlab"],
                "reviewStats": review_stats,
                "timestamp": timestamp,
            },
            self.ttls[keys.STATS_GIT],
        )
        tracker.record_step(git_key, success=True)

        jira = outcomes["jira"]
        if jira.ok and not (isinstance(jira.value, Mapping) and jira.value.get("error")):
            jira_key = keys.ranged(keys.STATS_JIRA, date_range)
            self.cache.set(jira_key, jira.value, self.ttls[keys.STATS_JIRA])
            tracker.record_step(jira_key, success=True)

    async def _warm_leaderboard(
        self,
        date_range: DateRange,
        users: list[UserIdentity],
        signal: RateLimitSignal,
        tracker: WarmRunTracker,
    ) -> None:
        leaderboard_key = keys.leaderboard_key((user.id for user in users), date_range)
        benchmarks_key = keys.ranged(keys.BENCHMARKS, date_range)

        if signal.rate_limited:
            logger.warning(f"Skipping leaderboard warm for {date_range}: rate limited by {signal.detected_by}")
            tracker.record_skip(leaderboard_key)
            tracker.record_skip(benchmarks_key)
            return

        if not users:
            logger.info(f"No directory users, leaderboard warm skipped for {date_range}")
            return

        try:
            leaderboard = await self.fetcher.fetch(users, date_range, skip_cache=True, rate_limit=signal)
        except Exception as e:
            self._observe(e, leaderboard_key, signal, tracker)
            log_and_continue(logger, e, context={"cache_key": leaderboard_key}, error_type="Leaderboard warm")
            tracker.record_step(leaderboard_key, success=False, error=e)
            return

        # a list cut short by a 429 keeps the fetcher's shorter lifetime
        partial = signal.rate_limited
        benchmarks_ttl = self.ttls[keys.BENCHMARKS]
        if partial:
            tracker.record_rate_limit_hit()
            benchmarks_ttl = min(benchmarks_ttl, self.fetcher.cache_ttl)
            logger.warning(
                f"Leaderboard for {date_range} cut short by rate limiting "
                f"({len(leaderboard)}/{len(users)} users), cached for {self.fetcher.cache_ttl}s only"
            )
        else:
            self.cache.set(leaderboard_key, leaderboard, self.ttls[keys.LEADERBOARD])
        tracker.record_step(leaderboard_key, success=True)

        try:
            benchmarks = self.aggregator.compute(leaderboard)
        except Exception as e:
            log_and_continue(logger, e, context={"cache_key": benchmarks_key}, error_type="Benchmarks warm")
            tracker.record_step(benchmarks_key, success=False, error=e)
            return

        self.cache.set(benchmarks_key, benchmarks, benchmarks_ttl)
        tracker.record_step(benchmarks_key, success=True)

    async def _warm_analytics(self, signal: RateLimitSignal, tracker: WarmRunTracker) -> None:
        analytics = self.adapters.analytics
        if analytics is None:
            logger.debug("No analytics adapter configured, analytics warm skipped")
            return

        for project_key in self.config.analytics_project_keys:
            await self._warm_value(
                keys.project_analytics_key(project_key),
                self.ttls[keys.PROJECT_ANALYTICS],
                lambda project_key=project_key: analytics.get_project_analytics(project_key),
                signal,
                tracker,
            )

        today = self._today()
        for window in ANALYTICS_WINDOWS:
            date_range = rolling_range(window, today)
            await self._warm_value(
                keys.ranged(keys.ADOBE_ANALYTICS, date_range),
                self.ttls[keys.ADOBE_ANALYTICS],
                lambda date_range=date_range: analytics.get_analytics_data(date_range),
                signal,
                tracker,
            )
