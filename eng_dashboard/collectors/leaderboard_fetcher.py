#!/usr/bin/env python3
"""
Batch Leaderboard Fetcher

Fetches GitHub, GitLab and Jira stats for every leaderboard user without
tripping upstream quotas.

Strategy:
- Users are split into fixed-size batches that run strictly one after another,
  with a pause before every batch after the first
- Inside a batch, user starts are staggered to smooth the burst, and each user
  is raced against a timeout
- Inside a user, all services are fetched concurrently; one failing service
  never affects the others
- The first HTTP 429 stops further batches; whatever was collected is returned
- The operator's own row is built from the already-cached combined stats

Performance:
- 30 users, 5 per batch: 6 batches x (slowest user) + 5 x 2s pauses
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from eng_dashboard.adapters.base import AdapterSet, empty_review_stats
from eng_dashboard.cache import keys
from eng_dashboard.cache.ttl_cache import TTLCache
from eng_dashboard.core.logging_config import get_logger, log_with_context
from eng_dashboard.domain.date_range import DateRange
from eng_dashboard.domain.leaderboard import SERVICES, LeaderboardEntry
from eng_dashboard.domain.users import UserIdentity
from eng_dashboard.secure_config import OperatorIdentityConfig
from eng_dashboard.utils.concurrency import (
    RateLimitSignal,
    SingleFlight,
    gather_settled,
    gather_settled_map,
    with_deadline,
)
from eng_dashboard.utils.error_handling import FetchTimeoutError, error_message

logger = get_logger(__name__)

GIT_SERVICES = ("github", "gitlab")


class BatchLeaderboardFetcher:
    """Rate-limit-aware concurrent fetch of per-user stats"""

    DEFAULT_BATCH_SIZE = 5
    DEFAULT_BATCH_DELAY = 2.0  # seconds before every batch after the first
    DEFAULT_STAGGER_DELAY = 0.1  # seconds per position within a batch
    DEFAULT_USER_TIMEOUT = 30.0
    CACHE_TTL = 300

    def __init__(
        self,
        cache: TTLCache,
        adapters: AdapterSet,
        operator: OperatorIdentityConfig | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        stagger_delay: float = DEFAULT_STAGGER_DELAY,
        user_timeout: float = DEFAULT_USER_TIMEOUT,
        cache_ttl: int = CACHE_TTL,
        cancel_on_timeout: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize leaderboard fetcher.

        Args:
            cache: Shared TTL cache
            adapters: Upstream service adapters
            operator: Process-wide identity used for the default-user shortcut
            batch_size: Users fetched concurrently per batch (default: 5)
            batch_delay: Pause before every batch after the first (default: 2.0s)
            stagger_delay: Start offset per position within a batch (default: 0.1s)
            user_timeout: Budget for one user's fetch (default: 30s)
            cache_ttl: Seconds the finished leaderboard stays cached (default: 300)
            cancel_on_timeout: Cancel a timed-out user fetch instead of abandoning it
            sleep: Delay function, injectable for tests
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        self.cache = cache
        self.adapters = adapters
        self.operator = operator
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.stagger_delay = stagger_delay
        self.user_timeout = user_timeout
        self.cache_ttl = cache_ttl
        self.cancel_on_timeout = cancel_on_timeout
        self._sleep = sleep
        self._single_flight = SingleFlight()

    async def fetch(
        self,
        users: Sequence[UserIdentity],
        date_range: DateRange | None = None,
        skip_cache: bool = False,
        rate_limit: RateLimitSignal | None = None,
    ) -> list[LeaderboardEntry]:
        """
        Build the leaderboard for ``users``.

        Never raises for upstream failures: they are recorded per user and
        service in ``LeaderboardEntry.errors``.

        Args:
            users: Leaderboard participants; output order matches this order
            date_range: Window to aggregate
            skip_cache: Ignore a cached leaderboard and fetch again
            rate_limit: Shared signal; already tripped means no batch starts

        Returns:
            One entry per user, or a prefix of that list if rate limited
        """
        cache_key = keys.leaderboard_key((user.id for user in users), date_range)

        if not skip_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Leaderboard served from cache ({len(cached)} users)")
                return cached

        collected, build_signal = await self._single_flight.run(
            cache_key, lambda: self._build(list(users), date_range, cache_key, rate_limit)
        )

        # a joined build may have run under another caller's signal
        if rate_limit is not None and build_signal is not rate_limit and build_signal.rate_limited:
            rate_limit.trip(build_signal.detected_by or cache_key)
        return collected

    async def _build(
        self,
        users: list[UserIdentity],
        date_range: DateRange | None,
        cache_key: str,
        rate_limit: RateLimitSignal | None,
    ) -> tuple[list[LeaderboardEntry], RateLimitSignal]:
        signal = rate_limit or RateLimitSignal()
        total_batches = (len(users) + self.batch_size - 1) // self.batch_size
        collected: list[LeaderboardEntry] = []
        batches_run = 0
        start = time.time()

        logger.info(f"Fetching leaderboard for {len(users)} users in {total_batches} batches ({date_range})")

        for offset in range(0, len(users), self.batch_size):
            if batches_run > 0 and self.batch_delay and not signal.rate_limited:
                await self._sleep(self.batch_delay)

            # abandoned requests can still trip the signal during the pause
            if signal.rate_limited:
                logger.warning(
                    f"Rate limited - stopping after {batches_run}/{total_batches} batches "
                    f"({len(collected)}/{len(users)} users collected)"
                )
                break

            batch = users[offset : offset + self.batch_size]
            batch_start = time.time()
            outcomes = await gather_settled(
                self._fetch_user_slot(user, position, date_range, signal) for position, user in enumerate(batch)
            )
            batches_run += 1

            for user, outcome in zip(batch, outcomes, strict=True):
                if outcome.ok:
                    collected.append(outcome.value)
                    continue

                if isinstance(outcome.error, FetchTimeoutError):
                    logger.warning(f"Timed out fetching stats for {user.id} after {self.user_timeout:.0f}s")
                else:
                    logger.error(f"Unexpected failure building leaderboard row for {user.id}: {outcome.error}")
                collected.append(LeaderboardEntry(user=user.summary(), errors={"general": error_message(outcome.error)}))

            log_with_context(
                logger,
                "debug",
                f"Batch {batches_run}/{total_batches} complete",
                batch=batches_run,
                total_batches=total_batches,
                users=len(batch),
                duration_ms=round((time.time() - batch_start) * 1000),
            )

        if rate_limit is None:
            signal.finish()

        if batches_run:
            self.cache.set(cache_key, collected, self.cache_ttl)

        logger.info(
            f"Leaderboard fetched: {len(collected)}/{len(users)} users in {time.time() - start:.1f}s"
            + (" (rate limited)" if signal.rate_limited else "")
        )
        return collected, signal

    # Per-user fetch

    def _is_operator(self, user: UserIdentity) -> bool:
        if self.operator is None or user.has_token_override:
            return False
        return self.operator.matches(user.github_username, user.gitlab_username, user.jira_email)

    def _entry_from_operator_cache(self, user: UserIdentity, date_range: DateRange | None) -> LeaderboardEntry | None:
        """Operator row from the cached combined stats, None if not cached."""
        combined = self.cache.get(keys.ranged(keys.STATS, date_range))
        if not combined:
            return None

        accounts = {
            "github": user.github_username,
            "gitlab": user.gitlab_username,
            "jira": user.jira_email,
        }
        results: dict[str, Any] = {}
        errors: dict[str, str] = {}
        for service in SERVICES:
            result = combined.get(service) if accounts[service] else None
            if isinstance(result, Mapping) and result.get("error"):
                errors[service] = str(result["error"])
                result = None
            results[service] = result

        git_stats = self.cache.get(keys.ranged(keys.STATS_GIT, date_range)) or {}

        return LeaderboardEntry(
            user=user.summary(),
            github=results["github"],
            gitlab=results["gitlab"],
            jira=results["jira"],
            review_stats=git_stats.get("reviewStats"),
            errors=errors,
        )

    async def _fetch_user_slot(
        self, user: UserIdentity, position: int, date_range: DateRange | None, signal: RateLimitSignal
    ) -> LeaderboardEntry:
        if self._is_operator(user):
            entry = self._entry_from_operator_cache(user, date_range)
            if entry is not None:
                logger.debug(f"Reusing cached operator stats for {user.id}")
                return entry

        if position and self.stagger_delay:
            await self._sleep(position * self.stagger_delay)

        try:
            return await with_deadline(
                self._fetch_user(user, date_range, signal), self.user_timeout, cancel=self.cancel_on_timeout
            )
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError("timeout") from e

    async def _fetch_user(
        self, user: UserIdentity, date_range: DateRange | None, signal: RateLimitSignal
    ) -> LeaderboardEntry:
        calls: dict[str, Awaitable[Any]] = {}

        github_credentials = user.github.credentials() if user.github else None
        if github_credentials:
            calls["github"] = self.adapters.github.get_stats(date_range, github_credentials)
            calls["githubReviews"] = self.adapters.github.get_review_comments(date_range, github_credentials)

        gitlab_credentials = user.gitlab.credentials() if user.gitlab else None
        if gitlab_credentials:
            calls["gitlab"] = self.adapters.gitlab.get_stats(date_range, gitlab_credentials)
            calls["gitlabReviews"] = self.adapters.gitlab.get_review_comments(date_range, gitlab_credentials)

        jira_credentials = user.jira.credentials() if user.jira else None
        if jira_credentials:
            calls["jira"] = self.adapters.jira.get_stats(date_range, jira_credentials)

        outcomes = await gather_settled_map(calls)

        results: dict[str, Any] = dict.fromkeys(SERVICES)
        errors: dict[str, str] = {}
        for service in SERVICES:
            outcome = outcomes.get(service)
            if outcome is None:
                continue

            if not outcome.ok:
                signal.observe(outcome.error, f"{service}:{user.id}")
                errors[service] = error_message(outcome.error)
                logger.warning(f"{service} stats failed for {user.id}: {errors[service]}")
            elif isinstance(outcome.value, Mapping) and outcome.value.get("error"):
                errors[service] = str(outcome.value["error"])
                signal.observe(errors[service], f"{service}:{user.id}")
                logger.warning(f"{service} stats returned an error for {user.id}: {errors[service]}")
            else:
                results[service] = outcome.value

        review_stats: dict[str, Any] | None = None
        for service in GIT_SERVICES:
            outcome = outcomes.get(f"{service}Reviews")
            if outcome is None:
                continue

            review_stats = review_stats or {}
            if outcome.ok and outcome.value is not None:
                review_stats[service] = outcome.value
            else:
                if outcome.error is not None:
                    signal.observe(outcome.error, f"{service}-reviews:{user.id}")
                    logger.debug(f"{service} review comments failed for {user.id}: {outcome.error}")
                review_stats[service] = empty_review_stats(service)

        return LeaderboardEntry(
            user=user.summary(),
            github=results["github"],
            gitlab=results["gitlab"],
            jira=results["jira"],
            review_stats=review_stats,
            errors=errors,
        )
