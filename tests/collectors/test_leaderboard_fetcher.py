"""
Tests for BatchLeaderboardFetcher

Tests cover:
- Sequential batches with a pause before every batch after the first
- Output order matches input order regardless of completion order
- Per-service failure isolation and StatsResult "error" fields
- Rate limiting: the first 429 stops further batches, prefix returned and cached
- Per-user timeout (abandon by default, cancel when configured)
- Operator shortcut from cached combined stats
- Caching, skip_cache and single-flight de-duplication
"""

import asyncio
import random

import pytest

from eng_dashboard.adapters.base import AdapterSet
from eng_dashboard.cache import keys
from eng_dashboard.collectors.leaderboard_fetcher import BatchLeaderboardFetcher
from eng_dashboard.domain.users import GitAccount, JiraAccount, UserIdentity
from eng_dashboard.secure_config import OperatorIdentityConfig
from eng_dashboard.utils.concurrency import RateLimitSignal
from eng_dashboard.utils.error_handling import FetchTimeoutError, RateLimitedError, UpstreamUnavailableError

# Fixtures


@pytest.fixture
def fetcher(cache, adapters, no_sleep):
    """Fetcher with default batching and a non-waiting sleep"""
    return BatchLeaderboardFetcher(cache, adapters, sleep=no_sleep)


def _ids(entries):
    return [entry.user_id for entry in entries]


# Batching


class TestBatching:
    """Test batch scheduling"""

    @pytest.mark.asyncio
    async def test_twelve_users_three_batches(self, fetcher, make_users, github, no_sleep):
        """Test 12 users with batch size 5 run as 5 + 5 + 2 with two inter-batch pauses"""
        users = make_users(12)

        entries = await fetcher.fetch(users)

        assert _ids(entries) == [user.id for user in users]
        assert len(github.calls_for("get_stats")) == 12
        assert no_sleep.calls.count(BatchLeaderboardFetcher.DEFAULT_BATCH_DELAY) == 2

    @pytest.mark.asyncio
    async def test_starts_staggered_within_batch(self, fetcher, make_users, no_sleep):
        """Test position i in a batch waits i * 100ms before starting"""
        await fetcher.fetch(make_users(3))

        assert no_sleep.calls == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_batches_never_overlap(self, cache, adapters, make_users, github):
        """Test no user of batch N+1 starts before every user of batch N finished"""
        fetcher = BatchLeaderboardFetcher(cache, adapters, batch_size=2, batch_delay=0, stagger_delay=0)
        users = make_users(4)
        for index, user in enumerate(users):
            github.delays[user.github_username] = 0.02 if index == 0 else 0.001

        await fetcher.fetch(users)

        second_batch_start = github.events.index(("start", "get_stats", "gh2"))
        assert github.events.index(("end", "get_stats", "gh0")) < second_batch_start
        assert github.events.index(("end", "get_stats", "gh1")) < second_batch_start

    @pytest.mark.asyncio
    async def test_order_preserved_under_random_latency(self, cache, adapters, make_users, github, gitlab, jira):
        """Test entry i belongs to user i whatever the completion order"""
        fetcher = BatchLeaderboardFetcher(cache, adapters, batch_delay=0, stagger_delay=0)
        users = make_users(9)
        rng = random.Random(7)
        for user in users:
            github.delays[user.github_username] = rng.uniform(0, 0.02)
            gitlab.delays[user.gitlab_username] = rng.uniform(0, 0.02)
            jira.delays[user.jira_email] = rng.uniform(0, 0.02)

        entries = await fetcher.fetch(users)

        assert _ids(entries) == [user.id for user in users]
        assert [entry.github["identity"] for entry in entries] == [user.github_username for user in users]

    @pytest.mark.asyncio
    async def test_empty_user_list(self, fetcher):
        assert await fetcher.fetch([]) == []

    def test_batch_size_must_be_positive(self, cache, adapters):
        with pytest.raises(ValueError, match="batch_size"):
            BatchLeaderboardFetcher(cache, adapters, batch_size=0)


# Per-user results


class TestUserResults:
    """Test per-user, per-service outcomes"""

    @pytest.mark.asyncio
    async def test_full_entry(self, fetcher, make_users):
        """Test every service and both review sources populate the row"""
        [entry] = await fetcher.fetch(make_users(1))

        assert entry.user["githubUsername"] == "gh0"
        assert entry.github["created"] == 4
        assert entry.gitlab["created"] == 4
        assert entry.jira["totalStoryPoints"] == 21
        assert entry.review_stats["github"]["prsReviewed"] == 3
        assert entry.review_stats["gitlab"]["mrsReviewed"] == 3
        assert entry.errors == {}

    @pytest.mark.asyncio
    async def test_credentials_passed_per_user(self, fetcher, github, jira):
        """Test per-user tokens reach the adapters"""
        user = UserIdentity(
            id="alice",
            github=GitAccount("alice-gh", token="ghp_alice"),
            jira=JiraAccount("alice@example.com", pat="pat_alice"),
        )

        await fetcher.fetch([user])

        assert github.calls_for("get_stats") == ["alice-gh"]
        assert jira.calls_for("get_stats") == ["alice@example.com"]

    @pytest.mark.asyncio
    async def test_missing_accounts_are_none_not_errors(self, fetcher, gitlab, jira):
        """Test services without an account are skipped silently"""
        user = UserIdentity(id="solo", github=GitAccount("solo-gh"))

        [entry] = await fetcher.fetch([user])

        assert entry.github is not None
        assert entry.gitlab is None
        assert entry.jira is None
        assert entry.errors == {}
        assert set(entry.review_stats) == {"github"}
        assert gitlab.calls == []
        assert jira.calls == []

    @pytest.mark.asyncio
    async def test_service_failure_is_isolated(self, fetcher, make_users, gitlab):
        """Test one failing service leaves the others intact"""
        gitlab.failures["gl0"] = UpstreamUnavailableError("GitLab 503", service="gitlab", status_code=503)

        [entry] = await fetcher.fetch(make_users(1))

        assert entry.gitlab is None
        assert entry.errors == {"gitlab": "GitLab 503"}
        assert entry.github is not None
        assert entry.jira is not None

    @pytest.mark.asyncio
    async def test_stats_result_error_field_recorded(self, fetcher, make_users, jira):
        """Test an adapter returning {"error": ...} counts as a failure"""
        jira.failures["user0@example.com"] = {"error": "Jira PAT expired"}

        [entry] = await fetcher.fetch(make_users(1))

        assert entry.jira is None
        assert entry.errors == {"jira": "Jira PAT expired"}

    @pytest.mark.asyncio
    async def test_review_failure_falls_back_to_zero(self, fetcher, make_users, github):
        """Test review-comment failures zero the stats without recording an error"""
        github.review_failures["gh0"] = UpstreamUnavailableError("GraphQL error")

        [entry] = await fetcher.fetch(make_users(1))

        assert entry.review_stats["github"]["totalComments"] == 0
        assert entry.review_stats["github"]["prsReviewed"] == 0
        assert entry.errors == {}

    @pytest.mark.asyncio
    async def test_whole_user_failure_does_not_affect_batch(self, fetcher, make_users, github, gitlab, jira):
        """Test a user failing on every service still yields a row, and siblings are unaffected"""
        for adapter, who in ((github, "gh1"), (gitlab, "gl1"), (jira, "user1@example.com")):
            adapter.failures[who] = UpstreamUnavailableError("down")

        entries = await fetcher.fetch(make_users(3))

        assert set(entries[1].errors) == {"github", "gitlab", "jira"}
        assert entries[0].errors == {}
        assert entries[2].errors == {}


# Rate limiting


class TestRateLimiting:
    """Test 429 backpressure"""

    @pytest.mark.asyncio
    async def test_429_in_second_batch_stops_third(self, cache, fetcher, make_users, github):
        """Test the collected prefix is returned, not raised, and cached"""
        users = make_users(12)
        github.failures["gh6"] = RateLimitedError(service="github")

        entries = await fetcher.fetch(users)

        assert len(entries) == 10
        assert _ids(entries) == [user.id for user in users[:10]]
        assert entries[6].errors["github"] == "Rate limited (HTTP 429)"
        assert "gh10" not in github.calls_for("get_stats")
        assert "gh11" not in github.calls_for("get_stats")
        assert cache.get(keys.leaderboard_key((u.id for u in users), None)) == entries

    @pytest.mark.asyncio
    async def test_429_in_error_field_detected(self, fetcher, make_users, jira, github):
        """Test a StatsResult error mentioning 429 trips the signal"""
        jira.failures["user2@example.com"] = {"error": "Request failed with status code 429"}

        entries = await fetcher.fetch(make_users(8))

        assert len(entries) == 5
        assert "gh5" not in github.calls_for("get_stats")

    @pytest.mark.asyncio
    async def test_429_from_review_comments_detected(self, fetcher, make_users, gitlab):
        """Test review-comment rate limiting also stops later batches"""
        gitlab.review_failures["gl0"] = RateLimitedError(service="gitlab")

        entries = await fetcher.fetch(make_users(6))

        assert len(entries) == 5
        assert entries[0].errors == {}

    @pytest.mark.asyncio
    async def test_shared_signal_already_tripped(self, fetcher, make_users, github):
        """Test a caller's tripped signal prevents any batch and nothing is cached"""
        signal = RateLimitSignal()
        signal.trip("stats")

        entries = await fetcher.fetch(make_users(3), rate_limit=signal)

        assert entries == []
        assert github.calls == []
        assert len(fetcher.cache) == 0

    @pytest.mark.asyncio
    async def test_shared_signal_receives_detection(self, fetcher, make_users, github):
        """Test the caller sees a 429 detected inside the fetch"""
        signal = RateLimitSignal()
        github.failures["gh0"] = RateLimitedError(service="github")

        await fetcher.fetch(make_users(2), rate_limit=signal)

        assert signal.rate_limited
        assert signal.detected_by == "github:user0"

    @pytest.mark.asyncio
    async def test_429_during_pause_stops_next_batch(self, cache, adapters, make_users, github):
        """Test an abandoned request that hits 429 during the inter-batch pause stops the next batch"""
        fetcher = BatchLeaderboardFetcher(
            cache, adapters, batch_size=1, batch_delay=0.3, stagger_delay=0, user_timeout=0.02
        )
        github.delays["gh0"] = 0.1
        github.failures["gh0"] = RateLimitedError(service="github")
        signal = RateLimitSignal()

        entries = await fetcher.fetch(make_users(2), rate_limit=signal)

        assert signal.rate_limited
        assert _ids(entries) == ["user0"]
        assert entries[0].errors == {"general": "timeout"}
        assert "gh1" not in github.calls_for("get_stats")

    @pytest.mark.asyncio
    async def test_joined_fetch_reports_429_to_caller_signal(self, cache, adapters, make_users, github):
        """Test a caller joining an in-flight build still sees the 429 that build hit"""
        fetcher = BatchLeaderboardFetcher(cache, adapters, stagger_delay=0)
        users = make_users(2)
        github.delays["gh0"] = 0.02
        github.failures["gh0"] = RateLimitedError(service="github")
        signal = RateLimitSignal()

        first, joined = await asyncio.gather(
            fetcher.fetch(users), fetcher.fetch(users, skip_cache=True, rate_limit=signal)
        )

        assert len(github.calls_for("get_stats")) == 2
        assert joined == first
        assert joined[0].errors["github"] == "Rate limited (HTTP 429)"
        assert signal.rate_limited
        assert signal.detected_by == "github:user0"


# Timeouts


class TestTimeouts:
    """Test per-user deadline"""

    @pytest.mark.asyncio
    async def test_timeout_recorded_as_general_error(self, cache, adapters, make_users, github):
        """Test a slow user gets errors.general = timeout and siblings are unaffected"""
        fetcher = BatchLeaderboardFetcher(
            cache, adapters, stagger_delay=0, user_timeout=0.05, cancel_on_timeout=True
        )
        github.delays["gh1"] = 1.0

        entries = await fetcher.fetch(make_users(3))

        assert entries[1].errors == {"general": "timeout"}
        assert entries[1].github is None
        assert entries[0].errors == {}
        assert entries[2].errors == {}

    @pytest.mark.asyncio
    async def test_timed_out_request_is_abandoned_not_cancelled(self, cache, adapters, make_users, github):
        """Test the underlying request keeps running after the deadline by default"""
        fetcher = BatchLeaderboardFetcher(cache, adapters, stagger_delay=0, user_timeout=0.02)
        github.delays["gh0"] = 0.1

        [entry] = await fetcher.fetch(make_users(1))
        assert entry.errors == {"general": "timeout"}

        await asyncio.sleep(0.15)
        assert ("get_stats", "gh0") in github.completed

    @pytest.mark.asyncio
    async def test_user_slot_raises_fetch_timeout(self, cache, adapters, make_users, github):
        """Test the per-user deadline surfaces as FetchTimeoutError"""
        fetcher = BatchLeaderboardFetcher(cache, adapters, user_timeout=0.02, cancel_on_timeout=True)
        github.delays["gh0"] = 1.0
        [user] = make_users(1)

        with pytest.raises(FetchTimeoutError, match="timeout"):
            await fetcher._fetch_user_slot(user, 0, None, RateLimitSignal())


# Operator shortcut


class TestOperatorShortcut:
    """Test reuse of the operator's cached combined stats"""

    @pytest.fixture
    def operator_fetcher(self, cache, adapters, no_sleep):
        operator = OperatorIdentityConfig(github_username="GH0", jira_email="user0@example.com")
        return BatchLeaderboardFetcher(cache, adapters, operator=operator, sleep=no_sleep)

    @pytest.mark.asyncio
    async def test_cached_stats_used_without_upstream_calls(
        self, cache, operator_fetcher, make_users, github, gitlab, jira, current_fy
    ):
        """Test the operator row is built from stats:<range> and stats-git:<range>"""
        cache.set(
            keys.ranged(keys.STATS, current_fy),
            {"github": {"created": 11}, "gitlab": {"error": "GitLab down"}, "jira": {"resolved": 4}, "timestamp": "t"},
            600,
        )
        cache.set(
            keys.ranged(keys.STATS_GIT, current_fy),
            {"reviewStats": {"github": {"prsReviewed": 5}, "gitlab": {"mrsReviewed": 0}}},
            600,
        )

        [entry] = await operator_fetcher.fetch(make_users(1), current_fy)

        assert github.calls == [] and gitlab.calls == [] and jira.calls == []
        assert entry.github == {"created": 11}
        assert entry.gitlab is None
        assert entry.errors == {"gitlab": "GitLab down"}
        assert entry.jira == {"resolved": 4}
        assert entry.review_stats["github"]["prsReviewed"] == 5

    @pytest.mark.asyncio
    async def test_falls_back_to_fetch_when_not_cached(self, operator_fetcher, make_users, github, current_fy):
        [entry] = await operator_fetcher.fetch(make_users(1), current_fy)

        assert github.calls_for("get_stats") == ["gh0"]
        assert entry.github["created"] == 4

    @pytest.mark.asyncio
    async def test_token_override_bypasses_shortcut(self, cache, operator_fetcher, github, current_fy):
        """Test a user with their own token is always fetched"""
        cache.set(keys.ranged(keys.STATS, current_fy), {"github": {"created": 11}}, 600)
        user = UserIdentity(id="user0", github=GitAccount("gh0", token="ghp_own"))

        [entry] = await operator_fetcher.fetch([user], current_fy)

        assert github.calls_for("get_stats") == ["gh0"]
        assert entry.github["created"] == 4


# Caching


class TestCaching:
    """Test leaderboard caching"""

    @pytest.mark.asyncio
    async def test_second_fetch_served_from_cache(self, fetcher, make_users, github):
        users = make_users(2)

        first = await fetcher.fetch(users)
        second = await fetcher.fetch(users)

        assert first == second
        assert len(github.calls_for("get_stats")) == 2

    @pytest.mark.asyncio
    async def test_cache_expires_after_300_seconds(self, fetcher, make_users, github, clock):
        users = make_users(1)
        await fetcher.fetch(users)

        clock.advance(301)
        await fetcher.fetch(users)

        assert len(github.calls_for("get_stats")) == 2

    @pytest.mark.asyncio
    async def test_skip_cache_refetches(self, fetcher, make_users, github):
        users = make_users(1)
        await fetcher.fetch(users)
        await fetcher.fetch(users, skip_cache=True)

        assert len(github.calls_for("get_stats")) == 2

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_share_one_fetch(self, cache, adapters, make_users, github):
        """Test single-flight: two simultaneous callers trigger one upstream fetch per user"""
        fetcher = BatchLeaderboardFetcher(cache, adapters, stagger_delay=0)
        users = make_users(3)
        for user in users:
            github.delays[user.github_username] = 0.01

        first, second = await asyncio.gather(fetcher.fetch(users), fetcher.fetch(list(reversed(users))))

        assert len(github.calls_for("get_stats")) == 3
        assert _ids(first) == ["user0", "user1", "user2"]
        assert first == second

    @pytest.mark.asyncio
    async def test_ranges_cached_separately(self, fetcher, make_users, github, current_fy, previous_fy):
        users = make_users(1)
        await fetcher.fetch(users, current_fy)
        await fetcher.fetch(users, previous_fy)

        assert len(github.calls_for("get_stats")) == 2
        assert github.calls[0][2] == current_fy


def test_adapter_set_without_analytics(github, gitlab, jira):
    """Test the fetcher only needs the three stats adapters"""
    adapters = AdapterSet(github=github, gitlab=gitlab, jira=jira)
    assert BatchLeaderboardFetcher(adapters=adapters, cache=None).adapters.analytics is None
