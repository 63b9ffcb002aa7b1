"""
Pytest configuration and shared fixtures

Provides in-memory fake adapters (with call recording, injectable latency and
failures), sample users, a controllable clock and a no-wait sleep.
"""

import asyncio
from datetime import date
from typing import Any

import pytest

from eng_dashboard.adapters.base import AdapterSet, AnalyticsAdapter, GitHostingAdapter, IssueTrackerAdapter
from eng_dashboard.cache.ttl_cache import TTLCache
from eng_dashboard.domain.date_range import DateRange
from eng_dashboard.domain.users import GitAccount, JiraAccount, UserIdentity

# ===== Fakes =====


class FakeClock:
    """Manually advanced time source for TTLCache."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Drop-in for asyncio.sleep that records delays and returns immediately."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class _FakeServiceMixin:
    """
    Shared behaviour for fake adapters.

    ``failures`` and ``delays`` are keyed by the identity the call was made
    for (username / email, or None for the operator identity).
    """

    identity_field = "username"

    def _init_fake(self, name: str) -> None:
        self.name = name
        self.calls: list[tuple[str, Any, DateRange | None]] = []
        self.completed: list[tuple[str, Any]] = []
        self.events: list[tuple[str, str, Any]] = []
        self.failures: dict[Any, BaseException | dict[str, Any]] = {}
        self.method_failures: dict[str, BaseException] = {}
        self.range_failures: dict[tuple[str, DateRange | None], BaseException] = {}
        self.delays: dict[Any, float] = {}

    def _who(self, credentials: dict[str, Any] | None) -> Any:
        return credentials.get(self.identity_field) if credentials else None

    async def _call(self, method: str, date_range: DateRange | None, who: Any, result: Any) -> Any:
        self.calls.append((method, who, date_range))
        self.events.append(("start", method, who))
        delay = self.delays.get(who)
        if delay:
            await asyncio.sleep(delay)
        if (method, date_range) in self.range_failures:
            raise self.range_failures[(method, date_range)]
        if method in self.method_failures:
            raise self.method_failures[method]
        failure = self.failures.get(who) if method == "get_stats" else None
        if isinstance(failure, BaseException):
            raise failure
        if isinstance(failure, dict):
            return failure
        self.completed.append((method, who))
        self.events.append(("end", method, who))
        return result

    def calls_for(self, method: str) -> list[Any]:
        return [who for name, who, _ in self.calls if name == method]


class FakeGitAdapter(_FakeServiceMixin, GitHostingAdapter):
    def __init__(self, name: str):
        self._init_fake(name)
        self.review_failures: dict[Any, BaseException] = {}

    async def get_stats(self, date_range, credentials=None):
        who = self._who(credentials)
        monthly_field = "monthlyPRs" if self.name == "github" else "monthlyMRs"
        return await self._call(
            "get_stats",
            date_range,
            who,
            {
                "created": 4,
                "total": 4,
                "reviews": 2,
                monthly_field: [{"month": "2025-09", "count": 2}, {"month": "2025-10", "count": 2}],
                "identity": who,
            },
        )

    async def get_review_comments(self, date_range, credentials=None):
        who = self._who(credentials)
        self.calls.append(("get_review_comments", who, date_range))
        if who in self.review_failures:
            raise self.review_failures[who]
        reviewed_field = "prsReviewed" if self.name == "github" else "mrsReviewed"
        return {"totalComments": 6, reviewed_field: 3, "avgReviewsPerMonth": 1.5, "byRepo": []}

    async def get_items_for_page(self, date_range):
        return await self._call("get_items_for_page", date_range, None, [{"id": 1, "source": self.name}])


class FakeJiraAdapter(_FakeServiceMixin, IssueTrackerAdapter):
    identity_field = "email"

    def __init__(self):
        self._init_fake("jira")

    async def get_stats(self, date_range, credentials=None):
        who = self._who(credentials)
        return await self._call(
            "get_stats",
            date_range,
            who,
            {
                "velocity": {"combinedAverageVelocity": 8.0},
                "totalStoryPoints": 21,
                "resolved": 5,
                "avgResolutionTime": 3.5,
                "ctoi": {"fixed": 1, "participated": 2},
                "identity": who,
            },
        )

    async def get_issues_for_page(self, date_range):
        return await self._call("get_issues_for_page", date_range, None, [{"key": "ENG-1"}])

    async def get_projects_by_epic(self, date_range):
        return await self._call("get_projects_by_epic", date_range, None, {"epics": []})

    async def get_ctoi_stats(self, date_range):
        return await self._call("get_ctoi_stats", date_range, None, {"fixed": 1, "participated": 2})


class FakeAnalyticsAdapter(AnalyticsAdapter):
    def __init__(self):
        self.calls: list[tuple[str, Any]] = []
        self.project_failures: dict[str, BaseException] = {}

    async def get_analytics_data(self, date_range):
        self.calls.append(("get_analytics_data", date_range))
        return {"pageViews": 100, "range": date_range.to_dict() if date_range else None}

    async def get_project_analytics(self, project_key):
        self.calls.append(("get_project_analytics", project_key))
        if project_key in self.project_failures:
            raise self.project_failures[project_key]
        return {"project": project_key, "clicks": 7}


# ===== Fixtures =====


@pytest.fixture
def clock():
    """Controllable time source starting at t=1000s"""
    return FakeClock()


@pytest.fixture
def cache(clock):
    """TTLCache driven by the fake clock (sweep not started)"""
    return TTLCache(clock=clock)


@pytest.fixture
def no_sleep():
    """Recording sleep that never waits"""
    return RecordingSleep()


@pytest.fixture
def github():
    return FakeGitAdapter("github")


@pytest.fixture
def gitlab():
    return FakeGitAdapter("gitlab")


@pytest.fixture
def jira():
    return FakeJiraAdapter()


@pytest.fixture
def analytics():
    return FakeAnalyticsAdapter()


@pytest.fixture
def adapters(github, gitlab, jira, analytics):
    """Full adapter set backed by fakes"""
    return AdapterSet(github=github, gitlab=gitlab, jira=jira, analytics=analytics)


def make_user(index: int, level: str | None = "P2") -> UserIdentity:
    """User with accounts on every service and no token overrides"""
    return UserIdentity(
        id=f"user{index}",
        github=GitAccount(f"gh{index}"),
        gitlab=GitAccount(f"gl{index}"),
        jira=JiraAccount(f"user{index}@example.com"),
        level=level,
    )


@pytest.fixture
def make_users():
    """Factory: make_users(n) -> users user0..user{n-1}"""

    def factory(count: int) -> list[UserIdentity]:
        return [make_user(index) for index in range(count)]

    return factory


@pytest.fixture
def fiscal_today():
    """A date inside fiscal year 2026 (started 2026-09-01)"""
    return date(2026, 10, 19)


@pytest.fixture
def current_fy():
    return DateRange(date(2026, 9, 1), None)


@pytest.fixture
def previous_fy():
    return DateRange(date(2025, 9, 1), date(2026, 8, 31))
