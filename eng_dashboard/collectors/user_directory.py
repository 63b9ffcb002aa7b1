"""
User Directory

Resolves the list of leaderboard participants.

Lookup order (first source that yields users wins):
    1. Engineering-metrics HTTP API (ENGINEERING_METRICS_USERS_URL)
    2. Users JSON file (ENGINEERING_METRICS_USERS_FILE)
    3. Default users file (USERS_CONFIG_FILE, default config/users.json)

Usage:
    from eng_dashboard.collectors.user_directory import UserDirectory

    directory = UserDirectory.from_config()
    users = await directory.get_users()

    for user in users:
        logger.info("Leaderboard user", extra={"user": user.id, "level": user.level})
"""

import json
import pathlib
from collections.abc import Callable
from typing import Any

import httpx

from eng_dashboard.async_http_client import AsyncSecureHTTPClient
from eng_dashboard.core.logging_config import get_logger
from eng_dashboard.domain.users import UserIdentity, normalize_user
from eng_dashboard.secure_config import UserDirectoryConfig, get_config
from eng_dashboard.utils.error_handling import UpstreamError, log_and_continue, log_and_return_default

logger = get_logger(__name__)


def extract_user_records(payload: Any) -> list[Any]:
    """
    Pull the user records out of an API or file payload.

    Accepts a bare list, ``{"users": [...]}`` or ``{"data": [...]}``.
    Anything else yields an empty list.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("users", "data"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


class UserDirectory:
    """
    Loads UserIdentity records from the configured sources.

    Attributes:
        config: Validated source configuration
    """

    def __init__(
        self,
        config: UserDirectoryConfig,
        http_client_factory: Callable[..., AsyncSecureHTTPClient] = AsyncSecureHTTPClient,
    ):
        """
        Initialize user directory.

        Args:
            config: Validated user directory configuration
            http_client_factory: Builds the HTTP client (injectable for tests)
        """
        self.config = config
        self._http_client_factory = http_client_factory

    @classmethod
    def from_config(cls) -> "UserDirectory":
        return cls(get_config().get_user_directory_config())

    async def get_users(self) -> list[UserIdentity]:
        """
        Resolve users from the first source that yields any.

        Returns:
            Normalized users in source order, empty list if no source has users
        """
        if self.config.users_url:
            users = self._normalize(await self._fetch_from_api(self.config.users_url), self.config.users_url)
            if users:
                logger.info("Loaded users from API", extra={"source": self.config.users_url, "user_count": len(users)})
                return users

        for path in (self.config.users_file, self.config.default_users_file):
            if not path:
                continue
            users = self._normalize(self._load_from_file(pathlib.Path(path)), path)
            if users:
                logger.info("Loaded users from file", extra={"source": path, "user_count": len(users)})
                return users

        logger.warning("No users found in any configured source")
        return []

    async def _fetch_from_api(self, url: str) -> list[Any]:
        try:
            async with self._http_client_factory(timeout=self.config.request_timeout) as client:
                return extract_user_records(await client.get_json(url))
        except (httpx.HTTPError, UpstreamError, ValueError) as e:
            return log_and_return_default(
                logger, e, context={"url": url}, default_value=[], error_type="User directory API fetch"
            )

    def _load_from_file(self, path: pathlib.Path) -> list[Any]:
        if not path.exists():
            logger.debug(f"Users file not found: {path}")
            return []

        try:
            with open(path, encoding="utf-8") as f:
                return extract_user_records(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            return log_and_return_default(
                logger, e, context={"file_path": str(path)}, default_value=[], error_type="Users file loading"
            )

    def _normalize(self, records: list[Any], source: str) -> list[UserIdentity]:
        users = []
        for index, record in enumerate(records):
            try:
                users.append(normalize_user(record))
            except ValueError as e:
                log_and_continue(
                    logger, e, context={"source": source, "index": index}, error_type="User record normalization"
                )
        return users
