"""
Secure Configuration Management

Provides centralized, validated configuration for the dashboard backend.
Replaces scattered os.getenv() calls with strict validation and fail-fast behavior.

Usage:
    from eng_dashboard.secure_config import get_config

    config = get_config()
    operator = config.get_operator_config()
    print(operator.github_username)

    warmer = config.get_warmer_config()
    print(warmer.interval_seconds)

Raises:
    ConfigurationError: If configuration is missing or invalid
"""

import os
import re
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


class ConfigurationError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


@dataclass
class OperatorIdentityConfig:
    """
    Validated operator identity.

    The operator is the person whose credentials are configured process-wide;
    adapters fall back to these credentials when called without a per-user override.
    """
    github_username: Optional[str] = None
    gitlab_username: Optional[str] = None
    jira_email: Optional[str] = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """
        Validate operator identity.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not (self.github_username or self.gitlab_username or self.jira_email):
            raise ConfigurationError(
                "At least one of GITHUB_USERNAME, GITLAB_USERNAME or JIRA_EMAIL is required"
            )

        if self.jira_email and not re.match(EMAIL_PATTERN, self.jira_email):
            raise ConfigurationError(
                f"JIRA_EMAIL must be a valid email address: {self.jira_email}"
            )

    def matches(self, github_username: Optional[str] = None, gitlab_username: Optional[str] = None,
                jira_email: Optional[str] = None) -> bool:
        """Case-insensitive match of any account against the operator's."""
        pairs = [
            (github_username, self.github_username),
            (gitlab_username, self.gitlab_username),
            (jira_email, self.jira_email),
        ]
        return any(
            candidate and configured and candidate.lower() == configured.lower()
            for candidate, configured in pairs
        )


@dataclass
class UserDirectoryConfig:
    """
    Validated user directory sources, in lookup priority order.
    """
    users_url: Optional[str] = None
    users_file: Optional[str] = None
    default_users_file: str = 'config/users.json'
    request_timeout: float = 10.0

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """
        Validate user directory configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if self.users_url and not self.users_url.startswith('https://'):
            raise ConfigurationError(
                f"ENGINEERING_METRICS_USERS_URL must use HTTPS: {self.users_url}"
            )

        if self.request_timeout <= 0:
            raise ConfigurationError("User directory request timeout must be positive")


@dataclass
class WarmerConfig:
    """
    Validated cache warmer configuration.
    """
    enabled: bool = True
    interval_seconds: int = 600
    startup_delay_seconds: int = 5
    leaderboard_batch_size: int = 5
    analytics_project_keys: list[str] = field(default_factory=list)

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """
        Validate warmer configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if self.interval_seconds <= 0:
            raise ConfigurationError(
                f"CACHE_WARM_INTERVAL_SECONDS must be positive: {self.interval_seconds}"
            )

        if self.startup_delay_seconds < 0:
            raise ConfigurationError(
                f"CACHE_WARM_STARTUP_DELAY_SECONDS must not be negative: {self.startup_delay_seconds}"
            )

        if self.leaderboard_batch_size <= 0:
            raise ConfigurationError(
                f"LEADERBOARD_BATCH_SIZE must be positive: {self.leaderboard_batch_size}"
            )

        for key in self.analytics_project_keys:
            if not re.match(r'^[A-Za-z0-9_\-]+$', key):
                raise ConfigurationError(
                    f"ANALYTICS_PROJECT_KEYS contains an invalid key: {key}"
                )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer: {raw}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


class SecureConfig:
    """
    Centralized secure configuration manager.

    Loads and validates all application configuration from environment variables.
    Provides fail-fast behavior to catch configuration issues early.
    """

    def __init__(self):
        """Initialize configuration (loads .env file)."""
        load_dotenv()

    def get_operator_config(self) -> OperatorIdentityConfig:
        """
        Get validated operator identity.

        Returns:
            OperatorIdentityConfig: Validated configuration

        Raises:
            ConfigurationError: If configuration is missing or invalid
        """
        return OperatorIdentityConfig(
            github_username=os.getenv('GITHUB_USERNAME') or None,
            gitlab_username=os.getenv('GITLAB_USERNAME') or None,
            jira_email=os.getenv('JIRA_EMAIL') or None,
        )

    def get_user_directory_config(self) -> UserDirectoryConfig:
        """
        Get validated user directory configuration.

        Returns:
            UserDirectoryConfig: Validated configuration

        Raises:
            ConfigurationError: If configuration is invalid
        """
        return UserDirectoryConfig(
            users_url=os.getenv('ENGINEERING_METRICS_USERS_URL') or None,
            users_file=os.getenv('ENGINEERING_METRICS_USERS_FILE') or None,
            default_users_file=os.getenv('USERS_CONFIG_FILE', 'config/users.json'),
        )

    def get_warmer_config(self) -> WarmerConfig:
        """
        Get validated cache warmer configuration.

        Returns:
            WarmerConfig: Validated configuration

        Raises:
            ConfigurationError: If configuration is invalid
        """
        project_keys = os.getenv('ANALYTICS_PROJECT_KEYS', '')

        return WarmerConfig(
            enabled=_env_bool('CACHE_WARM_ENABLED', True),
            interval_seconds=_env_int('CACHE_WARM_INTERVAL_SECONDS', 600),
            startup_delay_seconds=_env_int('CACHE_WARM_STARTUP_DELAY_SECONDS', 5),
            leaderboard_batch_size=_env_int('LEADERBOARD_BATCH_SIZE', 5),
            analytics_project_keys=[key.strip() for key in project_keys.split(',') if key.strip()],
        )


_config_instance = None

def get_config() -> SecureConfig:
    """
    Get the global configuration instance (singleton pattern).

    Returns:
        SecureConfig: The configuration manager
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = SecureConfig()
    return _config_instance


def validate_config_on_startup(required_services: list[str]) -> None:
    """
    Validate required configuration at application startup.

    Args:
        required_services: Sections to validate ('operator', 'users', 'warmer')

    Raises:
        ConfigurationError: If any required configuration is missing or invalid

    Example:
        validate_config_on_startup(['operator', 'warmer'])
    """
    config = get_config()

    for service in required_services:
        if service == 'operator':
            config.get_operator_config()
        elif service == 'users':
            config.get_user_directory_config()
        elif service == 'warmer':
            config.get_warmer_config()
        else:
            raise ValueError(f"Unknown service: {service}")
