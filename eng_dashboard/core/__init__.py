"""
Core Infrastructure - Configuration, Logging, Run Tracking

Usage:
    from eng_dashboard.core import get_config, get_logger

    config = get_config()
    operator = config.get_operator_config()

    logger = get_logger(__name__)
"""

from eng_dashboard.core.logging_config import get_logger, log_with_context, setup_logging
from eng_dashboard.core.run_metrics import WarmRunTracker, get_current_tracker, track_warm_run
from eng_dashboard.secure_config import (
    ConfigurationError,
    OperatorIdentityConfig,
    SecureConfig,
    UserDirectoryConfig,
    WarmerConfig,
    get_config,
    validate_config_on_startup,
)

__all__ = [
    # Configuration
    "get_config",
    "validate_config_on_startup",
    "ConfigurationError",
    "SecureConfig",
    "OperatorIdentityConfig",
    "UserDirectoryConfig",
    "WarmerConfig",
    # Logging
    "get_logger",
    "setup_logging",
    "log_with_context",
    # Run tracking
    "WarmRunTracker",
    "get_current_tracker",
    "track_warm_run",
]
