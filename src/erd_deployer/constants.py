"""
Centralized configuration constants for the ERD deployer.

This module provides a single source of truth for all configuration constants,
default values, and limits used throughout the application.
"""

from enum import IntEnum
from typing import Final

# ============================================================================
# Exit Codes
# ============================================================================

class ExitCode(IntEnum):
    """Standard exit codes for CLI commands.

    Following Unix conventions:
    - 0: Success
    - 1: General error
    - 2: Validation/syntax error
    - 3+: Specific error categories
    """
    SUCCESS = 0
    ERROR = 1
    VALIDATION_ERROR = 2
    CONFIG_ERROR = 3
    API_ERROR = 4
    FILE_NOT_FOUND = 5
    PERMISSION_DENIED = 6
    CANCELLED = 7
    AUTHENTICATION_ERROR = 9


# ============================================================================
# API Configuration
# ============================================================================

class APIConfig:
    """Dataverse Web API configuration constants."""

    API_VERSION: Final[str] = "v9.2"
    """Web API version used for every metadata request."""

    DEFAULT_TIMEOUT_SECONDS: Final[int] = 30
    """Default HTTP request timeout."""

    RETRYABLE_STATUS_CODES: Final[frozenset] = frozenset({429, 500, 502, 503, 504})
    """Status codes that are retried with backoff."""

    DEFAULT_MAX_ATTEMPTS: Final[int] = 6
    """Total attempts per request (first call plus five retries)."""

    DEFAULT_INITIAL_DELAY_SECONDS: Final[float] = 1.0
    """Backoff floor for the first retry."""

    DEFAULT_MAX_DELAY_SECONDS: Final[float] = 16.0
    """Upper bound for a single backoff wait."""

    TOKEN_REFRESH_BUFFER_SECONDS: Final[int] = 60
    """Refresh the bearer token this many seconds before it expires."""

    DEFAULT_MAX_CONCURRENCY: Final[int] = 4
    """Maximum operations in flight within one deployment phase."""


# ============================================================================
# Dataverse Metadata
# ============================================================================

class DataverseLimits:
    """Metadata limits and constants for the target store."""

    LANGUAGE_CODE: Final[int] = 1033
    """Locale used for every localized label."""

    OPTION_VALUE_PREFIX: Final[int] = 10000
    """Customization option value prefix for new publishers."""

    OPTION_VALUE_BASE: Final[int] = 100000000
    """First value assigned to generated choice options."""

    COMPONENT_TYPE_ENTITY: Final[int] = 1
    """Solution component type for tables."""

    COMPONENT_TYPE_OPTION_SET: Final[int] = 9
    """Solution component type for global choice sets."""

    PRIMARY_NAME_MAX_LENGTH: Final[int] = 850
    STRING_MAX_LENGTH: Final[int] = 4000
    MEMO_MAX_LENGTH: Final[int] = 2000
    FILE_MAX_SIZE_KB: Final[int] = 32768

    SOLUTION_VERSION: Final[str] = "1.0.0.0"
    """Version assigned to newly created solutions."""

    MIN_PREFIX_LENGTH: Final[int] = 2
    MAX_PREFIX_LENGTH: Final[int] = 8

    RESERVED_PREFIXES: Final[tuple[str, ...]] = ("mscrm",)
    """Publisher prefixes reserved by the platform."""

    SYSTEM_COLUMNS: Final[tuple[str, ...]] = (
        "createdon",
        "createdby",
        "modifiedon",
        "modifiedby",
    )
    """Columns every table already has; dropped from diagrams."""

    SYSTEM_CONFLICT_COLUMNS: Final[tuple[str, ...]] = (
        "statecode",
        "statuscode",
        "ownerid",
        "owninguser",
        "owningteam",
    )
    """Column names that clash with platform-managed columns."""

    RESERVED_ATTRIBUTE_NAMES: Final[tuple[str, ...]] = (
        "status",
        "statecode",
        "statuscode",
        "description",
        "createdon",
        "modifiedon",
    )
    """Names that get an entity-qualified schema name."""

    SYSTEM_ENTITIES: Final[tuple[str, ...]] = (
        "systemuser",
        "team",
        "businessunit",
        "organization",
        "solution",
        "publisher",
    )
    """Tables that cleanup must never delete."""


# ============================================================================
# Canonical Matching
# ============================================================================

class MatcherConfig:
    """Scores and thresholds for canonical entity matching."""

    EXACT_MATCH_SCORE: Final[float] = 0.95
    ALIAS_MATCH_SCORE: Final[float] = 0.85

    FUZZY_THRESHOLD: Final[float] = 0.7
    """Fuzzy matches must score strictly above this value."""

    NAME_WEIGHT: Final[float] = 0.4
    ATTRIBUTE_WEIGHT: Final[float] = 0.6

    MAX_ATTRIBUTE_DISTANCE: Final[int] = 2
    """Levenshtein distance under which two attribute names match."""

    HIGH_CONFIDENCE: Final[float] = 0.9
    MEDIUM_CONFIDENCE: Final[float] = 0.7


# ============================================================================
# Logging
# ============================================================================

class LoggingConfig:
    """Logging configuration."""

    DEFAULT_LOG_LEVEL: Final[str] = "INFO"
    """Default logging level."""

    LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    """Default log format string."""

    DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"
    """Default date format for logs."""

    MAX_LOG_FILE_MB: Final[int] = 10
    """Maximum log file size before rotation (MB)."""

    LOG_BACKUP_COUNT: Final[int] = 5
    """Number of backup log files to keep."""

