"""Defaults for source health tracking and retry scheduling."""

from typing import Final


# Longest time a source may be displayed as "checking"
SOURCE_VALIDATION_TIMEOUT_SECONDS: Final[float] = 5.0

# Re-check interval for healthy sources (minutes)
DEFAULT_CHECK_INTERVAL_MINUTES: Final[int] = 60

# Retry ladder for consecutive failures (minutes)
BACKOFF_LADDER: Final[tuple[int, ...]] = (2, 5, 15, 30, 60, 180, 360, 720, 1440)

# Multiplicative jitter applied to every retry delay (+/-)
JITTER_PCT: Final[float] = 0.2

MAX_BACKOFF_LEVEL: Final[int] = 20

# Hard ceiling for a single retry delay (minutes)
MAX_RETRY_MINUTES: Final[int] = 24 * 60

# Jittered delays never drop below this (minutes)
MIN_RETRY_MINUTES: Final[int] = 1

# Window after which an active person is shown as quiet (days)
QUIET_AFTER_DAYS: Final[int] = 90

# Log component names
COMPONENT_SOURCES = "sources"
COMPONENT_STORE = "store"
COMPONENT_SWEEP = "sweep"
COMPONENT_CHECKER = "checker"
COMPONENT_CIRCLE = "circle"
COMPONENT_CLI = "cli"
