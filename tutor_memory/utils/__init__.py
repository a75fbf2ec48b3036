# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cross-cutting utilities.

- logging: Structured logging with structlog
- datetime: Timezone-aware datetime operations
"""

from tutor_memory.utils.datetime import (
    age_in_days,
    days_ago,
    ensure_utc,
    format_iso,
    hours_ago,
    time_ago,
    utc_now,
)
from tutor_memory.utils.logging import bind_context, clear_context, get_logger, setup_logging

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    # Datetime
    "utc_now",
    "ensure_utc",
    "days_ago",
    "hours_ago",
    "age_in_days",
    "time_ago",
    "format_iso",
]
