# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Memory tiers.

- short_term: last N turns, verbatim
- working: session digest plus recent turns
- long_term: semantically retrieved durable facts
"""

from tutor_memory.core.memory.layers.long_term import LongTermRetriever
from tutor_memory.core.memory.layers.short_term import ShortTermWindow
from tutor_memory.core.memory.layers.working import WorkingMemorySummarizer

__all__ = [
    "LongTermRetriever",
    "ShortTermWindow",
    "WorkingMemorySummarizer",
]
