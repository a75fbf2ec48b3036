# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task actors.

Running Workers:
    dramatiq tutor_memory.infrastructure.background.tasks --processes 2 --threads 4
"""

from tutor_memory.infrastructure.background.tasks.base import run_async
from tutor_memory.infrastructure.background.tasks.memory import (
    apply_memory_decay,
    cleanup_stale_memories,
    consolidate_conversation,
    consolidation_sweep,
    decay_sweep,
    get_memory_actors,
    memory_health_check,
)

__all__ = [
    "apply_memory_decay",
    "cleanup_stale_memories",
    "consolidate_conversation",
    "consolidation_sweep",
    "decay_sweep",
    "get_all_actors",
    "memory_health_check",
    "run_async",
]


def get_all_actors() -> list:
    return get_memory_actors()
