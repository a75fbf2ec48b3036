# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background processing for memory maintenance.

Quick Start:
    from tutor_memory.infrastructure.background import setup_dramatiq
    setup_dramatiq()

    from tutor_memory.infrastructure.background.tasks import consolidate_conversation
    consolidate_conversation.send("user-1", "conv-9")

Running Workers:
    dramatiq tutor_memory.infrastructure.background.tasks --processes 2 --threads 4

Scheduler:
    from tutor_memory.infrastructure.background import start_scheduler, stop_scheduler

    await start_scheduler()
    await stop_scheduler()
"""

from tutor_memory.infrastructure.background.broker import (
    BrokerManager,
    Priority,
    Queues,
    get_broker,
    get_broker_manager,
    setup_dramatiq,
    shutdown_dramatiq,
)
from tutor_memory.infrastructure.background.scheduler import (
    DramatiqScheduler,
    ScheduledTask,
    get_scheduler,
    register_memory_jobs,
    start_scheduler,
    stop_scheduler,
)

# Task actors are imported lazily to avoid declaring them before broker setup
# Use: from tutor_memory.infrastructure.background.tasks import consolidate_conversation

__all__ = [
    "BrokerManager",
    "DramatiqScheduler",
    "Priority",
    "Queues",
    "ScheduledTask",
    "get_broker",
    "get_broker_manager",
    "get_scheduler",
    "register_memory_jobs",
    "setup_dramatiq",
    "shutdown_dramatiq",
    "start_scheduler",
    "stop_scheduler",
]
