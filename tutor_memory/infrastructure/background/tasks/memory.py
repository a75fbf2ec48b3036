# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Memory background tasks.

Consolidation and decay run here, off the interactive path:
- consolidate_conversation: one conversation, sent on conversation end or by the sweep
- consolidation_sweep: idle, unconsolidated conversations, in batches
- apply_memory_decay / decay_sweep: importance recomputation per user
- cleanup_stale_memories: archive facts nobody accessed for a long time
- memory_health_check: log the worker's counters and report detected issues
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import dramatiq

from tutor_memory.core.memory.stats import MemoryStats
from tutor_memory.infrastructure.background.broker import Priority, Queues, setup_dramatiq
from tutor_memory.infrastructure.background.tasks.base import run_async
from tutor_memory.utils.logging import bind_context, clear_context

# Setup broker before defining actors
setup_dramatiq()

logger = logging.getLogger(__name__)

# Counters of this worker process, shared by every actor
worker_stats = MemoryStats()


@asynccontextmanager
async def memory_manager_scope() -> AsyncIterator[Any]:
    """MemoryManager bound to the current worker thread's event loop.

    The Qdrant connection lives for the duration of one task.
    """
    from tutor_memory.core.config import get_settings
    from tutor_memory.core.memory import MemoryManager
    from tutor_memory.infrastructure.database import get_worker_db_manager
    from tutor_memory.infrastructure.vectors import QdrantVectorClient

    qdrant = QdrantVectorClient(get_settings())
    await qdrant.connect()
    manager = MemoryManager.create(get_worker_db_manager(), qdrant, stats=worker_stats)
    try:
        yield manager
    finally:
        await manager.close()
        await qdrant.close()


@dramatiq.actor(
    queue_name=Queues.MEMORY,
    max_retries=2,
    time_limit=300000,  # 5 minutes
    priority=Priority.NORMAL,
)
def consolidate_conversation(user_id: str, conversation_id: str) -> dict[str, Any]:
    """Consolidate one conversation into durable facts.

    Args:
        user_id: Owner of the conversation.
        conversation_id: Conversation to consolidate.

    Returns:
        Consolidation counts.
    """

    async def _consolidate() -> dict[str, Any]:
        bind_context(user_id=user_id, conversation_id=conversation_id)
        try:
            async with memory_manager_scope() as manager:
                result = await manager.consolidate(user_id, conversation_id)

            return {
                "user_id": user_id,
                "conversation_id": conversation_id,
                "consolidated_count": result.consolidated_count,
                "merged_count": result.merged_count,
                "failed_count": result.failed_count,
                "reason": result.reason,
            }

        except Exception as e:
            logger.error("Failed to consolidate conversation %s: %s", conversation_id, e, exc_info=True)
            return {
                "user_id": user_id,
                "conversation_id": conversation_id,
                "error": str(e),
            }
        finally:
            clear_context()

    return run_async(_consolidate())


@dramatiq.actor(
    queue_name=Queues.MAINTENANCE,
    max_retries=1,
    time_limit=120000,  # 2 minutes
    priority=Priority.LOW,
)
def consolidation_sweep() -> dict[str, Any]:
    """Queue consolidation for conversations idle longer than the configured age."""

    async def _sweep() -> dict[str, Any]:
        from tutor_memory.core.config import get_settings
        from tutor_memory.utils.datetime import hours_ago

        settings = get_settings().memory
        try:
            async with memory_manager_scope() as manager:
                idle = await manager.conversations.list_idle_conversations(
                    hours_ago(settings.consolidation_idle_hours),
                    limit=settings.consolidation_batch_size,
                )

            for user_id, conversation_id in idle:
                consolidate_conversation.send(user_id, conversation_id)

            logger.info("Queued consolidation for %d idle conversations", len(idle))
            return {"queued": len(idle)}

        except Exception as e:
            logger.error("Consolidation sweep failed: %s", e, exc_info=True)
            return {"queued": 0, "error": str(e)}

    return run_async(_sweep())


@dramatiq.actor(
    queue_name=Queues.MEMORY,
    max_retries=1,
    time_limit=300000,  # 5 minutes
    priority=Priority.LOW,
)
def apply_memory_decay(user_id: str) -> dict[str, Any]:
    """Recompute importance of a user's facts and archive forgotten ones."""

    async def _decay() -> dict[str, Any]:
        bind_context(user_id=user_id)
        try:
            async with memory_manager_scope() as manager:
                result = await manager.apply_decay(user_id)

            return {
                "user_id": user_id,
                "forgotten": result.forgotten,
                "retained": result.retained,
            }

        except Exception as e:
            logger.error("Failed to apply decay for user %s: %s", user_id, e, exc_info=True)
            return {"user_id": user_id, "error": str(e)}
        finally:
            clear_context()

    return run_async(_decay())


@dramatiq.actor(
    queue_name=Queues.MAINTENANCE,
    max_retries=1,
    time_limit=300000,  # 5 minutes
    priority=Priority.LOW,
)
def decay_sweep() -> dict[str, Any]:
    """Queue decay for every user with active facts, one page at a time."""

    async def _sweep() -> dict[str, Any]:
        from tutor_memory.core.config import get_settings

        batch_size = get_settings().memory.decay_batch_size
        queued = 0
        try:
            async with memory_manager_scope() as manager:
                offset = 0
                while True:
                    user_ids = await manager.store.list_user_ids(limit=batch_size, offset=offset)
                    for user_id in user_ids:
                        apply_memory_decay.send(user_id)
                    queued += len(user_ids)
                    if len(user_ids) < batch_size:
                        break
                    offset += batch_size

            logger.info("Queued decay for %d users", queued)
            return {"queued": queued}

        except Exception as e:
            logger.error("Decay sweep failed after %d users: %s", queued, e, exc_info=True)
            return {"queued": queued, "error": str(e)}

    return run_async(_sweep())


@dramatiq.actor(
    queue_name=Queues.MAINTENANCE,
    max_retries=1,
    time_limit=600000,  # 10 minutes
    priority=Priority.LOW,
)
def cleanup_stale_memories(older_than_days: int | None = None) -> dict[str, Any]:
    """Archive unpinned facts not accessed for `older_than_days` (default from settings)."""

    async def _cleanup() -> dict[str, Any]:
        try:
            async with memory_manager_scope() as manager:
                archived = await manager.cleanup_stale_memories(older_than_days)
            return {"archived": archived}

        except Exception as e:
            logger.error("Failed to cleanup stale memories: %s", e, exc_info=True)
            return {"archived": 0, "error": str(e)}

    return run_async(_cleanup())


@dramatiq.actor(
    queue_name=Queues.MAINTENANCE,
    max_retries=0,
    time_limit=30000,  # 30 seconds
    priority=Priority.LOW,
)
def memory_health_check() -> dict[str, Any]:
    """Log this worker's memory counters and report detected issues.

    Issues:
        low_cache_hit_rate: hit rate under the configured floor, judged only
            once enough lookups were made
        high_forgetting_rate: more facts forgotten than the configured share
            of consolidations
        database_unreachable: the memory store does not answer
    """

    async def _check() -> dict[str, Any]:
        from tutor_memory.core.config import get_settings
        from tutor_memory.infrastructure.database import DatabaseError, get_worker_db_manager

        settings = get_settings().memory
        snapshot = worker_stats.snapshot()
        lookups = snapshot["cache_hits"] + snapshot["cache_misses"]

        logger.info(
            "Memory health: %d retrievals, %d consolidations, %d forgotten, cache hit rate %.2f",
            snapshot["retrievals"],
            snapshot["consolidations"],
            snapshot["forgetting_events"],
            snapshot["cache_hit_rate"],
        )

        issues: list[dict[str, Any]] = []

        if (
            lookups > settings.health_min_cache_lookups
            and snapshot["cache_hit_rate"] < settings.low_cache_hit_rate
        ):
            issues.append(
                {
                    "type": "low_cache_hit_rate",
                    "severity": "warning",
                    "value": snapshot["cache_hit_rate"],
                    "message": f"Cache hit rate below {settings.low_cache_hit_rate:.0%}",
                }
            )

        if snapshot["consolidations"] > 0:
            forgetting_rate = snapshot["forgetting_events"] / snapshot["consolidations"]
            if forgetting_rate > settings.high_forgetting_rate:
                issues.append(
                    {
                        "type": "high_forgetting_rate",
                        "severity": "info",
                        "value": forgetting_rate,
                        "message": (
                            f"More than {settings.high_forgetting_rate:.0%} of consolidated "
                            "memories are being forgotten"
                        ),
                    }
                )

        try:
            reachable = await get_worker_db_manager().check_connection()
        except DatabaseError as e:
            logger.error("Memory store database unavailable: %s", e)
            reachable = False
        if not reachable:
            issues.append(
                {
                    "type": "database_unreachable",
                    "severity": "error",
                    "value": None,
                    "message": "Memory store database is unreachable",
                }
            )

        if issues:
            logger.warning(
                "Memory system issues detected: %s", ", ".join(i["type"] for i in issues)
            )
        else:
            logger.info("Memory system health: OK")

        return {
            **snapshot,
            "status": "issues_detected" if issues else "healthy",
            "healthy": not issues,
            "issues": issues,
        }

    return run_async(_check())


def get_memory_actors() -> list:
    return [
        consolidate_conversation,
        consolidation_sweep,
        apply_memory_decay,
        decay_sweep,
        cleanup_stale_memories,
        memory_health_check,
    ]
