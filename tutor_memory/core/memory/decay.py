# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Decay: periodic importance recomputation and forgetting.

Importance is recomputed from the scorer's query-independent factors,
starting from the importance the fact was stored with, so running decay
twice on unchanged facts gives the same result. A fact is archived when
its new score falls below the forgetting threshold, it was created at
least `min_age_days` ago and the user has not pinned it. Archived facts
stay in the store and are never reactivated here.
"""

import logging
from datetime import datetime

from tutor_memory.core.memory.scoring import RelevanceScorer
from tutor_memory.core.memory.stats import MemoryStats
from tutor_memory.core.memory.store import MemoryStore
from tutor_memory.models.memory import DecayResult
from tutor_memory.utils.datetime import age_in_days, days_ago, utc_now

logger = logging.getLogger(__name__)

DEFAULT_FORGET_THRESHOLD = 0.2
DEFAULT_FORGET_MIN_AGE_DAYS = 90
DEFAULT_STALE_AFTER_DAYS = 90


class DecayEngine:
    """Recomputes importance and archives forgotten facts.

    Example:
        engine = DecayEngine(store, threshold=0.2)
        result = await engine.apply_decay("user-1")
        print(result.forgotten, result.retained)
    """

    def __init__(
        self,
        store: MemoryStore,
        scorer: RelevanceScorer | None = None,
        threshold: float = DEFAULT_FORGET_THRESHOLD,
        stats: MemoryStats | None = None,
        min_age_days: float = DEFAULT_FORGET_MIN_AGE_DAYS,
    ) -> None:
        self._store = store
        self._scorer = scorer or RelevanceScorer()
        self._threshold = threshold
        self._min_age_days = min_age_days
        self._stats = stats or MemoryStats()

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def min_age_days(self) -> float:
        return self._min_age_days

    async def apply_decay(self, user_id: str, now: datetime | None = None) -> DecayResult:
        """Recompute importance for every active fact of a user.

        Args:
            user_id: Owner of the facts.
            now: Reference time. Defaults to the current time.

        Returns:
            DecayResult with forgotten (archived) and retained counts.
        """
        now = now or utc_now()
        facts = await self._store.list_facts(user_id)
        result = DecayResult()

        for fact in facts:
            score, factors = self._scorer.importance_without_query(fact, now=now)
            pinned = fact.importance.factors.user_marked
            old_enough = age_in_days(fact.temporal.created_at, now) >= self._min_age_days
            forget = score < self._threshold and old_enough and not pinned

            await self._store.update_importance(
                fact.id,
                score=score,
                recency=factors.recency,
                archive=forget,
            )

            if forget:
                result.forgotten += 1
                logger.debug("Forgot fact %s (importance %.3f)", fact.id, score)
            else:
                result.retained += 1

        if result.forgotten:
            self._stats.increment("forgetting_events", result.forgotten)

        logger.info(
            "Decay for user %s: %d forgotten, %d retained",
            user_id,
            result.forgotten,
            result.retained,
        )
        return result

    async def cleanup_stale(
        self,
        older_than_days: int = DEFAULT_STALE_AFTER_DAYS,
        limit: int = 500,
    ) -> int:
        """Archive unpinned facts nobody accessed for `older_than_days`.

        Returns:
            Number of facts archived.
        """
        stale = await self._store.list_stale_facts(days_ago(older_than_days), limit=limit)
        archived = await self._store.archive_facts([f.id for f in stale])
        if archived:
            self._stats.increment("forgetting_events", archived)
        logger.info("Archived %d stale facts (older than %d days)", archived, older_than_days)
        return archived
