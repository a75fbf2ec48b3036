# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for importance decay and forgetting."""

import math

import pytest

from tutor_memory.core.memory.decay import DecayEngine
from tutor_memory.core.memory.stats import MemoryStats
from tutor_memory.models.memory import FactStatus
from tutor_memory.utils.datetime import utc_now


@pytest.fixture
def stats() -> MemoryStats:
    return MemoryStats()


@pytest.fixture
def engine(store, stats) -> DecayEngine:
    return DecayEngine(store, stats=stats)


@pytest.mark.unit
class TestApplyDecay:
    @pytest.mark.asyncio
    async def test_older_fact_loses_importance(self, store, make_fact) -> None:
        now = utc_now()
        old = make_fact("I like tea", accessed_days_ago=30, now=now)
        recent = make_fact("I like coffee", accessed_days_ago=1, now=now)
        await store.create_fact(old)
        await store.create_fact(recent)

        await DecayEngine(store, threshold=0.0).apply_decay("user-1", now=now)

        old_after = await store.get_fact(old.id)
        recent_after = await store.get_fact(recent.id)
        assert old_after.importance.factors.recency == pytest.approx(math.exp(-1.5), abs=1e-3)
        assert old_after.importance.score < recent_after.importance.score
        assert old_after.is_active

    @pytest.mark.asyncio
    async def test_low_importance_forgotten(self, engine, store, stats, make_fact) -> None:
        now = utc_now()
        old = make_fact("I like tea", accessed_days_ago=120, now=now)
        recent = make_fact("I like coffee", accessed_days_ago=1, now=now)
        await store.create_fact(old)
        await store.create_fact(recent)

        result = await engine.apply_decay("user-1", now=now)

        assert result.forgotten == 1
        assert result.retained == 1
        assert (await store.get_fact(old.id)).status == FactStatus.ARCHIVED
        assert (await store.get_fact(recent.id)).is_active
        assert stats.forgetting_events == 1

    @pytest.mark.asyncio
    async def test_young_fact_kept_despite_low_importance(
        self, engine, store, make_fact
    ) -> None:
        now = utc_now()
        young = make_fact("I like tea", accessed_days_ago=30, now=now)
        await store.create_fact(young)

        result = await engine.apply_decay("user-1", now=now)

        assert engine.min_age_days == 90
        assert result.forgotten == 0
        assert (await store.get_fact(young.id)).importance.score < engine.threshold

    @pytest.mark.asyncio
    async def test_min_age_is_tunable(self, store, make_fact) -> None:
        now = utc_now()
        young = make_fact("I like tea", accessed_days_ago=30, now=now)
        await store.create_fact(young)

        result = await DecayEngine(store, min_age_days=0).apply_decay("user-1", now=now)

        assert result.forgotten == 1
        assert (await store.get_fact(young.id)).status == FactStatus.ARCHIVED

    @pytest.mark.asyncio
    async def test_repeated_runs_agree(self, store, make_fact) -> None:
        now = utc_now()
        fact = make_fact("I like tea", score=0.7, accessed_days_ago=20, now=now)
        await store.create_fact(fact)
        engine = DecayEngine(store, min_age_days=0)

        first = await engine.apply_decay("user-1", now=now)
        after_first = await store.get_fact(fact.id)
        second = await engine.apply_decay("user-1", now=now)
        after_second = await store.get_fact(fact.id)

        assert (first.forgotten, first.retained) == (0, 1)
        assert (second.forgotten, second.retained) == (0, 1)
        assert after_second.is_active
        assert after_second.importance.score == pytest.approx(after_first.importance.score)
        assert after_second.importance.base_score == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_pinned_fact_never_forgotten(self, engine, store, make_fact) -> None:
        now = utc_now()
        pinned = make_fact("I like tea", accessed_days_ago=365, score=0.0, user_marked=True, now=now)
        await store.create_fact(pinned)

        result = await engine.apply_decay("user-1", now=now)

        assert result.forgotten == 0
        assert (await store.get_fact(pinned.id)).is_active

    @pytest.mark.asyncio
    async def test_archived_facts_untouched(self, engine, store, make_fact) -> None:
        archived = make_fact(status=FactStatus.ARCHIVED, accessed_days_ago=200)
        await store.create_fact(archived)

        result = await engine.apply_decay("user-1")

        assert result.forgotten == 0
        assert result.retained == 0
        assert (await store.get_fact(archived.id)).importance.score == pytest.approx(0.5)

    def test_threshold_is_tunable(self, store) -> None:
        assert DecayEngine(store).threshold == 0.2
        assert DecayEngine(store, threshold=0.35).threshold == 0.35
        assert DecayEngine(store, min_age_days=7).min_age_days == 7


@pytest.mark.unit
class TestCleanupStale:
    @pytest.mark.asyncio
    async def test_archives_stale_unpinned(self, engine, store, stats, make_fact) -> None:
        stale = make_fact("I like tea", accessed_days_ago=100)
        pinned = make_fact("I like chess", accessed_days_ago=100, user_marked=True)
        fresh = make_fact("I like coffee", accessed_days_ago=10)
        for fact in (stale, pinned, fresh):
            await store.create_fact(fact)

        archived = await engine.cleanup_stale(older_than_days=90)

        assert archived == 1
        assert [f.id for f in await store.list_facts("user-1")] == [pinned.id, fresh.id]
        assert stats.forgetting_events == 1

    @pytest.mark.asyncio
    async def test_nothing_stale(self, engine, stats) -> None:
        assert await engine.cleanup_stale() == 0
        assert stats.forgetting_events == 0
