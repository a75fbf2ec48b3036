# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the consolidation pipeline."""

import asyncio
from datetime import timedelta

import pytest

from tutor_memory.core.intelligence.embeddings import EmbeddingError
from tutor_memory.core.memory.consolidation import ConsolidationBusyError, ConsolidationPipeline
from tutor_memory.core.memory.conversation import ConversationLog
from tutor_memory.core.memory.stats import MemoryStats
from tutor_memory.core.memory.store import MemoryStore
from tutor_memory.infrastructure.database.connection import DatabaseError, DatabaseManager
from tutor_memory.models.memory import FactType
from tutor_memory.utils.datetime import utc_now


@pytest.fixture
def stats() -> MemoryStats:
    return MemoryStats()


@pytest.fixture
def pipeline(
    store, conversation_log, mock_embedding_service, mock_qdrant_client, stats
) -> ConsolidationPipeline:
    return ConsolidationPipeline(
        store,
        conversation_log,
        mock_embedding_service,
        mock_qdrant_client,
        stats=stats,
    )


async def _say(conversation_log, make_turn, *messages: str) -> None:
    for message in messages:
        await conversation_log.append(make_turn(message))


@pytest.mark.unit
class TestConsolidationPipeline:
    """Test cases for ConsolidationPipeline.consolidate."""

    @pytest.mark.asyncio
    async def test_empty_conversation(self, pipeline, store) -> None:
        result = await pipeline.consolidate("user-1", "conv-1")

        assert result.consolidated_count == 0
        assert result.reason == "no messages"
        assert await store.get_profile("user-1") is None

    @pytest.mark.asyncio
    async def test_identity_and_occupation(
        self, pipeline, store, conversation_log, make_turn, mock_qdrant_client, stats
    ) -> None:
        await _say(conversation_log, make_turn, "I'm Alex and I work as a backend engineer")

        result = await pipeline.consolidate("user-1", "conv-1")

        assert result.consolidated_count == 2
        assert result.merged_count == 0
        assert result.failed_count == 0
        namespaces = {(f.namespace.category, f.namespace.topic) for f in result.facts}
        assert namespaces == {("personal", "identity"), ("work", "occupation")}
        assert all(f.type == FactType.FACT for f in result.facts)
        assert all(f.source.conversation_id == "conv-1" for f in result.facts)

        profile = await store.get_profile("user-1")
        assert profile.personal.name.value == "Alex"
        assert profile.personal.role.value == "backend engineer"
        assert profile.meta.total_memories == 2
        assert profile.meta.profile_completeness > 0

        assert mock_qdrant_client.upsert.await_count == 2
        collection, points = mock_qdrant_client.upsert.await_args.args
        assert collection == "user_user-1_memory_facts"
        assert points[0]["payload"]["user_id"] == "user-1"
        for fact in result.facts:
            assert (await store.get_fact(fact.id)).semantic.embedding_id == fact.id
        assert stats.consolidations == 1

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, pipeline, store, conversation_log, make_turn) -> None:
        await _say(
            conversation_log,
            make_turn,
            "I'm Alex and I work as a backend engineer",
            "I want to learn Rust.",
        )

        first = await pipeline.consolidate("user-1", "conv-1")
        second = await pipeline.consolidate("user-1", "conv-1")

        assert first.consolidated_count == 3
        assert second.consolidated_count == 0
        assert second.merged_count == 3
        assert len(await store.list_facts("user-1")) == 3
        profile = await store.get_profile("user-1")
        assert len(profile.learning.goals) == 1

    @pytest.mark.asyncio
    async def test_concurrent_runs_serialized(
        self, file_db_manager, mock_embedding_service, mock_qdrant_client, make_turn
    ) -> None:
        store = MemoryStore(file_db_manager)
        conversation_log = ConversationLog(file_db_manager)
        pipeline = ConsolidationPipeline(
            store, conversation_log, mock_embedding_service, mock_qdrant_client
        )
        await _say(conversation_log, make_turn, "I want to learn Rust.")

        results = await asyncio.gather(
            pipeline.consolidate("user-1", "conv-1"),
            pipeline.consolidate("user-1", "conv-1"),
        )

        assert sorted(r.consolidated_count for r in results) == [0, 1]
        assert sorted(r.merged_count for r in results) == [0, 1]
        assert len(await store.list_facts("user-1")) == 1

    @pytest.mark.asyncio
    async def test_runs_serialized_across_workers(
        self, file_db_manager, tmp_path, mock_embedding_service, mock_qdrant_client, make_turn
    ) -> None:
        other_db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/memory.db")
        pipelines = [
            ConsolidationPipeline(
                MemoryStore(db), ConversationLog(db), mock_embedding_service, mock_qdrant_client
            )
            for db in (file_db_manager, other_db)
        ]
        await _say(
            ConversationLog(file_db_manager),
            make_turn,
            "I want to learn Rust.",
            "I work as a backend engineer",
        )

        try:
            results = await asyncio.gather(
                *(p.consolidate("user-1", "conv-1") for p in pipelines)
            )
        finally:
            await other_db.close()

        assert sorted((r.consolidated_count, r.merged_count) for r in results) == [
            (0, 2),
            (2, 0),
        ]
        assert len(await MemoryStore(file_db_manager).list_facts("user-1")) == 2

    @pytest.mark.asyncio
    async def test_busy_lease_skips_run(
        self, store, conversation_log, mock_embedding_service, mock_qdrant_client, make_turn
    ) -> None:
        pipeline = ConsolidationPipeline(
            store, conversation_log, mock_embedding_service, mock_qdrant_client, lock_wait=0
        )
        await _say(conversation_log, make_turn, "I want to learn Rust.")
        await store.acquire_consolidation_lease("user-1", "other-worker", 60)

        result = await pipeline.consolidate("user-1", "conv-1")

        assert result.consolidated_count == 0
        assert result.reason == "consolidation already running"
        assert await store.list_facts("user-1") == []
        idle = await conversation_log.list_idle_conversations(utc_now() + timedelta(minutes=1))
        assert idle == [("user-1", "conv-1")]

    @pytest.mark.asyncio
    async def test_busy_lease_rejects_explicit_fact(
        self, store, conversation_log, mock_embedding_service, mock_qdrant_client, make_fact
    ) -> None:
        pipeline = ConsolidationPipeline(
            store, conversation_log, mock_embedding_service, mock_qdrant_client, lock_wait=0
        )
        await store.acquire_consolidation_lease("user-1", "other-worker", 60)

        with pytest.raises(ConsolidationBusyError):
            await pipeline.add_fact(make_fact())

        assert await store.list_facts("user-1") == []

    @pytest.mark.asyncio
    async def test_lease_released_after_run(
        self, pipeline, store, conversation_log, make_turn
    ) -> None:
        await _say(conversation_log, make_turn, "I want to learn Rust.")

        await pipeline.consolidate("user-1", "conv-1")

        assert await store.acquire_consolidation_lease("user-1", "other-worker", 60)

    @pytest.mark.asyncio
    async def test_near_duplicate_merged(
        self, pipeline, store, conversation_log, make_turn, make_fact
    ) -> None:
        topic_words = " ".join(f"topic{i}" for i in range(16))
        existing = make_fact(f"I want to learn {topic_words} extra")
        await store.create_fact(existing)
        await _say(conversation_log, make_turn, f"I want to learn {topic_words}")

        result = await pipeline.consolidate("user-1", "conv-1")

        assert result.consolidated_count == 0
        assert result.merged_count == 1
        merged = await store.get_fact(existing.id)
        assert merged.content == f"I want to learn {topic_words}"
        assert merged.version.history[0].content == existing.content
        assert len(merged.source.message_ids) == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_counted(
        self, pipeline, store, conversation_log, make_turn, monkeypatch
    ) -> None:
        await _say(conversation_log, make_turn, "I'm Alex and I work as a backend engineer")
        create_fact = store.create_fact

        async def flaky_create(fact, session=None):
            if fact.namespace.topic == "identity":
                raise DatabaseError("insert failed")
            return await create_fact(fact, session=session)

        monkeypatch.setattr(store, "create_fact", flaky_create)

        result = await pipeline.consolidate("user-1", "conv-1")

        assert result.failed_count == 1
        assert result.consolidated_count == 1
        assert [f.namespace.topic for f in await store.list_facts("user-1")] == ["occupation"]

    @pytest.mark.asyncio
    async def test_unindexed_fact_reindexed_next_run(
        self, pipeline, store, conversation_log, make_turn, mock_embedding_service
    ) -> None:
        await _say(conversation_log, make_turn, "I want to learn Rust.")
        mock_embedding_service.embed_text.side_effect = EmbeddingError("provider down")

        first = await pipeline.consolidate("user-1", "conv-1")
        fact_id = first.facts[0].id

        assert first.consolidated_count == 1
        assert first.failed_count == 0
        assert (await store.get_fact(fact_id)).semantic.embedding_id is None

        mock_embedding_service.embed_text.side_effect = None
        await pipeline.consolidate("user-1", "conv-1")

        assert (await store.get_fact(fact_id)).semantic.embedding_id == fact_id

    @pytest.mark.asyncio
    async def test_assistant_turns_ignored(
        self, pipeline, store, conversation_log, make_turn
    ) -> None:
        await conversation_log.append(make_turn("I'm Tutor and I work as a teacher", role="assistant"))

        result = await pipeline.consolidate("user-1", "conv-1")

        assert result.consolidated_count == 0
        assert result.reason is None
        assert await store.list_facts("user-1") == []

    @pytest.mark.asyncio
    async def test_consolidated_conversation_no_longer_idle(
        self, pipeline, conversation_log, make_turn
    ) -> None:
        await _say(conversation_log, make_turn, "I want to learn Rust.")
        assert await conversation_log.list_idle_conversations(utc_now()) == [("user-1", "conv-1")]

        await pipeline.consolidate("user-1", "conv-1")

        assert await conversation_log.list_idle_conversations(utc_now()) == []


@pytest.mark.unit
class TestAddFact:
    @pytest.mark.asyncio
    async def test_add_fact_indexes_and_profiles(
        self, pipeline, store, make_fact, mock_qdrant_client
    ) -> None:
        fact = make_fact("I'm studying linear algebra", fact_type=FactType.EXPERIENCE, topic="current_learning")

        await pipeline.add_fact(fact)

        assert (await store.get_fact(fact.id)).semantic.embedding_id == fact.id
        profile = await store.get_profile("user-1")
        assert [s.name for s in profile.professional.skills] == ["linear algebra"]
        assert profile.meta.total_memories == 1
        mock_qdrant_client.upsert.assert_awaited_once()
