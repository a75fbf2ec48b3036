# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the short-term, working and long-term memory tiers."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tutor_memory.core.intelligence.embeddings import EmbeddingError
from tutor_memory.core.intelligence.llm import LLMError, LLMResponse
from tutor_memory.core.memory.layers import (
    LongTermRetriever,
    ShortTermWindow,
    WorkingMemorySummarizer,
)
from tutor_memory.core.memory.layers.working import fallback_digest
from tutor_memory.core.memory.stats import MemoryStats
from tutor_memory.infrastructure.cache import summary_cache_key
from tutor_memory.infrastructure.vectors import QdrantError, SearchResult
from tutor_memory.models.memory import (
    FactStatus,
    PrivacyFilterOptions,
    PrivacyLevel,
)


async def _append(conversation_log, make_turn, count: int, conversation_id: str = "conv-1"):
    turns = []
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        turns.append(
            await conversation_log.append(
                make_turn(f"message {i}", role=role, conversation_id=conversation_id)
            )
        )
    return turns


def _hit(fact_id: str, score: float) -> SearchResult:
    return SearchResult(id=fact_id, score=score, payload={"fact_id": fact_id})


# ========== Short-term ==========


@pytest.mark.unit
class TestShortTermWindow:
    @pytest.mark.asyncio
    async def test_returns_last_turns_oldest_first(self, conversation_log, make_turn) -> None:
        turns = await _append(conversation_log, make_turn, 7)

        memory = await ShortTermWindow(conversation_log, limit=5).get("conv-1")

        assert [t.id for t in memory.turns] == [t.id for t in turns[2:]]
        assert memory.token_estimate > 0

    @pytest.mark.asyncio
    async def test_empty_conversation(self, conversation_log) -> None:
        memory = await ShortTermWindow(conversation_log).get("conv-empty")

        assert memory.turns == []
        assert memory.token_estimate == 0


# ========== Working ==========


@pytest.fixture
def mock_llm() -> MagicMock:
    llm = MagicMock()
    llm.complete = AsyncMock(return_value=LLMResponse(content="Learner asked about loops.", model="test"))
    return llm


@pytest.mark.unit
class TestWorkingMemorySummarizer:
    @pytest.mark.asyncio
    async def test_short_session_verbatim(
        self, conversation_log, make_turn, mock_llm, memory_cache
    ) -> None:
        await _append(conversation_log, make_turn, 3)
        summarizer = WorkingMemorySummarizer(conversation_log, mock_llm, memory_cache, threshold=3)

        memory = await summarizer.get("conv-1")

        assert not memory.summarized
        assert memory.turn_count == 3
        assert memory.context == "user: message 0\nassistant: message 1\nuser: message 2"
        mock_llm.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_long_session_summarized_and_cached(
        self, conversation_log, make_turn, mock_llm, memory_cache
    ) -> None:
        await _append(conversation_log, make_turn, 6)
        summarizer = WorkingMemorySummarizer(
            conversation_log, mock_llm, memory_cache, threshold=4, recent_count=2
        )

        first = await summarizer.get("conv-1")
        second = await summarizer.get("conv-1")

        assert first.summary == "Learner asked about loops."
        assert first.split_point == 4
        assert first.context.endswith("Recent messages:\nuser: message 4\nassistant: message 5")
        assert second.summary == first.summary
        assert mock_llm.complete.await_count == 1
        assert await memory_cache.get(summary_cache_key("conv-1", 4)) == first.summary

    @pytest.mark.asyncio
    async def test_llm_failure_uses_fallback_uncached(
        self, conversation_log, make_turn, mock_llm, memory_cache
    ) -> None:
        turns = await _append(conversation_log, make_turn, 6)
        mock_llm.complete.side_effect = LLMError("provider down")
        summarizer = WorkingMemorySummarizer(
            conversation_log, mock_llm, memory_cache, threshold=4, recent_count=2
        )

        memory = await summarizer.get("conv-1")
        await summarizer.get("conv-1")

        assert memory.summary == fallback_digest(turns[:4])
        assert memory.summary.startswith("Discussed 4 messages covering: message")
        assert mock_llm.complete.await_count == 2
        assert await memory_cache.get(summary_cache_key("conv-1", 4)) is None

    def test_fallback_digest_without_topics(self, make_turn) -> None:
        assert fallback_digest([make_turn("ok"), make_turn("hi")]) == "Discussed 2 messages."


# ========== Long-term ==========


@pytest.fixture
def retriever(store, mock_embedding_service, mock_qdrant_client) -> LongTermRetriever:
    return LongTermRetriever(
        store, mock_embedding_service, mock_qdrant_client, stats=MemoryStats()
    )


@pytest.mark.unit
class TestLongTermRetriever:
    @pytest.mark.asyncio
    async def test_blank_query(self, retriever, mock_embedding_service) -> None:
        memory = await retriever.retrieve("user-1", "   ")

        assert memory.facts == []
        assert not memory.degraded
        mock_embedding_service.embed_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_embedding_failure_degrades(self, retriever, mock_embedding_service) -> None:
        mock_embedding_service.embed_text.side_effect = EmbeddingError("no provider")

        memory = await retriever.retrieve("user-1", "what is a closure?")

        assert memory.facts == []
        assert memory.degraded

    @pytest.mark.asyncio
    async def test_vector_search_failure_degrades(self, retriever, mock_qdrant_client) -> None:
        mock_qdrant_client.search_for_user.side_effect = QdrantError("unreachable")

        memory = await retriever.retrieve("user-1", "what is a closure?")

        assert memory.degraded

    @pytest.mark.asyncio
    async def test_no_candidates(self, retriever, mock_qdrant_client) -> None:
        memory = await retriever.retrieve("user-1", "what is a closure?", top_k=3)

        assert memory.facts == []
        assert not memory.degraded
        assert mock_qdrant_client.search_for_user.await_args.kwargs["limit"] == 6

    @pytest.mark.asyncio
    async def test_hydrates_scores_and_ranks(
        self, retriever, store, mock_qdrant_client, make_fact
    ) -> None:
        best = make_fact("I want to learn Rust")
        second = make_fact("I like systems programming", topic="preferences")
        third = make_fact("I like tea", topic="preferences")
        archived = make_fact("I want to learn Go", status=FactStatus.ARCHIVED)
        for fact in (best, second, third, archived):
            await store.create_fact(fact)
        mock_qdrant_client.search_for_user.return_value = [
            _hit(third.id, 0.2),
            _hit(best.id, 0.9),
            _hit("ghost-id", 0.99),
            _hit(archived.id, 0.95),
            _hit(second.id, 0.6),
        ]

        memory = await retriever.retrieve("user-1", "rust help", top_k=2)
        await retriever.drain()

        assert [item.fact.id for item in memory.facts] == [best.id, second.id]
        assert memory.facts[0].relevance.factors.semantic_similarity == pytest.approx(0.9)
        assert (await store.get_fact(best.id)).importance.factors.access_frequency == 1
        assert (await store.get_fact(third.id)).importance.factors.access_frequency == 0
        assert retriever._stats.retrievals == 1

    @pytest.mark.asyncio
    async def test_intent_bonus_reorders(
        self, retriever, store, mock_qdrant_client, make_fact
    ) -> None:
        goal = make_fact("I want to learn Rust", topic="learning_goals")
        preference = make_fact("I like chess", topic="preferences")
        for fact in (goal, preference):
            await store.create_fact(fact)
        mock_qdrant_client.search_for_user.return_value = [
            _hit(goal.id, 0.5),
            _hit(preference.id, 0.7),
        ]

        memory = await retriever.retrieve("user-1", "chess", intent="discuss learning_goals")
        await retriever.drain()

        assert [item.fact.id for item in memory.facts] == [goal.id, preference.id]
        assert memory.facts[0].relevance.factors.intent_match

    @pytest.mark.asyncio
    async def test_privacy_gate(self, retriever, store, mock_qdrant_client, make_fact) -> None:
        visible = make_fact("I like tea", category="personal")
        secret = make_fact("I take insulin", category="personal")
        secret.privacy.level = PrivacyLevel.CONFIDENTIAL
        work = make_fact("I work as a teacher", category="work", topic="occupation")
        for fact in (visible, secret, work):
            await store.create_fact(fact)
        mock_qdrant_client.search_for_user.return_value = [
            _hit(visible.id, 0.5),
            _hit(secret.id, 0.9),
            _hit(work.id, 0.8),
        ]

        memory = await retriever.retrieve(
            "user-1",
            "tea",
            privacy_options=PrivacyFilterOptions(exclude_category=["work"]),
        )
        await retriever.drain()

        assert [item.fact.id for item in memory.facts] == [visible.id]
