# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Long-term memory: semantically retrieved durable facts.

Retrieval steps:
1. embed the query text
2. ask the vector index for 2 x top_k nearest facts in the user's collection
3. hydrate the ids against MemoryStore, keeping active facts only
4. score each fact with RelevanceScorer (vector score as semantic similarity)
5. drop what the privacy filter rejects, sort by score, keep top_k
6. bump access counters in a detached task

Embedding or vector-search failures degrade to an empty result. Ids the
index returns but the store no longer has are logged and skipped.
"""

import asyncio
import logging

from tutor_memory.core.intelligence.embeddings import EmbeddingError, EmbeddingService
from tutor_memory.core.memory.privacy import PrivacyFilter
from tutor_memory.core.memory.scoring import RelevanceScorer
from tutor_memory.core.memory.stats import MemoryStats
from tutor_memory.core.memory.store import MemoryStore
from tutor_memory.infrastructure.vectors import (
    MEMORY_FACTS_COLLECTION,
    QdrantError,
    QdrantVectorClient,
)
from tutor_memory.models.memory import (
    LongTermMemory,
    PrivacyFilterOptions,
    ScoredFact,
)

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


class LongTermRetriever:
    """Retrieves and ranks a user's durable facts for a query.

    Example:
        retriever = LongTermRetriever(store, embedding_service, qdrant)
        memory = await retriever.retrieve("user-1", "how do I reverse a list?", top_k=5)
        for item in memory.facts:
            print(item.fact.content, item.relevance.score)
    """

    def __init__(
        self,
        store: MemoryStore,
        embedding_service: EmbeddingService,
        qdrant_client: QdrantVectorClient,
        scorer: RelevanceScorer | None = None,
        privacy_filter: PrivacyFilter | None = None,
        stats: MemoryStats | None = None,
    ) -> None:
        self._store = store
        self._embedding = embedding_service
        self._qdrant = qdrant_client
        self._scorer = scorer or RelevanceScorer()
        self._privacy = privacy_filter or PrivacyFilter()
        self._stats = stats
        self._pending: set[asyncio.Task] = set()

    async def retrieve(
        self,
        user_id: str,
        query_text: str,
        intent: str | None = None,
        top_k: int = DEFAULT_TOP_K,
        privacy_options: PrivacyFilterOptions | None = None,
    ) -> LongTermMemory:
        """Retrieve the top_k most relevant active facts.

        Args:
            user_id: Owner of the facts.
            query_text: Text to match, usually the current message.
            intent: Optional intent; matching topics get a bonus.
            top_k: Maximum number of facts returned.
            privacy_options: Extra filters for the privacy gate.

        Returns:
            LongTermMemory, possibly empty and flagged as degraded.
        """
        if not query_text or not query_text.strip():
            return LongTermMemory()

        try:
            query_vector = await self._embedding.embed_text(query_text)
        except (EmbeddingError, ValueError) as e:
            logger.warning("Long-term retrieval degraded, embedding failed: %s", e)
            return LongTermMemory(degraded=True)

        try:
            hits = await self._qdrant.search_for_user(
                user_id,
                MEMORY_FACTS_COLLECTION,
                query_vector=query_vector,
                limit=top_k * 2,
            )
        except QdrantError as e:
            logger.warning("Long-term retrieval degraded, vector search failed: %s", e)
            return LongTermMemory(degraded=True)

        if not hits:
            return LongTermMemory()

        similarity = {hit.payload.get("fact_id", hit.id): hit.score for hit in hits}
        facts = await self._store.get_active_facts_by_ids(user_id, list(similarity))

        missing = set(similarity) - set(facts)
        if missing:
            logger.debug(
                "Skipping %d indexed ids with no active fact for user %s",
                len(missing),
                user_id,
            )

        scored = [
            ScoredFact(
                fact=fact,
                relevance=self._scorer.score(fact, similarity[fact_id], intent),
            )
            for fact_id, fact in facts.items()
        ]
        scored = self._privacy.filter_scored(scored, privacy_options)
        scored.sort(key=lambda item: item.relevance.score, reverse=True)
        top = scored[:top_k]

        if top:
            self._schedule_access_bump([item.fact.id for item in top])
        if self._stats is not None:
            self._stats.increment("retrievals")

        logger.debug("Retrieved %d long-term facts for user %s", len(top), user_id)
        return LongTermMemory(facts=top)

    def _schedule_access_bump(self, fact_ids: list[str]) -> None:
        task = asyncio.create_task(self._bump_access(fact_ids))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _bump_access(self, fact_ids: list[str]) -> None:
        try:
            await self._store.record_access(fact_ids)
        except Exception as e:
            logger.warning("Access bump failed for %d facts: %s", len(fact_ids), e)

    async def drain(self) -> None:
        """Wait for detached access bumps; used at shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
