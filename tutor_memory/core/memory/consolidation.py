# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Consolidation: turning finished conversations into durable facts.

One run over a conversation:
1. load every turn; nothing to do when there are none
2. extract candidates from user-authored turns (extraction.FactExtractor)
3. merge each candidate into an active fact it duplicates (Jaccard > 0.9),
   otherwise store it as a new fact and index its embedding
4. re-index active facts that never received an embedding
5. fold stored and merged facts into the user profile
6. mark the conversation consolidated

Runs for the same user are serialized by a lease row in the memory store,
so concurrent runs in other worker processes wait as well. A run that cannot
get the lease within lock_wait seconds is skipped; the conversation stays
unconsolidated for the next sweep. Re-running on an unchanged conversation
only merges, so the active fact count stays the same. One failing candidate never aborts the batch; it is counted in
ConsolidationResult.failed_count.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from tutor_memory.core.intelligence.embeddings import EmbeddingError, EmbeddingService
from tutor_memory.core.memory.conversation import ConversationLog
from tutor_memory.core.memory.extraction import (
    DUPLICATE_THRESHOLD,
    FactCandidate,
    FactExtractor,
    is_duplicate,
)
from tutor_memory.core.memory.profile import ProfileUpdater
from tutor_memory.core.memory.stats import MemoryStats
from tutor_memory.core.memory.store import MemoryStore, MemoryStoreError
from tutor_memory.infrastructure.database.connection import DatabaseError
from tutor_memory.infrastructure.vectors import (
    MEMORY_FACTS_COLLECTION,
    QdrantError,
    QdrantVectorClient,
)
from tutor_memory.models.memory import (
    ConsolidationResult,
    FactImportance,
    FactSource,
    MemoryFact,
    Namespace,
    UserProfile,
)

logger = logging.getLogger(__name__)

NEW_FACT_IMPORTANCE = 0.7
DEFAULT_LOCK_TTL = 300
DEFAULT_LOCK_WAIT = 30.0
LOCK_POLL_INTERVAL = 0.05

PERSISTENCE_ERRORS = (DatabaseError, MemoryStoreError)
INDEXING_ERRORS = (EmbeddingError, QdrantError, DatabaseError, ValueError)


class ConsolidationBusyError(Exception):
    """Raised when another run keeps a user's consolidation lease too long.

    Attributes:
        message: Error description.
        user_id: User whose lease could not be acquired.
    """

    def __init__(self, message: str, user_id: str) -> None:
        super().__init__(message)
        self.message = message
        self.user_id = user_id


def candidate_to_fact(
    user_id: str,
    conversation_id: str,
    candidate: FactCandidate,
) -> MemoryFact:
    return MemoryFact(
        user_id=user_id,
        content=candidate.content,
        type=candidate.fact_type,
        namespace=Namespace(category=candidate.rule.category, topic=candidate.rule.topic),
        source=FactSource(
            conversation_id=conversation_id,
            message_ids=[candidate.message_id],
            confidence=candidate.rule.confidence,
        ),
        importance=FactImportance(score=NEW_FACT_IMPORTANCE),
    )


def fact_payload(fact: MemoryFact) -> dict[str, str]:
    """Vector point payload for a fact."""
    return {
        "fact_id": fact.id,
        "user_id": fact.user_id,
        "type": fact.type.value,
        "category": fact.namespace.category,
        "topic": fact.namespace.topic,
    }


class ConsolidationPipeline:
    """Extracts, deduplicates and persists facts from conversations.

    Args:
        store: Fact and profile persistence.
        conversations: Transcript reader.
        embedding_service: Embeds new facts for the vector index.
        qdrant_client: Vector index holding per-user fact collections.
        extractor: Candidate extraction rules.
        profile_updater: Folds facts into the profile.
        stats: Process-wide counters.
        duplicate_threshold: Jaccard similarity above which candidates merge.
        lock_ttl: Seconds a consolidation lease lives before it can be taken over.
        lock_wait: Seconds to wait for a lease held by another run.
        lock_poll_interval: Seconds between lease attempts while waiting.
    """

    def __init__(
        self,
        store: MemoryStore,
        conversations: ConversationLog,
        embedding_service: EmbeddingService,
        qdrant_client: QdrantVectorClient,
        extractor: FactExtractor | None = None,
        profile_updater: ProfileUpdater | None = None,
        stats: MemoryStats | None = None,
        duplicate_threshold: float = DUPLICATE_THRESHOLD,
        lock_ttl: int = DEFAULT_LOCK_TTL,
        lock_wait: float = DEFAULT_LOCK_WAIT,
        lock_poll_interval: float = LOCK_POLL_INTERVAL,
    ) -> None:
        self._store = store
        self._conversations = conversations
        self._embedding = embedding_service
        self._qdrant = qdrant_client
        self._extractor = extractor or FactExtractor()
        self._profile_updater = profile_updater or ProfileUpdater()
        self._stats = stats or MemoryStats()
        self._duplicate_threshold = duplicate_threshold
        self._lock_ttl = lock_ttl
        self._lock_wait = lock_wait
        self._lock_poll_interval = lock_poll_interval

    @asynccontextmanager
    async def user_lease(self, user_id: str) -> AsyncIterator[None]:
        """Hold the user's consolidation lease for the duration of the block.

        Raises:
            ConsolidationBusyError: If the lease stays taken for lock_wait seconds.
        """
        holder = str(uuid4())
        deadline = time.monotonic() + self._lock_wait
        while not await self._store.acquire_consolidation_lease(
            user_id, holder, self._lock_ttl
        ):
            if time.monotonic() >= deadline:
                raise ConsolidationBusyError(
                    f"consolidation lease for user {user_id} is held by another run",
                    user_id,
                )
            await asyncio.sleep(self._lock_poll_interval)

        try:
            yield
        finally:
            try:
                await self._store.release_consolidation_lease(user_id, holder)
            except DatabaseError as e:
                # The lease expires after lock_ttl
                logger.error("Failed to release consolidation lease for user %s: %s", user_id, e)

    async def consolidate(self, user_id: str, conversation_id: str) -> ConsolidationResult:
        """Consolidate one conversation for a user.

        Returns:
            ConsolidationResult with created/merged/failed counts and the new
            facts, or an empty result with a reason when the run was skipped.
        """
        try:
            async with self.user_lease(user_id):
                return await self._consolidate(user_id, conversation_id)
        except ConsolidationBusyError as e:
            logger.warning("Skipping consolidation of %s: %s", conversation_id, e.message)
            return ConsolidationResult(reason="consolidation already running")

    async def add_fact(self, fact: MemoryFact) -> MemoryFact:
        """Store, index and profile a fact stated explicitly by the user.

        Raises:
            DatabaseError: If the fact cannot be stored.
            ConsolidationBusyError: If a consolidation run holds the user's lease.
        """
        async with self.user_lease(fact.user_id):
            await self._store.create_fact(fact)
            await self.index_fact(fact)
            active = await self._store.list_facts(fact.user_id)
            await self.update_profile(fact.user_id, [fact], active_count=len(active))
        logger.info("Stored explicit %s fact %s for user %s", fact.type.value, fact.id, fact.user_id)
        return fact

    async def _consolidate(self, user_id: str, conversation_id: str) -> ConsolidationResult:
        turns = await self._conversations.list_turns(conversation_id)
        if not turns:
            logger.info("Nothing to consolidate for conversation %s", conversation_id)
            return ConsolidationResult(reason="no messages")

        candidates = self._extractor.extract(turns)
        existing = await self._store.list_facts(user_id)

        result = ConsolidationResult()
        touched: list[MemoryFact] = []

        for candidate in candidates:
            try:
                duplicate = self._find_duplicate(candidate, existing)
                if duplicate is not None:
                    merged = await self._store.merge_fact(
                        duplicate.id,
                        content=candidate.content,
                        message_ids=[candidate.message_id],
                        reason="consolidation",
                    )
                    if merged is None:
                        logger.warning(
                            "Fact %s vanished before merge, skipping candidate", duplicate.id
                        )
                        continue
                    existing[existing.index(duplicate)] = merged
                    touched.append(merged)
                    result.merged_count += 1
                    continue

                fact = candidate_to_fact(user_id, conversation_id, candidate)
                await self._store.create_fact(fact)
            except PERSISTENCE_ERRORS as e:
                logger.error(
                    "Failed to persist %s candidate from message %s: %s",
                    candidate.fact_type.value,
                    candidate.message_id,
                    e,
                )
                result.failed_count += 1
                continue

            await self.index_fact(fact)
            existing.append(fact)
            touched.append(fact)
            result.facts.append(fact)
            result.consolidated_count += 1

        await self._reindex_missing(user_id, existing, skip={f.id for f in result.facts})

        if touched:
            await self.update_profile(user_id, touched, active_count=len(existing))

        await self._store.mark_conversation_consolidated(user_id, conversation_id, len(turns))
        self._stats.increment("consolidations")

        logger.info(
            "Consolidated conversation %s for user %s: %d new, %d merged, %d failed",
            conversation_id,
            user_id,
            result.consolidated_count,
            result.merged_count,
            result.failed_count,
        )
        return result

    def _find_duplicate(
        self,
        candidate: FactCandidate,
        facts: list[MemoryFact],
    ) -> MemoryFact | None:
        for fact in facts:
            if is_duplicate(candidate.content, fact.content, self._duplicate_threshold):
                return fact
        return None

    async def index_fact(self, fact: MemoryFact) -> bool:
        """Embed a fact and upsert it into the user's collection.

        A failure leaves the fact without an embedding id; the next run
        picks it up again.
        """
        try:
            vector = await self._embedding.embed_text(fact.content)
            collection_name = await self._qdrant.ensure_user_collection(
                fact.user_id,
                MEMORY_FACTS_COLLECTION,
                len(vector),
            )
            await self._qdrant.upsert(
                collection_name,
                [{"id": fact.id, "vector": vector, "payload": fact_payload(fact)}],
            )
            await self._store.set_embedding_id(fact.id, fact.id)
        except INDEXING_ERRORS as e:
            logger.error("Failed to index %s fact %s: %s", fact.type.value, fact.id, e)
            return False

        fact.semantic.embedding_id = fact.id
        return True

    async def _reindex_missing(
        self,
        user_id: str,
        facts: list[MemoryFact],
        skip: set[str],
    ) -> None:
        missing = [f for f in facts if f.semantic.embedding_id is None and f.id not in skip]
        if not missing:
            return

        indexed = 0
        for fact in missing:
            if await self.index_fact(fact):
                indexed += 1
        logger.info("Re-indexed %d/%d unindexed facts for user %s", indexed, len(missing), user_id)

    async def update_profile(
        self,
        user_id: str,
        facts: list[MemoryFact],
        active_count: int,
    ) -> UserProfile | None:
        try:
            profile = await self._store.get_profile(user_id) or UserProfile(user_id=user_id)
            profile = self._profile_updater.apply(profile, facts)
            profile.meta.total_memories = active_count
            return await self._store.save_profile(profile)
        except PERSISTENCE_ERRORS as e:
            logger.error("Failed to update profile for user %s: %s", user_id, e)
            return None
