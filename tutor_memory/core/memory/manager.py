# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Memory manager: the single entry point of the memory subsystem.

For each chat turn the manager looks up the (user, conversation) tier
bundle in the cache. On a miss it fetches the four tiers concurrently:

- short-term: the last N turns verbatim (ShortTermWindow)
- working: the whole session, summarized once long (WorkingMemorySummarizer)
- long-term: relevant durable facts (LongTermRetriever), under a timeout
- profile: the user's consolidated profile (MemoryStore)

and caches the bundle. The tiers are then assembled into one prompt block
under the token budget. A failing tier degrades to an empty one; the only
error a caller ever sees is InvalidMemoryRequestError for bad input.

Consolidation, decay and the stale-memory cleanup are exposed here for the
background actors.

Example:
    from tutor_memory.core.memory import MemoryManager

    manager = MemoryManager.create(db_manager, qdrant_client, redis_client)

    context = await manager.get_context_for_turn(
        user_id="user-1",
        conversation_id="conv-9",
        current_message="Can you explain list comprehensions?",
        intent="learn python",
    )
    prompt = system_prompt + "\\n\\n" + context.text

    await manager.consolidate("user-1", "conv-9")
"""

import asyncio
import logging
from datetime import datetime

from pydantic import ValidationError

from tutor_memory.core.config import MemorySettings, get_settings
from tutor_memory.core.intelligence.embeddings import EmbeddingService
from tutor_memory.core.intelligence.llm import LLMClient
from tutor_memory.core.memory.assembler import ContextAssembler
from tutor_memory.core.memory.consolidation import ConsolidationPipeline
from tutor_memory.core.memory.conversation import ConversationLog
from tutor_memory.core.memory.decay import DecayEngine
from tutor_memory.core.memory.layers import (
    LongTermRetriever,
    ShortTermWindow,
    WorkingMemorySummarizer,
)
from tutor_memory.core.memory.privacy import PrivacyFilter
from tutor_memory.core.memory.scoring import RelevanceScorer
from tutor_memory.core.memory.stats import MemoryStats
from tutor_memory.core.memory.store import MemoryStore, MemoryStoreError
from tutor_memory.core.memory.tokens import estimate_tokens
from tutor_memory.infrastructure.cache import (
    InMemoryCacheBackend,
    RedisCacheBackend,
    RedisClient,
    TieredCache,
    memory_cache_key,
)
from tutor_memory.infrastructure.database import DatabaseError, DatabaseManager
from tutor_memory.infrastructure.vectors import QdrantVectorClient
from tutor_memory.models.memory import (
    ConsolidationResult,
    ConversationTurn,
    DecayResult,
    ExtractionMethod,
    FactImportance,
    FactPrivacy,
    FactSource,
    FactType,
    HealthMetrics,
    ImportanceFactors,
    LongTermMemory,
    MemoryFact,
    Namespace,
    PrivacyFilterOptions,
    PrivacyLevel,
    ProfileMetrics,
    QualityMetrics,
    ShortTermMemory,
    StorageMetrics,
    TieredMemory,
    TokenAccounting,
    TurnContext,
    UsageMetrics,
    UserConsent,
    UserProfile,
    WorkingMemory,
)
from tutor_memory.utils.datetime import utc_now

logger = logging.getLogger(__name__)

TIER_ERRORS = (DatabaseError, MemoryStoreError)

EXPLICIT_FACT_IMPORTANCE = 0.9


class MemoryManagerError(Exception):
    """Exception raised for memory manager operations.

    Attributes:
        message: Error description.
        original_error: Original exception if any.
    """

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)


class InvalidMemoryRequestError(MemoryManagerError, ValueError):
    """Raised when an entry point receives missing or malformed input."""


def _require(value: str | None, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidMemoryRequestError(f"{name} is required")
    return value


class MemoryManager:
    """Orchestrates the memory tiers, consolidation and decay.

    Attributes:
        store: Fact and profile persistence.
        conversations: Transcript reader.
        stats: Process-wide counters.
    """

    def __init__(
        self,
        store: MemoryStore,
        conversations: ConversationLog,
        embedding_service: EmbeddingService,
        qdrant_client: QdrantVectorClient,
        llm_client: LLMClient,
        cache: TieredCache,
        settings: MemorySettings | None = None,
        stats: MemoryStats | None = None,
        scorer: RelevanceScorer | None = None,
        privacy_filter: PrivacyFilter | None = None,
    ) -> None:
        """Initialize the memory manager.

        Args:
            store: Fact and profile persistence.
            conversations: Transcript reader.
            embedding_service: Embeds queries and new facts.
            qdrant_client: Per-user fact collections.
            llm_client: Summarizes long sessions.
            cache: Tier bundle and summary cache.
            settings: Memory tunables. Uses get_settings().memory if None.
            stats: Counters shared with the background actors.
            scorer: Relevance scorer shared by retrieval and decay.
            privacy_filter: Gate applied to every fact leaving the store.
        """
        self._settings = settings or get_settings().memory
        self._cache = cache
        self._privacy = privacy_filter or PrivacyFilter()
        scorer = scorer or RelevanceScorer()

        self.store = store
        self.conversations = conversations
        self.stats = stats or MemoryStats()

        self.short_term = ShortTermWindow(conversations, limit=self._settings.short_term_limit)
        self.working = WorkingMemorySummarizer(
            conversations,
            llm_client,
            cache,
            threshold=self._settings.summarization_threshold,
            recent_count=self._settings.short_term_limit,
            ttl_seconds=self._settings.working_memory_ttl,
            temperature=self._settings.summarizer_temperature,
            max_tokens=self._settings.summarizer_max_tokens,
        )
        self.long_term = LongTermRetriever(
            store,
            embedding_service,
            qdrant_client,
            scorer=scorer,
            privacy_filter=self._privacy,
            stats=self.stats,
        )
        self.assembler = ContextAssembler()
        self.consolidation = ConsolidationPipeline(
            store,
            conversations,
            embedding_service,
            qdrant_client,
            stats=self.stats,
            lock_ttl=self._settings.consolidation_lock_ttl,
            lock_wait=self._settings.consolidation_lock_wait,
        )
        self.decay = DecayEngine(
            store,
            scorer=scorer,
            threshold=self._settings.forget_threshold,
            stats=self.stats,
            min_age_days=self._settings.forget_min_age_days,
        )

        logger.info("MemoryManager initialized")

    @classmethod
    def create(
        cls,
        db: DatabaseManager,
        qdrant_client: QdrantVectorClient,
        redis_client: RedisClient | None = None,
        stats: MemoryStats | None = None,
    ) -> "MemoryManager":
        """Build a manager with collaborators configured from settings.

        The cache always has an in-process tier; Redis is added behind it
        when a client is given.
        """
        settings = get_settings()
        backends = [InMemoryCacheBackend(max_entries=settings.memory.memory_cache_max_entries)]
        if redis_client is not None:
            backends.append(RedisCacheBackend(redis_client))

        return cls(
            store=MemoryStore(db),
            conversations=ConversationLog(db),
            embedding_service=EmbeddingService(),
            qdrant_client=qdrant_client,
            llm_client=LLMClient(llm_settings=settings.llm),
            cache=TieredCache(backends),
            settings=settings.memory,
            stats=stats,
        )

    # ========== Interactive path ==========

    async def get_context_for_turn(
        self,
        user_id: str,
        conversation_id: str,
        current_message: str,
        intent: str | None = None,
    ) -> TurnContext:
        """Assemble the memory context for one chat turn.

        Args:
            user_id: The user being answered.
            conversation_id: Active conversation.
            current_message: The message being answered; used as the retrieval query.
            intent: Optional intent of the turn; boosts facts with a matching topic.

        Returns:
            TurnContext with the assembled text, the tiers and token accounting.

        Raises:
            InvalidMemoryRequestError: If user_id or conversation_id is missing.
        """
        _require(user_id, "user_id")
        _require(conversation_id, "conversation_id")
        current_message = current_message or ""

        key = memory_cache_key(user_id, conversation_id)
        tiers = self._from_cache(await self._cache.get(key, ttl_seconds=self._settings.cache_ttl))
        cached = tiers is not None

        if cached:
            self.stats.increment("cache_hits")
        else:
            self.stats.increment("cache_misses")
            tiers = await self._gather_tiers(user_id, conversation_id, current_message, intent)
            await self._cache.set(key, tiers.model_dump(mode="json"), self._settings.cache_ttl)

        budget = self._settings.total_token_budget
        assembled = self.assembler.assemble(
            tiers.profile,
            tiers.long_term,
            tiers.working,
            tiers.short_term,
            budget,
        )

        return TurnContext(
            user_id=user_id,
            conversation_id=conversation_id,
            text=assembled.text,
            short_term=tiers.short_term,
            working=tiers.working,
            long_term=tiers.long_term,
            profile=tiers.profile,
            tokens=TokenAccounting(
                budget=budget,
                allocations=assembled.allocations,
                estimated_tokens=assembled.estimated_tokens,
                current_message_tokens=estimate_tokens(current_message),
            ),
            cached=cached,
        )

    def _from_cache(self, value: object) -> TieredMemory | None:
        if value is None:
            return None
        try:
            return TieredMemory.model_validate(value)
        except ValidationError as e:
            logger.warning("Discarding unreadable cached memory bundle: %s", e)
            return None

    async def _gather_tiers(
        self,
        user_id: str,
        conversation_id: str,
        current_message: str,
        intent: str | None,
    ) -> TieredMemory:
        short_term, working, long_term, profile = await asyncio.gather(
            self._short_term_tier(conversation_id),
            self._working_tier(conversation_id),
            self._long_term_tier(user_id, current_message, intent),
            self._profile_tier(user_id),
        )
        return TieredMemory(
            short_term=short_term,
            working=working,
            long_term=long_term,
            profile=profile,
        )

    async def _short_term_tier(self, conversation_id: str) -> ShortTermMemory:
        try:
            return await self.short_term.get(conversation_id)
        except TIER_ERRORS as e:
            logger.warning("Short-term memory unavailable for %s: %s", conversation_id, e)
            return ShortTermMemory()

    async def _working_tier(self, conversation_id: str) -> WorkingMemory:
        try:
            return await self.working.get(conversation_id)
        except TIER_ERRORS as e:
            logger.warning("Working memory unavailable for %s: %s", conversation_id, e)
            return WorkingMemory()

    async def _long_term_tier(
        self,
        user_id: str,
        current_message: str,
        intent: str | None,
    ) -> LongTermMemory:
        try:
            return await asyncio.wait_for(
                self.long_term.retrieve(
                    user_id,
                    current_message,
                    intent=intent,
                    top_k=self._settings.long_term_top_k,
                ),
                timeout=self._settings.long_term_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Long-term retrieval timed out after %.1fs for user %s",
                self._settings.long_term_timeout,
                user_id,
            )
        except TIER_ERRORS as e:
            logger.warning("Long-term memory unavailable for user %s: %s", user_id, e)
        return LongTermMemory(degraded=True)

    async def _profile_tier(self, user_id: str) -> UserProfile | None:
        try:
            return await self.store.get_profile(user_id)
        except TIER_ERRORS as e:
            logger.warning("Profile unavailable for user %s: %s", user_id, e)
            return None

    async def record_turn(
        self,
        user_id: str,
        conversation_id: str,
        role: str,
        content: str,
        created_at: datetime | None = None,
    ) -> ConversationTurn:
        """Append a message to the conversation transcript.

        Raises:
            InvalidMemoryRequestError: If ids, role or content are invalid.
        """
        _require(user_id, "user_id")
        _require(conversation_id, "conversation_id")
        try:
            turn = ConversationTurn(
                conversation_id=conversation_id,
                user_id=user_id,
                role=role,
                content=content,
                created_at=created_at or utc_now(),
            )
        except ValidationError as e:
            raise InvalidMemoryRequestError("Invalid conversation turn", e) from e
        return await self.conversations.append(turn)

    # ========== Consolidation and decay ==========

    async def consolidate(self, user_id: str, conversation_id: str) -> ConsolidationResult:
        """Turn a conversation into durable facts and profile updates."""
        _require(user_id, "user_id")
        _require(conversation_id, "conversation_id")
        return await self.consolidation.consolidate(user_id, conversation_id)

    async def apply_decay(self, user_id: str) -> DecayResult:
        """Recompute importance of a user's facts and forget the weakest."""
        _require(user_id, "user_id")
        return await self.decay.apply_decay(user_id)

    async def cleanup_stale_memories(self, older_than_days: int | None = None) -> int:
        """Archive unpinned facts not accessed for `older_than_days` (default from settings)."""
        days = older_than_days if older_than_days is not None else self._settings.stale_after_days
        return await self.decay.cleanup_stale(days)

    # ========== Explicit user actions ==========

    async def remember(
        self,
        user_id: str,
        content: str,
        fact_type: FactType = FactType.FACT,
        category: str = "personal",
        topic: str = "notes",
        conversation_id: str | None = None,
        privacy_level: PrivacyLevel = PrivacyLevel.RESTRICTED,
        data_category: str = "general",
        emotional_valence: float = 0.0,
    ) -> MemoryFact:
        """Store a fact the user explicitly asked to be remembered.

        The fact is user-confirmed, pinned against forgetting and indexed
        for retrieval right away.

        Raises:
            InvalidMemoryRequestError: If user_id, content or the namespace is invalid.
            ConsolidationBusyError: If a consolidation run holds the user's lease.
        """
        _require(user_id, "user_id")
        _require(content, "content")
        try:
            fact = MemoryFact(
                user_id=user_id,
                content=content.strip(),
                type=fact_type,
                namespace=Namespace(category=category, topic=topic),
                source=FactSource(
                    conversation_id=conversation_id,
                    extraction_method=ExtractionMethod.USER_CONFIRMED,
                    confidence=1.0,
                ),
                importance=FactImportance(
                    score=EXPLICIT_FACT_IMPORTANCE,
                    factors=ImportanceFactors(
                        user_marked=True,
                        emotional_valence=emotional_valence,
                    ),
                ),
                privacy=FactPrivacy(
                    level=privacy_level,
                    data_category=data_category,
                    user_consent=UserConsent(granted=True, granted_at=utc_now()),
                ),
            )
        except ValidationError as e:
            raise InvalidMemoryRequestError("Invalid fact", e) from e

        return await self.consolidation.add_fact(fact)

    async def pin_fact(self, user_id: str, fact_id: str) -> MemoryFact | None:
        """Protect a fact from being forgotten. Returns None if the user has no such fact."""
        _require(user_id, "user_id")
        _require(fact_id, "fact_id")
        return await self.store.set_user_marked(user_id, fact_id, True)

    async def unpin_fact(self, user_id: str, fact_id: str) -> MemoryFact | None:
        _require(user_id, "user_id")
        _require(fact_id, "fact_id")
        return await self.store.set_user_marked(user_id, fact_id, False)

    async def export_facts(
        self,
        user_id: str,
        options: PrivacyFilterOptions | None = None,
    ) -> list[MemoryFact]:
        """Active facts of a user as they may be shown outside the store."""
        _require(user_id, "user_id")
        facts = await self.store.list_facts(user_id)
        return self._privacy.filter(facts, options)

    # ========== Diagnostics ==========

    async def get_health_metrics(self, user_id: str) -> HealthMetrics:
        """Storage, quality, usage and profile figures for a dashboard."""
        _require(user_id, "user_id")
        fact_stats = await self.store.get_fact_stats(user_id)
        profile = await self.store.get_profile(user_id)
        counters = self.stats.snapshot()

        return HealthMetrics(
            storage=StorageMetrics(
                total=fact_stats["total"],
                active=fact_stats["active"],
                archived=fact_stats["archived"],
                type_distribution=fact_stats["type_distribution"],
            ),
            quality=QualityMetrics(
                average_confidence=fact_stats["average_confidence"],
                average_importance=fact_stats["average_importance"],
            ),
            usage=UsageMetrics(
                retrieval_count=counters["retrievals"],
                consolidation_count=counters["consolidations"],
                forgetting_events=counters["forgetting_events"],
                cache_hit_rate=counters["cache_hit_rate"],
            ),
            profile=ProfileMetrics(
                completeness=profile.meta.profile_completeness if profile else 0.0,
                last_updated=profile.meta.last_updated if profile else None,
            ),
        )

    async def close(self) -> None:
        """Wait for detached writes started by retrieval."""
        await self.long_term.drain()
