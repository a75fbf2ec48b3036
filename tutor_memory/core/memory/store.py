# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Durable store for memory facts and user profiles.

MemoryStore is the only component with direct read/write access to durable
memory state. Everything else works on the request-scoped pydantic copies
it returns.

Session Injection Pattern:
    All methods accept an optional `session` parameter. When provided,
    operations use the given session (sharing transaction context).
    When not provided, a new session is created for the operation.

Example:
    store = MemoryStore(db_manager)

    fact = await store.create_fact(fact)
    active = await store.list_facts("user-1")

    async with db_manager.get_session() as session:
        await store.record_access([fact.id], session=session)
        profile = await store.get_profile("user-1", session=session)
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tutor_memory.infrastructure.database.connection import DatabaseError, DatabaseManager
from tutor_memory.infrastructure.database.models import (
    ConsolidatedConversationRecord,
    ConsolidationLeaseRecord,
    MemoryFactRecord,
    UserProfileRecord,
)
from tutor_memory.models.memory import (
    ExtractionMethod,
    FactImportance,
    FactPrivacy,
    FactSemantic,
    FactSource,
    FactStatus,
    FactTemporal,
    FactType,
    FactVersion,
    ImportanceFactors,
    MemoryFact,
    Namespace,
    PrivacyLevel,
    UserConsent,
    UserProfile,
    VersionEntry,
)
from tutor_memory.utils.datetime import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class MemoryStoreError(Exception):
    """Exception raised for memory store operations.

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


def fact_to_record(fact: MemoryFact) -> MemoryFactRecord:
    """Flatten a MemoryFact into a new ORM record."""
    return MemoryFactRecord(
        id=fact.id,
        user_id=fact.user_id,
        content=fact.content,
        fact_type=fact.type.value,
        category=fact.namespace.category,
        topic=fact.namespace.topic,
        conversation_id=fact.source.conversation_id,
        message_ids=list(fact.source.message_ids),
        extraction_method=fact.source.extraction_method.value,
        confidence=fact.source.confidence,
        importance_score=fact.importance.score,
        importance_base=fact.importance.base_score,
        user_marked=fact.importance.factors.user_marked,
        access_frequency=fact.importance.factors.access_frequency,
        recency=fact.importance.factors.recency,
        emotional_valence=fact.importance.factors.emotional_valence,
        created_at=fact.temporal.created_at,
        last_accessed_at=fact.temporal.last_accessed_at,
        embedding_id=fact.semantic.embedding_id,
        privacy_level=fact.privacy.level.value,
        data_category=fact.privacy.data_category,
        consent_granted=fact.privacy.user_consent.granted,
        consent_granted_at=fact.privacy.user_consent.granted_at,
        status=fact.status.value,
        version_history=[
            entry.model_dump(mode="json") for entry in fact.version.history
        ],
    )


def record_to_fact(record: MemoryFactRecord) -> MemoryFact:
    """Rebuild the nested MemoryFact from an ORM record."""
    return MemoryFact(
        id=record.id,
        user_id=record.user_id,
        content=record.content,
        type=FactType(record.fact_type),
        namespace=Namespace(category=record.category, topic=record.topic),
        source=FactSource(
            conversation_id=record.conversation_id,
            message_ids=list(record.message_ids or []),
            extraction_method=ExtractionMethod(record.extraction_method),
            confidence=record.confidence,
        ),
        importance=FactImportance(
            score=record.importance_score,
            base_score=record.importance_base,
            factors=ImportanceFactors(
                user_marked=record.user_marked,
                access_frequency=record.access_frequency,
                recency=record.recency,
                emotional_valence=record.emotional_valence,
            ),
        ),
        temporal=FactTemporal(
            created_at=ensure_utc(record.created_at),
            last_accessed_at=ensure_utc(record.last_accessed_at),
        ),
        semantic=FactSemantic(embedding_id=record.embedding_id),
        privacy=FactPrivacy(
            level=PrivacyLevel(record.privacy_level),
            data_category=record.data_category,
            user_consent=UserConsent(
                granted=record.consent_granted,
                granted_at=ensure_utc(record.consent_granted_at),
            ),
        ),
        status=FactStatus(record.status),
        version=FactVersion(
            history=[VersionEntry.model_validate(e) for e in record.version_history or []]
        ),
    )


class MemoryStore:
    """Persistence for memory facts, user profiles and consolidation markers.

    Attributes:
        db: Database manager providing sessions.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    @property
    def db(self) -> DatabaseManager:
        return self._db

    # ========== Facts ==========

    async def create_fact(
        self,
        fact: MemoryFact,
        session: AsyncSession | None = None,
    ) -> MemoryFact:
        """Persist a new fact.

        Args:
            fact: Fact to store.
            session: Optional database session for transaction sharing.

        Returns:
            The stored fact.
        """

        async def _execute(db: AsyncSession) -> None:
            db.add(fact_to_record(fact))
            await db.flush()

        if session:
            await _execute(session)
        else:
            async with self._db.get_session() as db:
                await _execute(db)

        logger.debug("Stored fact %s for user %s (%s)", fact.id, fact.user_id, fact.type.value)
        return fact

    async def get_fact(
        self,
        fact_id: str,
        session: AsyncSession | None = None,
    ) -> MemoryFact | None:
        """Get a fact by id, whatever its status."""

        async def _execute(db: AsyncSession) -> MemoryFact | None:
            record = await db.get(MemoryFactRecord, fact_id)
            return record_to_fact(record) if record else None

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def get_active_facts_by_ids(
        self,
        user_id: str,
        fact_ids: list[str],
        session: AsyncSession | None = None,
    ) -> dict[str, MemoryFact]:
        """Hydrate ids returned by vector search.

        Only active facts owned by user_id are returned; archived or foreign
        ids are silently absent from the result.

        Returns:
            Mapping of fact id to fact.
        """
        if not fact_ids:
            return {}

        async def _execute(db: AsyncSession) -> dict[str, MemoryFact]:
            stmt = select(MemoryFactRecord).where(
                and_(
                    MemoryFactRecord.user_id == user_id,
                    MemoryFactRecord.id.in_(fact_ids),
                    MemoryFactRecord.status == FactStatus.ACTIVE.value,
                )
            )
            result = await db.execute(stmt)
            return {r.id: record_to_fact(r) for r in result.scalars().all()}

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def list_facts(
        self,
        user_id: str,
        status: FactStatus | None = FactStatus.ACTIVE,
        session: AsyncSession | None = None,
    ) -> list[MemoryFact]:
        """List a user's facts, oldest first.

        Args:
            user_id: Owner of the facts.
            status: Status to filter on; None returns every fact.
            session: Optional database session for transaction sharing.
        """

        async def _execute(db: AsyncSession) -> list[MemoryFact]:
            stmt = select(MemoryFactRecord).where(MemoryFactRecord.user_id == user_id)
            if status is not None:
                stmt = stmt.where(MemoryFactRecord.status == status.value)
            stmt = stmt.order_by(MemoryFactRecord.created_at, MemoryFactRecord.id)
            result = await db.execute(stmt)
            return [record_to_fact(r) for r in result.scalars().all()]

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def merge_fact(
        self,
        fact_id: str,
        content: str,
        message_ids: list[str],
        reason: str = "consolidation",
        session: AsyncSession | None = None,
    ) -> MemoryFact | None:
        """Merge a duplicate observation into an existing fact.

        The prior content is appended to the version history, the supporting
        message ids are unioned (order preserved) and the access counters are
        bumped.

        Returns:
            The merged fact, or None if the fact no longer exists.
        """

        async def _execute(db: AsyncSession) -> MemoryFact | None:
            stmt = (
                select(MemoryFactRecord)
                .where(MemoryFactRecord.id == fact_id)
                .with_for_update()
            )
            record = (await db.execute(stmt)).scalar_one_or_none()
            if record is None:
                return None

            now = utc_now()
            record.version_history = [
                *(record.version_history or []),
                VersionEntry(content=record.content, timestamp=now, reason=reason).model_dump(
                    mode="json"
                ),
            ]
            record.content = content
            record.message_ids = list(dict.fromkeys([*(record.message_ids or []), *message_ids]))
            record.access_frequency = record.access_frequency + 1
            record.last_accessed_at = now
            await db.flush()
            return record_to_fact(record)

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def record_access(
        self,
        fact_ids: list[str],
        session: AsyncSession | None = None,
    ) -> int:
        """Atomically bump access counters on retrieved facts.

        Returns:
            Number of rows updated.
        """
        if not fact_ids:
            return 0

        async def _execute(db: AsyncSession) -> int:
            stmt = (
                update(MemoryFactRecord)
                .where(
                    and_(
                        MemoryFactRecord.id.in_(fact_ids),
                        MemoryFactRecord.status == FactStatus.ACTIVE.value,
                    )
                )
                .values(
                    access_frequency=MemoryFactRecord.access_frequency + 1,
                    last_accessed_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            return result.rowcount or 0

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def update_importance(
        self,
        fact_id: str,
        score: float,
        recency: float,
        archive: bool = False,
        session: AsyncSession | None = None,
    ) -> None:
        """Store a recomputed importance score, optionally archiving the fact.

        Archiving never applies to user-marked facts and is never undone here.
        """

        async def _execute(db: AsyncSession) -> None:
            record = await db.get(MemoryFactRecord, fact_id)
            if record is None:
                logger.warning("Importance update skipped, fact %s not found", fact_id)
                return
            record.importance_score = min(max(score, 0.0), 1.0)
            record.recency = min(max(recency, 0.0), 1.0)
            if archive and not record.user_marked:
                record.status = FactStatus.ARCHIVED.value
            await db.flush()

        if session:
            await _execute(session)
        else:
            async with self._db.get_session() as db:
                await _execute(db)

    async def set_embedding_id(
        self,
        fact_id: str,
        embedding_id: str,
        session: AsyncSession | None = None,
    ) -> None:
        async def _execute(db: AsyncSession) -> None:
            await db.execute(
                update(MemoryFactRecord)
                .where(MemoryFactRecord.id == fact_id)
                .values(embedding_id=embedding_id)
                .execution_options(synchronize_session=False)
            )

        if session:
            await _execute(session)
        else:
            async with self._db.get_session() as db:
                await _execute(db)

    async def set_user_marked(
        self,
        user_id: str,
        fact_id: str,
        marked: bool,
        session: AsyncSession | None = None,
    ) -> MemoryFact | None:
        """Pin or unpin a fact. Pinned facts are never auto-forgotten.

        Returns:
            The updated fact, or None if the user owns no such fact.
        """

        async def _execute(db: AsyncSession) -> MemoryFact | None:
            record = await db.get(MemoryFactRecord, fact_id)
            if record is None or record.user_id != user_id:
                return None
            record.user_marked = marked
            await db.flush()
            return record_to_fact(record)

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def list_stale_facts(
        self,
        last_accessed_before: datetime,
        limit: int = 500,
        session: AsyncSession | None = None,
    ) -> list[MemoryFact]:
        """Active, unpinned facts not accessed since the cutoff."""

        async def _execute(db: AsyncSession) -> list[MemoryFact]:
            stmt = (
                select(MemoryFactRecord)
                .where(
                    and_(
                        MemoryFactRecord.status == FactStatus.ACTIVE.value,
                        MemoryFactRecord.user_marked.is_(False),
                        MemoryFactRecord.last_accessed_at < last_accessed_before,
                    )
                )
                .order_by(MemoryFactRecord.last_accessed_at)
                .limit(limit)
            )
            result = await db.execute(stmt)
            return [record_to_fact(r) for r in result.scalars().all()]

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def archive_facts(
        self,
        fact_ids: list[str],
        session: AsyncSession | None = None,
    ) -> int:
        """Archive active, unpinned facts by id.

        Returns:
            Number of facts archived.
        """
        if not fact_ids:
            return 0

        async def _execute(db: AsyncSession) -> int:
            stmt = (
                update(MemoryFactRecord)
                .where(
                    and_(
                        MemoryFactRecord.id.in_(fact_ids),
                        MemoryFactRecord.status == FactStatus.ACTIVE.value,
                        MemoryFactRecord.user_marked.is_(False),
                    )
                )
                .values(status=FactStatus.ARCHIVED.value)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            return result.rowcount or 0

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def list_user_ids(
        self,
        limit: int = 50,
        offset: int = 0,
        session: AsyncSession | None = None,
    ) -> list[str]:
        """Users owning at least one active fact, in stable order."""

        async def _execute(db: AsyncSession) -> list[str]:
            stmt = (
                select(MemoryFactRecord.user_id)
                .where(MemoryFactRecord.status == FactStatus.ACTIVE.value)
                .distinct()
                .order_by(MemoryFactRecord.user_id)
                .limit(limit)
                .offset(offset)
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def get_fact_stats(
        self,
        user_id: str,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        """Aggregate storage and quality figures for one user.

        Returns:
            Dict with total, active, archived, type_distribution,
            average_confidence and average_importance.
        """

        async def _execute(db: AsyncSession) -> dict[str, Any]:
            status_rows = await db.execute(
                select(MemoryFactRecord.status, func.count())
                .where(MemoryFactRecord.user_id == user_id)
                .group_by(MemoryFactRecord.status)
            )
            by_status = {status: count for status, count in status_rows.all()}

            type_rows = await db.execute(
                select(MemoryFactRecord.fact_type, func.count())
                .where(MemoryFactRecord.user_id == user_id)
                .group_by(MemoryFactRecord.fact_type)
            )
            type_distribution = {fact_type: count for fact_type, count in type_rows.all()}

            averages = await db.execute(
                select(
                    func.avg(MemoryFactRecord.confidence),
                    func.avg(MemoryFactRecord.importance_score),
                ).where(MemoryFactRecord.user_id == user_id)
            )
            avg_confidence, avg_importance = averages.one()

            return {
                "total": sum(by_status.values()),
                "active": by_status.get(FactStatus.ACTIVE.value, 0),
                "archived": by_status.get(FactStatus.ARCHIVED.value, 0),
                "type_distribution": type_distribution,
                "average_confidence": float(avg_confidence or 0.0),
                "average_importance": float(avg_importance or 0.0),
            }

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    # ========== Profiles ==========

    async def get_profile(
        self,
        user_id: str,
        session: AsyncSession | None = None,
    ) -> UserProfile | None:
        """Load a user's profile, or None if none has been derived yet."""

        async def _execute(db: AsyncSession) -> UserProfile | None:
            record = await db.get(UserProfileRecord, user_id)
            if record is None:
                return None
            return UserProfile.model_validate(record.document)

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def save_profile(
        self,
        profile: UserProfile,
        session: AsyncSession | None = None,
    ) -> UserProfile:
        """Insert or replace a user's profile document."""

        async def _execute(db: AsyncSession) -> None:
            document = profile.model_dump(mode="json")
            record = await db.get(UserProfileRecord, profile.user_id)
            if record is None:
                record = UserProfileRecord(user_id=profile.user_id, document=document)
                db.add(record)
            else:
                record.document = document
            record.total_memories = profile.meta.total_memories
            record.profile_completeness = profile.meta.profile_completeness
            record.last_updated = profile.meta.last_updated
            await db.flush()

        if session:
            await _execute(session)
        else:
            async with self._db.get_session() as db:
                await _execute(db)
        return profile

    # ========== Consolidation markers ==========

    async def mark_conversation_consolidated(
        self,
        user_id: str,
        conversation_id: str,
        message_count: int,
        session: AsyncSession | None = None,
    ) -> None:
        async def _execute(db: AsyncSession) -> None:
            record = await db.get(ConsolidatedConversationRecord, conversation_id)
            if record is None:
                db.add(
                    ConsolidatedConversationRecord(
                        conversation_id=conversation_id,
                        user_id=user_id,
                        message_count=message_count,
                        consolidated_at=utc_now(),
                    )
                )
            else:
                record.message_count = message_count
                record.consolidated_at = utc_now()
            await db.flush()

        if session:
            await _execute(session)
        else:
            async with self._db.get_session() as db:
                await _execute(db)

    # ========== Consolidation leases ==========

    async def acquire_consolidation_lease(
        self,
        user_id: str,
        holder: str,
        ttl_seconds: int,
    ) -> bool:
        """Claim the user's consolidation lease for `holder`.

        Runs in its own committed session so every worker sees the claim.
        A lease that has expired is removed first and can be claimed.

        Returns:
            True if `holder` now owns the lease, False if another holder does.

        Raises:
            DatabaseError: On failures other than the lease being taken.
        """
        now = utc_now()
        try:
            async with self._db.get_session() as db:
                await db.execute(
                    delete(ConsolidationLeaseRecord).where(
                        ConsolidationLeaseRecord.user_id == user_id,
                        ConsolidationLeaseRecord.expires_at <= now,
                    )
                )
                await db.execute(
                    insert(ConsolidationLeaseRecord).values(
                        user_id=user_id,
                        holder=holder,
                        acquired_at=now,
                        expires_at=now + timedelta(seconds=ttl_seconds),
                    )
                )
        except DatabaseError as e:
            if isinstance(e.original_error, IntegrityError):
                return False
            raise
        return True

    async def release_consolidation_lease(self, user_id: str, holder: str) -> bool:
        """Drop the user's lease if `holder` still owns it.

        Returns:
            True if a lease was released.
        """
        async with self._db.get_session() as db:
            result = await db.execute(
                delete(ConsolidationLeaseRecord).where(
                    ConsolidationLeaseRecord.user_id == user_id,
                    ConsolidationLeaseRecord.holder == holder,
                )
            )
        return result.rowcount > 0
