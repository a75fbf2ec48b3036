# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Read access to conversation transcripts.

The chat layer appends messages through ConversationLog.append(); the
memory tiers and the consolidation pipeline only read them.
"""

import logging
from datetime import datetime

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tutor_memory.infrastructure.database.connection import DatabaseManager
from tutor_memory.infrastructure.database.models import (
    ConsolidatedConversationRecord,
    ConversationMessageRecord,
)
from tutor_memory.models.memory import ConversationTurn
from tutor_memory.utils.datetime import ensure_utc

logger = logging.getLogger(__name__)


def _to_turn(record: ConversationMessageRecord) -> ConversationTurn:
    return ConversationTurn(
        id=record.id,
        conversation_id=record.conversation_id,
        user_id=record.user_id,
        role=record.role,
        content=record.content,
        created_at=ensure_utc(record.created_at),
    )


class ConversationLog:
    """Transcript storage for conversations.

    Example:
        log = ConversationLog(db_manager)
        await log.append(ConversationTurn(conversation_id="c-1", role="user", content="Hi"))
        recent = await log.recent_turns("c-1", limit=5)
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def append(
        self,
        turn: ConversationTurn,
        session: AsyncSession | None = None,
    ) -> ConversationTurn:
        async def _execute(db: AsyncSession) -> None:
            db.add(
                ConversationMessageRecord(
                    id=turn.id,
                    conversation_id=turn.conversation_id,
                    user_id=turn.user_id,
                    role=turn.role,
                    content=turn.content,
                    created_at=turn.created_at,
                )
            )
            await db.flush()

        if session:
            await _execute(session)
        else:
            async with self._db.get_session() as db:
                await _execute(db)
        return turn

    async def list_turns(
        self,
        conversation_id: str,
        session: AsyncSession | None = None,
    ) -> list[ConversationTurn]:
        """All turns of a conversation, oldest first."""

        async def _execute(db: AsyncSession) -> list[ConversationTurn]:
            stmt = (
                select(ConversationMessageRecord)
                .where(ConversationMessageRecord.conversation_id == conversation_id)
                .order_by(ConversationMessageRecord.created_at, ConversationMessageRecord.id)
            )
            result = await db.execute(stmt)
            return [_to_turn(r) for r in result.scalars().all()]

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def recent_turns(
        self,
        conversation_id: str,
        limit: int,
        session: AsyncSession | None = None,
    ) -> list[ConversationTurn]:
        """The last `limit` turns of a conversation, oldest first."""

        async def _execute(db: AsyncSession) -> list[ConversationTurn]:
            stmt = (
                select(ConversationMessageRecord)
                .where(ConversationMessageRecord.conversation_id == conversation_id)
                .order_by(
                    desc(ConversationMessageRecord.created_at),
                    desc(ConversationMessageRecord.id),
                )
                .limit(limit)
            )
            result = await db.execute(stmt)
            return [_to_turn(r) for r in reversed(result.scalars().all())]

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def count_turns(
        self,
        conversation_id: str,
        session: AsyncSession | None = None,
    ) -> int:
        async def _execute(db: AsyncSession) -> int:
            stmt = select(func.count(ConversationMessageRecord.id)).where(
                ConversationMessageRecord.conversation_id == conversation_id
            )
            return (await db.execute(stmt)).scalar_one()

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)

    async def list_idle_conversations(
        self,
        idle_before: datetime,
        limit: int = 10,
        session: AsyncSession | None = None,
    ) -> list[tuple[str, str]]:
        """Conversations with no message since `idle_before` and no consolidation yet.

        Returns:
            (user_id, conversation_id) pairs, oldest activity first.
        """

        async def _execute(db: AsyncSession) -> list[tuple[str, str]]:
            last_message = func.max(ConversationMessageRecord.created_at)
            stmt = (
                select(
                    func.max(ConversationMessageRecord.user_id),
                    ConversationMessageRecord.conversation_id,
                )
                .outerjoin(
                    ConsolidatedConversationRecord,
                    ConsolidatedConversationRecord.conversation_id
                    == ConversationMessageRecord.conversation_id,
                )
                .where(ConsolidatedConversationRecord.conversation_id.is_(None))
                .group_by(ConversationMessageRecord.conversation_id)
                .having(last_message < idle_before)
                .order_by(last_message)
                .limit(limit)
            )
            result = await db.execute(stmt)
            return [
                (user_id, conversation_id)
                for user_id, conversation_id in result.all()
                if user_id
            ]

        if session:
            return await _execute(session)
        async with self._db.get_session() as db:
            return await _execute(db)
