# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for the memory store.

Example:
    from tutor_memory.infrastructure.database import DatabaseManager

    db = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await db.create_tables()
    async with db.get_session() as session:
        ...
"""

from tutor_memory.infrastructure.database.connection import (
    DatabaseError,
    DatabaseManager,
    close_database,
    get_database,
    get_worker_db_manager,
    init_database,
    reset_worker_db_manager,
)
from tutor_memory.infrastructure.database.models import (
    Base,
    ConsolidatedConversationRecord,
    ConversationMessageRecord,
    MemoryFactRecord,
    UserProfileRecord,
)

__all__ = [
    "Base",
    "ConsolidatedConversationRecord",
    "ConversationMessageRecord",
    "DatabaseError",
    "DatabaseManager",
    "MemoryFactRecord",
    "UserProfileRecord",
    "close_database",
    "get_database",
    "get_worker_db_manager",
    "init_database",
    "reset_worker_db_manager",
]
