# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

Store-backed tests run against in-memory SQLite through aiosqlite; the
embedding, vector and LLM collaborators are mocks. Dramatiq actors are
declared on a StubBroker.
"""

import os
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Must be set before any actor module declares its actors
os.environ.setdefault("DRAMATIQ_TEST_MODE", "true")

from tutor_memory.core.memory.conversation import ConversationLog  # noqa: E402
from tutor_memory.core.memory.store import MemoryStore  # noqa: E402
from tutor_memory.infrastructure.cache import InMemoryCacheBackend, TieredCache  # noqa: E402
from tutor_memory.infrastructure.database import DatabaseManager  # noqa: E402
from tutor_memory.models.memory import (  # noqa: E402
    ConversationTurn,
    FactImportance,
    FactTemporal,
    FactType,
    ImportanceFactors,
    MemoryFact,
    Namespace,
)
from tutor_memory.utils.datetime import utc_now  # noqa: E402


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (requires services)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow running")


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db_manager() -> AsyncIterator[DatabaseManager]:
    """In-memory SQLite database with all tables created."""
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def file_db_manager(tmp_path) -> AsyncIterator[DatabaseManager]:
    """File-backed SQLite database; sessions get their own connections."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/memory.db")
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def store(db_manager: DatabaseManager) -> MemoryStore:
    return MemoryStore(db_manager)


@pytest.fixture
def conversation_log(db_manager: DatabaseManager) -> ConversationLog:
    return ConversationLog(db_manager)


# =============================================================================
# Collaborator Mocks
# =============================================================================


@pytest.fixture
def mock_embedding_service() -> MagicMock:
    """EmbeddingService mock returning a fixed 4-dimensional vector."""
    service = MagicMock()
    service.dimension = 4
    service.embed_text = AsyncMock(return_value=[0.1, 0.2, 0.3, 0.4])
    return service


@pytest.fixture
def mock_qdrant_client() -> MagicMock:
    """QdrantVectorClient mock with an empty index."""
    client = MagicMock()
    client.ensure_user_collection = AsyncMock(
        side_effect=lambda user_id, collection, vector_size: f"user_{user_id}_{collection}"
    )
    client.upsert = AsyncMock()
    client.search_for_user = AsyncMock(return_value=[])
    return client


@pytest.fixture
def memory_cache() -> TieredCache:
    return TieredCache([InMemoryCacheBackend()])


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_fact() -> Callable[..., MemoryFact]:
    """Build a MemoryFact with overridable fields.

    Example:
        fact = make_fact(content="I'm Alex", accessed_days_ago=30)
    """

    def _make(
        content: str = "I want to learn Rust",
        user_id: str = "user-1",
        fact_type: FactType = FactType.GOAL,
        category: str = "education",
        topic: str = "learning_goals",
        score: float = 0.5,
        access_frequency: int = 0,
        user_marked: bool = False,
        emotional_valence: float = 0.0,
        accessed_days_ago: float = 0.0,
        now: datetime | None = None,
        **overrides: Any,
    ) -> MemoryFact:
        now = now or utc_now()
        accessed = now - timedelta(days=accessed_days_ago)
        return MemoryFact(
            user_id=user_id,
            content=content,
            type=fact_type,
            namespace=Namespace(category=category, topic=topic),
            importance=FactImportance(
                score=score,
                factors=ImportanceFactors(
                    user_marked=user_marked,
                    access_frequency=access_frequency,
                    emotional_valence=emotional_valence,
                ),
            ),
            temporal=FactTemporal(created_at=accessed, last_accessed_at=accessed),
            **overrides,
        )

    return _make


@pytest.fixture
def make_turn() -> Callable[..., ConversationTurn]:
    """Build ConversationTurns spaced one second apart in creation order."""
    base = utc_now() - timedelta(hours=1)
    counter = {"n": 0}

    def _make(
        content: str,
        role: str = "user",
        conversation_id: str = "conv-1",
        user_id: str = "user-1",
    ) -> ConversationTurn:
        counter["n"] += 1
        return ConversationTurn(
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            content=content,
            created_at=base + timedelta(seconds=counter["n"]),
        )

    return _make
