# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Vector search infrastructure using Qdrant."""

from tutor_memory.infrastructure.vectors.qdrant_client import (
    MEMORY_FACTS_COLLECTION,
    QdrantError,
    QdrantVectorClient,
    SearchResult,
    close_qdrant,
    get_qdrant,
    init_qdrant,
)

__all__ = [
    "MEMORY_FACTS_COLLECTION",
    "QdrantError",
    "QdrantVectorClient",
    "SearchResult",
    "close_qdrant",
    "get_qdrant",
    "init_qdrant",
]
