# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Text embedding generation."""

from tutor_memory.core.intelligence.embeddings.service import (
    MODEL_DIMENSIONS,
    EmbeddingError,
    EmbeddingService,
)

__all__ = ["EmbeddingService", "EmbeddingError", "MODEL_DIMENSIONS"]
