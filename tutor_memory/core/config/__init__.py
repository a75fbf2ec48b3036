# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration management."""

from tutor_memory.core.config.settings import (
    DatabaseSettings,
    EmbeddingSettings,
    LLMSettings,
    MemorySettings,
    QdrantSettings,
    RedisSettings,
    Settings,
    WorkerSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "Settings",
    "DatabaseSettings",
    "RedisSettings",
    "QdrantSettings",
    "LLMSettings",
    "EmbeddingSettings",
    "WorkerSettings",
    "MemorySettings",
    "get_settings",
    "clear_settings_cache",
]
