# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pydantic domain models."""

from tutor_memory.models.memory import (
    SENSITIVE_CATEGORIES,
    CommunicationPreferences,
    ConsolidationResult,
    ConversationTurn,
    DecayResult,
    ExtractionMethod,
    FactImportance,
    FactPrivacy,
    FactSource,
    FactStatus,
    FactTemporal,
    FactType,
    HealthMetrics,
    ImportanceFactors,
    Interest,
    LearningGoal,
    LongTermMemory,
    MemoryFact,
    Namespace,
    PrivacyFilterOptions,
    PrivacyLevel,
    ProfileField,
    RelevanceFactors,
    RelevanceScore,
    ScoredFact,
    ShortTermMemory,
    Skill,
    TieredMemory,
    TokenAccounting,
    TurnContext,
    UserConsent,
    UserProfile,
    VersionEntry,
    WorkingMemory,
)

__all__ = [
    "SENSITIVE_CATEGORIES",
    "CommunicationPreferences",
    "ConsolidationResult",
    "ConversationTurn",
    "DecayResult",
    "ExtractionMethod",
    "FactImportance",
    "FactPrivacy",
    "FactSource",
    "FactStatus",
    "FactTemporal",
    "FactType",
    "HealthMetrics",
    "ImportanceFactors",
    "Interest",
    "LearningGoal",
    "LongTermMemory",
    "MemoryFact",
    "Namespace",
    "PrivacyFilterOptions",
    "PrivacyLevel",
    "ProfileField",
    "RelevanceFactors",
    "RelevanceScore",
    "ScoredFact",
    "ShortTermMemory",
    "Skill",
    "TieredMemory",
    "TokenAccounting",
    "TurnContext",
    "UserConsent",
    "UserProfile",
    "VersionEntry",
    "WorkingMemory",
]
