# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tiered conversational memory.

Components:
- MemoryStore / ConversationLog: persisted facts, profiles and transcripts
- RelevanceScorer: query relevance of a fact
- ShortTermWindow, WorkingMemorySummarizer, LongTermRetriever: the tiers
- ContextAssembler: budgeted prompt block from the tiers
- ConsolidationPipeline: conversations into facts and profile updates
- DecayEngine: importance recomputation and forgetting
- PrivacyFilter: gate on every path exposing facts
- MemoryManager: entry point tying them together
"""

from tutor_memory.core.memory.assembler import AssembledContext, ContextAssembler
from tutor_memory.core.memory.consolidation import ConsolidationBusyError, ConsolidationPipeline
from tutor_memory.core.memory.conversation import ConversationLog
from tutor_memory.core.memory.decay import DecayEngine
from tutor_memory.core.memory.extraction import FactExtractor, jaccard_similarity
from tutor_memory.core.memory.layers import (
    LongTermRetriever,
    ShortTermWindow,
    WorkingMemorySummarizer,
)
from tutor_memory.core.memory.manager import (
    InvalidMemoryRequestError,
    MemoryManager,
    MemoryManagerError,
)
from tutor_memory.core.memory.privacy import PrivacyFilter
from tutor_memory.core.memory.profile import ProfileUpdater
from tutor_memory.core.memory.scoring import RelevanceScorer, ScoringWeights
from tutor_memory.core.memory.stats import MemoryStats
from tutor_memory.core.memory.store import MemoryStore, MemoryStoreError
from tutor_memory.core.memory.tokens import BudgetShares, estimate_tokens

__all__ = [
    "AssembledContext",
    "BudgetShares",
    "ConsolidationBusyError",
    "ConsolidationPipeline",
    "ContextAssembler",
    "ConversationLog",
    "DecayEngine",
    "FactExtractor",
    "InvalidMemoryRequestError",
    "LongTermRetriever",
    "MemoryManager",
    "MemoryManagerError",
    "MemoryStats",
    "MemoryStore",
    "MemoryStoreError",
    "PrivacyFilter",
    "ProfileUpdater",
    "RelevanceScorer",
    "ScoringWeights",
    "ShortTermWindow",
    "WorkingMemorySummarizer",
    "estimate_tokens",
    "jaccard_similarity",
]
