# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain models for the tiered memory subsystem.

These pydantic models are the request-scoped copies every component works
with. Durable state lives in the ORM records of
tutor_memory.infrastructure.database.models; MemoryStore converts between
the two.

Model groups:
- MemoryFact and its nested value objects
- UserProfile and its sections
- ConversationTurn (transcript rows)
- Tier results, relevance scores and the assembled TurnContext
- Consolidation, decay and health-metric results
"""

from datetime import datetime
from enum import Enum
from typing import Literal, Self
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from tutor_memory.utils.datetime import utc_now


class FactType(str, Enum):
    """Kinds of durable observation about a user."""

    FACT = "fact"
    PREFERENCE = "preference"
    GOAL = "goal"
    EXPERIENCE = "experience"
    ENTITY = "entity"


class ExtractionMethod(str, Enum):
    """How a fact entered the store."""

    AUTOMATIC = "automatic"
    USER_CONFIRMED = "user_confirmed"


class PrivacyLevel(str, Enum):
    """Exposure level of a fact."""

    PUBLIC = "public"
    RESTRICTED = "restricted"
    CONFIDENTIAL = "confidential"


class FactStatus(str, Enum):
    """Lifecycle status. Archived facts are retained for audit and undo."""

    ACTIVE = "active"
    ARCHIVED = "archived"


# Data categories that may only leave the store with recorded consent
SENSITIVE_CATEGORIES: frozenset[str] = frozenset(
    {"health", "financial", "biometric", "special"}
)


# ========== MemoryFact ==========


class Namespace(BaseModel):
    """Hierarchical classification used for filtering and intent matching."""

    category: str
    topic: str


class FactSource(BaseModel):
    """Provenance of a fact.

    Attributes:
        conversation_id: Conversation the fact was extracted from.
        message_ids: Ordered, duplicate-free ids of the supporting messages.
        extraction_method: Automatic extraction or user confirmation.
        confidence: Extraction confidence in [0, 1].
    """

    conversation_id: str | None = None
    message_ids: list[str] = Field(default_factory=list)
    extraction_method: ExtractionMethod = ExtractionMethod.AUTOMATIC
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    @field_validator("message_ids")
    @classmethod
    def dedupe_message_ids(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


class ImportanceFactors(BaseModel):
    """Inputs to importance and relevance scoring."""

    user_marked: bool = False
    access_frequency: int = Field(default=0, ge=0)
    recency: float = Field(default=1.0, ge=0.0, le=1.0)
    emotional_valence: float = Field(default=0.0, ge=-1.0, le=1.0)


class FactImportance(BaseModel):
    """Importance of a fact.

    Attributes:
        score: Current importance, rewritten by DecayEngine on every run.
        base_score: Importance assigned when the fact was stored. Decay always
            starts from it, so repeated runs over an unchanged fact agree.
            Defaults to score.
        factors: Inputs to importance and relevance scoring.
    """

    score: float = Field(default=0.5, ge=0.0, le=1.0)
    base_score: float | None = Field(default=None, ge=0.0, le=1.0)
    factors: ImportanceFactors = Field(default_factory=ImportanceFactors)

    @model_validator(mode="after")
    def default_base_score(self) -> Self:
        if self.base_score is None:
            self.base_score = self.score
        return self


class FactTemporal(BaseModel):
    created_at: datetime = Field(default_factory=utc_now)
    last_accessed_at: datetime = Field(default_factory=utc_now)


class FactSemantic(BaseModel):
    """Reference into the external vector index, if the fact is indexed."""

    embedding_id: str | None = None


class UserConsent(BaseModel):
    granted: bool = True
    granted_at: datetime | None = None


class FactPrivacy(BaseModel):
    """Privacy classification consulted by PrivacyFilter."""

    level: PrivacyLevel = PrivacyLevel.RESTRICTED
    data_category: str = "general"
    user_consent: UserConsent = Field(default_factory=UserConsent)

    @property
    def is_sensitive(self) -> bool:
        return self.data_category.lower() in SENSITIVE_CATEGORIES


class VersionEntry(BaseModel):
    """A prior content value of a fact."""

    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    reason: str


class FactVersion(BaseModel):
    history: list[VersionEntry] = Field(default_factory=list)


class MemoryFact(BaseModel):
    """An atomic, durable observation about a user.

    Attributes:
        id: Fact identifier (UUID string, also used as the vector point id).
        user_id: Owner of the fact. Never changes after creation.
        content: Human-readable fact text.
        type: Fact kind.
        namespace: Category/topic classification.
        source: Provenance.
        importance: Importance score and its factors.
        temporal: Creation and last-access timestamps.
        semantic: Vector index reference.
        privacy: Privacy classification and consent.
        status: Active or archived.
        version: Append-only history of prior content values.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    type: FactType = FactType.FACT
    namespace: Namespace
    source: FactSource = Field(default_factory=FactSource)
    importance: FactImportance = Field(default_factory=FactImportance)
    temporal: FactTemporal = Field(default_factory=FactTemporal)
    semantic: FactSemantic = Field(default_factory=FactSemantic)
    privacy: FactPrivacy = Field(default_factory=FactPrivacy)
    status: FactStatus = FactStatus.ACTIVE
    version: FactVersion = Field(default_factory=FactVersion)

    @property
    def is_active(self) -> bool:
        return self.status == FactStatus.ACTIVE


# ========== UserProfile ==========


class ProfileField(BaseModel):
    """A single profile value with its provenance."""

    value: str
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    last_updated: datetime = Field(default_factory=utc_now)
    source: str | None = None


class PersonalInfo(BaseModel):
    name: ProfileField | None = None
    role: ProfileField | None = None


class Skill(BaseModel):
    name: str
    level: str = "beginner"
    last_updated: datetime = Field(default_factory=utc_now)


class ProfessionalInfo(BaseModel):
    skills: list[Skill] = Field(default_factory=list)


class Interest(BaseModel):
    topic: str
    strength: float = Field(default=0.7, ge=0.0, le=1.0)
    expertise: float = Field(default=0.3, ge=0.0, le=1.0)
    last_discussed: datetime = Field(default_factory=utc_now)


class LearningGoal(BaseModel):
    goal: str
    category: str = "education"
    priority: Literal["low", "medium", "high"] = "medium"
    status: Literal["active", "completed", "abandoned"] = "active"
    created_at: datetime = Field(default_factory=utc_now)


class LearningInfo(BaseModel):
    interests: list[Interest] = Field(default_factory=list)
    goals: list[LearningGoal] = Field(default_factory=list)


class CommunicationPreferences(BaseModel):
    formality: Literal["formal", "casual"] | None = None
    length: Literal["brief", "detailed"] | None = None


class Preferences(BaseModel):
    communication: CommunicationPreferences = Field(default_factory=CommunicationPreferences)


class ProfileMeta(BaseModel):
    total_memories: int = 0
    profile_completeness: float = Field(default=0.0, ge=0.0, le=1.0)
    last_updated: datetime | None = None


# Weight of each structured field in profile completeness
COMPLETENESS_WEIGHTS: dict[str, int] = {
    "personal.name": 5,
    "personal.role": 5,
    "professional.skills": 5,
    "learning.interests": 8,
    "learning.goals": 8,
    "preferences.communication.formality": 5,
    "preferences.communication.length": 5,
}


class UserProfile(BaseModel):
    """Derived, consolidated summary of one user."""

    user_id: str = Field(min_length=1)
    personal: PersonalInfo = Field(default_factory=PersonalInfo)
    professional: ProfessionalInfo = Field(default_factory=ProfessionalInfo)
    learning: LearningInfo = Field(default_factory=LearningInfo)
    preferences: Preferences = Field(default_factory=Preferences)
    meta: ProfileMeta = Field(default_factory=ProfileMeta)

    def populated_fields(self) -> set[str]:
        """Names of the structured fields that currently hold a value."""
        communication = self.preferences.communication
        values = {
            "personal.name": self.personal.name,
            "personal.role": self.personal.role,
            "professional.skills": self.professional.skills,
            "learning.interests": self.learning.interests,
            "learning.goals": self.learning.goals,
            "preferences.communication.formality": communication.formality,
            "preferences.communication.length": communication.length,
        }
        return {name for name, value in values.items() if value}

    def compute_completeness(self) -> float:
        """Weighted share of populated structured fields, in [0, 1]."""
        total = sum(COMPLETENESS_WEIGHTS.values())
        populated = self.populated_fields()
        filled = sum(
            weight for name, weight in COMPLETENESS_WEIGHTS.items() if name in populated
        )
        return round(filled / total, 4)


# ========== Conversation ==========


class ConversationTurn(BaseModel):
    """One message of a conversation transcript."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    conversation_id: str
    user_id: str | None = None
    role: Literal["user", "assistant", "system"]
    content: str
    created_at: datetime = Field(default_factory=utc_now)


# ========== Retrieval results ==========


class RelevanceFactors(BaseModel):
    """Normalized factor values behind a relevance score."""

    recency: float
    frequency: float
    semantic_similarity: float
    importance: float
    emotional_valence: float
    intent_match: bool = False


class RelevanceScore(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    factors: RelevanceFactors


class ScoredFact(BaseModel):
    fact: MemoryFact
    relevance: RelevanceScore


class ShortTermMemory(BaseModel):
    """Last N turns, verbatim, oldest first."""

    turns: list[ConversationTurn] = Field(default_factory=list)
    token_estimate: int = 0


class WorkingMemory(BaseModel):
    """Session-scoped memory, summarized once the session grows long.

    Attributes:
        context: Text ready for the prompt (all turns, or summary plus recent turns).
        summary: Digest of the older segment, None when not summarized.
        turn_count: Number of turns in the session.
        split_point: Index of the first verbatim turn when summarized.
        token_estimate: Estimated tokens of `context`.
    """

    context: str = ""
    summary: str | None = None
    turn_count: int = 0
    split_point: int | None = None
    token_estimate: int = 0

    @property
    def summarized(self) -> bool:
        return self.summary is not None


class LongTermMemory(BaseModel):
    """Facts retrieved for the current query, most relevant first."""

    facts: list[ScoredFact] = Field(default_factory=list)
    degraded: bool = False


class TieredMemory(BaseModel):
    """All tiers gathered for one turn; the unit stored in the cache."""

    short_term: ShortTermMemory = Field(default_factory=ShortTermMemory)
    working: WorkingMemory = Field(default_factory=WorkingMemory)
    long_term: LongTermMemory = Field(default_factory=LongTermMemory)
    profile: UserProfile | None = None


class TokenAccounting(BaseModel):
    """Token budget and usage for an assembled context.

    Attributes:
        budget: Total token budget.
        allocations: Per-section token allocations.
        estimated_tokens: Estimated tokens of the assembled text.
        current_message_tokens: Estimated tokens of the current user message.
    """

    budget: int
    allocations: dict[str, int]
    estimated_tokens: int
    current_message_tokens: int = 0


class TurnContext(BaseModel):
    """Result of MemoryManager.get_context_for_turn()."""

    user_id: str
    conversation_id: str
    text: str
    short_term: ShortTermMemory
    working: WorkingMemory
    long_term: LongTermMemory
    profile: UserProfile | None = None
    tokens: TokenAccounting
    cached: bool = False


class PrivacyFilterOptions(BaseModel):
    """Category and consent constraints for facts leaving the store.

    An empty include_category admits every category.
    """

    include_category: list[str] = Field(default_factory=list)
    exclude_category: list[str] = Field(default_factory=list)
    user_consent_only: bool = False


# ========== Background results ==========


class ConsolidationResult(BaseModel):
    """Outcome of one consolidation run.

    Attributes:
        consolidated_count: Newly created facts.
        merged_count: Candidates merged into existing facts.
        failed_count: Candidates that failed to persist.
        facts: The newly created facts.
        reason: Why nothing was done, when applicable.
    """

    consolidated_count: int = 0
    merged_count: int = 0
    failed_count: int = 0
    facts: list[MemoryFact] = Field(default_factory=list)
    reason: str | None = None


class DecayResult(BaseModel):
    forgotten: int = 0
    retained: int = 0


class StorageMetrics(BaseModel):
    total: int = 0
    active: int = 0
    archived: int = 0
    type_distribution: dict[str, int] = Field(default_factory=dict)


class QualityMetrics(BaseModel):
    average_confidence: float = 0.0
    average_importance: float = 0.0


class UsageMetrics(BaseModel):
    retrieval_count: int = 0
    consolidation_count: int = 0
    forgetting_events: int = 0
    cache_hit_rate: float = 0.0


class ProfileMetrics(BaseModel):
    completeness: float = 0.0
    last_updated: datetime | None = None


class HealthMetrics(BaseModel):
    """Read-only diagnostics for one user."""

    storage: StorageMetrics
    quality: QualityMetrics
    usage: UsageMetrics
    profile: ProfileMetrics
