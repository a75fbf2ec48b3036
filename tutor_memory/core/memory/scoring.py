# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Multi-factor relevance scoring for memory facts.

score = 0.25 * recency
      + 0.20 * frequency
      + 0.30 * semantic_similarity
      + 0.15 * importance
      + 0.10 * |emotional_valence|
      + 0.20 if the intent mentions the fact's topic

clamped to [0, 1]. Recency halves roughly every 14 days:
recency = exp(-0.05 * age_in_days), age measured from the last access.

The same factor set without the semantic term drives DecayEngine, see
importance_without_query().
"""

import math
from dataclasses import dataclass
from datetime import datetime

from tutor_memory.models.memory import MemoryFact, RelevanceFactors, RelevanceScore
from tutor_memory.utils.datetime import age_in_days

RECENCY_DECAY_RATE = 0.05
INTENT_MATCH_BONUS = 0.2


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the relevance factors. They sum to 1.0."""

    recency: float = 0.25
    frequency: float = 0.20
    semantic_similarity: float = 0.30
    importance: float = 0.15
    emotional_valence: float = 0.10


DEFAULT_WEIGHTS = ScoringWeights()


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(max(value, low), high)


def recency_factor(age_days: float) -> float:
    """exp(-0.05 * age); 1.0 for brand-new facts, never negative."""
    return math.exp(-RECENCY_DECAY_RATE * max(age_days, 0.0))


def frequency_factor(access_count: int) -> float:
    """log10(n + 1) / 2, saturating at 1.0 from 99 accesses on."""
    return min(math.log10(max(access_count, 0) + 1) / 2, 1.0)


def intent_matches(intent: str | None, topic: str) -> bool:
    """Case-insensitive check that the intent mentions the topic."""
    if not intent or not topic:
        return False
    return topic.lower() in intent.lower()


class RelevanceScorer:
    """Pure, deterministic relevance scorer.

    Example:
        >>> scorer = RelevanceScorer()
        >>> result = scorer.score(fact, semantic_similarity=0.82, intent="learn python")
        >>> 0.0 <= result.score <= 1.0
        True
    """

    def __init__(self, weights: ScoringWeights = DEFAULT_WEIGHTS) -> None:
        self._weights = weights

    @property
    def weights(self) -> ScoringWeights:
        return self._weights

    def factors(
        self,
        fact: MemoryFact,
        semantic_similarity: float,
        intent: str | None = None,
        now: datetime | None = None,
    ) -> RelevanceFactors:
        """Compute the normalized factor values for a fact."""
        factors = fact.importance.factors
        return RelevanceFactors(
            recency=recency_factor(age_in_days(fact.temporal.last_accessed_at, now)),
            frequency=frequency_factor(factors.access_frequency),
            semantic_similarity=clamp(semantic_similarity),
            importance=clamp(fact.importance.score),
            emotional_valence=clamp(abs(factors.emotional_valence)),
            intent_match=intent_matches(intent, fact.namespace.topic),
        )

    def score(
        self,
        fact: MemoryFact,
        semantic_similarity: float,
        intent: str | None = None,
        now: datetime | None = None,
    ) -> RelevanceScore:
        """Score a fact against a query.

        Args:
            fact: Candidate fact.
            semantic_similarity: Vector similarity of the fact to the query.
            intent: Optional free-text intent of the current turn.
            now: Reference time. Defaults to the current time.

        Returns:
            RelevanceScore with the clamped score and its factors.
        """
        f = self.factors(fact, semantic_similarity, intent, now)
        w = self._weights

        total = (
            w.recency * f.recency
            + w.frequency * f.frequency
            + w.semantic_similarity * f.semantic_similarity
            + w.importance * f.importance
            + w.emotional_valence * f.emotional_valence
        )
        if f.intent_match:
            total += INTENT_MATCH_BONUS

        return RelevanceScore(score=clamp(total), factors=f)

    def importance_without_query(
        self,
        fact: MemoryFact,
        now: datetime | None = None,
    ) -> tuple[float, RelevanceFactors]:
        """Query-independent importance used by DecayEngine.

        The semantic term is dropped and the four remaining weights are
        renormalized so they sum to 1.0 again. The importance term reads
        importance.base_score, never the decayed score, so the result
        depends on the fact and `now` only.

        Returns:
            (score in [0, 1], factors used)
        """
        f = self.factors(fact, semantic_similarity=0.0, now=now)
        f = f.model_copy(update={"importance": clamp(fact.importance.base_score)})
        w = self._weights
        remaining = w.recency + w.frequency + w.importance + w.emotional_valence

        total = (
            w.recency * f.recency
            + w.frequency * f.frequency
            + w.importance * f.importance
            + w.emotional_valence * f.emotional_valence
        ) / remaining

        return clamp(total), f
