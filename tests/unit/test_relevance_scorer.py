# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for RelevanceScorer."""

import math

import pytest

from tutor_memory.core.memory.scoring import (
    DEFAULT_WEIGHTS,
    INTENT_MATCH_BONUS,
    RelevanceScorer,
    ScoringWeights,
    frequency_factor,
    intent_matches,
    recency_factor,
)
from tutor_memory.utils.datetime import utc_now


@pytest.fixture
def scorer() -> RelevanceScorer:
    return RelevanceScorer()


@pytest.mark.unit
class TestFactorFunctions:
    """Test cases for the individual factor functions."""

    def test_recency_is_one_for_fresh_facts(self) -> None:
        assert recency_factor(0) == 1.0

    def test_recency_after_thirty_days(self) -> None:
        assert recency_factor(30) == pytest.approx(math.exp(-1.5))
        assert recency_factor(30) == pytest.approx(0.223, abs=1e-3)

    def test_recency_decreases_monotonically(self) -> None:
        values = [recency_factor(d) for d in (0, 1, 7, 14, 60, 365)]
        assert values == sorted(values, reverse=True)
        assert all(v > 0 for v in values)

    def test_frequency_values(self) -> None:
        assert frequency_factor(0) == 0.0
        assert frequency_factor(9) == pytest.approx(0.5)
        assert frequency_factor(99) == pytest.approx(1.0)
        assert frequency_factor(10_000) == 1.0

    def test_intent_matching_is_case_insensitive_substring(self) -> None:
        assert intent_matches("Review my LEARNING_GOALS please", "learning_goals")
        assert not intent_matches("talk about weather", "learning_goals")
        assert not intent_matches(None, "learning_goals")
        assert not intent_matches("anything", "")


@pytest.mark.unit
class TestScore:
    """Test cases for RelevanceScorer.score."""

    def test_weights_sum_to_one(self) -> None:
        w = DEFAULT_WEIGHTS
        total = w.recency + w.frequency + w.semantic_similarity + w.importance + w.emotional_valence
        assert total == pytest.approx(1.0)

    def test_weighted_sum(self, scorer, make_fact) -> None:
        now = utc_now()
        fact = make_fact(score=0.5, access_frequency=9, emotional_valence=-0.4, now=now)

        result = scorer.score(fact, semantic_similarity=0.8, now=now)

        expected = 0.25 * 1.0 + 0.20 * 0.5 + 0.30 * 0.8 + 0.15 * 0.5 + 0.10 * 0.4
        assert result.score == pytest.approx(expected)
        assert result.factors.emotional_valence == pytest.approx(0.4)
        assert result.factors.intent_match is False

    def test_intent_bonus_added_after_weighted_sum(self, scorer, make_fact) -> None:
        now = utc_now()
        fact = make_fact(topic="learning_goals", now=now, accessed_days_ago=10)

        without = scorer.score(fact, 0.2, now=now)
        with_intent = scorer.score(fact, 0.2, intent="update learning_goals", now=now)

        assert with_intent.factors.intent_match is True
        assert with_intent.score == pytest.approx(without.score + INTENT_MATCH_BONUS)

    def test_score_clamped_to_one(self, scorer, make_fact) -> None:
        now = utc_now()
        fact = make_fact(
            score=1.0, access_frequency=1000, emotional_valence=1.0, topic="rust", now=now
        )

        result = scorer.score(fact, semantic_similarity=1.0, intent="rust", now=now)

        assert result.score == 1.0

    @pytest.mark.parametrize("similarity", [-3.0, 0.0, 0.5, 1.0, 7.0])
    @pytest.mark.parametrize("days", [0, 30, 10_000])
    def test_score_always_in_unit_interval(self, scorer, make_fact, similarity, days) -> None:
        now = utc_now()
        fact = make_fact(score=0.0, accessed_days_ago=days, now=now)

        result = scorer.score(fact, semantic_similarity=similarity, intent="learning_goals", now=now)

        assert 0.0 <= result.score <= 1.0

    def test_higher_frequency_never_scores_lower(self, scorer, make_fact) -> None:
        now = utc_now()
        previous = -1.0
        for count in (0, 1, 5, 50, 500):
            fact = make_fact(access_frequency=count, accessed_days_ago=3, now=now)
            score = scorer.score(fact, 0.6, now=now).score
            assert score >= previous
            previous = score

    def test_custom_weights(self, make_fact) -> None:
        now = utc_now()
        scorer = RelevanceScorer(
            ScoringWeights(
                recency=0.0,
                frequency=0.0,
                semantic_similarity=1.0,
                importance=0.0,
                emotional_valence=0.0,
            )
        )

        result = scorer.score(make_fact(now=now), semantic_similarity=0.42, now=now)

        assert result.score == pytest.approx(0.42)


@pytest.mark.unit
class TestImportanceWithoutQuery:
    """Test cases for the query-independent importance used by decay."""

    def test_renormalized_weights(self, scorer, make_fact) -> None:
        now = utc_now()
        fact = make_fact(score=0.5, now=now)

        score, factors = scorer.importance_without_query(fact, now=now)

        expected = (0.25 * 1.0 + 0.20 * 0.0 + 0.15 * 0.5 + 0.10 * 0.0) / 0.70
        assert score == pytest.approx(expected)
        assert factors.semantic_similarity == 0.0

    def test_old_fact_less_important_than_recent_one(self, scorer, make_fact) -> None:
        now = utc_now()
        old = make_fact(accessed_days_ago=30, now=now)
        recent = make_fact(accessed_days_ago=1, now=now)

        old_score, old_factors = scorer.importance_without_query(old, now=now)
        recent_score, _ = scorer.importance_without_query(recent, now=now)

        assert old_factors.recency == pytest.approx(0.223, abs=1e-3)
        assert old_score < recent_score

    def test_reads_base_score_not_decayed_score(self, scorer, make_fact) -> None:
        now = utc_now()
        fresh = make_fact(score=0.7, now=now)
        decayed = make_fact(score=0.7, now=now)
        decayed.importance.score = 0.1

        fresh_score, _ = scorer.importance_without_query(fresh, now=now)
        decayed_score, factors = scorer.importance_without_query(decayed, now=now)

        assert decayed_score == pytest.approx(fresh_score)
        assert factors.importance == pytest.approx(0.7)
        assert scorer.score(decayed, 0.0, now=now).factors.importance == pytest.approx(0.1)
