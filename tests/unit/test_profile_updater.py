# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for ProfileUpdater."""

from datetime import timedelta

import pytest

from tutor_memory.core.memory.profile import INTEREST_REINFORCEMENT, ProfileUpdater
from tutor_memory.models.memory import (
    COMPLETENESS_WEIGHTS,
    FactType,
    ProfileField,
    UserProfile,
)
from tutor_memory.utils.datetime import utc_now


@pytest.fixture
def updater() -> ProfileUpdater:
    return ProfileUpdater()


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(user_id="user-1")


@pytest.mark.unit
class TestProfileUpdater:
    """Test cases for folding facts into the profile."""

    def test_identity_sets_name(self, updater, profile, make_fact) -> None:
        fact = make_fact("I'm Alex", fact_type=FactType.FACT, category="personal", topic="identity")

        updater.apply(profile, [fact])

        assert profile.personal.name.value == "Alex"
        assert profile.personal.name.source == fact.id
        assert profile.personal.name.confidence == fact.source.confidence

    def test_occupation_sets_role_without_article(self, updater, profile, make_fact) -> None:
        fact = make_fact(
            "I work as a backend engineer",
            fact_type=FactType.FACT,
            category="work",
            topic="occupation",
        )

        updater.apply(profile, [fact])

        assert profile.personal.role.value == "backend engineer"

    def test_older_fact_does_not_overwrite_newer_field(self, updater, profile, make_fact) -> None:
        now = utc_now()
        profile.personal.name = ProfileField(value="Sam", last_updated=now)
        stale = make_fact(
            "I'm Alex",
            category="personal",
            topic="identity",
            accessed_days_ago=2,
            now=now,
        )

        updater.apply(profile, [stale])

        assert profile.personal.name.value == "Sam"

    def test_last_updated_only_moves_forward(self, updater, profile, make_fact) -> None:
        now = utc_now()
        profile.meta.last_updated = now
        old = make_fact("I want to learn Go", accessed_days_ago=5, now=now)

        updater.apply(profile, [old])

        assert profile.meta.last_updated == now
        assert [g.goal for g in profile.learning.goals] == ["Go"]

    def test_goals_deduplicated(self, updater, profile, make_fact) -> None:
        facts = [make_fact("I want to learn Rust"), make_fact("I want to learn rust")]

        updater.apply(profile, facts)

        assert len(profile.learning.goals) == 1

    def test_preference_creates_then_reinforces_interest(self, updater, profile, make_fact) -> None:
        fact = make_fact("I love chess", fact_type=FactType.PREFERENCE, category="personal", topic="preferences")

        updater.apply(profile, [fact])
        assert profile.learning.interests[0].topic == "chess"
        assert profile.learning.interests[0].strength == pytest.approx(0.7)

        updater.apply(profile, [fact])
        assert len(profile.learning.interests) == 1
        assert profile.learning.interests[0].strength == pytest.approx(0.7 + INTEREST_REINFORCEMENT)

    def test_communication_preferences(self, updater, profile, make_fact) -> None:
        facts = [
            make_fact("I prefer short answers", topic="preferences", category="personal"),
            make_fact("I like a casual tone", topic="preferences", category="personal"),
        ]

        updater.apply(profile, facts)

        assert profile.preferences.communication.length == "brief"
        assert profile.preferences.communication.formality == "casual"

    def test_current_learning_becomes_skill(self, updater, profile, make_fact) -> None:
        fact = make_fact(
            "I'm studying linear algebra",
            fact_type=FactType.EXPERIENCE,
            topic="current_learning",
        )

        updater.apply(profile, [fact, fact])

        assert [s.name for s in profile.professional.skills] == ["linear algebra"]

    def test_foreign_facts_skipped(self, updater, profile, make_fact) -> None:
        fact = make_fact("I'm Eve", user_id="someone-else", topic="identity", category="personal")

        updater.apply(profile, [fact])

        assert profile.personal.name is None

    def test_completeness_recomputed(self, updater, profile, make_fact) -> None:
        facts = [
            make_fact("I'm Alex", topic="identity", category="personal"),
            make_fact("I want to learn Rust"),
        ]

        updater.apply(profile, facts)

        total = sum(COMPLETENESS_WEIGHTS.values())
        expected = round((COMPLETENESS_WEIGHTS["personal.name"] + COMPLETENESS_WEIGHTS["learning.goals"]) / total, 4)
        assert profile.meta.profile_completeness == expected

    def test_empty_profile_has_zero_completeness(self, profile) -> None:
        assert profile.compute_completeness() == 0.0

    def test_timestamps_are_observation_times(self, updater, profile, make_fact) -> None:
        now = utc_now()
        fact = make_fact("I want to learn Rust", accessed_days_ago=1, now=now)

        updater.apply(profile, [fact])

        assert profile.meta.last_updated == now - timedelta(days=1)
