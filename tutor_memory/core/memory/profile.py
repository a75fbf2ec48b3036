# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Folds consolidated facts into the user profile.

Each fact is routed by its namespace topic and re-parsed with the same
pattern that extracted it. Profile fields only ever move forward in time:
a fact observed before a field's last update does not overwrite it.
"""

import logging
import re
from datetime import datetime
from typing import Iterable

from tutor_memory.core.memory.extraction import (
    CURRENT_LEARNING_PATTERN,
    IDENTITY_PATTERN,
    LEARNING_GOAL_PATTERN,
    PREFERENCE_PATTERN,
    ROLE_PATTERN,
)
from tutor_memory.models.memory import (
    Interest,
    LearningGoal,
    MemoryFact,
    ProfileField,
    Skill,
    UserProfile,
)
from tutor_memory.utils.datetime import ensure_utc

logger = logging.getLogger(__name__)

INTEREST_REINFORCEMENT = 0.1

_ARTICLE = re.compile(r"^(?:a|an|the)\s+", re.IGNORECASE)

_BRIEF = re.compile(r"\b(?:brief|short|concise)\b", re.IGNORECASE)
_DETAILED = re.compile(r"\b(?:detailed|in-depth|thorough|long)\b", re.IGNORECASE)
_CASUAL = re.compile(r"\b(?:casual|informal|relaxed)\b", re.IGNORECASE)
_FORMAL = re.compile(r"\bformal\b", re.IGNORECASE)


def observed_at(fact: MemoryFact) -> datetime:
    """Latest moment the fact was observed (created or merged)."""
    return max(
        ensure_utc(fact.temporal.created_at),
        ensure_utc(fact.temporal.last_accessed_at),
    )


def _group(pattern: re.Pattern, text: str) -> str | None:
    match = pattern.search(text)
    if match is None:
        return None
    value = match.group(1).strip()
    return value or None


def _refresh_field(
    current: ProfileField | None,
    value: str,
    fact: MemoryFact,
) -> ProfileField | None:
    seen = observed_at(fact)
    if current is not None and seen < ensure_utc(current.last_updated):
        return current
    return ProfileField(
        value=value,
        confidence=fact.source.confidence,
        last_updated=seen,
        source=fact.id,
    )


class ProfileUpdater:
    """Applies per-topic profile rules to facts.

    Example:
        updater = ProfileUpdater()
        updater.apply(profile, consolidated_facts)
        profile.meta.profile_completeness  # recomputed
    """

    def apply(self, profile: UserProfile, facts: Iterable[MemoryFact]) -> UserProfile:
        """Fold facts into the profile in place and recompute completeness.

        Args:
            profile: Profile to update.
            facts: Newly stored or merged facts.

        Returns:
            The same profile instance.
        """
        newest = profile.meta.last_updated
        for fact in facts:
            if fact.user_id != profile.user_id:
                logger.warning(
                    "Skipping fact %s owned by %s while updating profile of %s",
                    fact.id,
                    fact.user_id,
                    profile.user_id,
                )
                continue

            self._apply_fact(profile, fact)

            seen = observed_at(fact)
            if newest is None or seen > ensure_utc(newest):
                newest = seen

        profile.meta.last_updated = newest
        profile.meta.profile_completeness = profile.compute_completeness()
        return profile

    def _apply_fact(self, profile: UserProfile, fact: MemoryFact) -> None:
        topic = fact.namespace.topic
        content = fact.content

        if topic == "identity":
            name = _group(IDENTITY_PATTERN, content)
            if name:
                profile.personal.name = _refresh_field(profile.personal.name, name, fact)

        elif topic == "occupation":
            role = _group(ROLE_PATTERN, content)
            if role:
                role = _ARTICLE.sub("", role).strip()
            if role:
                profile.personal.role = _refresh_field(profile.personal.role, role, fact)

        elif topic == "preferences":
            preference = _group(PREFERENCE_PATTERN, content)
            if preference:
                self._update_interest(profile, preference, observed_at(fact))
                self._update_communication(profile, preference)

        elif topic == "learning_goals":
            goal = _group(LEARNING_GOAL_PATTERN, content)
            if goal and not any(g.goal.lower() == goal.lower() for g in profile.learning.goals):
                profile.learning.goals.append(
                    LearningGoal(goal=goal, created_at=observed_at(fact))
                )

        elif topic == "current_learning":
            skill = _group(CURRENT_LEARNING_PATTERN, content)
            if skill:
                self._update_skill(profile, skill, observed_at(fact))

    def _update_interest(self, profile: UserProfile, topic: str, seen: datetime) -> None:
        for interest in profile.learning.interests:
            if interest.topic.lower() == topic.lower():
                interest.strength = min(interest.strength + INTEREST_REINFORCEMENT, 1.0)
                if seen > ensure_utc(interest.last_discussed):
                    interest.last_discussed = seen
                return
        profile.learning.interests.append(
            Interest(topic=topic, strength=0.7, expertise=0.3, last_discussed=seen)
        )

    def _update_skill(self, profile: UserProfile, name: str, seen: datetime) -> None:
        for skill in profile.professional.skills:
            if skill.name.lower() == name.lower():
                if seen > ensure_utc(skill.last_updated):
                    skill.last_updated = seen
                return
        profile.professional.skills.append(Skill(name=name, last_updated=seen))

    def _update_communication(self, profile: UserProfile, preference: str) -> None:
        communication = profile.preferences.communication
        if _BRIEF.search(preference):
            communication.length = "brief"
        elif _DETAILED.search(preference):
            communication.length = "detailed"

        if _CASUAL.search(preference):
            communication.formality = "casual"
        elif _FORMAL.search(preference):
            communication.formality = "formal"
