# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Privacy gate for facts leaving the memory store.

Rules, applied in order to every fact:

1. confidential facts are always dropped
2. facts in a sensitive data category (health, financial, biometric,
   special) are dropped unless the user granted consent
3. include/exclude filters on namespace.category
4. with user_consent_only, any fact without consent is dropped

Every path that exposes fact content (context assembly, export) runs
through PrivacyFilter.filter().
"""

import logging
from typing import Iterable

from tutor_memory.models.memory import (
    MemoryFact,
    PrivacyFilterOptions,
    PrivacyLevel,
    ScoredFact,
)

logger = logging.getLogger(__name__)


class PrivacyFilter:
    """Stateless filter over facts."""

    def allows(self, fact: MemoryFact, options: PrivacyFilterOptions | None = None) -> bool:
        """Check a single fact against the privacy rules."""
        options = options or PrivacyFilterOptions()
        privacy = fact.privacy
        consented = privacy.user_consent.granted

        if privacy.level == PrivacyLevel.CONFIDENTIAL:
            return False

        if privacy.is_sensitive and not consented:
            return False

        category = fact.namespace.category
        if options.include_category and category not in options.include_category:
            return False
        if category in options.exclude_category:
            return False

        if options.user_consent_only and not consented:
            return False

        return True

    def filter(
        self,
        facts: Iterable[MemoryFact],
        options: PrivacyFilterOptions | None = None,
    ) -> list[MemoryFact]:
        """Return the facts that may leave the store, order preserved."""
        facts = list(facts)
        allowed = [fact for fact in facts if self.allows(fact, options)]
        if len(allowed) != len(facts):
            logger.debug("Privacy filter dropped %d of %d facts", len(facts) - len(allowed), len(facts))
        return allowed

    def filter_scored(
        self,
        scored: Iterable[ScoredFact],
        options: PrivacyFilterOptions | None = None,
    ) -> list[ScoredFact]:
        return [item for item in scored if self.allows(item.fact, options)]
