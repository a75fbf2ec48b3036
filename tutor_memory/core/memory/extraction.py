# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pattern-based fact extraction and duplicate detection.

Extraction is deliberately low precision: each rule is one regular
expression run over user-authored turns, and the consolidation merge step
plus decay keep the error from accumulating.

Rules:
    identity          "I'm Alex", "my name is Sam Lee"         fact / personal.identity
    occupation        "I work as a backend engineer"           fact / work.occupation
    preferences       "I prefer short answers"                 preference / personal.preferences
    learning_goals    "I want to learn Rust"                   goal / education.learning_goals
    current_learning  "I'm studying linear algebra"            experience / education.current_learning
    organizations     "at Stanford University"                 entity / work.organizations

Names in the identity rule are matched case-sensitively so "I'm Alex and
I ..." yields "Alex", not "Alex and".
"""

import re
from dataclasses import dataclass
from typing import Iterable

from tutor_memory.models.memory import ConversationTurn, FactType

RULE_CONFIDENCE = 0.8
ENTITY_CONFIDENCE = 0.7

# Jaccard similarity above which a candidate duplicates an existing fact
DUPLICATE_THRESHOLD = 0.9

_I_AM = r"i['’]m|i am"

IDENTITY_PATTERN = re.compile(
    rf"\b(?i:{_I_AM}|my name is)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"
)
OCCUPATION_PATTERN = re.compile(
    rf"\b(?:i work as|(?:{_I_AM}) a)\s+"
    r"([a-z\s]+?(?:developer|engineer|designer|manager|student|teacher))",
    re.IGNORECASE,
)
PREFERENCE_PATTERN = re.compile(
    r"\bi (?:love|like|enjoy|prefer)\s+([^,.!?]+)",
    re.IGNORECASE,
)
LEARNING_GOAL_PATTERN = re.compile(
    r"\bi (?:want|need|would like) to (?:learn|understand|know about)\s+([^,.!?]+)",
    re.IGNORECASE,
)
CURRENT_LEARNING_PATTERN = re.compile(
    rf"\b(?:{_I_AM}) (?:learning|studying|working on)\s+([^,.!?]+)",
    re.IGNORECASE,
)
ORGANIZATION_PATTERN = re.compile(
    r"\b(?:at|for|with)\s+((?:[A-Z][\w&]*\s+){0,3}"
    r"(?:Inc|Corp|Corporation|LLC|Ltd|University|College|Institute|Academy|School))\b"
)

# Broader role capture used when folding occupation facts into the profile
ROLE_PATTERN = re.compile(
    rf"\b(?:i work as|(?:{_I_AM}) a)\s+([a-z\s]+)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ExtractionRule:
    """One pattern and the classification its matches receive.

    Attributes:
        topic: Namespace topic, also the rule's name.
        pattern: Regex with the extracted value in group 1.
        fact_type: Type assigned to matches.
        category: Namespace category.
        confidence: Source confidence of matches.
        content_group: Match group used as fact content (0 = the whole phrase).
    """

    topic: str
    pattern: re.Pattern
    fact_type: FactType
    category: str
    confidence: float = RULE_CONFIDENCE
    content_group: int = 0


EXTRACTION_RULES: tuple[ExtractionRule, ...] = (
    ExtractionRule("identity", IDENTITY_PATTERN, FactType.FACT, "personal"),
    ExtractionRule("occupation", OCCUPATION_PATTERN, FactType.FACT, "work"),
    ExtractionRule("preferences", PREFERENCE_PATTERN, FactType.PREFERENCE, "personal"),
    ExtractionRule("learning_goals", LEARNING_GOAL_PATTERN, FactType.GOAL, "education"),
    ExtractionRule(
        "current_learning", CURRENT_LEARNING_PATTERN, FactType.EXPERIENCE, "education"
    ),
    ExtractionRule(
        "organizations",
        ORGANIZATION_PATTERN,
        FactType.ENTITY,
        "work",
        confidence=ENTITY_CONFIDENCE,
        content_group=1,
    ),
)


@dataclass(frozen=True)
class FactCandidate:
    """A fact proposed by an extraction rule, not yet deduplicated."""

    content: str
    value: str
    rule: ExtractionRule
    message_id: str

    @property
    def fact_type(self) -> FactType:
        return self.rule.fact_type


class FactExtractor:
    """Applies the extraction rules to a transcript."""

    def __init__(self, rules: Iterable[ExtractionRule] = EXTRACTION_RULES) -> None:
        self._rules = tuple(rules)

    def extract(self, turns: Iterable[ConversationTurn]) -> list[FactCandidate]:
        """Extract candidates from user-authored turns.

        Each rule contributes at most one candidate per turn.
        """
        candidates: list[FactCandidate] = []
        for turn in turns:
            if turn.role != "user":
                continue
            for rule in self._rules:
                match = rule.pattern.search(turn.content)
                if match is None:
                    continue
                content = match.group(rule.content_group).strip()
                value = match.group(1).strip()
                if not content or not value:
                    continue
                candidates.append(
                    FactCandidate(
                        content=content,
                        value=value,
                        rule=rule,
                        message_id=turn.id,
                    )
                )
        return candidates


def word_set(text: str) -> set[str]:
    return set(text.lower().split())


def jaccard_similarity(a: str, b: str) -> float:
    """Word-set intersection over union, case-insensitive."""
    words_a = word_set(a)
    words_b = word_set(b)
    if not words_a and not words_b:
        return 1.0
    union = words_a | words_b
    return len(words_a & words_b) / len(union)


def is_duplicate(a: str, b: str, threshold: float = DUPLICATE_THRESHOLD) -> bool:
    return jaccard_similarity(a, b) > threshold
