# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Token-budgeted context assembly.

The budget is split by fixed shares (see tokens.BudgetShares). Sections are
emitted in this order:

    **About the user:**                    profile      \\ together within the
    **What you remember about the user:**  long-term    / long-term allocation
    **Earlier in this conversation:**      working digest, within its allocation
    **Recent messages:**                   short-term, within its allocation

Long-term facts arrive sorted by relevance and are added whole until the
next one would overflow the allocation; the rest are dropped. Because every
section stays inside its own allocation, the assembled block never exceeds
the total budget.
"""

import logging
from dataclasses import dataclass, field

from tutor_memory.core.memory.layers.short_term import format_turn
from tutor_memory.core.memory.tokens import DEFAULT_SHARES, BudgetShares, estimate_tokens
from tutor_memory.models.memory import (
    LongTermMemory,
    ShortTermMemory,
    UserProfile,
    WorkingMemory,
)
from tutor_memory.utils.datetime import time_ago

logger = logging.getLogger(__name__)

PROFILE_HEADER = "**About the user:**"
LONG_TERM_HEADER = "**What you remember about the user:**"
WORKING_HEADER = "**Earlier in this conversation:**"
SHORT_TERM_HEADER = "**Recent messages:**"

ELLIPSIS = "..."


@dataclass
class AssembledContext:
    """Output of ContextAssembler.assemble().

    Attributes:
        text: The formatted block for the prompt.
        estimated_tokens: ceil(len(text) / 4).
        allocations: Token allocation per section.
        fact_ids: Long-term facts that made it into the block.
    """

    text: str
    estimated_tokens: int
    allocations: dict[str, int]
    fact_ids: list[str] = field(default_factory=list)


def _section(header: str, lines: list[str]) -> str:
    return header + "\n" + "\n".join(lines) + "\n\n"


def _truncate_to_tokens(text: str, max_tokens: int) -> str:
    max_chars = max_tokens * 4
    if len(text) <= max_chars:
        return text
    if max_chars <= len(ELLIPSIS):
        return ""
    return text[: max_chars - len(ELLIPSIS)].rstrip() + ELLIPSIS


def profile_lines(profile: UserProfile) -> list[str]:
    """Human-readable profile lines, most identifying first."""
    lines: list[str] = []
    if profile.personal.name:
        lines.append(f"Name: {profile.personal.name.value}")
    if profile.personal.role:
        lines.append(f"Role: {profile.personal.role.value}")
    if profile.professional.skills:
        lines.append("Currently learning: " + ", ".join(s.name for s in profile.professional.skills))
    if profile.learning.interests:
        interests = sorted(profile.learning.interests, key=lambda i: i.strength, reverse=True)
        lines.append("Interests: " + ", ".join(i.topic for i in interests))
    active_goals = [g.goal for g in profile.learning.goals if g.status == "active"]
    if active_goals:
        lines.append("Goals: " + ", ".join(active_goals))
    communication = profile.preferences.communication
    if communication.length:
        lines.append(f"Prefers {communication.length} answers")
    if communication.formality:
        lines.append(f"Prefers a {communication.formality} tone")
    return lines


class ContextAssembler:
    """Merges the memory tiers into one prompt block.

    Example:
        assembler = ContextAssembler()
        context = assembler.assemble(profile, long_term, working, short_term, 2000)
        context.estimated_tokens <= 2000  # always
    """

    def __init__(self, shares: BudgetShares = DEFAULT_SHARES) -> None:
        self._shares = shares

    def allocate(self, total_token_budget: int) -> dict[str, int]:
        return self._shares.allocate(total_token_budget)

    def assemble(
        self,
        profile: UserProfile | None,
        long_term: LongTermMemory,
        working: WorkingMemory,
        short_term: ShortTermMemory,
        total_token_budget: int,
    ) -> AssembledContext:
        """Assemble the tiers under a token budget.

        Args:
            profile: User profile, if one exists.
            long_term: Retrieved facts, most relevant first.
            working: Working-memory tier; only its digest is used.
            short_term: Recent verbatim turns.
            total_token_budget: Total prompt budget in tokens.

        Returns:
            AssembledContext whose estimated_tokens never exceeds the budget.
        """
        allocations = self.allocate(total_token_budget)

        durable, fact_ids = self._durable_sections(
            profile, long_term, allocations["long_term"]
        )
        digest = self._working_section(working, allocations["working"])
        recent = self._short_term_section(short_term, allocations["short_term"])

        text = (durable + digest + recent).rstrip()

        if estimate_tokens(text) > total_token_budget:
            logger.warning("Assembled context over budget, truncating")
            text = _truncate_to_tokens(text, total_token_budget)

        return AssembledContext(
            text=text,
            estimated_tokens=estimate_tokens(text),
            allocations=allocations,
            fact_ids=fact_ids,
        )

    def _durable_sections(
        self,
        profile: UserProfile | None,
        long_term: LongTermMemory,
        allocation: int,
    ) -> tuple[str, list[str]]:
        running = ""

        if profile is not None:
            kept: list[str] = []
            for line in profile_lines(profile):
                if estimate_tokens(_section(PROFILE_HEADER, [*kept, line])) > allocation:
                    break
                kept.append(line)
            if kept:
                running = _section(PROFILE_HEADER, kept)

        fact_lines: list[str] = []
        fact_ids: list[str] = []
        for item in long_term.facts:
            fact = item.fact
            line = (
                f"- {fact.content} "
                f"({fact.type.value}, {time_ago(fact.temporal.created_at)})"
            )
            candidate = running + _section(LONG_TERM_HEADER, [*fact_lines, line])
            if estimate_tokens(candidate) > allocation:
                break
            fact_lines.append(line)
            fact_ids.append(fact.id)

        dropped = len(long_term.facts) - len(fact_ids)
        if dropped:
            logger.debug("Dropped %d long-term facts over the allocation", dropped)

        if fact_lines:
            running += _section(LONG_TERM_HEADER, fact_lines)
        return running, fact_ids

    def _working_section(self, working: WorkingMemory, allocation: int) -> str:
        if not working.summary:
            return ""
        overhead = estimate_tokens(_section(WORKING_HEADER, [""]))
        summary = _truncate_to_tokens(working.summary, allocation - overhead)
        if not summary:
            return ""
        section = _section(WORKING_HEADER, [summary])
        return section if estimate_tokens(section) <= allocation else ""

    def _short_term_section(self, short_term: ShortTermMemory, allocation: int) -> str:
        kept: list[str] = []
        for turn in reversed(short_term.turns):
            line = format_turn(turn)
            if estimate_tokens(_section(SHORT_TERM_HEADER, [line, *kept])) > allocation:
                break
            kept.insert(0, line)

        if not kept and short_term.turns:
            # Not even the newest turn fits whole; keep its beginning
            overhead = estimate_tokens(_section(SHORT_TERM_HEADER, [""]))
            line = _truncate_to_tokens(format_turn(short_term.turns[-1]), allocation - overhead)
            if line:
                kept = [line]

        if not kept:
            return ""
        section = _section(SHORT_TERM_HEADER, kept)
        return section if estimate_tokens(section) <= allocation else ""
