# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Token estimation and budget allocation."""

import math
from dataclasses import dataclass

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """ceil(len(text) / 4)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class BudgetShares:
    """Share of the total budget per prompt section. Sums to 1.0."""

    system_prompt: float = 0.25
    short_term: float = 0.20
    working: float = 0.20
    long_term: float = 0.20
    current_message: float = 0.10
    buffer: float = 0.05

    def allocate(self, total_budget: int) -> dict[str, int]:
        """Floor of each share of the total budget."""
        return {
            "system_prompt": math.floor(total_budget * self.system_prompt),
            "short_term": math.floor(total_budget * self.short_term),
            "working": math.floor(total_budget * self.working),
            "long_term": math.floor(total_budget * self.long_term),
            "current_message": math.floor(total_budget * self.current_message),
            "buffer": math.floor(total_budget * self.buffer),
        }


DEFAULT_SHARES = BudgetShares()
