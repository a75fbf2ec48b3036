# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Short-term memory: the last N turns of the active conversation, verbatim."""

import logging

from tutor_memory.core.memory.conversation import ConversationLog
from tutor_memory.core.memory.tokens import estimate_tokens
from tutor_memory.models.memory import ConversationTurn, ShortTermMemory

logger = logging.getLogger(__name__)

DEFAULT_SHORT_TERM_LIMIT = 5


def format_turn(turn: ConversationTurn) -> str:
    return f"{turn.role}: {turn.content}"


class ShortTermWindow:
    """Reads the most recent turns. No scoring, no writes.

    Example:
        window = ShortTermWindow(conversation_log, limit=5)
        memory = await window.get("conv-1")
        memory.turns[-1]  # latest turn
    """

    def __init__(
        self,
        conversations: ConversationLog,
        limit: int = DEFAULT_SHORT_TERM_LIMIT,
    ) -> None:
        self._conversations = conversations
        self._limit = limit

    @property
    def limit(self) -> int:
        return self._limit

    async def get(self, conversation_id: str) -> ShortTermMemory:
        turns = await self._conversations.recent_turns(conversation_id, self._limit)
        text = "\n".join(format_turn(t) for t in turns)
        return ShortTermMemory(turns=turns, token_estimate=estimate_tokens(text))
