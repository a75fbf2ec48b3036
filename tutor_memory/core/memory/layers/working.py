# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Working memory: the whole session, summarized once it grows long.

Sessions up to `threshold` turns are returned verbatim. Longer sessions are
split at len(turns) - recent_count: the older segment is digested by the
LLM once per split point and cached, the recent segment stays verbatim.

If the LLM is unavailable the older segment gets a deterministic digest
instead, so a turn is never blocked on summarization.
"""

import logging
from collections import Counter

from tutor_memory.core.intelligence.llm import LLMClient, LLMError
from tutor_memory.core.memory.conversation import ConversationLog
from tutor_memory.core.memory.layers.short_term import format_turn
from tutor_memory.core.memory.tokens import estimate_tokens
from tutor_memory.infrastructure.cache.tiered import TieredCache, summary_cache_key
from tutor_memory.models.memory import ConversationTurn, WorkingMemory

logger = logging.getLogger(__name__)

DEFAULT_SUMMARIZATION_THRESHOLD = 10
DEFAULT_WORKING_MEMORY_TTL = 7200

SUMMARY_SYSTEM_PROMPT = (
    "You condense tutoring conversations. Write a short prose digest of the "
    "conversation below: what the learner asked about, what was explained, and "
    "anything the learner revealed about themselves. Three sentences at most."
)

_STOPWORDS = frozenset(
    "the a an and or but to of in on for with is are was were be it this that "
    "i you we they he she my your me what how why can do does about".split()
)


def fallback_digest(turns: list[ConversationTurn], max_topics: int = 5) -> str:
    """Deterministic digest: message count plus the most frequent content words."""
    words = Counter(
        word
        for turn in turns
        for word in (w.strip(".,!?;:\"'()").lower() for w in turn.content.split())
        if len(word) > 3 and word not in _STOPWORDS
    )
    topics = [word for word, _ in words.most_common(max_topics)]
    if not topics:
        return f"Discussed {len(turns)} messages."
    return f"Discussed {len(turns)} messages covering: {', '.join(topics)}."


class WorkingMemorySummarizer:
    """Builds the working-memory tier for a conversation.

    Args:
        conversations: Transcript reader.
        llm_client: LLM used to digest the older segment.
        cache: Shared cache holding digests per (conversation, split point).
        threshold: Session length above which summarization kicks in.
        recent_count: Turns kept verbatim after the split.
        ttl_seconds: Lifetime of a cached digest.
        temperature: Sampling temperature of the digest call.
        max_tokens: Output cap of the digest call.
    """

    def __init__(
        self,
        conversations: ConversationLog,
        llm_client: LLMClient,
        cache: TieredCache,
        threshold: int = DEFAULT_SUMMARIZATION_THRESHOLD,
        recent_count: int = 5,
        ttl_seconds: int = DEFAULT_WORKING_MEMORY_TTL,
        temperature: float = 0.3,
        max_tokens: int = 256,
    ) -> None:
        self._conversations = conversations
        self._llm = llm_client
        self._cache = cache
        self._threshold = threshold
        self._recent_count = recent_count
        self._ttl = ttl_seconds
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def get(self, conversation_id: str) -> WorkingMemory:
        turns = await self._conversations.list_turns(conversation_id)

        if len(turns) <= self._threshold:
            context = "\n".join(format_turn(t) for t in turns)
            return WorkingMemory(
                context=context,
                turn_count=len(turns),
                token_estimate=estimate_tokens(context),
            )

        split_point = len(turns) - self._recent_count
        older, recent = turns[:split_point], turns[split_point:]

        summary = await self._summary_for(conversation_id, split_point, older)
        recent_text = "\n".join(format_turn(t) for t in recent)
        context = (
            f"Previous conversation summary:\n{summary}\n\n"
            f"Recent messages:\n{recent_text}"
        )

        return WorkingMemory(
            context=context,
            summary=summary,
            turn_count=len(turns),
            split_point=split_point,
            token_estimate=estimate_tokens(context),
        )

    async def _summary_for(
        self,
        conversation_id: str,
        split_point: int,
        older: list[ConversationTurn],
    ) -> str:
        key = summary_cache_key(conversation_id, split_point)
        cached = await self._cache.get(key, ttl_seconds=self._ttl)
        if isinstance(cached, str) and cached:
            return cached

        summary = await self.summarize(older)
        if summary is None:
            return fallback_digest(older)

        await self._cache.set(key, summary, self._ttl)
        return summary

    async def summarize(self, turns: list[ConversationTurn]) -> str | None:
        """Digest turns with the LLM.

        Returns:
            The digest, or None when the LLM is unavailable or returned nothing.
            Fallback digests are not cached so the next turn retries the LLM.
        """
        transcript = "\n".join(format_turn(t) for t in turns)
        try:
            response = await self._llm.complete(
                prompt=transcript,
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
            summary = response.content.strip()
            if summary:
                logger.debug(
                    "Summarized %d turns (%d tokens)", len(turns), response.total_tokens
                )
                return summary
            logger.warning("LLM returned an empty digest, using fallback")
        except LLMError as e:
            logger.warning("Summarization failed, using fallback digest: %s", e.message)

        return None
