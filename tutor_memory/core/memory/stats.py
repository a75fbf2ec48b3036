# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Per-process observability counters for the memory subsystem."""

import threading
from dataclasses import dataclass, field


@dataclass
class MemoryStats:
    """Thread-safe counters.

    Incremented from the event loop and from Dramatiq worker threads.
    """

    retrievals: int = 0
    consolidations: int = 0
    forgetting_events: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        if counter.startswith("_") or not hasattr(self, counter):
            raise ValueError(f"Unknown counter: {counter}")
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    @property
    def cache_hit_rate(self) -> float:
        with self._lock:
            lookups = self.cache_hits + self.cache_misses
            return self.cache_hits / lookups if lookups else 0.0

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            lookups = self.cache_hits + self.cache_misses
            return {
                "retrievals": self.retrievals,
                "consolidations": self.consolidations,
                "forgetting_events": self.forgetting_events,
                "cache_hits": self.cache_hits,
                "cache_misses": self.cache_misses,
                "cache_hit_rate": self.cache_hits / lookups if lookups else 0.0,
            }

    def reset(self) -> None:
        with self._lock:
            self.retrievals = 0
            self.consolidations = 0
            self.forgetting_events = 0
            self.cache_hits = 0
            self.cache_misses = 0
